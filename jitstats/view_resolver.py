"""
View Dependency Resolver: expand a view into the base relations it reads.

Breadth-first closure over the catalog's "view rule depends on relation"
edges. Views found along the way are expanded in turn; a relation already
visited in the pass is not expanded again, which also stops cyclic
definitions.
"""

import logging
from collections import deque

from jitstats.catalog import RelationCatalog
from jitstats.errors import UnexpectedRelationKind
from jitstats.relations import RelationId, RelationKind, RelationSet

logger = logging.getLogger(__name__)


class ViewDependencyResolver:
    """Resolves views to storage-backed relations through any depth of nesting."""

    def __init__(self, catalog: RelationCatalog):
        self.catalog = catalog

    def expand(
        self,
        view_id: RelationId,
        seen: set[RelationId] | None = None,
    ) -> RelationSet:
        """
        Return the base tables and partitions a view ultimately reads.

        Args:
            view_id: Id of a relation of kind VIEW
            seen: Visited set shared across expansions in one analysis pass.
                  Relations already in it are neither returned nor expanded.

        Returns:
            RelationSet of storage-backed relation ids

        Raises:
            UnexpectedRelationKind: a dependency is neither storage-backed nor a view
        """
        if seen is None:
            seen = set()
        result = RelationSet()
        if view_id in seen:
            logger.debug("view id %d already expanded in this pass", view_id)
            return result

        seen.add(view_id)
        pending: deque[RelationId] = deque([view_id])

        while pending:
            current = pending.popleft()
            for record in self.catalog.view_dependencies(current):
                if record.id in seen:
                    logger.debug(
                        "view id %d: %s already visited, not expanding again",
                        current, record.describe(),
                    )
                    continue
                seen.add(record.id)

                if record.kind.is_storage_backed:
                    result.add(record.id)
                elif record.kind is RelationKind.VIEW:
                    pending.append(record.id)
                else:
                    raise UnexpectedRelationKind(record, via=current)

        logger.debug("view id %d expands to %s", view_id, result.to_list())
        return result
