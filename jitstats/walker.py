"""
Query Relation Walker: collect every relation a query reads.

Reaches relations through:
- the range table (RELATION entries)
- derived tables (SUBQUERY entries)
- WITH clause definitions
- sub-links in expressions (scalar, EXISTS, IN, ANY/ALL, ARRAY subqueries)

Traversal uses an explicit work list instead of recursion, so arbitrarily
deep nesting does not hit the interpreter's recursion limit.
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum, auto

from jitstats.query_tree import Query, RteKind, SubLink, iter_sublinks
from jitstats.relations import INVALID_RELATION_ID, RelationSet

logger = logging.getLogger(__name__)


class WorkKind(Enum):
    """What a pending work item points at."""
    RANGE_TABLE = auto()
    SUB_LINK = auto()


@dataclass(frozen=True)
class WorkItem:
    kind: WorkKind
    node: Query | SubLink


class QueryRelationWalker:
    """
    Discovers relation ids referenced by a Query tree.

    A Query node has its range table walked at most once, however many
    paths lead to it. Relations reached by several paths are recorded once.
    """

    def __init__(self):
        self.queries_walked = 0

    def discover(self, query: Query) -> RelationSet:
        """
        Collect every relation id the query (and its nested queries) reads.

        Args:
            query: Analyzed top-level query

        Returns:
            RelationSet in discovery order; empty for queries with no range
            table and no sub-links
        """
        found = RelationSet()
        visited: set[int] = set()
        pending: deque[WorkItem] = deque([WorkItem(WorkKind.RANGE_TABLE, query)])
        self.queries_walked = 0

        while pending:
            item = pending.popleft()

            if item.kind is WorkKind.SUB_LINK:
                pending.append(WorkItem(WorkKind.RANGE_TABLE, item.node.subselect))
                continue

            current = item.node
            if id(current) in visited:
                continue
            visited.add(id(current))
            self.queries_walked += 1

            for rte in current.rtable:
                if rte.kind is RteKind.RELATION:
                    if rte.relid == INVALID_RELATION_ID:
                        continue
                    if found.add(rte.relid):
                        logger.debug("discovered relation id %d (%s)", rte.relid, rte.name)
                elif rte.kind is RteKind.SUBQUERY and rte.subquery is not None:
                    pending.append(WorkItem(WorkKind.RANGE_TABLE, rte.subquery))

            for cte in current.cte_list:
                pending.append(WorkItem(WorkKind.RANGE_TABLE, cte.query))

            for sublink in iter_sublinks(current):
                pending.append(WorkItem(WorkKind.SUB_LINK, sublink))

        return found


def discover_relations(query: Query) -> RelationSet:
    """Convenience wrapper around QueryRelationWalker.discover()."""
    return QueryRelationWalker().discover(query)
