"""
Statistics Coordinator: make sure every table a query reads has statistics.

One run() per statement:
1. skip if an analysis pass is already running in this session
2. discover referenced relations (QueryRelationWalker)
3. expand views into base relations (ViewDependencyResolver)
4. per base relation: schema exclusion, ownership check, statistics check
5. run maintenance (ANALYZE) on relations that have no statistics
"""

import logging
from dataclasses import dataclass, field

from jitstats.catalog import RelationCatalog
from jitstats.config import JitStatsConfig
from jitstats.errors import UnexpectedRelationKind
from jitstats.guard import ReentrancyGuard
from jitstats.query_tree import Query
from jitstats.relations import (
    RelationId,
    RelationKind,
    RelationRecord,
    RelationSet,
    SessionUser,
)
from jitstats.view_resolver import ViewDependencyResolver
from jitstats.walker import QueryRelationWalker

logger = logging.getLogger(__name__)


def is_authorized(user: SessionUser, owner: str) -> bool:
    """A user may analyze a relation if they are a superuser or its owner."""
    return user.superuser or user.name == owner


@dataclass
class DiscoveredRelations:
    """Working state and outcome of one analysis pass."""
    referenced: RelationSet = field(default_factory=RelationSet)
    targets: RelationSet = field(default_factory=RelationSet)
    records: dict[RelationId, RelationRecord] = field(default_factory=dict)
    maintained: list[RelationRecord] = field(default_factory=list)
    planned: list[RelationRecord] = field(default_factory=list)  # dry run only
    fresh: list[RelationRecord] = field(default_factory=list)
    denied: list[RelationRecord] = field(default_factory=list)
    excluded: list[RelationRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to a JSON-friendly dict."""
        def names(records: list[RelationRecord]) -> list[str]:
            return [r.qualified_name for r in records]

        return {
            "referenced": [self._label(relid) for relid in self.referenced],
            "targets": [self._label(relid) for relid in self.targets],
            "maintained": names(self.maintained),
            "planned": names(self.planned),
            "fresh": names(self.fresh),
            "denied": names(self.denied),
            "excluded": names(self.excluded),
        }

    def _label(self, relid: RelationId) -> str:
        record = self.records.get(relid)
        return record.qualified_name if record else str(relid)


class StatisticsCoordinator:
    """
    Orchestrates discovery, view expansion, policy and maintenance.

    Args:
        catalog: Catalog to read from and run maintenance through
        guard: The session's ReentrancyGuard
        config: Policy settings (excluded schemas, dry run, verbosity)
    """

    def __init__(
        self,
        catalog: RelationCatalog,
        guard: ReentrancyGuard | None = None,
        config: JitStatsConfig | None = None,
        walker: QueryRelationWalker | None = None,
        resolver: ViewDependencyResolver | None = None,
    ):
        self.catalog = catalog
        self.guard = guard or ReentrancyGuard()
        self.config = config or JitStatsConfig()
        self.walker = walker or QueryRelationWalker()
        self.resolver = resolver or ViewDependencyResolver(catalog)
        self.passes = 0

    def run(self, query: Query) -> DiscoveredRelations | None:
        """
        Run one analysis pass for a statement.

        Returns:
            DiscoveredRelations, or None when a pass was already running

        Raises:
            CatalogInconsistency: unresolvable relation or unexpected kind
            MaintenanceFailure: statistics collection failed
        """
        if self.guard.active:
            logger.debug("analysis pass already running; skipping nested statement")
            return None

        with self.guard.held():
            self.passes += 1
            logger.debug("analysis pass entry: %s", query.source_text)
            result = self._analyze(query)
            logger.debug("analysis pass exit: %s", result.to_dict())
            return result

    def _analyze(self, query: Query) -> DiscoveredRelations:
        discovered = DiscoveredRelations()
        discovered.referenced = self.walker.discover(query)
        self._collect_targets(discovered)

        session_user = self.catalog.session_user()
        excluded_schemas = set(self.config.excluded_schemas)

        for relid in discovered.targets:
            record = discovered.records[relid]

            if record.schema in excluded_schemas:
                logger.debug("skipping %s: schema %s excluded", record.describe(), record.schema)
                discovered.excluded.append(record)
                continue

            if not is_authorized(session_user, record.owner):
                if self.config.report_denied:
                    logger.info(
                        "not analyzing %s: user %s is not owner (%s) and not superuser",
                        record.qualified_name, session_user.name, record.owner,
                    )
                discovered.denied.append(record)
                continue

            count = self.catalog.statistics_count(relid)
            logger.debug("%s has %d statistics entries", record.describe(), count)
            if count > 0:
                discovered.fresh.append(record)
                continue

            if self.config.dry_run:
                logger.info("dry run: would analyze %s", record.qualified_name)
                discovered.planned.append(record)
                continue

            logger.info("analyzing %s: no statistics found", record.qualified_name)
            self.catalog.run_maintenance(record, verbose=self.config.verbose_maintenance)
            discovered.maintained.append(record)

        return discovered

    def _collect_targets(self, discovered: DiscoveredRelations) -> None:
        """Resolve referenced relations to storage-backed targets."""
        seen: set[RelationId] = set()

        for relid in discovered.referenced:
            record = self.catalog.lookup(relid)
            discovered.records[relid] = record

            if record.kind is RelationKind.VIEW:
                for base_id in self.resolver.expand(relid, seen):
                    if base_id not in discovered.records:
                        discovered.records[base_id] = self.catalog.lookup(base_id)
                    discovered.targets.add(base_id)
            elif record.kind.is_storage_backed:
                seen.add(relid)
                discovered.targets.add(relid)
            else:
                raise UnexpectedRelationKind(record)
