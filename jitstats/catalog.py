"""
Catalog interface: typed, read-mostly access to relation metadata.

Implementations:
- InMemoryCatalog (jitstats.memory_catalog): fake for tests and dry runs
- PostgresCatalog (jitstats.postgres_catalog): live PostgreSQL catalog
"""

from abc import ABC, abstractmethod

from jitstats.relations import RelationId, RelationRecord, SessionUser


class RelationCatalog(ABC):
    """Everything the statistics coordinator needs from the database catalog."""

    @abstractmethod
    def lookup(self, relid: RelationId) -> RelationRecord:
        """
        Fetch the record for a relation id.

        Raises:
            RelationNotFound: the id does not exist
            AmbiguousRelation: more than one row matched
        """

    @abstractmethod
    def resolve_name(self, schema: str, name: str) -> RelationId | None:
        """Resolve schema.name to a relation id, or None if there is no such relation."""

    @abstractmethod
    def view_dependencies(self, view_id: RelationId) -> list[RelationRecord]:
        """
        Relations directly referenced by a view's defining rule.

        The view itself is never part of the result. An empty list means the
        view reads nothing further.
        """

    @abstractmethod
    def statistics_count(self, relid: RelationId) -> int:
        """Number of statistics entries currently stored for a relation."""

    @abstractmethod
    def run_maintenance(self, record: RelationRecord, verbose: bool = False) -> None:
        """
        Collect statistics for a relation.

        Raises:
            MaintenanceFailure: statistics collection failed
        """

    @abstractmethod
    def session_user(self) -> SessionUser:
        """The role the current session runs as."""
