"""
Errors raised by jitstats.

Fatal conditions (catalog inconsistency, maintenance failure) abort the
current analysis pass. Authorization denial and view-cycle hits are not
errors and never surface here.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from jitstats.relations import RelationId, RelationRecord


class JitStatsError(Exception):
    """Base class for all jitstats errors."""


class CatalogInconsistency(JitStatsError):
    """The catalog returned something an analysis pass cannot reason about."""

    def __init__(self, message: str, relid: "RelationId | None" = None):
        super().__init__(message)
        self.relid = relid


class RelationNotFound(CatalogInconsistency):
    """A relation id does not exist in the catalog."""

    def __init__(self, relid: "RelationId"):
        super().__init__(f"relation id {relid} not found in catalog", relid)


class AmbiguousRelation(CatalogInconsistency):
    """More than one catalog row matched a single relation id."""

    def __init__(self, relid: "RelationId", count: int):
        super().__init__(
            f"{count} catalog rows found for relation id {relid}", relid
        )
        self.count = count


class UnexpectedRelationKind(CatalogInconsistency):
    """A relation that is neither storage-backed nor a view was reached."""

    def __init__(self, record: "RelationRecord", via: "RelationId | None" = None):
        message = (
            f"unexpected relation kind {record.kind.value!r} for "
            f"{record.qualified_name} (id={record.id})"
        )
        if via is not None:
            message += f" referenced by view id {via}"
        super().__init__(message, record.id)
        self.record = record


class MaintenanceFailure(JitStatsError):
    """Running statistics collection on a relation failed."""

    def __init__(self, record: "RelationRecord", reason: str):
        super().__init__(
            f"cannot run analyze for {record.qualified_name} (id={record.id}): {reason}"
        )
        self.record = record
        self.reason = reason


class GuardBusy(JitStatsError):
    """An analysis pass is already running in this session."""


class ConfigError(JitStatsError, ValueError):
    """Invalid configuration value or file."""


class CatalogFileError(JitStatsError, ValueError):
    """Invalid in-memory catalog file."""
