"""
In-memory catalog: a swappable RelationCatalog with no database behind it.

Used by the test suite and by the CLI for dry runs against a catalog
described in a JSON file (see load_catalog).
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from jitstats.catalog import RelationCatalog
from jitstats.errors import CatalogFileError, MaintenanceFailure, RelationNotFound
from jitstats.relations import RelationId, RelationKind, RelationRecord, SessionUser

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    """Mutable per-relation state held by the fake."""
    record: RelationRecord
    statistics: int = 0
    columns: int = 1
    depends_on: list[RelationId] = field(default_factory=list)


class InMemoryCatalog(RelationCatalog):
    """
    Dict-backed catalog.

    run_maintenance() populates statistics (one entry per column) and
    appends the record to maintenance_log. Tests can inject failures with
    fail_maintenance, or simulate maintenance that issues queries of its
    own with on_maintenance.
    """

    def __init__(self, current_user: str = "postgres", superuser: bool = True):
        self._entries: dict[RelationId, _Entry] = {}
        self._by_name: dict[tuple[str, str], RelationId] = {}
        self._users: dict[str, SessionUser] = {}
        self._next_id = 16384
        self.current_user = current_user
        self.add_user(current_user, superuser=superuser)
        self.maintenance_log: list[RelationRecord] = []
        self.fail_maintenance: set[RelationId] = set()
        self.on_maintenance: Callable[[RelationRecord], None] | None = None
        # Call counters, handy for instrumentation in tests
        self.lookup_calls = 0
        self.dependency_calls: list[RelationId] = []

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def add_user(self, name: str, superuser: bool = False) -> SessionUser:
        """Register a role."""
        user = SessionUser(name=name, superuser=superuser)
        self._users[name] = user
        return user

    def set_current_user(self, name: str) -> None:
        """Switch the session role; unknown roles are created as non-superusers."""
        if name not in self._users:
            self.add_user(name)
        self.current_user = name

    def add_relation(
        self,
        name: str,
        kind: RelationKind = RelationKind.BASE_TABLE,
        schema: str = "public",
        owner: str | None = None,
        statistics: int = 0,
        columns: int = 1,
        relid: RelationId | None = None,
    ) -> RelationRecord:
        """
        Register a relation.

        Args:
            name: Relation name
            kind: Relation kind
            schema: Schema (namespace) name
            owner: Owning role (defaults to the current user)
            statistics: Number of statistics entries already present
            columns: Number of columns; maintenance stores one entry per column
            relid: Explicit id (allocated if omitted)

        Returns:
            The new RelationRecord
        """
        if relid is None:
            relid = self._next_id
        if relid in self._entries:
            raise ValueError(f"relation id {relid} already registered")
        self._next_id = max(self._next_id, relid) + 1

        record = RelationRecord(
            id=relid,
            schema=schema,
            name=name,
            kind=kind,
            owner=owner or self.current_user,
        )
        self._entries[relid] = _Entry(record=record, statistics=statistics, columns=columns)
        self._by_name[(schema, name)] = relid
        return record

    def add_table(self, name: str, **kwargs) -> RelationRecord:
        """Register a base table."""
        return self.add_relation(name, RelationKind.BASE_TABLE, **kwargs)

    def add_view(
        self,
        name: str,
        depends_on: list[RelationRecord | RelationId] = (),
        **kwargs,
    ) -> RelationRecord:
        """Register a view reading the given relations."""
        record = self.add_relation(name, RelationKind.VIEW, **kwargs)
        self.set_dependencies(record.id, depends_on)
        return record

    def set_dependencies(
        self,
        view_id: RelationId,
        depends_on: list[RelationRecord | RelationId],
    ) -> None:
        """Replace the direct dependencies of a view."""
        ids = [dep.id if isinstance(dep, RelationRecord) else dep for dep in depends_on]
        self._entries[view_id].depends_on = ids

    # ------------------------------------------------------------------
    # RelationCatalog
    # ------------------------------------------------------------------

    def lookup(self, relid: RelationId) -> RelationRecord:
        self.lookup_calls += 1
        entry = self._entries.get(relid)
        if entry is None:
            raise RelationNotFound(relid)
        return entry.record

    def resolve_name(self, schema: str, name: str) -> RelationId | None:
        return self._by_name.get((schema, name))

    def view_dependencies(self, view_id: RelationId) -> list[RelationRecord]:
        self.dependency_calls.append(view_id)
        entry = self._entries.get(view_id)
        if entry is None:
            raise RelationNotFound(view_id)
        records = []
        for dep_id in entry.depends_on:
            if dep_id == view_id:
                continue
            dep = self._entries.get(dep_id)
            if dep is None:
                raise RelationNotFound(dep_id)
            records.append(dep.record)
        return records

    def statistics_count(self, relid: RelationId) -> int:
        entry = self._entries.get(relid)
        if entry is None:
            raise RelationNotFound(relid)
        return entry.statistics

    def run_maintenance(self, record: RelationRecord, verbose: bool = False) -> None:
        entry = self._entries.get(record.id)
        if entry is None:
            raise MaintenanceFailure(record, "relation does not exist")
        if record.id in self.fail_maintenance:
            raise MaintenanceFailure(record, "injected failure")

        if self.on_maintenance is not None:
            self.on_maintenance(record)

        entry.statistics = entry.columns
        self.maintenance_log.append(record)
        logger.debug("analyzed %s (verbose=%s)", record.qualified_name, verbose)

    def session_user(self) -> SessionUser:
        return self._users[self.current_user]


def _parse_dependency(
    ref: int | str,
    ids_by_name: dict[tuple[str, str], RelationId],
) -> RelationId:
    """Resolve a depends_on entry (id, "name" or "schema.name")."""
    if isinstance(ref, int):
        return ref
    if not isinstance(ref, str):
        raise CatalogFileError(f"depends_on entries must be ids or names, got: {ref!r}")

    schema, _, name = ref.rpartition(".")
    key = (schema or "public", name)
    if key not in ids_by_name:
        raise CatalogFileError(f"depends_on references unknown relation: {ref!r}")
    return ids_by_name[key]


def load_catalog(catalog_path: Path) -> InMemoryCatalog:
    """
    Load an in-memory catalog from a JSON file.

    Args:
        catalog_path: Path to catalog JSON

    Returns:
        InMemoryCatalog with relations, users and view dependencies loaded
    """
    try:
        content = json.loads(catalog_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise CatalogFileError(f"{catalog_path}: invalid JSON: {e}") from e

    if not isinstance(content, dict):
        raise CatalogFileError(f"{catalog_path}: top-level JSON object expected")

    users = content.get("users", {})
    current_user = content.get("current_user", "postgres")
    current_info = users.get(current_user, {})

    catalog = InMemoryCatalog(
        current_user=current_user,
        superuser=bool(current_info.get("superuser", current_user == "postgres")),
    )
    for user_name, user_info in users.items():
        if user_name != current_user:
            catalog.add_user(user_name, superuser=bool(user_info.get("superuser", False)))

    # First pass: relations. Dependencies may reference relations defined later.
    pending_deps: list[tuple[RelationId, list]] = []
    for rel_data in content.get("relations", []):
        if "name" not in rel_data:
            raise CatalogFileError(f"{catalog_path}: relation without a name: {rel_data!r}")

        record = catalog.add_relation(
            name=rel_data["name"],
            kind=RelationKind.from_label(str(rel_data.get("kind", "table"))),
            schema=rel_data.get("schema", "public"),
            owner=rel_data.get("owner"),
            statistics=int(rel_data.get("statistics", 0)),
            columns=int(rel_data.get("columns", 1)),
            relid=rel_data.get("id"),
        )
        if rel_data.get("depends_on"):
            pending_deps.append((record.id, rel_data["depends_on"]))

    for view_id, refs in pending_deps:
        catalog.set_dependencies(
            view_id, [_parse_dependency(ref, catalog._by_name) for ref in refs]
        )

    return catalog
