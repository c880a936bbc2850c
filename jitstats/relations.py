"""
Relations: identifiers, kinds and records for catalogued relations.

Provides:
- RelationKind: storage-backed tables, partitions, views, everything else
- RelationRecord: one catalog row, fetched fresh per analysis pass
- SessionUser: the role a session runs as
- RelationSet: an insertion-ordered set of relation ids
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator

RelationId = int

# Placeholder id used for range entries that do not name a catalogued relation
INVALID_RELATION_ID: RelationId = 0


class RelationKind(Enum):
    """Kind of a catalogued relation."""
    BASE_TABLE = "base_table"
    PARTITION = "partition"
    VIEW = "view"
    OTHER = "other"

    @property
    def is_storage_backed(self) -> bool:
        """Return True for relations that hold rows (and so have statistics)."""
        return self in (RelationKind.BASE_TABLE, RelationKind.PARTITION)

    @classmethod
    def from_relkind(cls, relkind: str) -> "RelationKind":
        """
        Map a PostgreSQL pg_class.relkind code to a RelationKind.

        Args:
            relkind: Single-character relkind ('r', 'p', 'v', ...)

        Returns:
            RelationKind (OTHER for anything not table, partitioned table or view)
        """
        return _RELKIND_MAP.get(relkind, cls.OTHER)

    @classmethod
    def from_label(cls, label: str) -> "RelationKind":
        """Map a catalog-file kind label ("table", "view", "p", ...) to a RelationKind."""
        return _LABEL_MAP.get(label.strip().lower(), cls.OTHER)


_RELKIND_MAP = {
    "r": RelationKind.BASE_TABLE,
    "m": RelationKind.BASE_TABLE,  # materialized view: has storage
    "p": RelationKind.PARTITION,
    "v": RelationKind.VIEW,
}

_LABEL_MAP = {
    **_RELKIND_MAP,
    "table": RelationKind.BASE_TABLE,
    "base_table": RelationKind.BASE_TABLE,
    "matview": RelationKind.BASE_TABLE,
    "partition": RelationKind.PARTITION,
    "partitioned": RelationKind.PARTITION,
    "view": RelationKind.VIEW,
}


_PLAIN_IDENTIFIER = re.compile(r"[a-z_][a-z0-9_$]*")


def quote_identifier(part: str) -> str:
    """Quote an identifier unless it is a plain lowercase name."""
    if _PLAIN_IDENTIFIER.fullmatch(part):
        return part
    escaped = part.replace('"', '""')
    return f'"{escaped}"'


@dataclass(frozen=True)
class RelationRecord:
    """A catalogued relation as seen by one analysis pass."""
    id: RelationId
    schema: str
    name: str
    kind: RelationKind
    owner: str  # Owning role name

    @property
    def qualified_name(self) -> str:
        """Render schema.name with identifier quoting where needed."""
        return f"{quote_identifier(self.schema)}.{quote_identifier(self.name)}"

    def describe(self) -> str:
        """Short form used in log lines and error messages."""
        return f"{self.qualified_name} (id={self.id}, kind={self.kind.value})"


@dataclass(frozen=True)
class SessionUser:
    """The role a session runs as."""
    name: str
    superuser: bool = False


class RelationSet:
    """
    Deduplicated set of relation ids that remembers insertion order.

    Order only matters for determinism: maintenance runs in the order
    relations were discovered.
    """

    def __init__(self, ids: Iterable[RelationId] = ()):
        self._ids: dict[RelationId, None] = {}
        self.update(ids)

    def add(self, relid: RelationId) -> bool:
        """
        Add a relation id.

        Returns:
            True if the id was not already present
        """
        if relid in self._ids:
            return False
        self._ids[relid] = None
        return True

    def update(self, ids: Iterable[RelationId]) -> None:
        """Add every id from an iterable."""
        for relid in ids:
            self.add(relid)

    def to_list(self) -> list[RelationId]:
        """Return ids in discovery order."""
        return list(self._ids)

    def __contains__(self, relid: object) -> bool:
        return relid in self._ids

    def __iter__(self) -> Iterator[RelationId]:
        return iter(list(self._ids))

    def __len__(self) -> int:
        return len(self._ids)

    def __bool__(self) -> bool:
        return bool(self._ids)

    def __eq__(self, other):
        if isinstance(other, RelationSet):
            return set(self._ids) == set(other._ids)
        if isinstance(other, (set, frozenset)):
            return set(self._ids) == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"RelationSet({self.to_list()!r})"
