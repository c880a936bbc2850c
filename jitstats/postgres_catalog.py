"""
PostgreSQL catalog: RelationCatalog over a psycopg2 connection.

Catalog reads go straight to the connection's cursors, never through an
InterceptingSession, so they cannot trigger another analysis pass.

View dependencies come from pg_depend: a view's rewrite rule (pg_rewrite)
has a normal dependency on every relation its definition reads.
"""

import logging

import psycopg2
from psycopg2 import sql

from jitstats.catalog import RelationCatalog
from jitstats.errors import (
    AmbiguousRelation,
    CatalogInconsistency,
    MaintenanceFailure,
    RelationNotFound,
)
from jitstats.relations import RelationId, RelationKind, RelationRecord, SessionUser

logger = logging.getLogger(__name__)


_RELATION_COLUMNS = """
    c.oid, n.nspname, c.relname, c.relkind, r.rolname
"""

LOOKUP_SQL = f"""
SELECT {_RELATION_COLUMNS}
FROM pg_class AS c
JOIN pg_namespace AS n ON n.oid = c.relnamespace
JOIN pg_roles AS r ON r.oid = c.relowner
WHERE c.oid = %s
"""

RESOLVE_NAME_SQL = """
SELECT c.oid
FROM pg_class AS c
JOIN pg_namespace AS n ON n.oid = c.relnamespace
WHERE n.nspname = %s AND c.relname = %s
"""

VIEW_DEPENDENCIES_SQL = f"""
SELECT DISTINCT {_RELATION_COLUMNS}
FROM pg_depend AS d
JOIN pg_rewrite AS rw ON rw.oid = d.objid
JOIN pg_class AS v ON v.oid = rw.ev_class
JOIN pg_class AS c ON c.oid = d.refobjid
JOIN pg_namespace AS n ON n.oid = c.relnamespace
JOIN pg_roles AS r ON r.oid = c.relowner
WHERE v.relkind = 'v'
  AND d.classid = 'pg_rewrite'::regclass
  AND d.refclassid = 'pg_class'::regclass
  AND d.deptype = 'n'
  AND v.oid = %s
  AND d.refobjid <> v.oid
ORDER BY c.oid
"""

STATISTICS_COUNT_SQL = """
SELECT count(*)
FROM pg_stats AS s
JOIN pg_namespace AS n ON n.nspname = s.schemaname
JOIN pg_class AS c ON c.relnamespace = n.oid AND c.relname = s.tablename
WHERE c.oid = %s
"""

SESSION_USER_SQL = """
SELECT rolname, rolsuper
FROM pg_roles
WHERE rolname = current_user
"""


def _record_from_row(row: tuple) -> RelationRecord:
    oid, schema, name, relkind, owner = row
    return RelationRecord(
        id=int(oid),
        schema=schema,
        name=name,
        kind=RelationKind.from_relkind(relkind),
        owner=owner,
    )


class PostgresCatalog(RelationCatalog):
    """
    Live catalog backed by a DB-API (psycopg2) connection.

    Args:
        connection: Open psycopg2 connection
    """

    def __init__(self, connection):
        self.connection = connection

    def _fetchall(self, query: str, params: tuple, relid: RelationId | None = None) -> list[tuple]:
        try:
            with self.connection.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall()
        except psycopg2.Error as e:
            raise CatalogInconsistency(
                f"catalog query failed for relation id {relid}: {e}", relid
            ) from e

    def lookup(self, relid: RelationId) -> RelationRecord:
        rows = self._fetchall(LOOKUP_SQL, (relid,), relid)
        if not rows:
            raise RelationNotFound(relid)
        if len(rows) > 1:
            raise AmbiguousRelation(relid, len(rows))
        return _record_from_row(rows[0])

    def resolve_name(self, schema: str, name: str) -> RelationId | None:
        rows = self._fetchall(RESOLVE_NAME_SQL, (schema, name))
        if not rows:
            return None
        return int(rows[0][0])

    def view_dependencies(self, view_id: RelationId) -> list[RelationRecord]:
        rows = self._fetchall(VIEW_DEPENDENCIES_SQL, (view_id,), view_id)
        return [_record_from_row(row) for row in rows]

    def statistics_count(self, relid: RelationId) -> int:
        rows = self._fetchall(STATISTICS_COUNT_SQL, (relid,), relid)
        return int(rows[0][0]) if rows else 0

    def run_maintenance(self, record: RelationRecord, verbose: bool = False) -> None:
        statement = sql.SQL("ANALYZE {verbose}{relation}").format(
            verbose=sql.SQL("VERBOSE " if verbose else ""),
            relation=sql.Identifier(record.schema, record.name),
        )
        try:
            with self.connection.cursor() as cur:
                cur.execute(statement)
        except psycopg2.Error as e:
            raise MaintenanceFailure(record, str(e).strip()) from e

    def session_user(self) -> SessionUser:
        rows = self._fetchall(SESSION_USER_SQL, ())
        if not rows:
            raise CatalogInconsistency("current_user not found in pg_roles")
        name, superuser = rows[0]
        return SessionUser(name=name, superuser=bool(superuser))


def connect(dsn: str):
    """Open an autocommit psycopg2 connection for catalog access and ANALYZE."""
    connection = psycopg2.connect(dsn)
    connection.autocommit = True
    logger.debug("connected to %s", connection.dsn)
    return connection
