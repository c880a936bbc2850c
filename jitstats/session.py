"""
Intercepting Session: a DB-API connection wrapper with interception points.

Every execute() call is parsed (sqlglot) and analyzed against the catalog.
The resulting Query trees are handed to the installed hooks before the
original SQL text goes to the database, unmodified and with its parameters.
"""

import logging
from functools import partial
from typing import Any, Callable

import sqlglot
from sqlglot.errors import SqlglotError

from jitstats.catalog import RelationCatalog
from jitstats.config import JitStatsConfig
from jitstats.errors import JitStatsError
from jitstats.guard import ReentrancyGuard
from jitstats.hooks import ExecutorStartHook, PostParseHook
from jitstats.query_analyzer import QueryAnalyzer
from jitstats.query_tree import Query

logger = logging.getLogger(__name__)


class InterceptingSession:
    """
    One database session (connection) with jitstats hooks.

    A multi-statement execute() is analyzed as a whole before any of it
    runs, so a table created by an earlier statement in the same text
    resolves to relation id 0 (with a warning) in the later ones and gets
    no statistics check. Send such statements in separate execute() calls.

    Args:
        connection: DB-API connection the statements run on
        catalog: Catalog used for parse analysis and by installed hooks
        config: Settings (dialect, search path, error policy)
    """

    def __init__(
        self,
        connection,
        catalog: RelationCatalog,
        config: JitStatsConfig | None = None,
    ):
        self.connection = connection
        self.catalog = catalog
        self.config = config or JitStatsConfig()
        self.guard = ReentrancyGuard()
        self.post_parse_analyze_hook: PostParseHook | None = None
        self.executor_start_hook: ExecutorStartHook | None = None

    def analyze(self, sql: str) -> list[Query]:
        """
        Parse and analyze SQL text.

        Returns:
            One Query per statement; empty when the text does not parse
            (the database reports the real error on execution)
        """
        try:
            statements = sqlglot.parse(sql, dialect=self.config.dialect)
        except SqlglotError as e:
            logger.debug("not analyzing unparseable statement: %s", e)
            return []

        analyzer = QueryAnalyzer(self.catalog, self.config.search_path)
        queries = []
        for stmt in statements:
            if stmt is None:
                continue
            queries.append(analyzer.analyze(stmt, source_text=sql))
        return queries

    def execute(self, sql: str, params: Any = None):
        """
        Run SQL through the interception points, then on the connection.

        Returns:
            The DB-API cursor the statement ran on
        """
        queries: list[Query] = []
        if self.config.enabled and (self.post_parse_analyze_hook or self.executor_start_hook):
            try:
                queries = self.analyze(sql)
            except JitStatsError as e:
                if self.config.on_error == "raise":
                    raise
                logger.warning("parse analysis failed, running statement unchecked: %s", e)

        if self.post_parse_analyze_hook is not None:
            for query in queries:
                self.post_parse_analyze_hook(query)

        cursor = self.connection.cursor()
        run: Callable[[], Any] = partial(cursor.execute, sql, params)
        for query in reversed(queries):
            if query.command.is_plannable:
                run = partial(self._executor_start, query, run)
        run()
        return cursor

    def _executor_start(self, query: Query, standard_start: Callable[[], Any]) -> Any:
        if self.executor_start_hook is not None:
            return self.executor_start_hook(query, standard_start)
        return standard_start()

    def close(self) -> None:
        self.connection.close()

    def __enter__(self) -> "InterceptingSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
