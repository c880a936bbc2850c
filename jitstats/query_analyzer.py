"""
Query Analyzer: turn a parsed sqlglot AST into an analyzed Query tree.

This is the parse-analysis step: every table name is resolved against the
catalog into a relation id, and every place a statement can nest another
query is made explicit:
- FROM/JOIN subqueries (derived tables) -> SUBQUERY range entries
- WITH clause definitions -> CommonTableExpr (references -> CTE range entries)
- subqueries inside expressions (EXISTS, IN, scalar, ANY/ALL, ARRAY) -> SubLink
- UNION/INTERSECT/EXCEPT branches -> SUBQUERY range entries
- INSERT/UPDATE/DELETE targets -> RELATION entries flagged is_result

Anything else (DDL, SET, ANALYZE, EXPLAIN, ...) becomes a UTILITY query with
an empty range table.
"""

import dataclasses
import logging

import sqlglot
from sqlglot import exp

from jitstats.catalog import RelationCatalog
from jitstats.query_tree import (
    CommandType,
    CommonTableExpr,
    Expr,
    ExprNode,
    Query,
    RangeTblEntry,
    RteKind,
    SubLink,
    SubLinkType,
)
from jitstats.relations import INVALID_RELATION_ID, RelationId

logger = logging.getLogger(__name__)

QUERY_TYPES = (exp.Select, exp.Union, exp.Intersect, exp.Except)
SET_OPERATION_TYPES = (exp.Union, exp.Intersect, exp.Except)
DML_TYPES = (exp.Insert, exp.Update, exp.Delete)


def fold_identifier(node: exp.Expression | str | None) -> str:
    """
    Apply PostgreSQL case folding: unquoted names are lowercased.

    Args:
        node: Identifier node, plain string, or None

    Returns:
        Folded name ("" for None)
    """
    if node is None:
        return ""
    if isinstance(node, str):
        return node.lower()
    if isinstance(node, exp.TableAlias):
        node = node.this
    if isinstance(node, exp.Identifier):
        return node.this if node.quoted else node.this.lower()
    return node.name.lower()


def _unwrap(node: exp.Expression | None) -> exp.Expression | None:
    """Strip Subquery/Paren wrappers."""
    while isinstance(node, (exp.Subquery, exp.Paren)) and node.this is not None:
        node = node.this
    return node


def _function_name(node: exp.Expression) -> str:
    if isinstance(node, exp.Anonymous):
        return node.name.lower()
    if isinstance(node, exp.Func):
        return node.sql_name().lower()
    return node.key


def _sublink_type(container: exp.Expression) -> SubLinkType:
    """Determine how a subquery is used from the node that contains it."""
    parent = container.parent
    if isinstance(parent, exp.Any):
        return SubLinkType.ANY
    if isinstance(parent, exp.All):
        return SubLinkType.ALL
    if isinstance(parent, exp.In):
        return SubLinkType.ANY
    if isinstance(parent, exp.Array):
        return SubLinkType.ARRAY
    return SubLinkType.EXPR


class QueryAnalyzer:
    """
    Builds Query trees for one statement at a time.

    Names are resolved with the explicit schema when one is given, else by
    walking the search path (pg_catalog first unless listed explicitly).
    Names that resolve to nothing get relation id 0 and a warning.
    """

    def __init__(
        self,
        catalog: RelationCatalog,
        search_path: list[str] | None = None,
    ):
        self.catalog = catalog
        search_path = list(search_path or ["public"])
        if "pg_catalog" not in search_path:
            search_path.insert(0, "pg_catalog")
        self.search_path = search_path
        self.warnings: list[str] = []

    def analyze(self, ast: exp.Expression, source_text: str | None = None) -> Query:
        """
        Analyze one top-level statement.

        Args:
            ast: sqlglot statement node
            source_text: Original SQL text, kept on the Query for diagnostics

        Returns:
            Analyzed Query
        """
        self.warnings = []
        query = self._analyze_query(ast, frozenset())
        return dataclasses.replace(
            query,
            source_text=source_text,
            warnings=tuple(self.warnings),
        )

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _analyze_query(self, node: exp.Expression, scope: frozenset[str]) -> Query:
        """Dispatch on statement type."""
        node = _unwrap(node)

        if isinstance(node, SET_OPERATION_TYPES):
            return self._analyze_set_operation(node, scope)
        if isinstance(node, exp.Select):
            return self._analyze_select(node, scope)
        if isinstance(node, DML_TYPES):
            return self._analyze_dml(node, scope)
        if isinstance(node, exp.Values):
            return Query(rtable=(self._values_entry(node, scope),))

        return Query(command=CommandType.UTILITY)

    def _analyze_ctes(
        self,
        with_clause: exp.With | None,
        scope: frozenset[str],
    ) -> tuple[tuple[CommonTableExpr, ...], frozenset[str]]:
        """
        Analyze WITH definitions.

        Without RECURSIVE a definition only sees the ones before it, so
        `WITH t AS (SELECT * FROM t)` reads the table t.

        Returns:
            Tuple of (CTE definitions, scope extended with their names)
        """
        if with_clause is None:
            return (), scope

        ctes = [cte for cte in with_clause.expressions if isinstance(cte, exp.CTE)]
        names = [fold_identifier(cte.args.get("alias")) for cte in ctes]
        inner_scope = scope | set(names)
        recursive = bool(with_clause.args.get("recursive"))

        cte_list = tuple(
            CommonTableExpr(
                name=name,
                query=self._analyze_query(
                    cte.this,
                    inner_scope if recursive else scope | set(names[:i]),
                ),
                recursive=recursive,
            )
            for i, (name, cte) in enumerate(zip(names, ctes))
        )
        return cte_list, inner_scope

    def _analyze_select(self, node: exp.Select, scope: frozenset[str]) -> Query:
        with_clause = next(
            (c for c in node.iter_expressions() if isinstance(c, exp.With)), None
        )
        cte_list, scope = self._analyze_ctes(with_clause, scope)

        select_list = {id(e) for e in node.expressions}
        rtable: list[RangeTblEntry] = []
        target_list: list[ExprNode] = []
        quals: list[ExprNode] = []

        for child in node.iter_expressions():
            if isinstance(child, exp.With):
                continue
            if isinstance(child, exp.From):
                for source in child.iter_expressions():
                    self._add_source(source, scope, rtable, quals)
            elif isinstance(child, exp.Join):
                self._add_join(child, scope, rtable, quals)
            elif isinstance(child, exp.Lateral):
                self._add_source(child, scope, rtable, quals)
            elif id(child) in select_list:
                target_list.append(self._convert_expr(child, scope))
            else:
                quals.append(self._convert_expr(child, scope))

        return Query(
            command=CommandType.SELECT,
            rtable=tuple(rtable),
            cte_list=cte_list,
            target_list=tuple(target_list),
            quals=tuple(quals),
        )

    def _analyze_set_operation(self, node: exp.Expression, scope: frozenset[str]) -> Query:
        branches = (node.this, node.expression)
        with_clause = None
        quals: list[ExprNode] = []

        for child in node.iter_expressions():
            if isinstance(child, exp.With):
                with_clause = child
            elif not any(child is branch for branch in branches):
                quals.append(self._convert_expr(child, scope))

        cte_list, scope = self._analyze_ctes(with_clause, scope)
        rtable = tuple(
            RangeTblEntry(
                kind=RteKind.SUBQUERY,
                alias=f"*{type(node).__name__.upper()}*",
                subquery=self._analyze_query(branch, scope),
            )
            for branch in branches
            if branch is not None
        )

        return Query(
            command=CommandType.SELECT,
            rtable=rtable,
            cte_list=cte_list,
            quals=tuple(quals),
            set_operation=type(node).__name__.lower(),
        )

    def _analyze_dml(self, node: exp.Expression, scope: frozenset[str]) -> Query:
        """INSERT / UPDATE / DELETE: target first, then sources."""
        with_clause = next(
            (c for c in node.iter_expressions() if isinstance(c, exp.With)), None
        )
        cte_list, scope = self._analyze_ctes(with_clause, scope)

        target = node.this
        if isinstance(target, exp.Schema):
            # INSERT INTO t (a, b) ...
            target = target.this

        rtable: list[RangeTblEntry] = []
        target_list: list[ExprNode] = []
        quals: list[ExprNode] = []

        if isinstance(target, exp.Table):
            rtable.append(self._table_entry(target, scope, is_result=True))

        if isinstance(node, exp.Insert):
            command = CommandType.INSERT
            source = node.expression
            for child in node.iter_expressions():
                if child is node.this or child is source or isinstance(child, exp.With):
                    continue
                quals.append(self._convert_expr(child, scope))
            source = _unwrap(source)
            if isinstance(source, exp.Values):
                rtable.append(self._values_entry(source, scope))
            elif isinstance(source, QUERY_TYPES):
                rtable.append(
                    RangeTblEntry(
                        kind=RteKind.SUBQUERY,
                        alias="*SELECT*",
                        subquery=self._analyze_query(source, scope),
                    )
                )
        else:
            command = CommandType.UPDATE if isinstance(node, exp.Update) else CommandType.DELETE
            assignments = {id(e) for e in node.expressions} if isinstance(node, exp.Update) else set()
            for child in node.iter_expressions():
                if child is node.this or isinstance(child, exp.With):
                    continue
                if isinstance(child, exp.From):
                    for source in child.iter_expressions():
                        self._add_source(source, scope, rtable, quals)
                elif isinstance(child, exp.Join):
                    self._add_join(child, scope, rtable, quals)
                elif isinstance(child, exp.Table):
                    # DELETE ... USING t
                    self._add_source(child, scope, rtable, quals)
                elif id(child) in assignments:
                    target_list.append(self._convert_expr(child, scope))
                else:
                    quals.append(self._convert_expr(child, scope))

        return Query(
            command=command,
            rtable=tuple(rtable),
            cte_list=cte_list,
            target_list=tuple(target_list),
            quals=tuple(quals),
        )

    # ------------------------------------------------------------------
    # Range table
    # ------------------------------------------------------------------

    def _add_join(
        self,
        join: exp.Join,
        scope: frozenset[str],
        rtable: list[RangeTblEntry],
        quals: list[ExprNode],
    ) -> None:
        """Add a JOIN's source; its ON condition goes to quals."""
        for child in join.iter_expressions():
            if child is join.this:
                self._add_source(child, scope, rtable, quals)
            else:
                quals.append(self._convert_expr(child, scope))

    def _add_source(
        self,
        node: exp.Expression,
        scope: frozenset[str],
        rtable: list[RangeTblEntry],
        quals: list[ExprNode],
        alias_override: str | None = None,
    ) -> None:
        """Add a FROM/JOIN item to the range table."""
        if isinstance(node, exp.Alias):
            self._add_source(node.this, scope, rtable, quals, alias_override=node.alias)
            return

        if isinstance(node, exp.Join):
            self._add_join(node, scope, rtable, quals)
            return

        if isinstance(node, exp.Table):
            if isinstance(node.this, exp.Identifier):
                rtable.append(self._table_entry(node, scope, alias_override=alias_override))
            else:
                # Table function, e.g. FROM generate_series(1, 10)
                rtable.append(self._function_entry(node.this, scope, node.alias or alias_override))
            # Joins nested under a parenthesised table, e.g. FROM (a JOIN b ON ...)
            for child in node.iter_expressions():
                if isinstance(child, exp.Join):
                    self._add_join(child, scope, rtable, quals)
            return

        if isinstance(node, exp.Subquery):
            inner = _unwrap(node)
            alias = alias_override or node.alias or None
            if isinstance(inner, QUERY_TYPES + DML_TYPES):
                rtable.append(
                    RangeTblEntry(
                        kind=RteKind.SUBQUERY,
                        alias=alias,
                        subquery=self._analyze_query(inner, scope),
                    )
                )
            elif inner is not None:
                self._add_source(inner, scope, rtable, quals, alias_override=alias)
            for child in node.iter_expressions():
                if isinstance(child, exp.Join):
                    self._add_join(child, scope, rtable, quals)
            return

        if isinstance(node, exp.Lateral):
            inner = _unwrap(node.this)
            alias = alias_override or node.alias or None
            if isinstance(inner, QUERY_TYPES):
                rtable.append(
                    RangeTblEntry(
                        kind=RteKind.SUBQUERY,
                        alias=alias,
                        subquery=self._analyze_query(inner, scope),
                    )
                )
            elif inner is not None:
                rtable.append(self._function_entry(inner, scope, alias))
            return

        if isinstance(node, exp.Values):
            rtable.append(self._values_entry(node, scope, alias_override))
            return

        # Unnest, bare function calls and anything else callable in FROM
        rtable.append(self._function_entry(node, scope, alias_override))

    def _table_entry(
        self,
        table: exp.Table,
        scope: frozenset[str],
        alias_override: str | None = None,
        is_result: bool = False,
    ) -> RangeTblEntry:
        name = fold_identifier(table.this)
        schema = fold_identifier(table.args.get("db")) or None
        alias = alias_override or table.alias or None

        if schema is None and name in scope and not is_result:
            return RangeTblEntry(kind=RteKind.CTE, name=name, alias=alias)

        relid = self._resolve(schema, name)
        return RangeTblEntry(
            kind=RteKind.RELATION,
            relid=relid,
            name=f"{schema}.{name}" if schema else name,
            alias=alias,
            is_result=is_result,
        )

    def _function_entry(
        self,
        node: exp.Expression,
        scope: frozenset[str],
        alias: str | None,
    ) -> RangeTblEntry:
        return RangeTblEntry(
            kind=RteKind.FUNCTION,
            name=_function_name(node),
            alias=alias,
            functions=(self._convert_expr(node, scope),),
        )

    def _values_entry(
        self,
        node: exp.Values,
        scope: frozenset[str],
        alias_override: str | None = None,
    ) -> RangeTblEntry:
        return RangeTblEntry(
            kind=RteKind.VALUES,
            alias=alias_override or node.alias or None,
            functions=tuple(self._convert_expr(row, scope) for row in node.expressions),
        )

    def _resolve(self, schema: str | None, name: str) -> RelationId:
        """Resolve a table name to a relation id (0 if unknown)."""
        schemas = [schema] if schema else self.search_path
        for candidate in schemas:
            relid = self.catalog.resolve_name(candidate, name)
            if relid is not None:
                return relid

        qualified = f"{schema}.{name}" if schema else name
        self.warnings.append(f"relation {qualified!r} not found in catalog")
        logger.debug("unresolved relation %s", qualified)
        return INVALID_RELATION_ID

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def _convert_expr(self, node: exp.Expression, scope: frozenset[str]) -> ExprNode:
        """Convert a sqlglot expression, turning nested queries into SubLinks."""
        if isinstance(node, exp.Exists):
            inner = _unwrap(node.this)
            return SubLink(SubLinkType.EXISTS, self._analyze_query(inner, scope))

        if isinstance(node, exp.In) and node.args.get("query") is not None:
            inner = _unwrap(node.args["query"])
            testexpr = self._convert_expr(node.this, scope) if node.this is not None else None
            return SubLink(SubLinkType.ANY, self._analyze_query(inner, scope), testexpr=testexpr)

        if isinstance(node, (exp.Subquery,) + QUERY_TYPES):
            inner = _unwrap(node)
            if isinstance(inner, QUERY_TYPES):
                return SubLink(_sublink_type(node), self._analyze_query(inner, scope))

        return Expr(
            tag=node.key,
            args=tuple(self._convert_expr(child, scope) for child in node.iter_expressions()),
        )


def analyze_statement(
    ast: exp.Expression,
    catalog: RelationCatalog,
    search_path: list[str] | None = None,
    source_text: str | None = None,
) -> Query:
    """
    Analyze a single parsed statement.

    Args:
        ast: sqlglot statement node
        catalog: Catalog used for name resolution
        search_path: Schemas searched for unqualified names
        source_text: Original SQL text

    Returns:
        Analyzed Query
    """
    analyzer = QueryAnalyzer(catalog, search_path)
    return analyzer.analyze(ast, source_text=source_text)


def analyze_sql(
    sql: str,
    catalog: RelationCatalog,
    dialect: str = "postgres",
    search_path: list[str] | None = None,
) -> list[Query]:
    """
    Parse SQL text and analyze every statement in it.

    Raises:
        sqlglot.errors.SqlglotError: the text cannot be tokenized or parsed
    """
    analyzer = QueryAnalyzer(catalog, search_path)
    queries: list[Query] = []
    for stmt in sqlglot.parse(sql, dialect=dialect):
        if stmt is None:
            continue
        queries.append(analyzer.analyze(stmt, source_text=stmt.sql(dialect=dialect)))
    return queries
