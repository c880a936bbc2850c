"""
Query tree: the analyzed form of one SQL statement.

A Query holds:
- a range table (relations, derived tables, CTE references, functions, VALUES)
- CTE definitions (each with its own Query)
- expression trees (select list, quals) that may embed SubLinks,
  i.e. queries nested inside expressions

Nodes are immutable and compare by identity, so the same subquery reached
twice is recognised as the same node.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Union

from jitstats.relations import INVALID_RELATION_ID, RelationId


class CommandType(Enum):
    """Statement kind, following the executor's view of a statement."""
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    UTILITY = "utility"

    @property
    def is_plannable(self) -> bool:
        """True for statements that go through the executor."""
        return self is not CommandType.UTILITY


class RteKind(Enum):
    """Kind of range-table entry."""
    RELATION = "relation"
    SUBQUERY = "subquery"
    CTE = "cte"
    FUNCTION = "function"
    VALUES = "values"


class SubLinkType(Enum):
    """How a sub-select is used inside an expression."""
    EXISTS = "exists"
    ANY = "any"  # IN (SELECT ...), = ANY (SELECT ...)
    ALL = "all"
    EXPR = "expr"  # scalar subquery
    ARRAY = "array"


@dataclass(frozen=True, eq=False)
class Expr:
    """
    Generic expression node.

    tag is the node type (e.g. "eq", "column", "max"); args are child
    expressions, any of which may be a SubLink.
    """
    tag: str
    args: tuple["ExprNode", ...] = ()


@dataclass(frozen=True, eq=False)
class SubLink:
    """A query embedded in an expression."""
    link_type: SubLinkType
    subselect: "Query"
    testexpr: "ExprNode | None" = None  # Left operand of IN / ANY / ALL


ExprNode = Union[Expr, SubLink]


@dataclass(frozen=True, eq=False)
class RangeTblEntry:
    """One FROM-clause item."""
    kind: RteKind
    relid: RelationId = INVALID_RELATION_ID  # Only meaningful for RELATION
    alias: str | None = None
    name: str | None = None  # Relation, CTE or function name as written
    subquery: "Query | None" = None  # Only for SUBQUERY
    functions: tuple[ExprNode, ...] = ()  # FUNCTION args / VALUES rows
    is_result: bool = False  # INSERT/UPDATE/DELETE target


@dataclass(frozen=True, eq=False)
class CommonTableExpr:
    """A WITH-clause definition."""
    name: str
    query: "Query"
    recursive: bool = False


@dataclass(frozen=True, eq=False)
class Query:
    """Analyzed statement or sub-statement."""
    command: CommandType = CommandType.SELECT
    rtable: tuple[RangeTblEntry, ...] = ()
    cte_list: tuple[CommonTableExpr, ...] = ()
    target_list: tuple[ExprNode, ...] = ()
    quals: tuple[ExprNode, ...] = ()
    set_operation: str | None = None  # union / intersect / except
    source_text: str | None = None
    warnings: tuple[str, ...] = field(default=())

    def expression_roots(self) -> Iterator[ExprNode]:
        """Yield the roots of every expression tree owned by this query."""
        yield from self.target_list
        yield from self.quals
        for rte in self.rtable:
            yield from rte.functions


def iter_sublinks(query: Query) -> Iterator[SubLink]:
    """
    Yield the SubLinks in a query's own expression trees.

    Does not descend into a SubLink's subselect: that query owns its own
    expressions. Does descend into a SubLink's testexpr, which belongs to
    the outer query.
    """
    stack: list[ExprNode] = list(reversed(list(query.expression_roots())))
    while stack:
        node = stack.pop()
        if isinstance(node, SubLink):
            yield node
            if node.testexpr is not None:
                stack.append(node.testexpr)
        else:
            stack.extend(reversed(node.args))
