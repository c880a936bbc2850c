"""
Utility: Query tree dumping for debugging.

Renders range entries, CTEs and sub-links with indentation, e.g.

    Query command=select
      rtable[0]: relation relid=16384 name='t41'
      sublink[0]: expr
        Query command=select
          rtable[0]: relation relid=16385 name='t42'
"""

from jitstats.query_tree import Query, RangeTblEntry, RteKind, iter_sublinks


def dump_query(query: Query, indent: int = 0, max_depth: int | None = None) -> str:
    """
    Dump a Query tree.

    Args:
        query: Query to render
        indent: Base indentation level
        max_depth: Maximum nesting depth to render (None for unlimited)

    Returns:
        Multi-line string
    """
    lines: list[str] = []
    _dump_query(query, lines, indent, 0, max_depth)
    return "\n".join(lines)


def _describe_rte(rte: RangeTblEntry) -> str:
    parts = [rte.kind.value]
    if rte.kind is RteKind.RELATION:
        parts.append(f"relid={rte.relid}")
    if rte.name:
        parts.append(f"name={rte.name!r}")
    if rte.alias:
        parts.append(f"alias={rte.alias!r}")
    if rte.is_result:
        parts.append("result")
    return " ".join(parts)


def _dump_query(
    query: Query,
    lines: list[str],
    base_indent: int,
    depth: int,
    max_depth: int | None,
) -> None:
    pad = "  " * (base_indent + depth)
    if max_depth is not None and depth > max_depth:
        lines.append(f"{pad}...")
        return

    header = f"{pad}Query command={query.command.value}"
    if query.set_operation:
        header += f" set_operation={query.set_operation}"
    lines.append(header)

    for i, cte in enumerate(query.cte_list):
        lines.append(f"{pad}  cte[{i}]: {cte.name}{' recursive' if cte.recursive else ''}")
        _dump_query(cte.query, lines, base_indent, depth + 2, max_depth)

    for i, rte in enumerate(query.rtable):
        lines.append(f"{pad}  rtable[{i}]: {_describe_rte(rte)}")
        if rte.subquery is not None:
            _dump_query(rte.subquery, lines, base_indent, depth + 2, max_depth)

    for i, sublink in enumerate(iter_sublinks(query)):
        lines.append(f"{pad}  sublink[{i}]: {sublink.link_type.value}")
        _dump_query(sublink.subselect, lines, base_indent, depth + 2, max_depth)

    for warning in query.warnings:
        lines.append(f"{pad}  warning: {warning}")
