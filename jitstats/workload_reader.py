"""
Workload reader: scan and preprocess SQL files for statistics checks.

Handles:
- Recursive directory traversal
- BOM removal
- Comment stripping (-- and /* */)
- psql meta-commands (\\pset, \\timing, ...)
- Multi-statement files (one WorkloadStatement per statement)
"""

import re
from pathlib import Path
from dataclasses import dataclass, field

import sqlglot
from sqlglot import exp


@dataclass
class WorkloadStatement:
    """One statement from a workload file."""
    source_sql_file: str  # Original file name (e.g., "test4.sql")
    index: int  # Position of the statement within its file
    sql: str  # Statement text as rendered by sqlglot
    ast: exp.Expression | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def statement_id(self) -> str:
        """Stable id, e.g. "test4.sql::2"."""
        return f"{self.source_sql_file}::{self.index}"


def scan_workload_dir(workload_dir: Path, recursive: bool = True) -> list[Path]:
    """
    Scan workload directory for .sql files.

    Args:
        workload_dir: Path to directory containing SQL files
        recursive: If True, recursively scan subdirectories

    Returns:
        List of Path objects for each .sql file, sorted by name
    """
    if recursive:
        sql_files = sorted(workload_dir.rglob("*.sql"))
    else:
        sql_files = sorted(workload_dir.glob("*.sql"))
    return sql_files


def read_sql_file(sql_path: Path) -> str:
    """Read SQL content from a file, dropping a UTF-8 BOM if present."""
    return sql_path.read_text(encoding="utf-8-sig")


def _scan_quoted(sql: str, i: int, quote: str) -> int:
    """Return the index just past a quoted run starting at i (doubled quotes escape)."""
    n = len(sql)
    j = i + 1
    while j < n:
        if sql[j] == quote and j + 1 < n and sql[j + 1] == quote:
            j += 2
        elif sql[j] == quote:
            return j + 1
        else:
            j += 1
    return n


_DOLLAR_TAG = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)?\$")


def strip_comments(sql: str) -> str:
    """
    Remove SQL comments from the query.

    Handles:
    - Single-line comments: -- ...
    - Block comments: /* ... */
    - Preserves string literals, quoted identifiers and dollar-quoted bodies

    Args:
        sql: SQL string

    Returns:
        SQL with comments removed
    """
    result = []
    i = 0
    n = len(sql)

    while i < n:
        ch = sql[i]
        dollar = _DOLLAR_TAG.match(sql, i) if ch == "$" else None
        if ch in ("'", '"'):
            j = _scan_quoted(sql, i, ch)
            result.append(sql[i:j])
            i = j
        elif dollar:
            tag = dollar.group(0)
            end = sql.find(tag, dollar.end())
            j = n if end == -1 else end + len(tag)
            result.append(sql[i:j])
            i = j
        elif sql[i:i+2] == "--":
            j = sql.find("\n", i + 2)
            if j == -1:
                i = n
            else:
                # Keep the newline
                result.append("\n")
                i = j + 1
        elif sql[i:i+2] == "/*":
            j = sql.find("*/", i + 2)
            i = n if j == -1 else j + 2
            # Replace with space to preserve token separation
            result.append(" ")
        else:
            result.append(ch)
            i += 1

    return "".join(result)


def strip_psql_meta_commands(sql: str) -> str:
    """Drop psql backslash commands (\\pset, \\set, \\timing, ...), one per line."""
    return "\n".join(
        line for line in sql.splitlines() if not line.lstrip().startswith("\\")
    )


def clean_sql(sql: str) -> str:
    """
    Apply all preprocessing steps to SQL.

    Args:
        sql: Raw SQL string

    Returns:
        Cleaned SQL string
    """
    sql = strip_comments(sql)
    sql = strip_psql_meta_commands(sql)
    sql = re.sub(r"\n\s*\n", "\n", sql)  # Remove empty lines
    return sql.strip()


def split_statements(
    sql: str,
    dialect: str = "postgres",
) -> tuple[list[exp.Expression], list[str]]:
    """
    Parse SQL into individual statements.

    Args:
        sql: Cleaned SQL string
        dialect: SQL dialect

    Returns:
        Tuple of (list of statement ASTs, list of warnings)
    """
    warnings: list[str] = []
    try:
        statements = sqlglot.parse(sql, dialect=dialect)
    except sqlglot.errors.SqlglotError as e:
        warnings.append(f"Parse error: {e}")
        return [], warnings

    asts = [stmt for stmt in statements if stmt is not None]
    if not asts:
        warnings.append("No statements found")
    return asts, warnings


def split_on_semicolons(sql: str) -> list[str]:
    """
    Split SQL text on top-level semicolons.

    Semicolons inside string literals, quoted identifiers and dollar-quoted
    bodies do not split. Empty pieces are dropped.
    """
    pieces: list[str] = []
    start = 0
    i = 0
    n = len(sql)

    while i < n:
        ch = sql[i]
        dollar = _DOLLAR_TAG.match(sql, i) if ch == "$" else None
        if ch in ("'", '"'):
            i = _scan_quoted(sql, i, ch)
        elif dollar:
            end = sql.find(dollar.group(0), dollar.end())
            i = n if end == -1 else end + len(dollar.group(0))
        elif ch == ";":
            pieces.append(sql[start:i])
            i += 1
            start = i
        else:
            i += 1
    pieces.append(sql[start:])

    return [piece.strip() for piece in pieces if piece.strip()]


def load_sql_text(
    sql: str,
    source_sql_file: str = "<sql>",
    dialect: str = "postgres",
) -> list[WorkloadStatement]:
    """
    Preprocess and split SQL text.

    When the text as a whole does not parse, each semicolon-separated piece
    is parsed on its own so one unsupported statement does not hide the
    rest. Pieces that still fail come back with ast=None and a warning.
    """
    cleaned = clean_sql(sql)
    if not cleaned:
        return []

    asts, warnings = split_statements(cleaned, dialect=dialect)
    if asts:
        return [
            WorkloadStatement(
                source_sql_file=source_sql_file,
                index=i,
                sql=ast.sql(dialect=dialect),
                ast=ast,
                warnings=list(warnings),
            )
            for i, ast in enumerate(asts)
        ]

    statements: list[WorkloadStatement] = []
    for piece in split_on_semicolons(cleaned):
        piece_asts, piece_warnings = split_statements(piece, dialect=dialect)
        if not piece_asts:
            statements.append(
                WorkloadStatement(
                    source_sql_file=source_sql_file,
                    index=len(statements),
                    sql=piece,
                    warnings=piece_warnings,
                )
            )
            continue
        for ast in piece_asts:
            statements.append(
                WorkloadStatement(
                    source_sql_file=source_sql_file,
                    index=len(statements),
                    sql=ast.sql(dialect=dialect),
                    ast=ast,
                )
            )
    return statements


def load_workload(
    workload_dir: Path,
    dialect: str = "postgres",
    recursive: bool = True,
) -> list[WorkloadStatement]:
    """
    Load every statement from every .sql file in a workload directory.

    Args:
        workload_dir: Path to workload directory
        dialect: SQL dialect
        recursive: If True, recursively scan subdirectories

    Returns:
        List of WorkloadStatement objects in file, then statement, order
    """
    statements: list[WorkloadStatement] = []
    for sql_path in scan_workload_dir(workload_dir, recursive=recursive):
        try:
            raw_sql = read_sql_file(sql_path)
        except (OSError, UnicodeDecodeError) as e:
            statements.append(
                WorkloadStatement(
                    source_sql_file=sql_path.name,
                    index=0,
                    sql="",
                    warnings=[f"Failed to read file: {e}"],
                )
            )
            continue
        statements.extend(load_sql_text(raw_sql, sql_path.name, dialect=dialect))
    return statements
