"""
CLI entry point for jitstats.

Checks a statement (--sql) or a workload of .sql files (--workload_dir)
for tables without planner statistics and analyzes them, either against a
live PostgreSQL database (--dsn) or an in-memory catalog file (--catalog).
"""

import argparse
import logging
import sys
from pathlib import Path

import psycopg2

from jitstats.catalog import RelationCatalog
from jitstats.config import JitStatsConfig, LOG_LEVELS, load_config
from jitstats.coordinator import DiscoveredRelations, StatisticsCoordinator
from jitstats.errors import CatalogFileError, ConfigError, JitStatsError
from jitstats.hooks import install_statistics_hook
from jitstats.memory_catalog import load_catalog
from jitstats.output_writer import write_stats_report
from jitstats.postgres_catalog import PostgresCatalog, connect
from jitstats.query_analyzer import analyze_statement
from jitstats.query_dump import dump_query
from jitstats.session import InterceptingSession
from jitstats.workload_reader import WorkloadStatement, load_sql_text, load_workload


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="jitstats",
        description="Analyze tables that queries read but that have no planner statistics",
    )

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--catalog",
        type=Path,
        help="In-memory catalog JSON file (no database needed)",
    )
    source.add_argument(
        "--dsn",
        type=str,
        help="PostgreSQL connection string",
    )

    workload = parser.add_mutually_exclusive_group(required=True)
    workload.add_argument(
        "--sql",
        type=str,
        help="SQL text (one or more statements)",
    )
    workload.add_argument(
        "--workload_dir",
        type=Path,
        help="Directory containing .sql files",
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="JSON configuration file",
    )
    parser.add_argument(
        "--user",
        type=str,
        help="Session user for --catalog runs (default: the catalog's current_user)",
    )
    parser.add_argument(
        "--dry_run",
        action="store_true",
        help="Report tables that would be analyzed without analyzing them",
    )
    parser.add_argument(
        "--execute",
        action="store_true",
        help="Also run each statement through an intercepting session (--dsn only)",
    )
    parser.add_argument(
        "--dump",
        action="store_true",
        help="Print the analyzed query tree of each statement",
    )
    parser.add_argument(
        "--out_dir",
        type=Path,
        help="Write stats_report.json to this directory",
    )
    parser.add_argument(
        "--log_level",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Logging level (default: from config, WARNING)",
    )

    return parser.parse_args(argv)


def _summarize(stmt: WorkloadStatement, result: DiscoveredRelations | None) -> dict:
    record: dict = {"statement_id": stmt.statement_id, "sql": stmt.sql}
    if stmt.warnings:
        record["warnings"] = list(stmt.warnings)
    if result is not None:
        record.update(result.to_dict())
    return record


def _print_result(record: dict) -> None:
    line = f"{record['statement_id']}: {len(record.get('targets', []))} table(s)"
    for key in ("maintained", "planned", "fresh", "denied", "excluded"):
        if record.get(key):
            line += f", {key}: {', '.join(record[key])}"
    if record.get("skipped"):
        line += f", skipped: {record['skipped']}"
    if record.get("error"):
        line += f", error: {record['error']}"
    print(line)


def run_workload(
    statements: list[WorkloadStatement],
    catalog: RelationCatalog,
    config: JitStatsConfig,
    connection=None,
    dump: bool = False,
) -> list[dict]:
    """
    Run the statistics check for each statement.

    With a connection, statements are executed through an
    InterceptingSession; otherwise they are only analyzed.

    Returns:
        List of per-statement result dicts
    """
    session = None
    hook = None
    coordinator = StatisticsCoordinator(catalog, config=config)
    if connection is not None:
        session = InterceptingSession(connection, catalog, config)
        hook = install_statistics_hook(session)

    results: list[dict] = []
    for stmt in statements:
        if stmt.ast is None:
            record = _summarize(stmt, None)
            record["skipped"] = "; ".join(stmt.warnings) or "unparseable statement"
            results.append(record)
            continue

        try:
            if session is not None:
                hook.last_result = None
                session.execute(stmt.sql)
                result = hook.last_result
            else:
                query = analyze_statement(stmt.ast, catalog, config.search_path, stmt.sql)
                if dump:
                    print(dump_query(query))
                result = coordinator.run(query)
            record = _summarize(stmt, result)
        except (JitStatsError, psycopg2.Error) as e:
            record = _summarize(stmt, None)
            record["error"] = str(e).strip()
        results.append(record)

    return results


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        config = load_config(args.config) if args.config else JitStatsConfig()
    except (OSError, ConfigError) as e:
        print(f"Error: cannot load config: {e}", file=sys.stderr)
        return 1

    if args.dry_run:
        config.dry_run = True
    if args.log_level:
        config.log_level = args.log_level
    logging.basicConfig(
        level=config.numeric_log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.execute and not args.dsn:
        print("Error: --execute requires --dsn", file=sys.stderr)
        return 1

    # Load statements
    if args.workload_dir is not None:
        if not args.workload_dir.is_dir():
            print(f"Error: workload_dir does not exist: {args.workload_dir}", file=sys.stderr)
            return 1
        statements = load_workload(args.workload_dir, dialect=config.dialect)
        print(f"Loaded {len(statements)} statements from {args.workload_dir}")
    else:
        statements = load_sql_text(args.sql, dialect=config.dialect)

    # Open the catalog
    connection = None
    if args.catalog is not None:
        if not args.catalog.is_file():
            print(f"Error: catalog file does not exist: {args.catalog}", file=sys.stderr)
            return 1
        try:
            catalog = load_catalog(args.catalog)
        except CatalogFileError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        if args.user:
            catalog.set_current_user(args.user)
    else:
        try:
            connection = connect(args.dsn)
        except psycopg2.Error as e:
            print(f"Error: cannot connect: {str(e).strip()}", file=sys.stderr)
            return 1
        catalog = PostgresCatalog(connection)

    try:
        results = run_workload(
            statements,
            catalog,
            config,
            connection=connection if args.execute else None,
            dump=args.dump,
        )
    finally:
        if connection is not None:
            connection.close()

    for record in results:
        _print_result(record)

    if args.out_dir is not None:
        args.out_dir.mkdir(parents=True, exist_ok=True)
        out_path = write_stats_report(
            args.out_dir,
            results,
            meta={
                "source": str(args.catalog) if args.catalog else "postgres",
                "workload": str(args.workload_dir) if args.workload_dir else "<sql>",
                "dry_run": config.dry_run,
                "interception_point": config.interception_point.value,
            },
        )
        print(f"Output written to {out_path}")

    failed = sum(1 for record in results if record.get("error"))
    if failed:
        print(f"{failed} statement(s) failed", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
