"""
Output writer: write statistics-check reports to files.
"""

import json
from pathlib import Path
from datetime import datetime


def write_stats_report(
    out_dir: Path,
    statements: list[dict],
    meta: dict | None = None,
) -> Path:
    """
    Write per-statement results to stats_report.json.

    Args:
        out_dir: Output directory
        statements: List of statement result dicts
        meta: Optional metadata dict (run settings, totals)

    Returns:
        Path to the written file
    """
    out_path = out_dir / "stats_report.json"

    totals = {
        "statements": len(statements),
        "maintained": sum(len(s.get("maintained", [])) for s in statements),
        "planned": sum(len(s.get("planned", [])) for s in statements),
        "denied": sum(len(s.get("denied", [])) for s in statements),
        "errors": sum(1 for s in statements if s.get("error")),
    }

    output = {
        "generated": datetime.now().isoformat(),
        "meta": meta or {},
        "totals": totals,
        "statements": statements,
    }

    out_path.write_text(json.dumps(output, indent=2), encoding="utf-8")
    return out_path
