"""CLI query interface for the admin audit trail and the load change log.

Provides an argparse-based command-line tool for querying either trail
with filters by load, actor, date range, event type or target state, and
a shorthand ``--last`` duration.  Output formats: table (default) or JSON.

Usage::

    python -m freight.audit.cli --load 5b1c... --last 7d
    python -m freight.audit.cli --trail changes --to-state awarded --format json
"""

from __future__ import annotations

import argparse
import json
from datetime import UTC, datetime, timedelta
from typing import Any

from freight.audit.models import EventType
from freight.audit.store import query_audit_trail, query_state_changes
from freight.domain.types import LoadStatus
from freight.store.database import Database

AUDIT_COLUMNS: list[tuple[str, str, int]] = [
    ("Timestamp", "timestamp", 20),
    ("Event", "event_type", 18),
    ("Actor", "actor_id", 16),
    ("Load", "load_id", 36),
    ("Invoice", "invoice_id", 36),
    ("Reason", "reason", 30),
]

CHANGE_COLUMNS: list[tuple[str, str, int]] = [
    ("Timestamp", "created_at", 20),
    ("Load", "load_id", 36),
    ("Actor", "actor_id", 16),
    ("From", "from_state", 20),
    ("To", "to_state", 20),
    ("Reason", "reason", 30),
]


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for audit trail queries.

    Returns:
        A configured :class:`argparse.ArgumentParser`.
    """
    parser = argparse.ArgumentParser(description="Query the freight audit trail")

    parser.add_argument(
        "--trail",
        type=str,
        choices=["audit", "changes"],
        default="audit",
        help="Admin audit trail or load state change log (default: audit)",
    )
    parser.add_argument(
        "--load",
        type=str,
        dest="load_id",
        help="Filter by load ID",
    )
    parser.add_argument(
        "--actor",
        type=str,
        dest="actor_id",
        help="Filter by acting user ID",
    )
    parser.add_argument(
        "--from-date",
        type=str,
        help="Start date (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--to-date",
        type=str,
        help="End date (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--event-type",
        type=str,
        choices=[e.value for e in EventType],
        help="Filter admin audit entries by event type",
    )
    parser.add_argument(
        "--to-state",
        type=str,
        choices=[s.value for s in LoadStatus],
        help="Filter state changes by the state entered",
    )
    parser.add_argument(
        "--last",
        type=str,
        help='Shorthand duration (e.g., "7d", "24h", "30d")',
    )
    parser.add_argument(
        "--format",
        type=str,
        choices=["table", "json"],
        default="table",
        dest="output_format",
        help="Output format (default: table)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum results (default: 50)",
    )
    parser.add_argument(
        "--db",
        type=str,
        default="data/freight.db",
        help="Path to the freight database (default: data/freight.db)",
    )

    return parser


def parse_last_duration(last: str) -> str:
    """Convert a shorthand duration to an ISO 8601 date string.

    Supported formats:
        - ``Nd`` -- N days ago (e.g., ``7d``)
        - ``Nh`` -- N hours ago (e.g., ``24h``)

    Args:
        last: Duration string like ``"7d"`` or ``"24h"``.

    Returns:
        ISO 8601 date-time string for the computed past time.

    Raises:
        ValueError: If the format is not recognized.
    """
    if not last or len(last) < 2:
        msg = f"Unrecognized duration format: {last!r}"
        raise ValueError(msg)

    unit = last[-1]
    try:
        value = int(last[:-1])
    except ValueError:
        msg = f"Unrecognized duration format: {last!r}"
        raise ValueError(msg) from None

    now = datetime.now(tz=UTC)

    if unit == "d":
        result = now - timedelta(days=value)
    elif unit == "h":
        result = now - timedelta(hours=value)
    else:
        msg = f"Unrecognized duration format: {last!r}. Use 'd' for days or 'h' for hours."
        raise ValueError(msg)

    return result.strftime("%Y-%m-%dT%H:%M:%SZ")


def format_table(results: list[dict[str, Any]], columns: list[tuple[str, str, int]]) -> str:
    """Format query results as a human-readable table.

    Long fields are truncated to fit reasonable terminal width.

    Args:
        results: Row dicts from one of the query functions.
        columns: ``(header, key, width)`` triples to render.

    Returns:
        Formatted table string with header row.
    """
    if not results:
        return "No results found."

    def truncate(value: Any, width: int) -> str:
        s = str(value or "")
        if len(s) > width:
            return s[: width - 3] + "..."
        return s

    header_line = "  ".join(header.ljust(width) for header, _, width in columns)
    lines = [header_line, "-" * len(header_line)]
    for row in results:
        lines.append("  ".join(truncate(row.get(key), width).ljust(width) for _, key, width in columns))
    return "\n".join(lines)


def format_json(results: list[dict[str, Any]]) -> str:
    """Format query results as a pretty-printed JSON string."""
    return json.dumps(results, indent=2)


def run_query(db: Database, args: argparse.Namespace) -> str:
    """Run the query described by *args* against *db* and render it.

    Args:
        db: An open freight database.
        args: Parsed command-line arguments.

    Returns:
        The rendered output.
    """
    from_date = parse_last_duration(args.last) if args.last else args.from_date

    with db.read() as conn:
        if args.trail == "changes":
            results = query_state_changes(
                conn,
                load_id=args.load_id,
                actor_id=args.actor_id,
                from_date=from_date,
                to_date=args.to_date,
                to_state=args.to_state,
                limit=args.limit,
            )
            columns = CHANGE_COLUMNS
        else:
            results = query_audit_trail(
                conn,
                load_id=args.load_id,
                actor_id=args.actor_id,
                from_date=from_date,
                to_date=args.to_date,
                event_type=args.event_type,
                limit=args.limit,
            )
            columns = AUDIT_COLUMNS

    return format_json(results) if args.output_format == "json" else format_table(results, columns)


def main(argv: list[str] | None = None) -> None:
    """Parse arguments, query the requested trail, and print results."""
    args = build_parser().parse_args(argv)
    db = Database.open(args.db)
    try:
        print(run_query(db, args))
    finally:
        db.close()


if __name__ == "__main__":
    main()
