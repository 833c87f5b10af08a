"""
Plain-text status report for the upload ledger.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path

from cronocam.database import LedgerStats, UploadFailure

PENDING_PREVIEW = 5


def _pluralize(n: int) -> str:
    return "" if n == 1 else "s"


def format_relative_time(t: datetime, now: datetime | None = None) -> str:
    """Describe ``t`` relative to ``now`` ("3 hours ago"), or as a date when over 30 days old."""
    now = now or datetime.now(timezone.utc)
    if t.tzinfo is None:
        t = t.replace(tzinfo=timezone.utc)
    diff = now - t

    if diff < timedelta(minutes=1):
        return "just now"
    if diff < timedelta(hours=1):
        mins = int(diff.total_seconds() // 60)
        return f"{mins} minute{_pluralize(mins)} ago"
    if diff < timedelta(days=1):
        hours = int(diff.total_seconds() // 3600)
        return f"{hours} hour{_pluralize(hours)} ago"
    if diff < timedelta(days=30):
        days = diff.days
        return f"{days} day{_pluralize(days)} ago"
    return f"{t:%b} {t.day}, {t.year}"


def render_status(
    stats: LedgerStats,
    pending: list[str],
    failures: list[UploadFailure],
    now: datetime | None = None,
) -> str:
    """
    Build the text shown by ``cronocam status``.

    Args:
        stats: Ledger totals
        pending: Paths recorded without a remote id
        failures: Recent failures, newest first
        now: Reference time for relative timestamps (default: current UTC time)
    """
    lines = [
        "Upload Status:",
        "-------------",
        f"Total files uploaded: {stats.total_records}",
    ]
    if stats.last_record_time is not None:
        lines.append(f"Last upload: {format_relative_time(stats.last_record_time, now)}")
    else:
        lines.append("Last upload: Never")

    lines.append("")
    lines.append(f"Pending Files: {len(pending)}")
    if pending:
        lines.append(f"First {PENDING_PREVIEW} pending files:")
        lines.extend(f"- {Path(p).name}" for p in pending[:PENDING_PREVIEW])

    if failures:
        lines.append("")
        lines.append("Recent Errors:")
        lines.extend(f"- {Path(f.file_path).name}: {f.message}" for f in failures)

    return "\n".join(lines)
