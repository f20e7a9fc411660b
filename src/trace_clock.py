"""
Trace Clock Module
==================
Anchors relative trace timestamps to wall-clock time.

perf script output only carries offsets, so the trace start is discovered
from a `timestamp.txt` file next to the trace, then from the trace's own
"captured on" header, and otherwise defaults to today's UTC midnight.
"""

import logging
from pathlib import Path
from datetime import datetime, timedelta, timezone
from typing import Optional

logger = logging.getLogger(__name__)

TIMESTAMP_FILE = "timestamp.txt"
# e.g. "Thu Oct 17 15:37:51 2019", as printed by `perf report --header-only`
CAPTURED_ON_FORMAT = "%a %b %d %H:%M:%S %Y"


def default_trace_start() -> datetime:
    now = datetime.now(timezone.utc)
    return datetime(now.year, now.month, now.day, tzinfo=timezone.utc)


def parse_trace_start(text: str) -> Optional[datetime]:
    """
    Parse a trace start anchor.

    Args:
        text: ISO-8601 or "captured on" formatted time

    Returns:
        UTC datetime, or None if the text is not a recognized format
    """
    text = text.strip()
    if not text:
        return None

    parsed = None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            parsed = datetime.strptime(" ".join(text.split()), CAPTURED_ON_FORMAT)
        except ValueError:
            return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def discover_trace_start(trace_file: Path, captured_on: Optional[str] = None) -> datetime:
    """
    Find the wall-clock start of a trace.

    Args:
        trace_file: Path of the perf script text file
        captured_on: "captured on" value from the trace header, if any

    Returns:
        Trace start as a UTC datetime (never fails; falls back to today)
    """
    timestamp_file = Path(trace_file).parent / TIMESTAMP_FILE
    if timestamp_file.exists():
        text = timestamp_file.read_text(encoding='utf-8', errors='ignore')
        start = parse_trace_start(text)
        if start is not None:
            logger.info(f"Trace start {start.isoformat()} from {timestamp_file.name}")
            return start
        logger.error(f"Could not parse time {text.strip()!r} in file {timestamp_file}. "
                     f"Format expected is: {CAPTURED_ON_FORMAT}")

    if captured_on:
        start = parse_trace_start(captured_on)
        if start is not None:
            logger.info(f"Trace start {start.isoformat()} from trace header")
            return start
        logger.warning(f"Unrecognized captured-on header: {captured_on!r}")

    start = default_trace_start()
    logger.info(f"No trace start anchor found, using {start.isoformat()}")
    return start


def to_absolute(trace_start: datetime, relative_ms: float) -> datetime:
    """Wall-clock time of a timestamp relative to the trace start."""
    return trace_start + timedelta(milliseconds=relative_ms)
