from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def to_iso_z(dt: datetime) -> str:
    """ISO-8601 with millisecond precision and a trailing Z (JS toISOString shape)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(s: Optional[str]) -> Optional[datetime]:
    """
    Lenient ISO-8601 parser. Accepts a trailing Z and bare dates.
    Naive values are taken as UTC. Returns None for empty/unparseable input.
    """
    if not s:
        return None
    t = str(s).strip()
    if not t:
        return None
    if t.endswith("Z") or t.endswith("z"):
        t = t[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(t)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        return None


def from_epoch(ts: float) -> datetime:
    return datetime.fromtimestamp(float(ts), tz=timezone.utc)


def safe_from_epoch(ts: Optional[float]) -> Optional[datetime]:
    """from_epoch, or None when the value is missing or outside datetime's range."""
    if ts is None:
        return None
    try:
        return from_epoch(ts)
    except (ValueError, OverflowError, OSError):
        return None
