# app/services/disasters.py
"""
Disaster cache: refresh coordination + filtered reads.

Request-driven only, no background scheduler.  Every read first calls
ensure_fresh(); when the snapshot is older than the TTL the caller performs a
synchronous refresh.  Concurrent callers that observe staleness at the same
time share one refresh through the instance lock (single-flight) rather than
each hitting NWS and USGS.

Refresh outcomes:
  - both feeds empty/failed  → only last_fetch moves; previous snapshot kept
  - anything fetched         → snapshot replaced in one transaction
  - storage failure          → propagates (caller gets a 500)
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import asyncio
import calendar
import logging
import sqlite3
import time
from datetime import datetime, timezone

import httpx

from app.core.contracts import (
    DISASTER_SOURCES,
    CacheStatus,
    DisasterFilters,
    DisasterItem,
    DisasterLocation,
    DisasterQueryResult,
    DisasterRecord,
)
from app.core.settings import settings
from app.core.storage import DisasterStore
from app.core.time import from_epoch, parse_iso, to_iso_z, utc_now
from app.services.feeds import fetch_nws_alerts, fetch_usgs_earthquakes

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], httpx.AsyncClient]


# ══════════════════════════════════════════════════════════════
# Filter helpers
# ══════════════════════════════════════════════════════════════

def resolve_limit(raw: Any, *, default: Optional[int] = None, ceiling: Optional[int] = None) -> int:
    """Missing, unparseable or non-positive → default; otherwise clamp to ceiling."""
    default = int(default or settings.disasters_default_limit)
    ceiling = int(ceiling or settings.disasters_max_limit)
    try:
        n = int(raw)
    except (TypeError, ValueError):
        return min(default, ceiling)
    if n <= 0:
        return min(default, ceiling)
    return min(n, ceiling)


def month_range(month: Optional[int], year: Optional[int]) -> Tuple[datetime, datetime]:
    """First and last second of a calendar month, UTC."""
    y = int(year) if year is not None else utc_now().year
    m = int(month) if month is not None else 1
    if not 1 <= m <= 12:
        raise ValueError(f"month must be between 1 and 12, got {m}")
    if not 1 <= y <= 9999:
        raise ValueError(f"year out of range: {y}")
    last_day = calendar.monthrange(y, m)[1]
    start = datetime(y, m, 1, 0, 0, 0, tzinfo=timezone.utc)
    end = datetime(y, m, last_day, 23, 59, 59, tzinfo=timezone.utc)
    return start, end


def _as_list(value: Any) -> Optional[List[str]]:
    """Scalar, list or comma-separated → list of non-empty strings (None if empty)."""
    if value is None:
        return None
    raw = value if isinstance(value, (list, tuple)) else [value]
    out: List[str] = []
    for v in raw:
        for part in str(v).split(","):
            part = part.strip()
            if part and part not in out:
                out.append(part)
    return out or None


def _as_datetime(name: str, value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = parse_iso(str(value))
    if dt is None:
        raise ValueError(f"{name} is not a valid ISO-8601 date: {value!r}")
    return dt


def _as_int(name: str, value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def build_filters(
    *,
    source: Any = None,
    type: Any = None,
    state: Any = None,
    severity: Any = None,
    startDate: Any = None,
    endDate: Any = None,
    startTime: Any = None,
    endTime: Any = None,
    month: Any = None,
    year: Any = None,
    limit: Any = None,
) -> DisasterFilters:
    """Parse raw request values into DisasterFilters. Raises ValueError on bad input."""
    f = DisasterFilters(
        source=_as_list(source),
        type=_as_list(type),
        state=_as_list(state),
        severity=_as_list(severity),
        startDate=_as_datetime("startDate", startDate),
        endDate=_as_datetime("endDate", endDate),
        startTime=_as_datetime("startTime", startTime),
        endTime=_as_datetime("endTime", endTime),
        month=_as_int("month", month),
        year=_as_int("year", year),
        limit=resolve_limit(limit),
    )
    if f.month is not None or f.year is not None:
        month_range(f.month, f.year)  # validate early
    return f


def effective_range(f: DisasterFilters) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Inclusive [lower, upper] bound on start time.

    month/year (either one) overrides everything else.  Otherwise
    startDate..endDate and startTime..endTime are intersected.
    """
    if f.month is not None or f.year is not None:
        return month_range(f.month, f.year)

    lowers = [d for d in (f.startDate, f.startTime) if d is not None]
    uppers = [d for d in (f.endDate, f.endTime) if d is not None]
    return (max(lowers) if lowers else None, min(uppers) if uppers else None)


def to_item(r: DisasterRecord) -> DisasterItem:
    return DisasterItem(
        id=r.id,
        source=r.source,
        type=r.type,
        title=r.title,
        description=r.description,
        instructions=r.instructions,
        severity=r.severity,
        startTime=to_iso_z(r.start_time),
        endTime=to_iso_z(r.end_time),
        location=DisasterLocation(
            state=r.state,
            areaDesc=r.area_desc,
            lat=r.lat,
            lng=r.lng,
            coordinates=[r.lng, r.lat],
        ),
        url=r.url,
        raw=dict(r.raw),
    )


# ══════════════════════════════════════════════════════════════
# Cache service
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RefreshOutcome:
    nws: int
    usgs: int
    replaced: bool

    @property
    def total(self) -> int:
        return self.nws + self.usgs


def _default_client_factory() -> httpx.AsyncClient:
    transport = httpx.AsyncHTTPTransport(retries=1)
    return httpx.AsyncClient(
        timeout=settings.disasters_timeout_s,
        follow_redirects=True,
        transport=transport,
    )


class DisasterCache:
    def __init__(
        self,
        *,
        store: DisasterStore,
        ttl_s: Optional[int] = None,
        client_factory: Optional[ClientFactory] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.ttl_s = int(ttl_s if ttl_s is not None else settings.disasters_cache_ttl_s)
        self.client_factory = client_factory or _default_client_factory
        self.clock = clock
        # Single-flight guard: one refresh in flight per cache.
        self._refresh_lock = asyncio.Lock()

    # ──────────────────────────────────────────────────────────────
    # Staleness
    # ──────────────────────────────────────────────────────────────

    def is_stale(self) -> bool:
        try:
            last = self.store.get_last_fetch()
        except sqlite3.Error as e:
            logger.warning("disasters_metadata_read_failed err=%s", e)
            return True
        if last is None:
            return True
        return (self.clock() - last) > self.ttl_s

    async def ensure_fresh(self) -> Optional[RefreshOutcome]:
        if not self.is_stale():
            return None
        async with self._refresh_lock:
            # Another caller may have refreshed while we waited.
            if not self.is_stale():
                return None
            return await self._refresh_locked()

    async def refresh(self) -> RefreshOutcome:
        """Refresh regardless of TTL (still serialised with ensure_fresh)."""
        async with self._refresh_lock:
            return await self._refresh_locked()

    async def _refresh_locked(self) -> RefreshOutcome:
        logger.info("disasters_refresh start")

        async with self.client_factory() as client:
            nws_items, usgs_items = await asyncio.gather(
                fetch_nws_alerts(client),
                fetch_usgs_earthquakes(client),
            )

        records: List[DisasterRecord] = [*nws_items, *usgs_items]
        now = self.clock()

        logger.info("disasters_refresh fetched nws=%d usgs=%d", len(nws_items), len(usgs_items))

        if not records:
            # Keep the last good snapshot; just stop hammering the upstreams.
            self.store.touch_last_fetch(now)
            logger.warning("disasters_refresh empty, keeping previous snapshot")
            return RefreshOutcome(nws=0, usgs=0, replaced=False)

        try:
            n = self.store.replace_all(records, fetched_ts=now)
        except sqlite3.Error:
            logger.exception("disasters_refresh replace failed")
            raise

        logger.info("disasters_refresh cached=%d", n)
        return RefreshOutcome(nws=len(nws_items), usgs=len(usgs_items), replaced=True)

    # ──────────────────────────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────────────────────────

    def _sources(self, counts: Dict[str, int]) -> Dict[str, int]:
        out = {src: 0 for src in DISASTER_SOURCES}
        out.update(counts)
        return out

    async def query(self, filters: DisasterFilters) -> DisasterQueryResult:
        await self.ensure_fresh()

        lower, upper = effective_range(filters)
        where: Dict[str, Any] = {
            "sources": filters.source,
            "types": filters.type,
            "states": filters.state,
            "severities": filters.severity,
            "start_gte": lower.timestamp() if lower else None,
            "start_lte": upper.timestamp() if upper else None,
        }

        counts = self._sources(self.store.source_counts(**where))
        records = self.store.query(limit=filters.limit, **where)
        items = [to_item(r) for r in records]

        return DisasterQueryResult(
            total=sum(counts.values()),
            count=len(items),
            sources=counts,
            filters=filters,
            items=items,
        )

    def status(self) -> CacheStatus:
        last = self.store.get_last_fetch()
        age = (self.clock() - last) if last is not None else None
        return CacheStatus(
            last_fetch=to_iso_z(from_epoch(last)) if last is not None else None,
            age_s=round(age, 3) if age is not None else None,
            ttl_s=self.ttl_s,
            stale=self.is_stale(),
            record_count=self.store.count(),
            sources=self._sources(self.store.source_counts()),
        )


def forced(filters: DisasterFilters, **overrides: Sequence[str]) -> DisasterFilters:
    """Copy of filters with some list fields pinned (used by the per-feed endpoints)."""
    return filters.model_copy(update={k: list(v) for k, v in overrides.items()})
