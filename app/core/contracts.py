from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field


# ──────────────────────────────────────────────────────────────
# Disasters: canonical schema
# ──────────────────────────────────────────────────────────────
#
# Every upstream feed is mapped into DisasterRecord.  `type` and
# `severity` are always derived from the mapping tables in
# app/services/feeds.py; provider-native text never leaks into them.
#
# SOURCES
#   nws    National Weather Service active alerts (weather)
#   usgs   USGS FDSN event service (seismic)
# ──────────────────────────────────────────────────────────────

DisasterSource = Literal["nws", "usgs"]
DisasterType = Literal["tornado", "hurricane", "flood", "wildfire", "earthquake", "other"]
DisasterSeverity = Literal["extreme", "severe", "moderate", "minor"]  # most to least severe

DISASTER_SOURCES: Tuple[str, ...] = ("nws", "usgs")


class DisasterRecord(BaseModel):
    """One normalized alert/event. Immutable once built by a feed adapter."""
    model_config = ConfigDict(frozen=True)

    id: str                         # "{source}-{providerId}"
    source: DisasterSource
    type: DisasterType
    title: str
    description: str = ""
    instructions: Optional[str] = None   # NWS only
    severity: DisasterSeverity = "minor"
    start_time: datetime
    end_time: datetime
    state: str = "Unknown"          # best-effort region code, heuristic
    area_desc: str = ""             # provider location text, verbatim
    lat: float = 0.0
    lng: float = 0.0
    url: str = ""
    raw: Dict[str, Any] = Field(default_factory=dict)  # audit only, never filtered on
    fetched_at: Optional[datetime] = None


# ──────────────────────────────────────────────────────────────
# Disasters: wire shapes
# ──────────────────────────────────────────────────────────────

class DisasterLocation(BaseModel):
    state: str
    areaDesc: str
    lat: float
    lng: float
    coordinates: List[float]        # [lng, lat], GeoJSON convention


class DisasterItem(BaseModel):
    id: str
    source: DisasterSource
    type: DisasterType
    title: str
    description: str
    instructions: Optional[str] = None
    severity: DisasterSeverity
    startTime: str                  # ISO8601 UTC
    endTime: str                    # ISO8601 UTC
    location: DisasterLocation
    url: str
    raw: Dict[str, Any] = Field(default_factory=dict)


class DisasterFilters(BaseModel):
    """Effective filters, echoed back to the caller under data.filters."""
    source: Optional[List[str]] = None
    type: Optional[List[str]] = None
    state: Optional[List[str]] = None
    severity: Optional[List[str]] = None
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    month: Optional[int] = None
    year: Optional[int] = None
    limit: int = 100


class DisasterQueryResult(BaseModel):
    total: int                      # all matches, ignoring limit
    count: int                      # len(items)
    sources: Dict[str, int]         # per-source counts over all matches
    filters: DisasterFilters
    items: List[DisasterItem] = Field(default_factory=list)


class DisasterResponse(BaseModel):
    success: bool = True
    data: DisasterQueryResult


class CacheStatus(BaseModel):
    last_fetch: Optional[str] = None    # ISO8601 UTC
    age_s: Optional[float] = None
    ttl_s: int
    stale: bool
    record_count: int
    sources: Dict[str, int]


class CacheStatusResponse(BaseModel):
    success: bool = True
    data: CacheStatus


class RefreshResponse(BaseModel):
    success: bool = True
    data: Dict[str, Any]


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
