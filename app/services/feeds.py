# app/services/feeds.py
"""
Upstream disaster feeds → canonical DisasterRecord.

Sources:
  - NWS: api.weather.gov active alerts (GeoJSON FeatureCollection)
  - USGS: FDSN event service, newest M2.5+ events (GeoJSON FeatureCollection)

Both adapters share one contract: any network error, timeout, non-2xx
response or undecodable body is logged and yields an empty list.  One feed
being down must never block the other.

Normalisation is table-driven only (NWS_TYPE_MAP, NWS_SEVERITY_MAP,
magnitude_to_severity).  Alerts whose event type is not in NWS_TYPE_MAP are
dropped; that table is an allow-list.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Set, Tuple

import asyncio
import logging
import math
import re
from datetime import datetime, timedelta

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.core.contracts import DisasterRecord
from app.core.settings import settings
from app.core.time import parse_iso, safe_from_epoch, utc_now

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════
# Mapping tables
# ══════════════════════════════════════════════════════════════

NWS_TYPE_MAP: Dict[str, str] = {
    "Tornado Warning": "tornado",
    "Tornado Watch": "tornado",
    "Tornado Emergency": "tornado",
    "Severe Thunderstorm Warning": "tornado",
    "Severe Thunderstorm Watch": "tornado",
    "Hurricane Warning": "hurricane",
    "Hurricane Watch": "hurricane",
    "Hurricane Local Statement": "hurricane",
    "Tropical Storm Warning": "hurricane",
    "Tropical Storm Watch": "hurricane",
    "Flash Flood Warning": "flood",
    "Flash Flood Watch": "flood",
    "Flood Warning": "flood",
    "Flood Watch": "flood",
    "Flood Advisory": "flood",
    "Coastal Flood Warning": "flood",
    "Coastal Flood Watch": "flood",
    "Coastal Flood Advisory": "flood",
    "River Flood Warning": "flood",
    "River Flood Watch": "flood",
    "Red Flag Warning": "wildfire",
    "Fire Weather Watch": "wildfire",
    "Fire Warning": "wildfire",
    "Earthquake Warning": "earthquake",
    "Tsunami Warning": "earthquake",
    "Tsunami Watch": "earthquake",
    "Tsunami Advisory": "earthquake",
}

NWS_SEVERITY_MAP: Dict[str, str] = {
    "Extreme": "extreme",
    "Severe": "severe",
    "Moderate": "moderate",
    "Minor": "minor",
    "Unknown": "minor",
}

# (floor, severity), checked top-down; anything below the last floor is minor.
_MAGNITUDE_BUCKETS: Tuple[Tuple[float, str], ...] = (
    (7.0, "extreme"),
    (5.0, "severe"),
    (3.0, "moderate"),
)


def magnitude_to_severity(mag: float) -> str:
    for floor, severity in _MAGNITUDE_BUCKETS:
        if mag >= floor:
            return severity
    return "minor"


def nws_severity(value: Optional[str]) -> str:
    return NWS_SEVERITY_MAP.get((value or "").strip(), "minor")


# ══════════════════════════════════════════════════════════════
# Region heuristics (best-effort, never relied on for correctness)
# ══════════════════════════════════════════════════════════════

_TRAILING_STATE_RE = re.compile(r",\s*([A-Z]{2})$")


def extract_nws_state(area_desc: Optional[str]) -> str:
    """
    NWS areaDesc looks like "Harris, TX; Fort Bend, TX".  Take the first
    segment; if the text after its last comma is exactly two characters use
    that, otherwise fall back to the first 30 characters of the segment.
    """
    if not area_desc:
        return "Unknown"
    first = area_desc.split(";")[0].strip()
    if "," in first:
        code = first[first.rindex(",") + 1:].strip()
        if len(code) == 2:
            return code
    return first[:30]


def extract_usgs_state(place: Optional[str]) -> str:
    """USGS place strings look like "10km SSE of Ridgecrest, CA"."""
    if not place:
        return "Unknown"
    m = _TRAILING_STATE_RE.search(place)
    if m:
        return m.group(1)
    low = place.lower()
    if "alaska" in low:
        return "AK"
    if "hawaii" in low:
        return "HI"
    return "Unknown"


# ══════════════════════════════════════════════════════════════
# Geometry
# ══════════════════════════════════════════════════════════════

def _safe_float(x: Any) -> Optional[float]:
    try:
        f = float(x)
        if math.isfinite(f):
            return f
    except (TypeError, ValueError):
        return None
    return None


def centroid(geometry: Optional[Dict[str, Any]]) -> Tuple[float, float]:
    """
    Representative (lat, lng) for a GeoJSON geometry.

    Point: used directly.  Polygon: unweighted arithmetic mean of the outer
    ring's vertices.  That is NOT a true area centroid, only an approximation
    that is good enough for pinning an alert on a map.  Every listed vertex
    counts, including a closing one that repeats the first.  Anything else: (0, 0).
    """
    if not isinstance(geometry, dict):
        return 0.0, 0.0

    gtype = geometry.get("type")
    coords = geometry.get("coordinates")

    if gtype == "Point" and isinstance(coords, (list, tuple)) and len(coords) >= 2:
        lng = _safe_float(coords[0])
        lat = _safe_float(coords[1])
        if lat is None or lng is None:
            return 0.0, 0.0
        return lat, lng

    if gtype == "Polygon" and isinstance(coords, list) and coords and isinstance(coords[0], list):
        pts: List[Tuple[float, float]] = []
        for p in coords[0]:
            if isinstance(p, (list, tuple)) and len(p) >= 2:
                lng = _safe_float(p[0])
                lat = _safe_float(p[1])
                if lat is not None and lng is not None:
                    pts.append((lng, lat))
        if not pts:
            return 0.0, 0.0
        lat = sum(p[1] for p in pts) / len(pts)
        lng = sum(p[0] for p in pts) / len(pts)
        return lat, lng

    return 0.0, 0.0


# ══════════════════════════════════════════════════════════════
# Validated upstream shapes
# ══════════════════════════════════════════════════════════════

class NwsAlertProperties(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    event: Optional[str] = None
    severity: Optional[str] = None
    certainty: Optional[str] = None
    urgency: Optional[str] = None
    areaDesc: Optional[str] = None
    headline: Optional[str] = None
    description: Optional[str] = None
    instruction: Optional[str] = None
    onset: Optional[str] = None
    sent: Optional[str] = None
    effective: Optional[str] = None
    expires: Optional[str] = None
    ends: Optional[str] = None


class NwsFeature(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    properties: NwsAlertProperties
    geometry: Optional[Dict[str, Any]] = None


class UsgsEventProperties(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mag: Optional[float] = None
    place: Optional[str] = None
    time: int                       # epoch ms
    updated: Optional[int] = None   # epoch ms
    status: Optional[str] = None
    url: Optional[str] = None


class UsgsGeometry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = "Point"
    coordinates: List[Optional[float]] = Field(default_factory=list)  # [lng, lat, depth]


class UsgsFeature(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    properties: UsgsEventProperties
    geometry: Optional[UsgsGeometry] = None


def _features(payload: Any) -> List[Any]:
    if not isinstance(payload, dict):
        return []
    feats = payload.get("features")
    return feats if isinstance(feats, list) else []


# ══════════════════════════════════════════════════════════════
# NWS → DisasterRecord
# ══════════════════════════════════════════════════════════════

def _nws_record(feat: NwsFeature, now: datetime) -> Optional[DisasterRecord]:
    p = feat.properties
    event = p.event or ""
    hazard_type = NWS_TYPE_MAP.get(event)
    if hazard_type is None:
        return None

    provider_id = p.id or feat.id
    if not provider_id:
        logger.debug("nws_skip_feature_without_id event=%s", event)
        return None

    area_desc = p.areaDesc or ""
    state = extract_nws_state(area_desc)
    lat, lng = centroid(feat.geometry)

    start = parse_iso(p.onset) or parse_iso(p.sent) or parse_iso(p.effective) or now
    end = parse_iso(p.expires) or parse_iso(p.ends) or (now + timedelta(hours=24))

    return DisasterRecord(
        id=f"nws-{provider_id}",
        source="nws",
        type=hazard_type,       # type: ignore[arg-type]
        title=f"{event} — {state}",
        description=p.description or p.headline or event,
        instructions=p.instruction or None,
        severity=nws_severity(p.severity),  # type: ignore[arg-type]
        start_time=start,
        end_time=end,
        state=state,
        area_desc=area_desc,
        lat=lat,
        lng=lng,
        url=f"https://alerts.weather.gov/search?id={p.id or ''}",
        raw={
            "eventType": event,
            "areaDesc": area_desc,
            "severity": p.severity,
            "certainty": p.certainty,
            "urgency": p.urgency,
        },
    )


def parse_nws_alerts(
    payload: Any,
    *,
    now: Optional[datetime] = None,
    max_alerts: Optional[int] = None,
) -> List[DisasterRecord]:
    now = now or utc_now()
    cap = int(max_alerts if max_alerts is not None else settings.nws_max_alerts)
    out: List[DisasterRecord] = []
    seen: Set[str] = set()

    for raw_feat in _features(payload):
        if len(out) >= cap:
            break
        try:
            rec = _nws_record(NwsFeature.model_validate(raw_feat), now)
        except (ValueError, OverflowError) as e:
            # pydantic's ValidationError is a ValueError
            logger.debug("nws_skip_malformed_feature err=%s", e)
            continue
        if rec is None:
            continue
        if rec.id in seen:
            logger.warning("nws_skip_duplicate_alert id=%s", rec.id)
            continue
        seen.add(rec.id)
        out.append(rec)

    return out


# ══════════════════════════════════════════════════════════════
# USGS → DisasterRecord
# ══════════════════════════════════════════════════════════════

def _usgs_record(feat: UsgsFeature) -> Optional[DisasterRecord]:
    p = feat.properties
    started = safe_from_epoch(p.time / 1000.0)
    if started is None:
        logger.debug("usgs_skip_bad_time id=%s time=%s", feat.id, p.time)
        return None
    updated = safe_from_epoch(p.updated / 1000.0) if p.updated else None

    coords = feat.geometry.coordinates if feat.geometry else []
    lng = _safe_float(coords[0]) if len(coords) > 0 else None
    lat = _safe_float(coords[1]) if len(coords) > 1 else None
    depth = _safe_float(coords[2]) if len(coords) > 2 else None

    mag = p.mag or 0.0
    place = p.place or "Unknown location"

    return DisasterRecord(
        id=f"usgs-{feat.id}",
        source="usgs",
        type="earthquake",
        title=f"M{mag:.1f} Earthquake — {place}",
        description=f"Magnitude {mag:.1f} earthquake at depth {(depth or 0.0):.1f} km. {place}.",
        instructions=None,
        severity=magnitude_to_severity(mag),  # type: ignore[arg-type]
        start_time=started,
        end_time=updated or started,
        state=extract_usgs_state(place),
        area_desc=place,
        lat=lat or 0.0,
        lng=lng or 0.0,
        url=p.url or f"https://earthquake.usgs.gov/earthquakes/eventpage/{feat.id}",
        raw={
            "eventType": "Earthquake",
            "areaDesc": place,
            "magnitude": mag,
            "depth": depth,
            "status": p.status,
        },
    )


def parse_usgs_events(payload: Any) -> List[DisasterRecord]:
    out: List[DisasterRecord] = []
    seen: Set[str] = set()

    for raw_feat in _features(payload):
        try:
            rec = _usgs_record(UsgsFeature.model_validate(raw_feat))
        except (ValueError, OverflowError) as e:
            logger.debug("usgs_skip_malformed_feature err=%s", e)
            continue
        if rec is None:
            continue
        if rec.id in seen:
            logger.warning("usgs_skip_duplicate_event id=%s", rec.id)
            continue
        seen.add(rec.id)
        out.append(rec)

    return out


# ══════════════════════════════════════════════════════════════
# Fetchers
# ══════════════════════════════════════════════════════════════

async def _get_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    feed: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout_s: Optional[float] = None,
) -> Optional[Any]:
    """GET + decode, or None on any upstream failure (already logged)."""
    timeout = float(timeout_s or settings.disasters_timeout_s)
    try:
        r = await asyncio.wait_for(client.get(url, params=params, headers=headers), timeout=timeout)
        r.raise_for_status()
        return r.json()
    except httpx.HTTPStatusError as exc:
        logger.warning("%s_fetch_http_error status=%d", feed, exc.response.status_code)
    except asyncio.TimeoutError:
        logger.warning("%s_fetch_timeout after=%.1fs", feed, timeout)
    except httpx.HTTPError as exc:
        logger.warning("%s_fetch_failed err=%s", feed, exc)
    except ValueError as exc:
        logger.warning("%s_fetch_bad_json err=%s", feed, exc)
    return None


async def fetch_nws_alerts(client: httpx.AsyncClient, *, timeout_s: Optional[float] = None) -> List[DisasterRecord]:
    if not settings.nws_enabled:
        return []
    payload = await _get_json(
        client,
        settings.nws_alerts_url,
        feed="nws",
        headers={
            "User-Agent": settings.nws_user_agent,
            "Accept": "application/geo+json",
        },
        timeout_s=timeout_s,
    )
    if payload is None:
        return []
    items = parse_nws_alerts(payload)
    logger.info("nws_fetch alerts=%d", len(items))
    return items


async def fetch_usgs_earthquakes(client: httpx.AsyncClient, *, timeout_s: Optional[float] = None) -> List[DisasterRecord]:
    if not settings.usgs_enabled:
        return []
    payload = await _get_json(
        client,
        settings.usgs_events_url,
        feed="usgs",
        params={
            "format": "geojson",
            "limit": settings.usgs_limit,
            "orderby": "time",
            "minmagnitude": settings.usgs_min_magnitude,
        },
        timeout_s=timeout_s,
    )
    if payload is None:
        return []
    items = parse_usgs_events(payload)
    logger.info("usgs_fetch events=%d", len(items))
    return items
