from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from app.core.contracts import DisasterRecord
from app.core.storage import DisasterStore, connect_sqlite, ensure_schema

NWS_HOST = "api.weather.gov"
USGS_HOST = "earthquake.usgs.gov"


def memory_store() -> DisasterStore:
    conn = connect_sqlite(":memory:")
    ensure_schema(conn)
    return DisasterStore(conn)


def make_record(
    rid: str,
    *,
    source: str = "nws",
    type: str = "flood",
    severity: str = "minor",
    start: Optional[datetime] = None,
    state: str = "TX",
) -> DisasterRecord:
    start = start or datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
    return DisasterRecord(
        id=f"{source}-{rid}",
        source=source,
        type=type,
        title=f"{type} {rid}",
        description=f"{type} {rid}",
        severity=severity,
        start_time=start,
        end_time=start,
        state=state,
        area_desc=f"Somewhere, {state}",
        lat=30.0,
        lng=-95.0,
        url=f"https://example.test/{rid}",
        raw={"eventType": type},
    )


def nws_feature(
    fid: str,
    event: str = "Flood Warning",
    *,
    severity: Optional[str] = "Severe",
    area_desc: str = "Harris, TX; Fort Bend, TX",
    geometry: Optional[Dict[str, Any]] = None,
    **props: Any,
) -> Dict[str, Any]:
    p = {
        "id": fid,
        "event": event,
        "severity": severity,
        "areaDesc": area_desc,
        "description": f"{event} in effect.",
        "onset": "2024-03-10T12:00:00-05:00",
        "expires": "2024-03-11T12:00:00-05:00",
        "certainty": "Likely",
        "urgency": "Expected",
    }
    p.update(props)
    return {"id": f"https://api.weather.gov/alerts/{fid}", "type": "Feature", "properties": p, "geometry": geometry}


def usgs_feature(
    fid: str,
    mag: Optional[float] = 4.2,
    *,
    place: str = "10km SSE of Ridgecrest, CA",
    time_ms: int = 1710072000000,
    coords: Optional[List[float]] = None,
) -> Dict[str, Any]:
    return {
        "type": "Feature",
        "id": fid,
        "properties": {
            "mag": mag,
            "place": place,
            "time": time_ms,
            "updated": time_ms + 60_000,
            "status": "reviewed",
            "url": f"https://earthquake.usgs.gov/earthquakes/eventpage/{fid}",
        },
        "geometry": {"type": "Point", "coordinates": coords or [-117.6, 35.6, 8.3]},
    }


def collection(features: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"type": "FeatureCollection", "features": features}


class FakeUpstreams:
    """
    MockTransport-backed NWS + USGS.  Each feed is either a JSON payload or a
    status code; every request is counted per host.
    """

    def __init__(
        self,
        *,
        nws: Any = None,
        usgs: Any = None,
        nws_status: int = 200,
        usgs_status: int = 200,
        delay_s: float = 0.0,
    ):
        self.nws = nws if nws is not None else collection([])
        self.usgs = usgs if usgs is not None else collection([])
        self.nws_status = nws_status
        self.usgs_status = usgs_status
        self.delay_s = delay_s
        self.calls: Dict[str, int] = {NWS_HOST: 0, USGS_HOST: 0}

    async def handler(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        self.calls[host] = self.calls.get(host, 0) + 1
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if host == NWS_HOST:
            return httpx.Response(self.nws_status, json=self.nws)
        if host == USGS_HOST:
            return httpx.Response(self.usgs_status, json=self.usgs)
        return httpx.Response(404)

    def client_factory(self) -> Callable[[], httpx.AsyncClient]:
        return lambda: httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def client(self) -> httpx.AsyncClient:
        return self.client_factory()()


def no_network_factory() -> httpx.AsyncClient:
    raise AssertionError("upstream fetch attempted on a fresh cache")
