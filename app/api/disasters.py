from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from app.core.contracts import (
    CacheStatusResponse,
    DisasterFilters,
    DisasterResponse,
    ErrorResponse,
    RefreshResponse,
)
from app.core.errors import bad_request
from app.services.disasters import DisasterCache, build_filters, forced

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/disasters",
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)


def get_disaster_cache() -> DisasterCache:
    raise RuntimeError("DisasterCache must be provided by app dependency override")


def parse_filters(
    source: Optional[List[str]] = Query(None),
    type_: Optional[List[str]] = Query(None, alias="type"),
    state: Optional[List[str]] = Query(None),
    severity: Optional[List[str]] = Query(None),
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    startTime: Optional[str] = Query(None),
    endTime: Optional[str] = Query(None),
    month: Optional[str] = Query(None),
    year: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
) -> DisasterFilters:
    try:
        return build_filters(
            source=source,
            type=type_,
            state=state,
            severity=severity,
            startDate=startDate,
            endDate=endDate,
            startTime=startTime,
            endTime=endTime,
            month=month,
            year=year,
            limit=limit,
        )
    except ValueError as e:
        bad_request("bad_disaster_filters", str(e))


# ──────────────────────────────────────────────────────────────
# /disasters
# ──────────────────────────────────────────────────────────────

@router.get("", response_model=DisasterResponse)
async def list_disasters(
    filters: DisasterFilters = Depends(parse_filters),
    cache: DisasterCache = Depends(get_disaster_cache),
) -> DisasterResponse:
    data = await cache.query(filters)
    return DisasterResponse(data=data)


@router.get("/nws", response_model=DisasterResponse)
async def list_nws_alerts(
    filters: DisasterFilters = Depends(parse_filters),
    cache: DisasterCache = Depends(get_disaster_cache),
) -> DisasterResponse:
    data = await cache.query(forced(filters, source=["nws"]))
    return DisasterResponse(data=data)


@router.get("/earthquakes", response_model=DisasterResponse)
async def list_earthquakes(
    filters: DisasterFilters = Depends(parse_filters),
    cache: DisasterCache = Depends(get_disaster_cache),
) -> DisasterResponse:
    data = await cache.query(forced(filters, source=["usgs"], type=["earthquake"]))
    return DisasterResponse(data=data)


@router.get("/wildfires", response_model=DisasterResponse)
async def list_wildfires(
    filters: DisasterFilters = Depends(parse_filters),
    cache: DisasterCache = Depends(get_disaster_cache),
) -> DisasterResponse:
    data = await cache.query(forced(filters, type=["wildfire"]))
    return DisasterResponse(data=data)


# ──────────────────────────────────────────────────────────────
# Ops: cache status + forced refresh
# ──────────────────────────────────────────────────────────────

@router.get("/status", response_model=CacheStatusResponse)
async def cache_status(cache: DisasterCache = Depends(get_disaster_cache)) -> CacheStatusResponse:
    return CacheStatusResponse(data=cache.status())


@router.post("/refresh", response_model=RefreshResponse)
async def force_refresh(cache: DisasterCache = Depends(get_disaster_cache)) -> RefreshResponse:
    outcome = await cache.refresh()
    logger.info("disasters_forced_refresh nws=%d usgs=%d replaced=%s", outcome.nws, outcome.usgs, outcome.replaced)
    return RefreshResponse(
        data={
            "nws": outcome.nws,
            "usgs": outcome.usgs,
            "total": outcome.total,
            "replaced": outcome.replaced,
        }
    )
