from __future__ import annotations

from fastapi import APIRouter

from app.core.time import utc_now_iso

router = APIRouter()


@router.get("/health")
def health() -> dict:
    return {"success": True, "status": "ok", "time": utc_now_iso()}
