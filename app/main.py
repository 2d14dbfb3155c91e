# app/main.py
from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware

# Load /backend/.env (main.py is /backend/app/main.py)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

from app.core.settings import settings
from app.core.errors import install_error_handlers
from app.core.storage import DisasterStore, connect_sqlite, ensure_schema
from app.api import api_router

from app.services.disasters import DisasterCache

logger = logging.getLogger(__name__)

app = FastAPI(title="Disaster Response Backend", version="1.0.0")

# ── Compression (must be added before CORS) ──
app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

install_error_handlers(app)

# ──────────────────────────────────────────────────────────────
# DB connections
# ──────────────────────────────────────────────────────────────

# Cache DB (rw): SQLite, local to the instance
_cache_conn = connect_sqlite(settings.cache_db_path)
ensure_schema(_cache_conn)

# One cache per process; it owns the single-flight refresh lock.
_disaster_cache = DisasterCache(store=DisasterStore(_cache_conn))

# ──────────────────────────────────────────────────────────────
# Dependency providers
# ──────────────────────────────────────────────────────────────

def provide_disaster_cache() -> DisasterCache:
    return _disaster_cache


# ──────────────────────────────────────────────────────────────
# Dependency overrides
# ──────────────────────────────────────────────────────────────

from app.api import disasters as disasters_api

app.dependency_overrides[disasters_api.get_disaster_cache] = provide_disaster_cache

# Routes
app.include_router(api_router)

# ──────────────────────────────────────────────────────────────
# Shutdown
# ──────────────────────────────────────────────────────────────

@app.on_event("shutdown")
def shutdown():
    logger.info("[app] Shutting down, closing connections")
    try:
        _cache_conn.close()
    except Exception as e:
        logger.warning(f"[app] Error closing cache DB: {e}")
