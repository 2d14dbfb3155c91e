#!/usr/bin/env python3
"""
scripts/refresh_disasters.py

Refresh the local disaster cache (NWS alerts + USGS earthquakes) outside of
the request path, e.g. to warm a fresh instance before it takes traffic.

Behavior:
  - default:   refresh only if the cache is older than the TTL
  - --force:   refresh regardless of age
  - --status:  print cache metadata and per-source counts, no fetch
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from app.core.settings import settings
from app.core.storage import DisasterStore, connect_sqlite, ensure_schema
from app.services.disasters import DisasterCache


def _print_status(cache: DisasterCache) -> None:
    st = cache.status()
    print(f"last_fetch:   {st.last_fetch or 'never'}")
    print(f"age_s:        {st.age_s if st.age_s is not None else '-'}")
    print(f"ttl_s:        {st.ttl_s}")
    print(f"stale:        {st.stale}")
    print(f"records:      {st.record_count}")
    for src, n in st.sources.items():
        print(f"  {src:<10} {n}")


async def _run(args: argparse.Namespace) -> int:
    conn = connect_sqlite(args.db)
    try:
        ensure_schema(conn)
        cache = DisasterCache(store=DisasterStore(conn))

        if args.status:
            _print_status(cache)
            return 0

        if args.force:
            outcome = await cache.refresh()
        else:
            outcome = await cache.ensure_fresh()

        if outcome is None:
            print("Cache is fresh, nothing to do.")
        elif outcome.replaced:
            print(f"Cached {outcome.total} disasters (nws={outcome.nws}, usgs={outcome.usgs}).")
        else:
            print("Both feeds returned nothing, kept previous snapshot.")
        _print_status(cache)
        return 0
    finally:
        conn.close()


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Refresh the disaster cache from NWS + USGS.")
    ap.add_argument("--db", default=settings.cache_db_path, help="SQLite cache path")
    ap.add_argument("--force", action="store_true", help="Refresh even if the cache is fresh")
    ap.add_argument("--status", action="store_true", help="Only print cache status")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
