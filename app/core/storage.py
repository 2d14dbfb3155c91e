from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import orjson

from app.core.contracts import DisasterRecord
from app.core.time import from_epoch


# ──────────────────────────────────────────────────────────────
# Connections
# ──────────────────────────────────────────────────────────────

def connect_sqlite(path: str) -> sqlite3.Connection:
    """
    Open a RW SQLite connection with sane pragmas.

    IMPORTANT:
    - SQLite will NOT create parent directories.
    - WAL mode requires the directory to be writable (creates -wal/-shm).
    """
    if path != ":memory:":
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(path, check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


# ──────────────────────────────────────────────────────────────
# Schema
# ──────────────────────────────────────────────────────────────

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS disasters (
  id           TEXT PRIMARY KEY,      -- '{source}-{providerId}'
  source       TEXT NOT NULL,         -- 'nws'|'usgs'
  type         TEXT NOT NULL,
  title        TEXT NOT NULL,
  description  TEXT NOT NULL,
  instructions TEXT,
  severity     TEXT NOT NULL,
  start_ts     REAL NOT NULL,         -- epoch seconds, UTC
  end_ts       REAL NOT NULL,
  state        TEXT NOT NULL,
  area_desc    TEXT NOT NULL,
  lat          REAL NOT NULL,
  lng          REAL NOT NULL,
  url          TEXT NOT NULL,
  raw_json     BLOB NOT NULL,         -- orjson dump, audit only
  fetched_ts   REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_disasters_source ON disasters(source);
CREATE INDEX IF NOT EXISTS idx_disasters_type ON disasters(type);
CREATE INDEX IF NOT EXISTS idx_disasters_state ON disasters(state);
CREATE INDEX IF NOT EXISTS idx_disasters_severity ON disasters(severity);
CREATE INDEX IF NOT EXISTS idx_disasters_start_ts ON disasters(start_ts);

CREATE TABLE IF NOT EXISTS cache_metadata (
  key        TEXT PRIMARY KEY,
  last_fetch REAL NOT NULL            -- epoch seconds, UTC
);
"""


def ensure_schema(conn: sqlite3.Connection) -> None:
    DisasterStore(conn).ensure_schema()


# ──────────────────────────────────────────────────────────────
# Disaster store
# ──────────────────────────────────────────────────────────────

_CACHE_KEY = "disasters"

_COLUMNS = (
    "id, source, type, title, description, instructions, severity, "
    "start_ts, end_ts, state, area_desc, lat, lng, url, raw_json, fetched_ts"
)


def _in_clause(column: str, values: Optional[Sequence[str]], where: List[str], params: List[Any]) -> None:
    if not values:
        return
    where.append(f"{column} IN ({','.join('?' for _ in values)})")
    params.extend(values)


def _row_to_record(row: tuple) -> DisasterRecord:
    return DisasterRecord(
        id=row[0],
        source=row[1],
        type=row[2],
        title=row[3],
        description=row[4],
        instructions=row[5],
        severity=row[6],
        start_time=from_epoch(row[7]),
        end_time=from_epoch(row[8]),
        state=row[9],
        area_desc=row[10],
        lat=float(row[11]),
        lng=float(row[12]),
        url=row[13],
        raw=orjson.loads(row[14]),
        fetched_at=from_epoch(row[15]),
    )


class DisasterStore:
    """
    SQLite-backed snapshot of normalized disaster records plus a single
    metadata row holding the last refresh attempt.

    Writers go through replace_all() only: the snapshot is swapped in one
    transaction, so a reader sees either the old set or the new set.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def ensure_schema(self) -> None:
        self.conn.executescript(_SCHEMA_SQL)
        self.conn.commit()

    # ──────────────────────────────────────────────────────────────
    # Metadata
    # ──────────────────────────────────────────────────────────────

    def get_last_fetch(self) -> Optional[float]:
        cur = self.conn.execute("SELECT last_fetch FROM cache_metadata WHERE key=?;", (_CACHE_KEY,))
        row = cur.fetchone()
        if not row:
            return None
        return float(row[0])

    def touch_last_fetch(self, ts: float) -> None:
        self.conn.execute(
            """
            INSERT INTO cache_metadata (key, last_fetch) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET last_fetch=excluded.last_fetch
            """,
            (_CACHE_KEY, float(ts)),
        )
        self.conn.commit()

    # ──────────────────────────────────────────────────────────────
    # Atomic replace
    # ──────────────────────────────────────────────────────────────

    def replace_all(self, records: Sequence[DisasterRecord], *, fetched_ts: float) -> int:
        rows: list[tuple] = []
        for r in records:
            rows.append(
                (
                    r.id,
                    r.source,
                    r.type,
                    r.title,
                    r.description,
                    r.instructions,
                    r.severity,
                    r.start_time.timestamp(),
                    r.end_time.timestamp(),
                    r.state,
                    r.area_desc,
                    float(r.lat),
                    float(r.lng),
                    r.url,
                    orjson.dumps(r.raw),
                    float(fetched_ts),
                )
            )

        # sqlite3's context manager commits on success and rolls back on error,
        # so a failed insert (duplicate id included) leaves the previous snapshot intact.
        with self.conn:
            self.conn.execute("DELETE FROM disasters;")
            self.conn.executemany(
                f"INSERT INTO disasters ({_COLUMNS}) VALUES ({','.join('?' * 16)});",
                rows,
            )
            self.conn.execute(
                """
                INSERT INTO cache_metadata (key, last_fetch) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET last_fetch=excluded.last_fetch
                """,
                (_CACHE_KEY, float(fetched_ts)),
            )
        return len(rows)

    # ──────────────────────────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────────────────────────

    def all(self) -> List[DisasterRecord]:
        cur = self.conn.execute(f"SELECT {_COLUMNS} FROM disasters ORDER BY start_ts DESC;")
        return [_row_to_record(row) for row in cur.fetchall()]

    def count(self) -> int:
        cur = self.conn.execute("SELECT COUNT(*) FROM disasters;")
        row = cur.fetchone()
        return int(row[0]) if row else 0

    def _where(
        self,
        *,
        sources: Optional[Sequence[str]],
        types: Optional[Sequence[str]],
        states: Optional[Sequence[str]],
        severities: Optional[Sequence[str]],
        start_gte: Optional[float],
        start_lte: Optional[float],
    ) -> Tuple[str, List[Any]]:
        where: List[str] = []
        params: List[Any] = []
        _in_clause("source", sources, where, params)
        _in_clause("type", types, where, params)
        _in_clause("state", states, where, params)
        _in_clause("severity", severities, where, params)
        if start_gte is not None:
            where.append("start_ts >= ?")
            params.append(float(start_gte))
        if start_lte is not None:
            where.append("start_ts <= ?")
            params.append(float(start_lte))
        sql = (" WHERE " + " AND ".join(where)) if where else ""
        return sql, params

    def source_counts(self, **filters: Any) -> Dict[str, int]:
        where_sql, params = self._where(**self._filter_kwargs(filters))
        cur = self.conn.execute(
            f"SELECT source, COUNT(*) FROM disasters{where_sql} GROUP BY source;",
            params,
        )
        return {str(src): int(n) for src, n in cur.fetchall()}

    def query(self, *, limit: int, **filters: Any) -> List[DisasterRecord]:
        where_sql, params = self._where(**self._filter_kwargs(filters))
        cur = self.conn.execute(
            f"SELECT {_COLUMNS} FROM disasters{where_sql} ORDER BY start_ts DESC, id ASC LIMIT ?;",
            [*params, int(limit)],
        )
        return [_row_to_record(row) for row in cur.fetchall()]

    @staticmethod
    def _filter_kwargs(filters: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "sources": filters.get("sources"),
            "types": filters.get("types"),
            "states": filters.get("states"),
            "severities": filters.get("severities"),
            "start_gte": filters.get("start_gte"),
            "start_lte": filters.get("start_lte"),
        }
