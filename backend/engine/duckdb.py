from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import duckdb
import structlog

from engine.duckdb_common import duckdb_path, duckdb_threads
from engine.sql import (
    CREATE_INDEXES_SQL,
    CREATE_SUBMISSIONS_TABLE_SQL,
    HISTORY_FOR_SUBMITTER_SQL,
    INSERT_SUBMISSION_SQL,
    QUERY_RANGE_SQL,
)
from engine.types import RangeQuery, StoreUnavailableError, SubmissionStore
from geo.coords import Coordinate
from reports.types import Mode, Submission

log = structlog.get_logger(__name__)


def _to_ms(ts: datetime) -> int:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return int(ts.timestamp() * 1000)


def _from_ms(ms: int) -> datetime:
    return datetime.fromtimestamp(int(ms) / 1000.0, tz=timezone.utc)


def _connect(path: str, *, threads: int) -> duckdb.DuckDBPyConnection:
    if path != ":memory:":
        p = Path(path)
        if p.parent and str(p.parent) not in {".", ""}:
            p.parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(database=path, read_only=False, config={"threads": int(threads)})


def _decode_row(row: tuple) -> Submission | None:
    sid, mode, lat, lon, slots_json, address, created_ms, submitter_id, spatial_key = row
    if lat is None or lon is None:
        log.warning("store_row_skipped", id=sid, reason="missing_location")
        return None
    try:
        mode_v = Mode(mode)
    except ValueError:
        log.warning("store_row_skipped", id=sid, reason="unknown_mode", mode=mode)
        return None
    try:
        slots = json.loads(slots_json) if slots_json else {}
    except json.JSONDecodeError:
        log.warning("store_row_skipped", id=sid, reason="bad_slots_json")
        return None
    return Submission(
        id=str(sid),
        mode=mode_v,
        location=Coordinate(latitude=float(lat), longitude=float(lon)),
        selected_slots={str(k): bool(v) for k, v in dict(slots).items()},
        address=address or "",
        created_at=_from_ms(created_ms),
        submitter_id=str(submitter_id),
        spatial_key=str(spatial_key),
    )


def _decode_rows(rows: list[tuple]) -> list[Submission]:
    out: list[Submission] = []
    for row in rows:
        s = _decode_row(row)
        if s is not None:
            out.append(s)
    return out


class DuckDBSubmissionStore(SubmissionStore):
    """
    DuckDB-backed submission table.

    The schema is created lazily on first use. Each calling thread gets its own
    cursor on a shared base connection, so `asyncio.to_thread` callers never
    share a cursor.
    """

    def __init__(self, *, path: str | None = None, threads: int | None = None):
        self.path = path or duckdb_path()
        self.threads = threads or duckdb_threads()
        self._init_lock = threading.RLock()
        self._base: duckdb.DuckDBPyConnection | None = None
        self._local = threading.local()

    def ensure_initialized(self) -> None:
        if self._base is not None:
            return
        with self._init_lock:
            if self._base is not None:
                return
            with self._guard("init"):
                conn = _connect(self.path, threads=self.threads)
                conn.execute(CREATE_SUBMISSIONS_TABLE_SQL)
                for stmt in CREATE_INDEXES_SQL:
                    conn.execute(stmt)
                self._base = conn

    def _conn(self) -> duckdb.DuckDBPyConnection:
        self.ensure_initialized()
        c = getattr(self._local, "conn", None)
        if c is None:
            base = self._base
            if base is None:
                raise StoreUnavailableError("submission store is closed")
            c = base.cursor()
            self._local.conn = c
        return c

    @contextmanager
    def _guard(self, op: str) -> Iterator[None]:
        try:
            yield
        except (duckdb.Error, OSError) as e:
            log.error("store_error", op=op, path=self.path, error=str(e))
            raise StoreUnavailableError(f"submission store {op} failed: {e}") from e

    def insert(self, submission: Submission) -> None:
        with self._guard("insert"):
            self._conn().execute(
                INSERT_SUBMISSION_SQL,
                [
                    submission.id,
                    submission.mode.value,
                    float(submission.location.latitude),
                    float(submission.location.longitude),
                    json.dumps(submission.selected_slots, ensure_ascii=False),
                    submission.address,
                    _to_ms(submission.created_at),
                    submission.submitter_id,
                    submission.spatial_key,
                ],
            )

    def query_range(self, query: RangeQuery) -> list[Submission]:
        with self._guard("query_range"):
            rows = (
                self._conn()
                .execute(
                    QUERY_RANGE_SQL,
                    [
                        query.key_range.min,
                        query.key_range.max,
                        _to_ms(query.since),
                        max(0, int(query.limit)),
                    ],
                )
                .fetchall()
            )
        return _decode_rows(rows)

    def history_for_submitter(self, submitter_id: str) -> list[Submission]:
        with self._guard("history"):
            rows = self._conn().execute(HISTORY_FOR_SUBMITTER_SQL, [submitter_id]).fetchall()
        return _decode_rows(rows)

    def close(self) -> None:
        with self._init_lock:
            if self._base is not None:
                try:
                    self._base.close()
                except duckdb.Error:
                    pass
                self._base = None
            self._local = threading.local()
