from __future__ import annotations

import json
import queue
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import duckdb
import structlog

from telemetry.sql import CREATE_EVENTS_TABLE_SQL, INSERT_EVENTS_SQL, SUMMARY_SQL_TEMPLATE

log = structlog.get_logger(__name__)

_BATCH_SIZE = 250
_BATCH_AGE_S = 0.5
_POLL_S = 0.1
_MAX_PENDING = 10_000


def _opt_float(v: Any) -> float | None:
    if v is None:
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class QueryEvent:
    """
    One executed viewport query (or any other timed endpoint call).
    """

    ts_ms: int
    endpoint: str
    session_id: str | None
    generation: int
    status: str
    viewport: tuple[float | None, float | None, float | None, float | None]
    stats_json: str

    @classmethod
    def build(
        cls,
        *,
        endpoint: str,
        session_id: str | None,
        generation: int,
        status: str,
        viewport: dict[str, float] | None,
        stats: dict[str, Any],
    ) -> "QueryEvent":
        vp = viewport or {}
        return cls(
            ts_ms=int(time.time() * 1000),
            endpoint=str(endpoint),
            session_id=session_id,
            generation=int(generation),
            status=str(status),
            viewport=(
                _opt_float(vp.get("minLon")),
                _opt_float(vp.get("minLat")),
                _opt_float(vp.get("maxLon")),
                _opt_float(vp.get("maxLat")),
            ),
            stats_json=json.dumps(stats, ensure_ascii=False),
        )

    def as_row(self) -> tuple:
        return (
            self.ts_ms,
            self.endpoint,
            self.session_id,
            self.generation,
            self.status,
            *self.viewport,
            self.stats_json,
        )


@dataclass
class TelemetryStore:
    """
    Append-only DuckDB log of query events.

    `record()` only enqueues; a single writer thread owns all inserts and
    batches them by size or age.
    """

    path: Path
    conn: duckdb.DuckDBPyConnection
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    _pending: "queue.Queue[QueryEvent]" = field(
        default_factory=lambda: queue.Queue(maxsize=_MAX_PENDING), repr=False
    )
    _stopping: threading.Event = field(default_factory=threading.Event, repr=False)
    _writer: threading.Thread | None = field(default=None, repr=False)

    def ensure_schema(self) -> None:
        with self._lock:
            self.conn.execute(CREATE_EVENTS_TABLE_SQL)

    def start(self) -> None:
        if self._writer is not None:
            return
        self._stopping.clear()
        self._writer = threading.Thread(target=self._drain_forever, name="telemetry-writer", daemon=True)
        self._writer.start()

    def stop(self, *, timeout_s: float = 2.0) -> None:
        self._stopping.set()
        writer, self._writer = self._writer, None
        if writer is not None and writer.is_alive():
            writer.join(timeout=timeout_s)

    def record(self, **kwargs: Any) -> None:
        """
        Enqueue an event; see `QueryEvent.build` for the accepted fields.
        """
        event = QueryEvent.build(**kwargs)
        self.start()
        try:
            self._pending.put_nowait(event)
        except queue.Full:
            log.warning("telemetry_dropped", endpoint=event.endpoint)

    def flush(self, *, timeout_s: float = 2.0) -> None:
        """
        Block until everything recorded so far is visible to readers (tests, /telemetry).
        """
        if self._writer is None:
            return
        deadline = time.monotonic() + timeout_s
        while self._pending.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.01)

    def query(self, sql: str, params: list[Any] | None = None) -> list[tuple]:
        with self._lock:
            cur = self.conn.execute(sql, params) if params else self.conn.execute(sql)
            return cur.fetchall()

    def summary(self, *, endpoint: str | None = None, since_ms: int | None = None) -> list[dict[str, Any]]:
        filters: list[tuple[str, Any]] = []
        if endpoint:
            filters.append(("endpoint = ?", endpoint))
        if since_ms is not None:
            filters.append(("ts_ms >= ?", int(since_ms)))
        where_sql = ("WHERE " + " AND ".join(f for f, _ in filters)) if filters else ""

        keys = ("n", "avgTotalMs", "p50TotalMs", "p95TotalMs", "avgFetched", "avgClusters")
        out: list[dict[str, Any]] = []
        for endpoint_v, status_v, n, *metrics in self.query(
            SUMMARY_SQL_TEMPLATE.format(where_sql=where_sql), [v for _, v in filters]
        ):
            row: dict[str, Any] = {"endpoint": endpoint_v, "status": status_v}
            row.update(zip(keys, [int(n), *(_opt_float(m) for m in metrics)]))
            out.append(row)
        return out

    def reset(self) -> None:
        self.stop(timeout_s=2.0)
        with self._lock:
            try:
                self.conn.close()
            except duckdb.Error as e:
                log.warning("telemetry_close_failed", error=str(e))
            self.path.unlink(missing_ok=True)

    def _write(self, events: list[QueryEvent]) -> None:
        with self._lock:
            self.conn.executemany(INSERT_EVENTS_SQL, [e.as_row() for e in events])
            self.conn.execute("CHECKPOINT;")

    def _commit(self, events: list[QueryEvent]) -> None:
        if not events:
            return
        try:
            self._write(events)
        except duckdb.Error as e:
            log.warning("telemetry_write_failed", events=len(events), error=str(e))
        finally:
            # Only now count them as done, so `flush()` waits for the insert.
            for _ in events:
                self._pending.task_done()

    def _drain_forever(self) -> None:
        self.ensure_schema()
        batch: list[QueryEvent] = []
        oldest = 0.0
        while not self._stopping.is_set():
            try:
                event = self._pending.get(timeout=_POLL_S)
            except queue.Empty:
                event = None
            if event is not None:
                if not batch:
                    oldest = time.monotonic()
                batch.append(event)
            # An empty queue means the burst is over: write right away.
            idle = self._pending.empty()
            if batch and (len(batch) >= _BATCH_SIZE or idle or time.monotonic() - oldest >= _BATCH_AGE_S):
                self._commit(batch)
                batch = []

        while True:
            try:
                batch.append(self._pending.get_nowait())
            except queue.Empty:
                break
        self._commit(batch)
