from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

import duckdb
import structlog

from telemetry.config import telemetry_enabled, telemetry_path
from telemetry.store import TelemetryStore

log = structlog.get_logger(__name__)

_STORE: TelemetryStore | None = None
_STORE_LOCK = threading.RLock()


def _open(path: Path) -> TelemetryStore:
    path.parent.mkdir(parents=True, exist_ok=True)
    store = TelemetryStore(path=path, conn=duckdb.connect(str(path)))
    store.ensure_schema()
    store.start()
    log.info("telemetry_opened", path=str(path))
    return store


def _close(store: TelemetryStore) -> None:
    store.stop(timeout_s=2.0)
    try:
        store.conn.close()
    except duckdb.Error as e:
        log.warning("telemetry_close_failed", error=str(e))


def get_store() -> TelemetryStore | None:
    """
    Process-wide telemetry store, or None when telemetry is switched off.

    The store follows `TERRA_TELEMETRY_PATH`: if the path changes between calls
    the old file is closed and the new one opened.
    """
    global _STORE
    if not telemetry_enabled():
        return None
    with _STORE_LOCK:
        path = telemetry_path()
        if _STORE is not None and _STORE.path.resolve() != path.resolve():
            _close(_STORE)
            _STORE = None
        if _STORE is None:
            _STORE = _open(path)
        return _STORE


def reset_store() -> None:
    """
    Close the store and delete its file.
    """
    global _STORE
    with _STORE_LOCK:
        store, _STORE = _STORE, None
        if store is not None:
            store.reset()
        else:
            telemetry_path().unlink(missing_ok=True)


def record_event(
    *,
    endpoint: str,
    session_id: str | None,
    generation: int,
    status: str,
    viewport: dict[str, float] | None,
    stats: dict[str, Any],
) -> None:
    # Telemetry problems are logged, never raised to the caller.
    try:
        store = get_store()
    except (duckdb.Error, OSError) as e:
        log.warning("telemetry_unavailable", error=str(e))
        return
    if store is None:
        return
    store.record(
        endpoint=endpoint,
        session_id=session_id,
        generation=generation,
        status=status,
        viewport=viewport,
        stats=stats,
    )
