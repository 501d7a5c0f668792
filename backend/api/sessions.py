from __future__ import annotations

import threading

from engine.duckdb_common import bounded_cache_put
from engine.types import SubmissionStore
from reports.categories import CategoryCatalog
from viewport.config import ViewportSettings
from viewport.coordinator import ViewportCoordinator

DEFAULT_SESSION_ID = "anonymous"
MAX_SESSIONS = 256


class SessionRegistry:
    """
    One viewport coordinator per client session, oldest evicted first.
    """

    def __init__(
        self,
        store: SubmissionStore,
        settings: ViewportSettings,
        *,
        catalog: CategoryCatalog | None = None,
        max_sessions: int = MAX_SESSIONS,
    ):
        self.store = store
        self.settings = settings
        self.catalog = catalog
        self.max_sessions = max_sessions
        self._lock = threading.Lock()
        self._sessions: dict[str, ViewportCoordinator] = {}

    def get(self, session_id: str | None) -> ViewportCoordinator:
        sid = (session_id or "").strip() or DEFAULT_SESSION_ID
        with self._lock:
            coordinator = self._sessions.get(sid)
            if coordinator is None:
                coordinator = ViewportCoordinator(
                    self.store, self.settings, catalog=self.catalog, session_id=sid
                )
                bounded_cache_put(self._sessions, sid, coordinator, max_items=self.max_sessions)
            return coordinator

    def peek(self, session_id: str | None) -> ViewportCoordinator | None:
        sid = (session_id or "").strip() or DEFAULT_SESSION_ID
        with self._lock:
            return self._sessions.get(sid)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
