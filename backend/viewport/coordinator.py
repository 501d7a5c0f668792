from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

import structlog

from engine.types import RangeQuery, StoreUnavailableError, SubmissionStore
from geo.aoi import BBox
from geo.geohash import (
    SpatialKeyRange,
    covering_ranges,
    precision_for_viewport_radius,
    ranges_for_viewport,
)
from lod.clusters import Cluster, cluster_submissions
from reports.categories import CategoryCatalog
from reports.types import Submission
from telemetry.singleton import record_event
from viewport.config import ViewportSettings

log = structlog.get_logger(__name__)

_MIN_RESTART_S = 0.01


class ConnectivityStatus(str, Enum):
    idle = "idle"
    ok = "ok"
    degraded = "degraded"


@dataclass(frozen=True)
class ClusterSet:
    """
    What the map should currently render, plus how it was obtained.
    """

    clusters: tuple[Cluster, ...] = ()
    status: ConnectivityStatus = ConnectivityStatus.idle
    generation: int = 0
    viewport: BBox | None = None
    fetched: int = 0
    kept: int = 0
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "generation": self.generation,
            "viewport": self.viewport.as_dict() if self.viewport is not None else None,
            "fetched": self.fetched,
            "kept": self.kept,
            "error": self.error,
            "clusters": [c.as_dict() for c in self.clusters],
        }


Listener = Callable[[ClusterSet], None]


class ViewportCoordinator:
    """
    Turns a stream of viewport changes into published cluster sets.

    Every request gets a generation number. Debounced calls only query if they
    still hold the latest generation once the window expires, and a result is
    only published if no newer generation has been published before it.
    """

    def __init__(
        self,
        store: SubmissionStore,
        settings: ViewportSettings | None = None,
        *,
        catalog: CategoryCatalog | None = None,
        session_id: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.settings = settings or ViewportSettings.from_env()
        self.catalog = catalog
        self.session_id = session_id
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._generation = 0
        self._applied_generation = 0
        self._viewport: BBox | None = None
        self._in_flight = 0
        self._snapshot = ClusterSet()
        self._listeners: list[Listener] = []

    @property
    def snapshot(self) -> ClusterSet:
        return self._snapshot

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def query_in_flight(self) -> bool:
        return self._in_flight > 0

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def on_viewport_change(self, viewport: BBox) -> ClusterSet:
        """
        Debounced entry point for map pan/zoom events.

        Calls superseded within the debounce window return the current snapshot
        without touching the store.
        """
        vp = viewport.normalized()
        self._viewport = vp
        self._generation += 1
        generation = self._generation

        window = self.settings.debounce_s
        while True:
            await asyncio.sleep(window)
            if generation != self._generation:
                return self._snapshot
            if self._in_flight == 0:
                break
            # A query is still running: restart the window instead of overlapping it.
            window = max(self.settings.debounce_s, _MIN_RESTART_S)

        return await self._execute(vp, generation)

    async def refresh(self) -> ClusterSet:
        """
        Re-query the last viewport right away (e.g. after the user submitted).
        """
        if self._viewport is None:
            return self._snapshot
        self._generation += 1
        return await self._execute(self._viewport, self._generation)

    def ranges_for(self, viewport: BBox) -> list[SpatialKeyRange]:
        if self.settings.tile_viewport:
            precision = precision_for_viewport_radius(viewport.approx_radius_km())
            tiled = covering_ranges(viewport, precision, max_cells=self.settings.max_tiles)
            if tiled:
                return tiled
        return ranges_for_viewport(viewport.south_west, viewport.north_east)

    def _fetch(self, ranges: list[SpatialKeyRange], since: datetime) -> list[Submission]:
        limit = self.settings.max_rows
        if len(ranges) == 1:
            return self.store.query_range(RangeQuery(key_range=ranges[0], since=since, limit=limit))

        merged: dict[str, Submission] = {}
        for kr in ranges:
            for s in self.store.query_range(RangeQuery(key_range=kr, since=since, limit=limit)):
                merged.setdefault(s.id, s)
            if len(merged) >= limit:
                break
        return list(merged.values())[:limit]

    async def _execute(self, viewport: BBox, generation: int) -> ClusterSet:
        t0 = time.perf_counter()
        ranges = self.ranges_for(viewport)
        since = self._clock() - timedelta(days=self.settings.retention_days)

        self._in_flight += 1
        try:
            rows = await asyncio.to_thread(self._fetch, ranges, since)
        except StoreUnavailableError as e:
            log.warning(
                "viewport_degraded",
                generation=generation,
                session_id=self.session_id,
                error=str(e),
            )
            degraded = replace(
                self._snapshot,
                status=ConnectivityStatus.degraded,
                generation=generation,
                error=str(e),
            )
            return self._publish(
                degraded,
                viewport=viewport,
                stats={"ranges": len(ranges), "timingsMs": {"total": _ms_since(t0)}},
            )
        finally:
            self._in_flight -= 1
        t_fetch_ms = _ms_since(t0)

        # Key prefixes over-fetch around the cell edges; keep only what is in view.
        valid = [s for s in rows if s.location is not None and s.location.is_valid()]
        if len(valid) != len(rows):
            log.warning("viewport_rows_skipped", generation=generation, skipped=len(rows) - len(valid))
        kept = [s for s in valid if viewport.contains(s.location)]

        t1 = time.perf_counter()
        clusters = cluster_submissions(kept, self.settings.cluster_radius_km, catalog=self.catalog)
        t_cluster_ms = _ms_since(t1)

        result = ClusterSet(
            clusters=tuple(clusters),
            status=ConnectivityStatus.ok,
            generation=generation,
            viewport=viewport,
            fetched=len(rows),
            kept=len(kept),
        )
        log.info(
            "viewport_query",
            generation=generation,
            session_id=self.session_id,
            prefixes=[r.prefix for r in ranges],
            fetched=len(rows),
            kept=len(kept),
            clusters=len(clusters),
        )
        return self._publish(
            result,
            viewport=viewport,
            stats={
                "ranges": len(ranges),
                "fetched": len(rows),
                "kept": len(kept),
                "clusters": len(clusters),
                "timingsMs": {
                    "fetch": round(t_fetch_ms, 2),
                    "cluster": round(t_cluster_ms, 2),
                    "total": _ms_since(t0),
                },
            },
        )

    def _publish(self, candidate: ClusterSet, *, viewport: BBox, stats: dict[str, Any]) -> ClusterSet:
        if candidate.generation < self._applied_generation:
            log.info(
                "viewport_result_discarded",
                generation=candidate.generation,
                applied_generation=self._applied_generation,
            )
            return self._snapshot

        self._applied_generation = candidate.generation
        self._snapshot = candidate
        for listener in list(self._listeners):
            try:
                listener(candidate)
            except Exception:
                log.exception("cluster_listener_failed", generation=candidate.generation)

        record_event(
            endpoint="viewport",
            session_id=self.session_id,
            generation=candidate.generation,
            status=candidate.status.value,
            viewport=viewport.as_dict(),
            stats=stats,
        )
        return candidate


def _ms_since(t0: float) -> float:
    return round((time.perf_counter() - t0) * 1000.0, 2)
