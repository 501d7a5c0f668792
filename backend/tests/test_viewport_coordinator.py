from __future__ import annotations

import asyncio
import threading
import time
from datetime import timedelta

from conftest import NOW
from engine.duckdb import DuckDBSubmissionStore
from engine.in_memory import InMemorySubmissionStore
from engine.types import RangeQuery, StoreUnavailableError
from geo.aoi import BBox
from geo.geohash import cell_bbox, encode
from reports.types import Mode
from viewport.config import ViewportSettings
from viewport.coordinator import ConnectivityStatus, ViewportCoordinator

BANGALORE = BBox(min_lon=77.593, min_lat=12.970, max_lon=77.596, max_lat=12.973)
ELSEWHERE = BBox(min_lon=77.700, min_lat=13.100, max_lon=77.703, max_lat=13.103)


class RecordingStore(InMemorySubmissionStore):
    def __init__(self, submissions=None):
        super().__init__(submissions)
        self.queries: list[RangeQuery] = []
        self.fail = False

    def query_range(self, query: RangeQuery):
        self.queries.append(query)
        if self.fail:
            raise StoreUnavailableError("offline")
        return super().query_range(query)


def _coordinator(store, **overrides) -> ViewportCoordinator:
    settings = ViewportSettings(**{"debounce_ms": 0, **overrides})
    return ViewportCoordinator(store, settings, clock=lambda: NOW)


def test_calls_within_debounce_window_run_one_query_with_latest_params(make_submission):
    store = RecordingStore([make_submission(12.9715, 77.5945), make_submission(13.1015, 77.7015)])
    coordinator = _coordinator(store, debounce_ms=80)

    async def run():
        first = asyncio.create_task(coordinator.on_viewport_change(BANGALORE))
        await asyncio.sleep(0.01)
        second = asyncio.create_task(coordinator.on_viewport_change(ELSEWHERE))
        return await asyncio.gather(first, second)

    superseded, latest = asyncio.run(run())

    assert len(store.queries) == 1
    assert store.queries[0].key_range.contains(encode(ELSEWHERE.center, 9))
    assert superseded.status == ConnectivityStatus.idle
    assert latest.status == ConnectivityStatus.ok
    assert latest.viewport == ELSEWHERE
    assert latest.generation == 2
    assert coordinator.snapshot is latest


def test_results_are_clustered_and_published(make_submission):
    store = RecordingStore(
        [
            make_submission(12.9715, 77.5945, "tile2"),
            make_submission(12.97151, 77.59451, "tile1", mode=Mode.compliment),
        ]
    )
    coordinator = _coordinator(store)
    seen = []
    unsubscribe = coordinator.subscribe(seen.append)

    result = asyncio.run(coordinator.on_viewport_change(BANGALORE))

    assert result.status == ConnectivityStatus.ok
    assert [c.count for c in result.clusters] == [2]
    assert seen == [result]
    assert result.as_dict()["clusters"][0]["modes"] == {"Complaint": 1, "Compliment": 1}

    unsubscribe()
    asyncio.run(coordinator.refresh())
    assert len(seen) == 1


def test_query_applies_retention_window_and_row_limit(make_submission):
    fresh = [make_submission(12.9715, 77.5945 + i * 0.0001) for i in range(5)]
    stale = make_submission(12.9715, 77.5945, created_at=NOW - timedelta(days=91))
    store = RecordingStore(fresh + [stale])

    result = asyncio.run(_coordinator(store, max_rows=3).on_viewport_change(BANGALORE))

    (query,) = store.queries
    assert query.since == NOW - timedelta(days=90)
    assert query.limit == 3
    assert result.fetched == 3
    assert stale.id not in {s.id for c in result.clusters for s in c.members}


def test_rows_outside_the_viewport_are_dropped(make_submission):
    prefix = encode(BANGALORE.center, 6)
    cell = cell_bbox(prefix)
    # A point in the queried cell but east or west of the viewport.
    if cell.max_lon > BANGALORE.max_lon + 1e-6:
        lon = (cell.max_lon + BANGALORE.max_lon) / 2.0
    else:
        lon = (cell.min_lon + BANGALORE.min_lon) / 2.0
    outside = make_submission(BANGALORE.center.latitude, lon)
    inside = make_submission(12.9715, 77.5945)
    assert encode(outside.location, 9).startswith(prefix)

    result = asyncio.run(_coordinator(RecordingStore([inside, outside])).on_viewport_change(BANGALORE))

    assert result.fetched == 2
    assert result.kept == 1
    assert [s.id for c in result.clusters for s in c.members] == [inside.id]


def test_tiled_viewport_finds_points_in_every_corner(make_submission):
    corners = [
        make_submission(12.9701, 77.5931),
        make_submission(12.9729, 77.5931),
        make_submission(12.9701, 77.5959),
        make_submission(12.9729, 77.5959),
    ]
    store = RecordingStore(corners)

    result = asyncio.run(_coordinator(store, tile_viewport=True).on_viewport_change(BANGALORE))

    assert result.kept == 4
    assert len(store.queries) >= 1


def test_store_failure_is_degraded_and_keeps_previous_clusters(make_submission):
    store = RecordingStore([make_submission(12.9715, 77.5945)])
    coordinator = _coordinator(store)

    ok = asyncio.run(coordinator.on_viewport_change(BANGALORE))
    store.fail = True
    degraded = asyncio.run(coordinator.on_viewport_change(BANGALORE))

    assert ok.status == ConnectivityStatus.ok
    assert degraded.status == ConnectivityStatus.degraded
    assert degraded.error == "offline"
    assert degraded.clusters == ok.clusters
    assert degraded.generation == 2


def test_empty_viewport_is_ok_not_degraded():
    result = asyncio.run(_coordinator(RecordingStore()).on_viewport_change(BANGALORE))
    assert result.status == ConnectivityStatus.ok
    assert result.clusters == ()


class GatedStore(RecordingStore):
    """Blocks the first query until released."""

    def __init__(self, submissions=None):
        super().__init__(submissions)
        self.started = threading.Event()
        self.release = threading.Event()

    def query_range(self, query: RangeQuery):
        if not self.started.is_set():
            self.started.set()
            self.release.wait(timeout=5.0)
        return super().query_range(query)


def test_late_result_of_an_older_generation_is_discarded(make_submission):
    store = GatedStore([make_submission(12.9715, 77.5945)])
    coordinator = _coordinator(store)
    published = []
    coordinator.subscribe(published.append)

    async def run():
        slow = asyncio.create_task(coordinator.on_viewport_change(BANGALORE))
        while not store.started.is_set():
            await asyncio.sleep(0.005)
        assert coordinator.query_in_flight
        fresh = await coordinator.refresh()
        store.release.set()
        stale = await slow
        return fresh, stale

    fresh, stale = asyncio.run(run())

    assert fresh.generation == 2
    assert stale is fresh
    assert [r.generation for r in published] == [2]
    assert not coordinator.query_in_flight


def test_refresh_without_viewport_is_a_no_op():
    store = RecordingStore()
    coordinator = _coordinator(store)
    result = asyncio.run(coordinator.refresh())
    assert result.status == ConnectivityStatus.idle
    assert store.queries == []


def test_unopenable_duckdb_store_degrades_instead_of_raising(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    store = DuckDBSubmissionStore(path=str(blocker / "sub" / "terra.duckdb"), threads=1)

    result = asyncio.run(_coordinator(store).on_viewport_change(BANGALORE))

    assert result.status == ConnectivityStatus.degraded
    assert result.clusters == ()
    assert result.error


class SlowStore(RecordingStore):
    """Each query takes a while; tracks how many run at once."""

    def __init__(self, submissions=None, delay_s: float = 0.15):
        super().__init__(submissions)
        self.delay_s = delay_s
        self.active = 0
        self.peak = 0
        self._count_lock = threading.Lock()

    def query_range(self, query: RangeQuery):
        with self._count_lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(self.delay_s)
            return super().query_range(query)
        finally:
            with self._count_lock:
                self.active -= 1


def test_viewport_change_during_a_running_query_waits_for_it(make_submission):
    store = SlowStore([make_submission(12.9715, 77.5945), make_submission(13.1015, 77.7015)])
    coordinator = _coordinator(store, debounce_ms=20)

    async def run():
        first = asyncio.create_task(coordinator.on_viewport_change(BANGALORE))
        while not store.peak:
            await asyncio.sleep(0.005)
        second = asyncio.create_task(coordinator.on_viewport_change(ELSEWHERE))
        return await asyncio.gather(first, second)

    first, second = asyncio.run(run())

    assert store.peak == 1
    assert len(store.queries) == 2
    assert first.generation == 1
    assert second.generation == 2
    assert coordinator.snapshot.viewport == ELSEWHERE
    assert [c.count for c in coordinator.snapshot.clusters] == [1]
