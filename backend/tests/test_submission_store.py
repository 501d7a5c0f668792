from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import NOW
from engine.duckdb import DuckDBSubmissionStore
from engine.in_memory import InMemorySubmissionStore
from engine.types import RangeQuery, StoreUnavailableError
from geo.geohash import SpatialKeyRange
from reports.types import Mode


@pytest.fixture(params=["in_memory", "duckdb"])
def store(request, tmp_path):
    if request.param == "duckdb":
        s = DuckDBSubmissionStore(path=str(tmp_path / "terra.duckdb"), threads=1)
        yield s
        s.close()
    else:
        yield InMemorySubmissionStore()


def _all(since=NOW - timedelta(days=365), limit=100) -> RangeQuery:
    return RangeQuery(key_range=SpatialKeyRange.for_prefix(""), since=since, limit=limit)


def test_insert_and_read_back(store, make_submission):
    s = make_submission(12.9716, 77.5946, "tile1", "tile3", mode=Mode.compliment)
    store.insert(s)

    (got,) = store.query_range(_all())
    assert got == s


def test_range_scan_filters_by_prefix_and_orders_newest_first_within_key(store, make_submission):
    older = make_submission(12.9716, 77.5946, created_at=NOW - timedelta(hours=2))
    newer = make_submission(12.9716, 77.5946, created_at=NOW)
    far = make_submission(-33.8688, 151.2093)
    for s in (older, far, newer):
        store.insert(s)

    prefix = older.spatial_key[:5]
    rows = store.query_range(
        RangeQuery(key_range=SpatialKeyRange.for_prefix(prefix), since=NOW - timedelta(days=1), limit=10)
    )
    assert [r.id for r in rows] == [newer.id, older.id]


def test_range_scan_applies_since_and_limit(store, make_submission):
    for i in range(4):
        store.insert(make_submission(10.0, 10.0 + i * 0.01, created_at=NOW - timedelta(days=i * 40)))

    assert len(store.query_range(_all(since=NOW - timedelta(days=90)))) == 3
    assert len(store.query_range(_all(limit=2))) == 2
    assert store.query_range(_all(limit=0)) == []


def test_history_is_per_submitter(store, make_submission):
    mine = make_submission(0.0, 0.0, submitter_id="alice")
    store.insert(mine)
    store.insert(make_submission(0.0, 0.0, submitter_id="bob"))

    assert [s.id for s in store.history_for_submitter("alice")] == [mine.id]
    assert store.history_for_submitter("carol") == []


def test_duckdb_rows_without_location_are_skipped(tmp_path, make_submission):
    store = DuckDBSubmissionStore(path=str(tmp_path / "terra.duckdb"), threads=1)
    good = make_submission(1.0, 1.0)
    store.insert(good)
    store._conn().execute(
        "INSERT INTO submissions VALUES ('broken', 'Complaint', NULL, NULL, '{}', '', ?, 'user-1', ?)",
        [int(NOW.timestamp() * 1000), good.spatial_key],
    )

    assert [s.id for s in store.query_range(_all())] == [good.id]
    assert [s.id for s in store.history_for_submitter("user-1")] == [good.id]
    store.close()


def test_duckdb_failures_surface_as_store_unavailable(tmp_path, make_submission):
    # A directory cannot be opened as a database file.
    store = DuckDBSubmissionStore(path=str(tmp_path), threads=1)
    with pytest.raises(StoreUnavailableError):
        store.query_range(_all())
    with pytest.raises(StoreUnavailableError):
        store.insert(make_submission(0.0, 0.0))


def test_duckdb_duplicate_ids_are_rejected(tmp_path, make_submission):
    store = DuckDBSubmissionStore(path=str(tmp_path / "terra.duckdb"), threads=1)
    s = make_submission(0.0, 0.0)
    store.insert(s)
    with pytest.raises(StoreUnavailableError):
        store.insert(s)
    store.close()


def test_duckdb_unusable_parent_directory_is_store_unavailable(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    store = DuckDBSubmissionStore(path=str(blocker / "sub" / "terra.duckdb"), threads=1)

    with pytest.raises(StoreUnavailableError):
        store.query_range(_all())
    with pytest.raises(StoreUnavailableError):
        store.history_for_submitter("user-1")
