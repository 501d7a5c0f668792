import os
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest


# Ensure `backend/` is on sys.path so tests can import local modules
# like `geo.*`, `viewport.*`, and `main`.
BACKEND_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_ROOT))

# Keep test runs from writing telemetry/store files into the repo.
os.environ.setdefault("TERRA_TELEMETRY", "0")
os.environ.setdefault("TERRA_DB_PATH", ":memory:")

from geo.coords import Coordinate  # noqa: E402
from geo.geohash import encode  # noqa: E402
from reports.types import Mode, Submission  # noqa: E402


NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_submission():
    counter = {"n": 0}

    def _make(
        lat: float,
        lon: float,
        *slots: str,
        mode: Mode = Mode.complaint,
        submitter_id: str = "user-1",
        created_at: datetime = NOW,
        id: str | None = None,
    ) -> Submission:
        counter["n"] += 1
        loc = Coordinate(latitude=lat, longitude=lon)
        return Submission(
            id=id or f"s{counter['n']}",
            mode=mode,
            location=loc,
            selected_slots={s: True for s in (slots or ("tile1",))},
            address="",
            created_at=created_at,
            submitter_id=submitter_id,
            spatial_key=encode(loc, 9),
        )

    return _make
