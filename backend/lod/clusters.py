from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Sequence

from geo.coords import Coordinate
from geo.distance import haversine_km
from reports.categories import CategoryCatalog, default_catalog
from reports.types import Mode, Submission
from reports.validation import require_valid_batch


@dataclass
class CategoryTally:
    complaint: int = 0
    compliment: int = 0

    def add(self, mode: Mode) -> None:
        if mode == Mode.complaint:
            self.complaint += 1
        else:
            self.compliment += 1

    def total(self) -> int:
        return self.complaint + self.compliment

    def as_dict(self) -> dict[str, int]:
        return {"complaint": self.complaint, "compliment": self.compliment}


def _empty_modes() -> dict[Mode, int]:
    return {Mode.complaint: 0, Mode.compliment: 0}


@dataclass
class Cluster:
    """
    Submissions grouped around a seed record, with per-mode and per-category
    tallies. Rebuilt from scratch on every clustering pass.
    """

    id: str
    center: Coordinate
    members: list[Submission] = field(default_factory=list)
    count: int = 0
    modes: dict[Mode, int] = field(default_factory=_empty_modes)
    categories: dict[str, CategoryTally] = field(default_factory=dict)

    # Running sums for the centroid.
    _lat_sum: float = field(default=0.0, repr=False)
    _lon_sum: float = field(default=0.0, repr=False)

    def add(self, submission: Submission, category_ids: Sequence[str]) -> None:
        self.members.append(submission)
        self.count = len(self.members)
        self._lat_sum += submission.location.latitude
        self._lon_sum += submission.location.longitude
        self.center = Coordinate(
            latitude=self._lat_sum / self.count,
            longitude=self._lon_sum / self.count,
        )
        self.modes[submission.mode] = self.modes.get(submission.mode, 0) + 1
        for category_id in category_ids:
            self.categories.setdefault(category_id, CategoryTally()).add(submission.mode)

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "center": self.center.as_dict(),
            "count": self.count,
            "modes": {m.value: n for m, n in self.modes.items()},
            "categories": {cid: t.as_dict() for cid, t in sorted(self.categories.items())},
            "submissionIds": [s.id for s in self.members],
        }


def cluster_submissions(
    submissions: Sequence[Submission],
    threshold_km: float,
    *,
    catalog: CategoryCatalog | None = None,
) -> list[Cluster]:
    """
    Greedy, seed-based proximity clustering.

    Records are visited in input order. Each unassigned record seeds a cluster
    and absorbs every later unassigned record within `threshold_km` of the seed
    (not of the moving centroid). O(n^2) distance checks; the result depends on
    input order when chains of points are longer than the threshold.

    Raises InvalidSubmissionError (for the whole batch) if any record has a
    missing or malformed location.
    """
    items = tuple(submissions)
    if not items:
        return []
    threshold = float(threshold_km)
    if math.isnan(threshold) or threshold < 0:
        raise ValueError(f"threshold_km must be >= 0, got {threshold_km!r}")
    require_valid_batch(items)

    cat = catalog or default_catalog()
    category_ids = [cat.canonical_ids(s.selected_slot_ids()) for s in items]

    assigned = [False] * len(items)
    out: list[Cluster] = []
    for i, seed in enumerate(items):
        if assigned[i]:
            continue
        assigned[i] = True
        cluster = Cluster(id=f"cluster-{i}", center=seed.location)
        cluster.add(seed, category_ids[i])

        # Everything before `i` is already assigned.
        for j in range(i + 1, len(items)):
            if assigned[j]:
                continue
            if haversine_km(seed.location, items[j].location) <= threshold:
                assigned[j] = True
                cluster.add(items[j], category_ids[j])
        out.append(cluster)
    return out
