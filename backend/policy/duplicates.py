from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from geo.coords import Coordinate
from geo.distance import haversine_km
from reports.categories import CategoryCatalog
from reports.types import Submission

# Fixed: the same submitter may not report the same category twice within 100m.
DUPLICATE_RADIUS_KM = 0.1


@dataclass(frozen=True)
class HistoryEntry:
    categories: frozenset[str]
    location: Coordinate


def history_from_submissions(
    submissions: Iterable[Submission], catalog: CategoryCatalog
) -> list[HistoryEntry]:
    out: list[HistoryEntry] = []
    for s in submissions:
        if s.location is None or not s.selected_slots:
            continue
        out.append(
            HistoryEntry(
                categories=frozenset(catalog.canonical_ids(s.selected_slot_ids())),
                location=s.location,
            )
        )
    return out


def is_duplicate(
    new_categories: Iterable[str],
    new_location: Coordinate,
    history: Iterable[HistoryEntry],
    *,
    radius_km: float = DUPLICATE_RADIUS_KM,
) -> set[str]:
    """
    Categories of a new submission that collide with the submitter's history.

    A category collides when some history entry shares it and lies within
    `radius_km` of `new_location`. An empty result means the submission may
    proceed; otherwise the whole submission is rejected.
    """
    wanted = set(new_categories)
    if not wanted:
        return set()

    flagged: set[str] = set()
    for entry in history:
        shared = wanted.intersection(entry.categories) - flagged
        if not shared:
            continue
        if haversine_km(new_location, entry.location) <= radius_km:
            flagged |= shared
            if flagged == wanted:
                break
    return flagged
