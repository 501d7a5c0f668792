from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from geo.coords import Coordinate


class Mode(str, Enum):
    complaint = "Complaint"
    compliment = "Compliment"

    @property
    def tally_key(self) -> str:
        # Per-category tallies are keyed "complaint" / "compliment".
        return self.value.lower()


@dataclass(frozen=True)
class Submission:
    """
    One stored report. Created once at submission time and never mutated.
    """

    id: str
    mode: Mode
    location: Coordinate
    # slot id (e.g. "tile3") -> selected?
    selected_slots: dict[str, bool]
    address: str
    created_at: datetime
    submitter_id: str
    spatial_key: str

    def selected_slot_ids(self) -> list[str]:
        return [slot_id for slot_id, on in self.selected_slots.items() if on]
