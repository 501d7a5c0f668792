from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import structlog

from engine.types import SubmissionStore
from geo.coords import Coordinate
from geo.geohash import STORED_PRECISION, encode
from policy.duplicates import DUPLICATE_RADIUS_KM, history_from_submissions, is_duplicate
from reports.categories import CategoryCatalog, default_catalog
from reports.types import Mode, Submission
from reports.validation import (
    InvalidSubmissionError,
    require_valid_location,
    sanitize_address,
    validate_selected_slots,
)

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SubmissionDraft:
    """
    Unvalidated user input, as it arrives from the form.
    """

    mode: Any
    location: Any
    selected_slots: Any
    address: Any = ""
    submitter_id: str = ""


@dataclass(frozen=True)
class SubmissionOutcome:
    accepted: bool
    submission: Submission | None = None
    duplicate_categories: tuple[str, ...] = ()
    duplicate_labels: tuple[str, ...] = ()

    @property
    def message(self) -> str:
        if self.accepted:
            return "Submitted"
        noun = "categories" if len(self.duplicate_categories) > 1 else "category"
        return (
            f"You have already submitted a report for the following {noun}: "
            f"{', '.join(self.duplicate_labels)}"
        )


AcceptedHook = Callable[[Submission], Awaitable[None] | None]


def _parse_mode(raw: Any) -> Mode:
    if isinstance(raw, Mode):
        return raw
    try:
        return Mode(raw)
    except ValueError:
        raise InvalidSubmissionError(f"Unknown mode: {raw!r}") from None


@dataclass
class SubmissionService:
    """
    Validate -> duplicate check against the submitter's history -> insert.

    The history read and the insert are two separate store calls; concurrent
    submissions from the same submitter can both pass the check.
    """

    store: SubmissionStore
    catalog: CategoryCatalog = field(default_factory=default_catalog)
    on_accepted: AcceptedHook | None = None
    radius_km: float = DUPLICATE_RADIUS_KM
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))

    def validate(self, draft: SubmissionDraft) -> tuple[Mode, Coordinate, dict[str, bool], str]:
        mode = _parse_mode(draft.mode)
        location = require_valid_location(draft.location)
        if not validate_selected_slots(draft.selected_slots):
            raise InvalidSubmissionError("selectedTiles must map 1..20 tile ids to booleans")
        slots = dict(draft.selected_slots)
        if not any(slots.values()):
            raise InvalidSubmissionError("Select at least one category")
        if not isinstance(draft.submitter_id, str) or not draft.submitter_id.strip():
            raise InvalidSubmissionError("Missing submitter id")
        return mode, location, slots, sanitize_address(draft.address)

    async def submit(self, draft: SubmissionDraft) -> SubmissionOutcome:
        mode, location, slots, address = self.validate(draft)
        selected = [sid for sid, on in slots.items() if on]
        categories = self.catalog.canonical_ids(selected)

        previous = await asyncio.to_thread(self.store.history_for_submitter, draft.submitter_id)
        history = history_from_submissions(previous, self.catalog)
        flagged = is_duplicate(categories, location, history, radius_km=self.radius_km)

        if flagged:
            # Keep the order in which the user selected the slots.
            ordered = tuple(dict.fromkeys(c for c in categories if c in flagged))
            labels = tuple(self.catalog.label_for_category(c, mode, selected) for c in ordered)
            log.info(
                "submission_rejected",
                submitter_id=draft.submitter_id,
                categories=list(ordered),
            )
            return SubmissionOutcome(accepted=False, duplicate_categories=ordered, duplicate_labels=labels)

        submission = Submission(
            id=str(uuid.uuid4()),
            mode=mode,
            location=location,
            selected_slots=slots,
            address=address,
            created_at=self.clock(),
            submitter_id=draft.submitter_id,
            spatial_key=encode(location, STORED_PRECISION),
        )
        await asyncio.to_thread(self.store.insert, submission)
        log.info(
            "submission_accepted",
            submission_id=submission.id,
            spatial_key=submission.spatial_key,
            categories=categories,
        )

        if self.on_accepted is not None:
            maybe = self.on_accepted(submission)
            if asyncio.iscoroutine(maybe):
                await maybe
        return SubmissionOutcome(accepted=True, submission=submission)
