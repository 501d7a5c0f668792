from __future__ import annotations

import threading

from engine.types import RangeQuery, SubmissionStore
from reports.types import Submission


class InMemorySubmissionStore(SubmissionStore):
    """
    Keeps submissions in a list and answers range scans by filtering + sorting.
    """

    def __init__(self, submissions: list[Submission] | None = None):
        self._lock = threading.RLock()
        self._rows: list[Submission] = list(submissions or [])

    def insert(self, submission: Submission) -> None:
        with self._lock:
            self._rows.append(submission)

    def query_range(self, query: RangeQuery) -> list[Submission]:
        kr = query.key_range
        with self._lock:
            rows = [
                s
                for s in self._rows
                if kr.min <= s.spatial_key <= kr.max and s.created_at >= query.since
            ]
        rows.sort(key=lambda s: (s.spatial_key, -s.created_at.timestamp()))
        return rows[: max(0, int(query.limit))]

    def history_for_submitter(self, submitter_id: str) -> list[Submission]:
        with self._lock:
            return [s for s in self._rows if s.submitter_id == submitter_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)
