from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from geo.geohash import SpatialKeyRange
from reports.types import Submission


class StoreUnavailableError(RuntimeError):
    """
    The submission store could not be reached or refused the request.

    Callers must surface this as degraded connectivity, never as "no rows".
    """


@dataclass(frozen=True)
class RangeQuery:
    """
    Ordered range scan: spatial key within `key_range`, created at or after
    `since`, ordered by key then newest first, at most `limit` rows.
    """

    key_range: SpatialKeyRange
    since: datetime
    limit: int


class SubmissionStore(Protocol):
    """
    Store interface (append-only collection of submissions).

    - InMemorySubmissionStore: process-local list, used by tests
    - DuckDBSubmissionStore: file-backed table with key/submitter indexes
    """

    def insert(self, submission: Submission) -> None: ...

    def query_range(self, query: RangeQuery) -> list[Submission]: ...

    def history_for_submitter(self, submitter_id: str) -> list[Submission]: ...
