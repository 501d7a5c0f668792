from __future__ import annotations

import os
from pathlib import Path

from core.env import env_int, env_str


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


def duckdb_threads() -> int:
    return env_int("TERRA_DUCKDB_THREADS", max(1, int(os.cpu_count() or 1)), minimum=1)


def duckdb_path() -> str:
    # ":memory:" is accepted for throwaway stores.
    return env_str("TERRA_DB_PATH", str(_repo_root() / "data" / "terra.duckdb"))


def bounded_cache_put(cache: dict, key, value, *, max_items: int) -> None:
    cache[key] = value
    if len(cache) > max_items:
        oldest = next(iter(cache.keys()))
        if oldest != key:
            cache.pop(oldest, None)
