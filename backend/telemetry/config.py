from __future__ import annotations

from pathlib import Path

from core.env import env_flag, env_str


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


def telemetry_path() -> Path:
    # Kept under the repo so it is easy to query locally.
    return Path(
        env_str("TERRA_TELEMETRY_PATH", str(_repo_root() / "data" / "telemetry" / "telemetry.duckdb"))
    )


def telemetry_enabled() -> bool:
    return env_flag("TERRA_TELEMETRY", True)
