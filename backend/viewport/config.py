from __future__ import annotations

from dataclasses import dataclass

from core.env import env_flag, env_float, env_int


@dataclass(frozen=True)
class ViewportSettings:
    """
    Tunables of the viewport -> query -> cluster pipeline.
    """

    cluster_radius_km: float = 0.05
    retention_days: int = 90
    max_rows: int = 5_000
    debounce_ms: int = 600
    # Tile the viewport into several key prefixes instead of one centre cell.
    tile_viewport: bool = False
    max_tiles: int = 9

    @property
    def debounce_s(self) -> float:
        return max(0, self.debounce_ms) / 1000.0

    @classmethod
    def from_env(cls) -> "ViewportSettings":
        d = cls()
        return cls(
            cluster_radius_km=max(0.0, env_float("TERRA_CLUSTER_RADIUS_KM", d.cluster_radius_km)),
            retention_days=env_int("TERRA_RETENTION_DAYS", d.retention_days, minimum=1),
            max_rows=env_int("TERRA_MAX_ROWS", d.max_rows, minimum=1),
            debounce_ms=env_int("TERRA_DEBOUNCE_MS", d.debounce_ms, minimum=0),
            tile_viewport=env_flag("TERRA_VIEWPORT_TILING", d.tile_viewport),
            max_tiles=env_int("TERRA_VIEWPORT_MAX_TILES", d.max_tiles, minimum=1),
        )
