from __future__ import annotations

from main import cors_origins
from viewport.config import ViewportSettings


def test_viewport_settings_defaults(monkeypatch):
    for name in [
        "TERRA_CLUSTER_RADIUS_KM",
        "TERRA_RETENTION_DAYS",
        "TERRA_MAX_ROWS",
        "TERRA_DEBOUNCE_MS",
        "TERRA_VIEWPORT_TILING",
    ]:
        monkeypatch.delenv(name, raising=False)
    s = ViewportSettings.from_env()
    assert s.cluster_radius_km == 0.05
    assert s.retention_days == 90
    assert s.max_rows == 5000
    assert s.debounce_s == 0.6
    assert s.tile_viewport is False


def test_viewport_settings_from_env_with_bad_values(monkeypatch):
    monkeypatch.setenv("TERRA_CLUSTER_RADIUS_KM", "0.2")
    monkeypatch.setenv("TERRA_RETENTION_DAYS", "-5")
    monkeypatch.setenv("TERRA_MAX_ROWS", "lots")
    monkeypatch.setenv("TERRA_DEBOUNCE_MS", "250")
    monkeypatch.setenv("TERRA_VIEWPORT_TILING", "yes")
    s = ViewportSettings.from_env()
    assert s.cluster_radius_km == 0.2
    assert s.retention_days == 1
    assert s.max_rows == 5000
    assert s.debounce_ms == 250
    assert s.tile_viewport is True


def test_cors_origins_are_comma_separated(monkeypatch):
    monkeypatch.delenv("TERRA_CORS_ORIGINS", raising=False)
    assert cors_origins() == ["http://localhost:3000"]
    monkeypatch.setenv("TERRA_CORS_ORIGINS", "https://a.example, https://b.example,")
    assert cors_origins() == ["https://a.example", "https://b.example"]
