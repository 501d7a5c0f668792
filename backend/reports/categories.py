from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Iterable

import yaml
from pydantic import BaseModel, Field, model_validator

from core.env import env_str
from reports.types import Mode


def default_catalog_path() -> Path:
    return Path(env_str("TERRA_CATEGORIES_PATH", str(Path(__file__).with_name("categories.yaml"))))


class CategorySlot(BaseModel):
    """
    A selectable tile: one canonical category phrased for both modes.
    """

    id: str = Field(pattern=r"^tile\d+$")
    category: str = Field(min_length=1)
    complaint: str
    compliment: str

    def label(self, mode: Mode) -> str:
        return self.complaint if mode == Mode.complaint else self.compliment


class CategoryCatalog(BaseModel):
    slots: list[CategorySlot]

    @model_validator(mode="after")
    def _unique_slot_ids(self) -> "CategoryCatalog":
        seen: set[str] = set()
        for slot in self.slots:
            if slot.id in seen:
                raise ValueError(f"Duplicate category slot id: {slot.id}")
            seen.add(slot.id)
        return self

    def slot(self, slot_id: str) -> CategorySlot | None:
        for s in self.slots:
            if s.id == slot_id:
                return s
        return None

    def canonical_id(self, slot_id: str) -> str:
        # Unknown slots keep their own id so they still aggregate consistently.
        s = self.slot(slot_id)
        return s.category if s is not None else slot_id

    def canonical_ids(self, slot_ids: Iterable[str]) -> list[str]:
        """
        One canonical id per slot, duplicates kept (two slots of the same
        category count twice).
        """
        return [self.canonical_id(sid) for sid in slot_ids]

    def label(self, slot_id: str, mode: Mode) -> str:
        s = self.slot(slot_id)
        if s is None:
            return f"Tile {slot_id.replace('tile', '')}"
        return s.label(mode)

    def label_for_category(self, category_id: str, mode: Mode, slot_ids: Iterable[str] = ()) -> str:
        """
        Label of a canonical category, preferring one of `slot_ids` that maps to it.
        """
        candidates = [self.slot(sid) for sid in slot_ids]
        candidates += list(self.slots)
        for s in candidates:
            if s is not None and s.category == category_id:
                return s.label(mode)
        return category_id

    def labels(self, mode: Mode) -> list[dict[str, str]]:
        return [{"slotId": s.id, "label": s.label(mode), "categoryId": s.category} for s in self.slots]


def _load_yaml(path: Path) -> dict:
    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid category catalog yaml root: {path}")
    return data


def load_catalog(path: Path | None = None) -> CategoryCatalog:
    return CategoryCatalog.model_validate(_load_yaml(path or default_catalog_path()))


@lru_cache(maxsize=1)
def default_catalog() -> CategoryCatalog:
    return load_catalog()
