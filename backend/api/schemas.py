from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from geo.aoi import BBox
from geo.coords import Coordinate


class ApiCoordinate(BaseModel):
    lat: float
    lon: float

    def to_coordinate(self) -> Coordinate:
        return Coordinate(latitude=self.lat, longitude=self.lon)


class ApiViewport(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    south_west: ApiCoordinate = Field(alias="southWest")
    north_east: ApiCoordinate = Field(alias="northEast")

    def to_bbox(self) -> BBox:
        return BBox.from_corners(self.south_west.to_coordinate(), self.north_east.to_coordinate())


class ClustersRequest(BaseModel):
    viewport: ApiViewport


class SubmissionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mode: str
    location: ApiCoordinate
    # Values are checked by the submission service (real booleans only).
    selected_tiles: dict[str, Any] = Field(alias="selectedTiles")
    address: str = ""
    user_id: str = Field(alias="userId", min_length=1)


class SubmissionAccepted(BaseModel):
    id: str
    spatialKey: str
    message: str


class SubmissionRejected(BaseModel):
    duplicateCategories: list[str]
    labels: list[str]
    message: str
