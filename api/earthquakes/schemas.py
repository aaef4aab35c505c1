"""
Earthquake record and query parameter models.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.range_store import KeySchema, TableSchema

EARTHQUAKE_EVENT_TYPE = "earthquake"

# Attribute paths inside a stored record (the USGS feature is stored verbatim).
MAGNITUDE_PATH = ("properties", "mag")
PLACE_PATH = ("properties", "place")

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def events_table(name: str) -> TableSchema:
    return TableSchema(
        name=name,
        id_attribute="id",
        key=KeySchema(partition_key="eventType", sort_key="occurrenceTimestamp"),
    )


class EventRecord(BaseModel):
    """
    One stored seismic event: the feed feature plus the two key attributes.
    Unknown feed fields are kept as-is.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    eventType: str
    occurrenceTimestamp: int
    type: str | None = None
    properties: dict[str, Any] = Field(default_factory=dict)
    geometry: dict[str, Any] | None = None

    @property
    def magnitude(self) -> float | None:
        mag = self.properties.get("mag")
        return float(mag) if mag is not None else None

    @property
    def place(self) -> str | None:
        return self.properties.get("place")


class ListEventsParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page_size: int = Field(..., ge=1, le=100, alias="pageSize")
    sort: Literal["occurrenceTimestamp", "magnitude"]
    sort_order: Literal["asc", "desc"] = Field(..., alias="sortOrder")
    occur_start_date: date | None = Field(default=None, alias="occurStartDate")
    occur_end_date: date | None = Field(default=None, alias="occurEndDate")
    location: str | None = Field(default=None, max_length=200)
    min_magnitude: float | None = Field(default=None, ge=0, alias="minMagnitude")
    max_magnitude: float | None = Field(default=None, ge=0, alias="maxMagnitude")
    cursor: str | None = Field(default=None, max_length=2048)

    @field_validator("occur_start_date", "occur_end_date", mode="before")
    @classmethod
    def _calendar_date(cls, value: Any) -> Any:
        if isinstance(value, str) and not _DATE_RE.match(value.strip()):
            raise ValueError("must be in the format 'YYYY-MM-DD' (e.g., 2025-01-01).")
        return value

    @field_validator("location", "cursor", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _ordered_bounds(self) -> ListEventsParams:
        if self.occur_start_date and self.occur_end_date and self.occur_start_date > self.occur_end_date:
            raise ValueError("occurStartDate must not be later than occurEndDate.")
        if (
            self.min_magnitude is not None
            and self.max_magnitude is not None
            and self.max_magnitude < self.min_magnitude
        ):
            raise ValueError("maxMagnitude must not be less than minMagnitude.")
        return self


class EventPage(BaseModel):
    items: list[EventRecord]
    size: int
    cursor: str | None = None
