"""Pydantic request/response schemas for items, sessions and attributions."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from pydantic import AwareDatetime, Field, computed_field

from treadwear.models.base import TreadwearBase


# ---------- Items ----------

class ItemCreate(TreadwearBase):
    brand: str = Field(min_length=1)
    model: str = Field(min_length=1)
    estimated_lifespan_km: float | None = Field(default=None, gt=0)
    is_default: bool = False
    notes: str = ""


class ItemRead(TreadwearBase):
    item_id: uuid.UUID
    brand: str
    model: str
    estimated_lifespan_km: float
    archived: bool
    is_default: bool
    notes: str
    created_at: datetime
    archived_at: datetime | None = None


class ItemUsageRead(TreadwearBase):
    item_id: uuid.UUID
    source: str
    total_distance_km: float
    total_steps: int
    wear_percentage: float
    remaining_distance_km: float
    is_active: bool
    total_wearing_seconds: float
    usage_days: list[date] = []
    last_used: datetime | None = None


class LegacyEntryCreate(TreadwearBase):
    start_time: AwareDatetime
    end_time: AwareDatetime
    steps: int = Field(default=0, ge=0)
    distance_km: float | None = Field(default=None, ge=0)


class LegacyEntryRead(TreadwearBase):
    entry_id: uuid.UUID
    item_id: uuid.UUID
    start_time: datetime
    end_time: datetime
    steps: int
    distance_km: float


# ---------- Sessions ----------

class SessionAction(TreadwearBase):
    item_id: uuid.UUID


class SessionRead(TreadwearBase):
    session_id: uuid.UUID
    item_id: uuid.UUID
    start_time: datetime
    end_time: datetime | None = None
    auto_started: bool
    auto_closed: bool
    steps: int
    distance_km: float

    @computed_field
    @property
    def is_active(self) -> bool:
        return self.end_time is None


class TickRead(TreadwearBase):
    skipped: bool
    closed: list[SessionRead] = []
    started: SessionRead | None = None
    errors: list[str] = []


# ---------- Attributions ----------

class AttributionRequest(TreadwearBase):
    hour: AwareDatetime
    item_id: uuid.UUID


class AttributionBatchRequest(TreadwearBase):
    hours: list[AwareDatetime] = Field(min_length=1)
    item_id: uuid.UUID


class AttributionRemoveRequest(TreadwearBase):
    hours: list[AwareDatetime] = Field(min_length=1)


class AttributionRead(TreadwearBase):
    attribution_id: uuid.UUID
    hour: datetime
    item_id: uuid.UUID
    steps: int
    distance_km: float
    created_at: datetime


class AttributionBatchRead(TreadwearBase):
    attributed: list[datetime]
    failed: dict[str, str] = {}


class EnrichedHourRead(TreadwearBase):
    hour: int
    timestamp: datetime
    steps: int
    distance_km: float
    assigned_item_id: uuid.UUID | None = None
    assignment_source: str | None = None


# ---------- Integrity ----------

class IntegrityIssueRead(TreadwearBase):
    kind: str
    message: str
    severity: str
    item_id: uuid.UUID | None = None
    record_ids: list[str] = []


class IntegrityReportRead(TreadwearBase):
    is_valid: bool
    items_checked: int
    sessions_checked: int
    attributions_checked: int
    issues: list[IntegrityIssueRead] = []
