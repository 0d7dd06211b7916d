"""Domain models for the shop-floor scheduling service."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class TaskStatus(StrEnum):
    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    BLOCKED = "BLOCKED"


class ProjectStatus(StrEnum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    ON_HOLD = "ON_HOLD"


class ItemStatus(StrEnum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    ON_HOLD = "ON_HOLD"


class MachineStatus(StrEnum):
    AVAILABLE = "AVAILABLE"
    IN_USE = "IN_USE"
    MAINTENANCE = "MAINTENANCE"
    BROKEN = "BROKEN"


class OperatorStatus(StrEnum):
    ACTIVE = "ACTIVE"
    ON_LEAVE = "ON_LEAVE"
    INACTIVE = "INACTIVE"


class ResourceType(StrEnum):
    MACHINE = "machine"
    OPERATOR = "operator"


def to_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime; naive input is taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _pop_legacy_id(data: dict[str, Any], singular: str, plural: str) -> None:
    # machine_id: "m1" -> machine_ids: ["m1"]; machine_id: None -> machine_ids: []
    if singular not in data:
        return
    legacy = data.pop(singular)
    if data.get(plural) is None:
        data[plural] = [legacy] if legacy else []


class _LegacyResourceIds(BaseModel):
    """Accepts the old single ``machine_id`` / ``operator_id`` fields.

    The rest of the service only ever sees ``machine_ids`` / ``operator_ids``.
    """

    @model_validator(mode="before")
    @classmethod
    def _normalize_legacy_ids(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        _pop_legacy_id(data, "machine_id", "machine_ids")
        _pop_legacy_id(data, "operator_id", "operator_ids")
        return data


# ---------------------------------------------------------------------------
# Request DTOs
# ---------------------------------------------------------------------------


class TimeSlotInput(BaseModel):
    start: datetime
    end: datetime | None = None
    duration_min: int | None = Field(default=None, gt=0)

    @field_validator("start", "end")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return to_utc(value) if value is not None else None


class TaskPayload(_LegacyResourceIds):
    """Body of a task create or full replace."""

    title: str | None = None
    description: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    quantity: int = 1
    completed_quantity: int = 0
    item_id: str | None = None
    project_id: str | None = None
    machine_ids: list[str] = Field(default_factory=list)
    operator_ids: list[str] = Field(default_factory=list)
    time_slots: list[TimeSlotInput] = Field(default_factory=list)


class TaskPatch(_LegacyResourceIds):
    """Partial update; only fields present in the body are applied."""

    title: str | None = None
    description: str | None = None
    status: TaskStatus | None = None
    quantity: int | None = None
    completed_quantity: int | None = None
    item_id: str | None = None
    machine_ids: list[str] | None = None
    operator_ids: list[str] | None = None
    time_slots: list[TimeSlotInput] | None = None

    def is_set(self, field: str) -> bool:
        return field in self.model_fields_set


class ScheduleRequest(_LegacyResourceIds):
    task_id: str
    scheduled_at: datetime
    duration_min: int = Field(gt=0)
    item_id: str | None = None
    machine_ids: list[str] = Field(default_factory=list)
    operator_ids: list[str] = Field(default_factory=list)

    @field_validator("scheduled_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return to_utc(value)


class ConflictCheckRequest(_LegacyResourceIds):
    scheduled_at: datetime
    duration_min: int = Field(gt=0)
    machine_ids: list[str] = Field(default_factory=list)
    operator_ids: list[str] = Field(default_factory=list)
    exclude_task_id: str | None = None

    @field_validator("scheduled_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return to_utc(value)


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    status: ProjectStatus = ProjectStatus.ACTIVE


class ItemCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    status: ItemStatus = ItemStatus.ACTIVE
    quantity: int = Field(default=1, ge=0)


class MachineCreate(BaseModel):
    name: str = Field(min_length=1)
    type: str
    status: MachineStatus = MachineStatus.AVAILABLE
    location: str | None = None
    color: str | None = None


class OperatorCreate(BaseModel):
    name: str = Field(min_length=1)
    email: str | None = None
    skills: list[str] = Field(default_factory=list)
    status: OperatorStatus = OperatorStatus.ACTIVE
    shift: str | None = None
    color: str | None = None


# ---------------------------------------------------------------------------
# Read models (built from ORM rows)
# ---------------------------------------------------------------------------


class _ReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class ProjectRead(_ReadModel):
    id: str
    name: str
    description: str | None = None
    status: ProjectStatus
    created_at: datetime


class ItemRead(_ReadModel):
    id: str
    project_id: str
    name: str
    description: str | None = None
    status: ItemStatus
    quantity: int
    project: ProjectRead | None = None


class MachineRead(_ReadModel):
    id: str
    name: str
    type: str
    status: MachineStatus
    location: str | None = None
    color: str | None = None


class OperatorRead(_ReadModel):
    id: str
    name: str
    email: str | None = None
    skills: list[str] = Field(default_factory=list)
    status: OperatorStatus
    shift: str | None = None
    color: str | None = None


class TimeSlotRead(_ReadModel):
    id: str
    task_id: str
    start: datetime
    end: datetime
    duration_min: int


class TaskRead(_ReadModel):
    id: str
    title: str
    description: str | None = None
    status: TaskStatus
    quantity: int
    completed_quantity: int
    item_id: str | None = None
    item: ItemRead | None = None
    project: ProjectRead | None = None
    machines: list[MachineRead] = Field(default_factory=list)
    operators: list[OperatorRead] = Field(default_factory=list)
    time_slots: list[TimeSlotRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class GanttItem(_ReadModel):
    id: str
    name: str
    status: ItemStatus
    tasks: list[TaskRead] = Field(default_factory=list)


class GanttProject(_ReadModel):
    id: str
    name: str
    status: ProjectStatus
    items: list[GanttItem] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Conflict detection values
# ---------------------------------------------------------------------------


class AssignmentWindow(BaseModel):
    """One existing (resource, task, slot) triple as read from storage."""

    resource_type: ResourceType
    resource_id: str
    resource_name: str
    task_id: str
    task_title: str
    slot_start: datetime
    slot_end: datetime


class ConflictReport(BaseModel):
    conflict_type: ResourceType
    resource_id: str
    resource_name: str
    conflicting_task_id: str
    conflicting_task_title: str
    # The intersection of the candidate window and the existing slot
    window_start: datetime
    window_end: datetime
    # The existing slot as stored, used for the human-readable message
    slot_start: datetime
    slot_end: datetime


class ConflictCheckResult(BaseModel):
    has_conflict: bool
    conflict_type: ResourceType | None = None
    conflict: ConflictReport | None = None
