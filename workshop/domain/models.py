"""Domain models for workshop task scheduling."""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def as_utc(value: datetime) -> datetime:
    """Treat naive instants as UTC so every stored instant is comparable."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


class CamelModel(BaseModel):
    """Base for everything that crosses the JSON boundary in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ResourceKind(StrEnum):
    MACHINE = "machine"
    OPERATOR = "operator"

    @property
    def task_field(self) -> str:
        """Name of the Task attribute linking a task to this kind of resource."""
        return f"{self.value}_id"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class TaskStatus(StrEnum):
    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    BLOCKED = "BLOCKED"


class TimelineEntryType(StrEnum):
    CREATED = "created"
    SCHEDULED = "scheduled"
    RESCHEDULED = "rescheduled"
    RESOURCES_CHANGED = "resources_changed"
    CONFLICT_REJECTED = "conflict_rejected"


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


class Machine(CamelModel):
    id: str = Field(default_factory=_new_id)
    name: str
    status: str = "AVAILABLE"


class Operator(CamelModel):
    id: str = Field(default_factory=_new_id)
    name: str
    email: str | None = None
    status: str = "ACTIVE"


class Task(CamelModel):
    id: str = Field(default_factory=_new_id)
    title: str
    description: str | None = None
    status: str = TaskStatus.PENDING
    quantity: int = 1
    completed_quantity: int = 0
    item_id: str | None = None
    project_id: str | None = None
    machine_id: str | None = None
    operator_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def resource_id(self, kind: ResourceKind) -> str | None:
        return getattr(self, kind.task_field)


class TimeSlot(CamelModel):
    id: str = Field(default_factory=_new_id)
    task_id: str
    start_date_time: UtcDatetime
    end_date_time: UtcDatetime | None = None
    duration_min: int = Field(gt=0)
    is_primary: bool = False

    @property
    def effective_end(self) -> datetime:
        """Explicit end if stored, otherwise start + duration. Never open-ended."""
        if self.end_date_time is not None:
            return self.end_date_time
        return self.start_date_time + timedelta(minutes=self.duration_min)


class TimelineEntry(CamelModel):
    id: str = Field(default_factory=_new_id)
    task_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    type: TimelineEntryType
    payload: dict = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Conflict detection values (never persisted)
# ---------------------------------------------------------------------------


class CandidateSlot(BaseModel):
    """A committed slot together with the task that owns it."""

    slot: TimeSlot
    task: Task


class ConflictSlot(CamelModel):
    id: str
    start_date_time: datetime
    end_date_time: datetime
    duration_min: int
    is_primary: bool = False


class Conflict(CamelModel):
    task_id: str
    title: str
    time_slot: ConflictSlot
    machine: Machine | None = None
    operator: Operator | None = None


class ConflictResult(CamelModel):
    has_conflict: bool
    conflict_type: ResourceKind | None = None
    conflict_data: Conflict | None = None


class ConflictCheck(CamelModel):
    """A candidate booking: one interval, up to one machine and one operator."""

    scheduled_at: UtcDatetime
    duration_min: int = Field(gt=0)
    machine_id: str | None = None
    operator_id: str | None = None
    exclude_task_id: str | None = None
    exclude_time_slot_id: str | None = None

    @property
    def end(self) -> datetime:
        return self.scheduled_at + timedelta(minutes=self.duration_min)

    def resources(self) -> Iterator[tuple[ResourceKind, str]]:
        """Yield the supplied resources, machine before operator."""
        for kind in (ResourceKind.MACHINE, ResourceKind.OPERATOR):
            resource_id = getattr(self, kind.task_field)
            if resource_id:
                yield kind, resource_id


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class ScheduleTaskRequest(CamelModel):
    # Required fields are checked by the service so missing ones map to 400.
    task_id: str | None = None
    item_id: str | None = None
    project_id: str | None = None
    machine_id: str | None = None
    operator_id: str | None = None
    scheduled_at: UtcDatetime | None = None
    duration_min: int | None = None


class TimeSlotInput(CamelModel):
    id: str | None = None
    start_date_time: UtcDatetime | None = None
    end_date_time: UtcDatetime | None = None
    duration_min: int | None = None


class TaskInput(CamelModel):
    title: str | None = None
    description: str | None = None
    status: str | None = None
    quantity: int | None = None
    completed_quantity: int | None = None
    item_id: str | None = None
    project_id: str | None = None
    machine_id: str | None = None
    operator_id: str | None = None
    time_slots: list[TimeSlotInput] = Field(default_factory=list)


class TaskPatch(CamelModel):
    """Partial update; only fields present in the request body are applied."""

    title: str | None = None
    description: str | None = None
    status: str | None = None
    quantity: int | None = None
    completed_quantity: int | None = None
    item_id: str | None = None
    project_id: str | None = None
    machine_id: str | None = None
    operator_id: str | None = None


class TaskView(Task):
    time_slots: list[TimeSlot] = Field(default_factory=list)
    machine: Machine | None = None
    operator: Operator | None = None


class MachineCreate(CamelModel):
    name: str = Field(min_length=1)
    status: str = "AVAILABLE"


class OperatorCreate(CamelModel):
    name: str = Field(min_length=1)
    email: str | None = None
    status: str = "ACTIVE"
