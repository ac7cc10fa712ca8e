"""Domain events emitted around task scheduling."""

from __future__ import annotations

from pydantic import BaseModel

from workshop.domain.models import ResourceKind


class TaskCreated(BaseModel):
    """Fired when a new Task is persisted."""

    task_id: str


class TaskScheduled(BaseModel):
    """Fired after a task's slot set and resource links were committed."""

    task_id: str
    time_slot_ids: list[str]
    machine_id: str | None = None
    operator_id: str | None = None
    rescheduled: bool = False


class TaskResourcesChanged(BaseModel):
    """Fired when a patch moves a task to another machine or operator."""

    task_id: str
    machine_id: str | None = None
    operator_id: str | None = None


class SchedulingConflictDetected(BaseModel):
    """Fired when a write was rejected because a resource is already booked."""

    task_id: str
    conflict_type: ResourceKind
    conflicting_task_id: str
    conflicting_time_slot_id: str
