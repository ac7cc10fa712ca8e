"""HTTP entry point for the workshop scheduling service."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from workshop.config import get_settings
from workshop.domain.bus import EventBus
from workshop.domain.errors import (
    ConflictError,
    NotFoundError,
    SchedulingError,
    StoreError,
)
from workshop.domain.events import (
    SchedulingConflictDetected,
    TaskCreated,
    TaskResourcesChanged,
    TaskScheduled,
)
from workshop.domain.handlers import HandlerRegistry
from workshop.domain.models import (
    ConflictCheck,
    ConflictResult,
    Machine,
    MachineCreate,
    Operator,
    OperatorCreate,
    ScheduleTaskRequest,
    TaskInput,
    TaskPatch,
    TaskView,
    TimelineEntry,
    as_utc,
)
from workshop.logs import configure_logging
from workshop.repos.memory import (
    MachineRepository,
    OperatorRepository,
    ResourceLockRegistry,
    TaskRepository,
    TimelineRepository,
)
from workshop.services import scheduling, tasks
from workshop.services.conflicts import check_conflicts

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_title)

# ── Singletons (created at import time for simplicity) ────────────────
event_bus = EventBus()
machine_repo = MachineRepository()
operator_repo = OperatorRepository()
task_repo = TaskRepository()
timeline_repo = TimelineRepository()
booking_locks = ResourceLockRegistry() if settings.serialize_bookings else None

handler_registry = HandlerRegistry(
    bus=event_bus,
    task_repo=task_repo,
    timeline_repo=timeline_repo,
)

_repos = dict(task_repo=task_repo, machine_repo=machine_repo, operator_repo=operator_repo)


@app.exception_handler(SchedulingError)
def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    if isinstance(exc, StoreError):
        logger.exception("Store failure on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=exc.status, content=exc.to_payload())


@contextmanager
def _publishing_conflicts(task_id: str) -> Iterator[None]:
    """Record a rejected write for *task_id* on the bus, then re-raise."""
    try:
        yield
    except ConflictError as exc:
        data = exc.result.conflict_data
        event_bus.publish(
            SchedulingConflictDetected(
                task_id=task_id,
                conflict_type=exc.result.conflict_type,
                conflicting_task_id=data.task_id,
                conflicting_time_slot_id=data.time_slot.id,
            )
        )
        raise


def _utc_or_none(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


# ── Scheduling ────────────────────────────────────────────────────────


@app.post("/schedule", response_model=TaskView)
def schedule_task(payload: ScheduleTaskRequest) -> TaskView:
    """Assign a task to a machine/operator for one interval (409 on conflict)."""
    had_slots = bool(payload.task_id and task_repo.slots_for_task(payload.task_id))
    with _publishing_conflicts(payload.task_id or ""):
        view = scheduling.schedule_task(
            payload,
            locks=booking_locks,
            scheduled_status=settings.scheduled_status,
            **_repos,
        )
    event_bus.publish(
        TaskScheduled(
            task_id=view.id,
            time_slot_ids=[s.id for s in view.time_slots],
            machine_id=view.machine_id,
            operator_id=view.operator_id,
            rescheduled=had_slots,
        )
    )
    return view


@app.get("/schedule", response_model=list[TaskView])
def list_schedule(start: datetime | None = None, end: datetime | None = None) -> list[TaskView]:
    """Return tasks with their slots, optionally limited to slots starting in [start, end]."""
    return scheduling.list_scheduled_tasks(
        start=_utc_or_none(start), end=_utc_or_none(end), **_repos
    )


@app.get("/schedule/{task_id}", response_model=TaskView)
def get_scheduled_task(task_id: str) -> TaskView:
    return scheduling.get_task_view(task_id, **_repos)


@app.post(
    "/conflicts/check",
    response_model=ConflictResult,
    response_model_exclude_none=True,
)
def check_schedule_conflicts(payload: ConflictCheck) -> ConflictResult:
    """Dry-run the conflict check without writing anything."""
    return check_conflicts(payload, task_repo, machine_repo, operator_repo)


# ── Tasks ─────────────────────────────────────────────────────────────


@app.get("/tasks", response_model=list[TaskView])
def list_tasks(start: datetime | None = None, end: datetime | None = None) -> list[TaskView]:
    return tasks.list_tasks(start=_utc_or_none(start), end=_utc_or_none(end), **_repos)


@app.post("/tasks", response_model=TaskView, status_code=201)
def create_task(payload: TaskInput) -> TaskView:
    view = tasks.create_task(payload, locks=booking_locks, settings=settings, **_repos)
    event_bus.publish(TaskCreated(task_id=view.id))
    if view.time_slots:
        event_bus.publish(
            TaskScheduled(
                task_id=view.id,
                time_slot_ids=[s.id for s in view.time_slots],
                machine_id=view.machine_id,
                operator_id=view.operator_id,
            )
        )
    return view


@app.get("/tasks/{task_id}", response_model=TaskView)
def get_task(task_id: str) -> TaskView:
    return scheduling.get_task_view(task_id, **_repos)


@app.put("/tasks/{task_id}", response_model=TaskView)
def update_task(task_id: str, payload: TaskInput) -> TaskView:
    """Replace the task's slots and resource links."""
    had_slots = bool(task_repo.slots_for_task(task_id))
    with _publishing_conflicts(task_id):
        view = tasks.update_task(
            task_id, payload, locks=booking_locks, settings=settings, **_repos
        )
    if view.time_slots:
        event_bus.publish(
            TaskScheduled(
                task_id=view.id,
                time_slot_ids=[s.id for s in view.time_slots],
                machine_id=view.machine_id,
                operator_id=view.operator_id,
                rescheduled=had_slots,
            )
        )
    return view


@app.patch("/tasks/{task_id}", response_model=TaskView)
def patch_task(task_id: str, payload: TaskPatch) -> TaskView:
    before = task_repo.get(task_id)
    with _publishing_conflicts(task_id):
        view = tasks.patch_task(
            task_id, payload, locks=booking_locks, settings=settings, **_repos
        )
    if (before.machine_id, before.operator_id) != (view.machine_id, view.operator_id):
        event_bus.publish(
            TaskResourcesChanged(
                task_id=view.id, machine_id=view.machine_id, operator_id=view.operator_id
            )
        )
    return view


@app.delete("/tasks/{task_id}", status_code=204)
def delete_task(task_id: str) -> None:
    tasks.delete_task(task_id, task_repo, booking_locks)


@app.get("/tasks/{task_id}/timeline", response_model=list[TimelineEntry])
def get_task_timeline(task_id: str) -> list[TimelineEntry]:
    if task_repo.get(task_id) is None:
        raise NotFoundError("Task not found", code="TASK_NOT_FOUND")
    return timeline_repo.list_for_task(task_id)


# ── Resources ─────────────────────────────────────────────────────────


@app.post("/machines", response_model=Machine, status_code=201)
def create_machine(payload: MachineCreate) -> Machine:
    machine = Machine(name=payload.name, status=payload.status)
    machine_repo.add(machine)
    return machine


@app.get("/machines", response_model=list[Machine])
def list_machines() -> list[Machine]:
    return machine_repo.list_all()


@app.get("/machines/{machine_id}", response_model=Machine)
def get_machine(machine_id: str) -> Machine:
    machine = machine_repo.get(machine_id)
    if machine is None:
        raise NotFoundError("Machine not found", code="MACHINE_NOT_FOUND")
    return machine


@app.post("/operators", response_model=Operator, status_code=201)
def create_operator(payload: OperatorCreate) -> Operator:
    operator = Operator(name=payload.name, email=payload.email, status=payload.status)
    operator_repo.add(operator)
    return operator


@app.get("/operators", response_model=list[Operator])
def list_operators() -> list[Operator]:
    return operator_repo.list_all()


@app.get("/operators/{operator_id}", response_model=Operator)
def get_operator(operator_id: str) -> Operator:
    operator = operator_repo.get(operator_id)
    if operator is None:
        raise NotFoundError("Operator not found", code="OPERATOR_NOT_FOUND")
    return operator
