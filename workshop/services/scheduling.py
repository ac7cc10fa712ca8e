"""Scheduling a task onto a machine/operator for one interval."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from contextlib import AbstractContextManager, nullcontext
from datetime import datetime, timezone

from workshop.domain.errors import ConflictError, NotFoundError, ValidationError
from workshop.domain.models import (
    ConflictCheck,
    ResourceKind,
    ScheduleTaskRequest,
    Task,
    TaskStatus,
    TaskView,
    TimeSlot,
)
from workshop.repos.memory import (
    MachineRepository,
    OperatorRepository,
    ResourceLockRegistry,
    TaskRepository,
)
from workshop.services.conflicts import check_conflicts

logger = logging.getLogger(__name__)


def hold_resources(
    locks: ResourceLockRegistry | None, resources: Iterable[tuple[ResourceKind, str]]
) -> AbstractContextManager:
    if locks is None:
        return nullcontext()
    return locks.hold(resources)


def hold_task(locks: ResourceLockRegistry | None, task_id: str) -> AbstractContextManager:
    """Serialize writers of one task; take it before any resource lock."""
    if locks is None:
        return nullcontext()
    return locks.hold_task(task_id)


def ensure_resources_exist(
    machine_id: str | None,
    operator_id: str | None,
    machine_repo: MachineRepository,
    operator_repo: OperatorRepository,
) -> None:
    if machine_id and machine_repo.get(machine_id) is None:
        raise NotFoundError("Machine not found", code="MACHINE_NOT_FOUND")
    if operator_id and operator_repo.get(operator_id) is None:
        raise NotFoundError("Operator not found", code="OPERATOR_NOT_FOUND")


def build_task_view(
    task: Task,
    task_repo: TaskRepository,
    machine_repo: MachineRepository,
    operator_repo: OperatorRepository,
) -> TaskView:
    """Attach the task's slots and linked resources."""
    return TaskView(
        **task.model_dump(),
        time_slots=task_repo.slots_for_task(task.id),
        machine=machine_repo.get(task.machine_id) if task.machine_id else None,
        operator=operator_repo.get(task.operator_id) if task.operator_id else None,
    )


def get_task_view(
    task_id: str,
    task_repo: TaskRepository,
    machine_repo: MachineRepository,
    operator_repo: OperatorRepository,
) -> TaskView:
    task = task_repo.get(task_id)
    if task is None:
        raise NotFoundError("Task not found", code="TASK_NOT_FOUND")
    return build_task_view(task, task_repo, machine_repo, operator_repo)


def list_scheduled_tasks(
    task_repo: TaskRepository,
    machine_repo: MachineRepository,
    operator_repo: OperatorRepository,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[TaskView]:
    """Return all tasks, or only those with a slot starting in [start, end].

    The range filter applies only when both bounds are given.
    """
    if start is not None and end is not None:
        tasks = task_repo.list_with_slots_between(start, end)
    else:
        tasks = task_repo.list_all()
    return [build_task_view(t, task_repo, machine_repo, operator_repo) for t in tasks]


def schedule_task(
    request: ScheduleTaskRequest,
    *,
    task_repo: TaskRepository,
    machine_repo: MachineRepository,
    operator_repo: OperatorRepository,
    locks: ResourceLockRegistry | None = None,
    scheduled_status: str = TaskStatus.SCHEDULED,
) -> TaskView:
    """Assign a task to its resources for one interval, or reject on conflict.

    On success the task's slot set is replaced by a single primary slot, its
    machine/operator links are overwritten (``None`` unassigns) and its status
    moves to *scheduled_status*. On conflict nothing is written. The task is
    read under its own lock so a concurrent edit cannot be overwritten with
    a stale copy.
    """
    if not request.task_id or request.scheduled_at is None or request.duration_min is None:
        raise ValidationError(
            "taskId, scheduledAt and durationMin are required", code="MISSING_FIELDS"
        )
    if request.duration_min <= 0:
        raise ValidationError(
            "durationMin must be a positive number of minutes", code="INVALID_DURATION"
        )

    with hold_task(locks, request.task_id):
        task = task_repo.get(request.task_id)
        if task is None:
            raise NotFoundError("Task not found", code="TASK_NOT_FOUND")
        ensure_resources_exist(
            request.machine_id, request.operator_id, machine_repo, operator_repo
        )

        check = ConflictCheck(
            scheduled_at=request.scheduled_at,
            duration_min=request.duration_min,
            machine_id=request.machine_id,
            operator_id=request.operator_id,
            exclude_task_id=task.id,
        )
        resources = list(check.resources())

        with hold_resources(locks, resources):
            if resources:
                result = check_conflicts(check, task_repo, machine_repo, operator_repo)
                if result.has_conflict:
                    raise ConflictError(result)

            slot = TimeSlot(
                task_id=task.id,
                start_date_time=check.scheduled_at,
                end_date_time=check.end,
                duration_min=check.duration_min,
                is_primary=True,
            )
            changes = {
                "machine_id": request.machine_id,
                "operator_id": request.operator_id,
                "status": scheduled_status,
                "updated_at": datetime.now(timezone.utc),
            }
            for field in ("item_id", "project_id"):
                if field in request.model_fields_set:
                    changes[field] = getattr(request, field)
            updated = task.model_copy(update=changes)
            task_repo.save(updated, slots=[slot])

    logger.info(
        "Scheduled task %s at %s for %d min (machine=%s, operator=%s)",
        task.id,
        slot.start_date_time.isoformat(),
        slot.duration_min,
        updated.machine_id,
        updated.operator_id,
    )
    return build_task_view(updated, task_repo, machine_repo, operator_repo)
