"""Task create/update/patch/delete with multi-slot validation."""

from __future__ import annotations

import logging
from collections.abc import Collection
from datetime import datetime, timedelta, timezone

from workshop.config import Settings, get_settings
from workshop.domain.errors import ConflictError, NotFoundError, ValidationError
from workshop.domain.models import (
    ConflictCheck,
    ResourceKind,
    Task,
    TaskInput,
    TaskPatch,
    TaskView,
    TimeSlot,
    TimeSlotInput,
)
from workshop.repos.memory import (
    MachineRepository,
    OperatorRepository,
    ResourceLockRegistry,
    TaskRepository,
)
from workshop.services.conflicts import check_conflicts, describe_conflict
from workshop.services.intervals import find_overlapping_pair
from workshop.services.scheduling import (
    build_task_view,
    ensure_resources_exist,
    hold_resources,
    hold_task,
)

logger = logging.getLogger(__name__)


def _check_status(status: str | None, settings: Settings) -> None:
    if status is not None and status not in settings.task_statuses:
        raise ValidationError(f"Unknown task status {status!r}", code="INVALID_STATUS")


def _check_quantities(quantity: int, completed_quantity: int) -> None:
    if completed_quantity > quantity:
        raise ValidationError(
            "Completed quantity cannot exceed total quantity", code="BAD_QUANTITY"
        )


def resolve_slots(
    task_id: str,
    inputs: list[TimeSlotInput],
    default_duration_min: int,
    reusable_ids: Collection[str] = (),
) -> list[TimeSlot]:
    """Turn slot inputs into TimeSlots with a consistent end = start + duration.

    Duration comes from ``durationMin``, else from ``endDateTime - startDateTime``,
    else from the configured default. Slots of one task must not overlap.
    An input may carry an ``id`` only to keep one of *reusable_ids*, the ids
    of the slots the task owns right now. Any other id is refused.
    """
    slots: list[TimeSlot] = []
    seen_ids: set[str] = set()
    for index, item in enumerate(inputs):
        if item.id is not None:
            if item.id in seen_ids:
                raise ValidationError(
                    f"Time slot {item.id} is listed more than once",
                    code="DUPLICATE_TIME_SLOT",
                )
            if item.id not in reusable_ids:
                raise ValidationError(
                    f"Time slot {item.id} does not belong to this task",
                    code="UNKNOWN_TIME_SLOT",
                )
            seen_ids.add(item.id)
        if item.start_date_time is None:
            raise ValidationError(
                "Each time slot needs a startDateTime", code="INVALID_TIME_SLOT"
            )
        if item.duration_min is not None:
            duration = item.duration_min
        elif item.end_date_time is not None:
            duration = int((item.end_date_time - item.start_date_time).total_seconds() // 60)
        else:
            duration = default_duration_min
        if duration <= 0:
            raise ValidationError(
                "Time slot duration must be positive", code="INVALID_TIME_SLOT"
            )

        extra = {"id": item.id} if item.id is not None else {}
        slots.append(
            TimeSlot(
                task_id=task_id,
                start_date_time=item.start_date_time,
                end_date_time=item.start_date_time + timedelta(minutes=duration),
                duration_min=duration,
                is_primary=index == 0,
                **extra,
            )
        )

    if find_overlapping_pair(slots) is not None:
        raise ValidationError(
            "Time slots within the same task cannot overlap", code="TIME_SLOT_OVERLAP"
        )
    return slots


def check_slot_conflicts(
    slots: list[TimeSlot],
    machine_id: str | None,
    operator_id: str | None,
    *,
    exclude_task_id: str | None,
    task_repo: TaskRepository,
    machine_repo: MachineRepository,
    operator_repo: OperatorRepository,
) -> None:
    """Raise ConflictError for the first slot that double-books a resource."""
    if not machine_id and not operator_id:
        return
    for slot in slots:
        result = check_conflicts(
            ConflictCheck(
                scheduled_at=slot.start_date_time,
                duration_min=slot.duration_min,
                machine_id=machine_id,
                operator_id=operator_id,
                exclude_task_id=exclude_task_id,
            ),
            task_repo,
            machine_repo,
            operator_repo,
        )
        if result.has_conflict:
            raise ConflictError(result, describe_conflict(result))


def _resources(machine_id: str | None, operator_id: str | None) -> list[tuple[ResourceKind, str]]:
    pairs = [(ResourceKind.MACHINE, machine_id), (ResourceKind.OPERATOR, operator_id)]
    return [(kind, rid) for kind, rid in pairs if rid]


def _require_task(task_repo: TaskRepository, task_id: str) -> Task:
    task = task_repo.get(task_id)
    if task is None:
        raise NotFoundError("Task not found", code="TASK_NOT_FOUND")
    return task


def list_tasks(
    task_repo: TaskRepository,
    machine_repo: MachineRepository,
    operator_repo: OperatorRepository,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[TaskView]:
    """List tasks, filtered to slots starting on or after *start* / before *end* when given."""
    if start is None and end is None:
        tasks = task_repo.list_all()
    else:
        tasks = task_repo.list_with_slots_between(start, end)
    return [build_task_view(t, task_repo, machine_repo, operator_repo) for t in tasks]


def create_task(
    body: TaskInput,
    *,
    task_repo: TaskRepository,
    machine_repo: MachineRepository,
    operator_repo: OperatorRepository,
    locks: ResourceLockRegistry | None = None,
    settings: Settings | None = None,
) -> TaskView:
    settings = settings or get_settings()
    if not body.title:
        raise ValidationError("title is required", code="MISSING_TITLE")
    _check_status(body.status, settings)
    quantity = body.quantity if body.quantity is not None else 1
    completed = body.completed_quantity if body.completed_quantity is not None else 0
    _check_quantities(quantity, completed)
    ensure_resources_exist(body.machine_id, body.operator_id, machine_repo, operator_repo)

    task = Task(
        title=body.title,
        description=body.description,
        status=body.status or settings.default_status,
        quantity=quantity,
        completed_quantity=completed,
        item_id=body.item_id,
        project_id=body.project_id,
        machine_id=body.machine_id,
        operator_id=body.operator_id,
    )
    slots = resolve_slots(task.id, body.time_slots, settings.default_slot_duration_min)

    with hold_resources(locks, _resources(task.machine_id, task.operator_id)):
        check_slot_conflicts(
            slots,
            task.machine_id,
            task.operator_id,
            exclude_task_id=None,
            task_repo=task_repo,
            machine_repo=machine_repo,
            operator_repo=operator_repo,
        )
        task_repo.add(task, slots)

    logger.info("Created task %s with %d time slot(s)", task.id, len(slots))
    return build_task_view(task, task_repo, machine_repo, operator_repo)


def update_task(
    task_id: str,
    body: TaskInput,
    *,
    task_repo: TaskRepository,
    machine_repo: MachineRepository,
    operator_repo: OperatorRepository,
    locks: ResourceLockRegistry | None = None,
    settings: Settings | None = None,
) -> TaskView:
    """Replace a task's slots and resource links; scalar fields update when given."""
    settings = settings or get_settings()
    with hold_task(locks, task_id):
        task = _require_task(task_repo, task_id)
        _check_status(body.status, settings)
        quantity = body.quantity if body.quantity is not None else task.quantity
        completed = (
            body.completed_quantity
            if body.completed_quantity is not None
            else task.completed_quantity
        )
        _check_quantities(quantity, completed)
        ensure_resources_exist(
            body.machine_id, body.operator_id, machine_repo, operator_repo
        )

        owned_ids = {s.id for s in task_repo.slots_for_task(task.id)}
        slots = resolve_slots(
            task.id, body.time_slots, settings.default_slot_duration_min, owned_ids
        )
        changes = {
            "quantity": quantity,
            "completed_quantity": completed,
            "machine_id": body.machine_id,
            "operator_id": body.operator_id,
            "updated_at": datetime.now(timezone.utc),
        }
        for field in ("title", "description", "status", "item_id", "project_id"):
            value = getattr(body, field)
            if value is not None:
                changes[field] = value
        updated = task.model_copy(update=changes)

        with hold_resources(locks, _resources(updated.machine_id, updated.operator_id)):
            check_slot_conflicts(
                slots,
                updated.machine_id,
                updated.operator_id,
                exclude_task_id=task.id,
                task_repo=task_repo,
                machine_repo=machine_repo,
                operator_repo=operator_repo,
            )
            task_repo.save(updated, slots=slots)

    logger.info("Updated task %s with %d time slot(s)", task.id, len(slots))
    return build_task_view(updated, task_repo, machine_repo, operator_repo)


def patch_task(
    task_id: str,
    patch: TaskPatch,
    *,
    task_repo: TaskRepository,
    machine_repo: MachineRepository,
    operator_repo: OperatorRepository,
    locks: ResourceLockRegistry | None = None,
    settings: Settings | None = None,
) -> TaskView:
    """Apply only the fields present in *patch*.

    Moving a task that already has slots to another machine or operator
    re-checks every existing slot against the new resources.
    """
    settings = settings or get_settings()
    fields = patch.model_fields_set
    with hold_task(locks, task_id):
        task = _require_task(task_repo, task_id)
        if "status" in fields:
            _check_status(patch.status, settings)

        changes = {f: getattr(patch, f) for f in fields}
        for field in ("title", "status", "quantity", "completed_quantity"):
            if field in changes and changes[field] is None:
                raise ValidationError(f"{field} cannot be null", code="VALIDATION_ERROR")
        changes["updated_at"] = datetime.now(timezone.utc)
        updated = task.model_copy(update=changes)
        _check_quantities(updated.quantity, updated.completed_quantity)

        resources_touched = bool(fields & {"machine_id", "operator_id"})
        if resources_touched:
            ensure_resources_exist(
                updated.machine_id, updated.operator_id, machine_repo, operator_repo
            )

        with hold_resources(locks, _resources(updated.machine_id, updated.operator_id)):
            slots = task_repo.slots_for_task(task.id)
            if resources_touched and slots:
                check_slot_conflicts(
                    slots,
                    updated.machine_id,
                    updated.operator_id,
                    exclude_task_id=task.id,
                    task_repo=task_repo,
                    machine_repo=machine_repo,
                    operator_repo=operator_repo,
                )
            task_repo.save(updated)

    logger.info("Patched task %s (%s)", task.id, ", ".join(sorted(fields)) or "no fields")
    return build_task_view(updated, task_repo, machine_repo, operator_repo)


def delete_task(
    task_id: str, task_repo: TaskRepository, locks: ResourceLockRegistry | None = None
) -> None:
    with hold_task(locks, task_id):
        _require_task(task_repo, task_id)
        task_repo.delete(task_id)
    logger.info("Deleted task %s", task_id)
