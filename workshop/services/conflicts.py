"""Service for detecting machine and operator double-bookings."""

from __future__ import annotations

import logging
from collections.abc import Iterator

from workshop.domain.models import (
    CandidateSlot,
    Conflict,
    ConflictCheck,
    ConflictResult,
    ConflictSlot,
    ResourceKind,
)
from workshop.repos.memory import MachineRepository, OperatorRepository, TaskRepository
from workshop.services.intervals import overlaps

logger = logging.getLogger(__name__)


def _describe(
    kind: ResourceKind,
    resource_id: str,
    candidate: CandidateSlot,
    machine_repo: MachineRepository,
    operator_repo: OperatorRepository,
) -> Conflict:
    slot = candidate.slot
    conflict = Conflict(
        task_id=candidate.task.id,
        title=candidate.task.title,
        time_slot=ConflictSlot(
            id=slot.id,
            start_date_time=slot.start_date_time,
            end_date_time=slot.effective_end,
            duration_min=slot.duration_min,
            is_primary=slot.is_primary,
        ),
    )
    if kind is ResourceKind.MACHINE:
        conflict.machine = machine_repo.get(resource_id)
    else:
        conflict.operator = operator_repo.get(resource_id)
    return conflict


def iter_conflicts(
    check: ConflictCheck,
    task_repo: TaskRepository,
    machine_repo: MachineRepository,
    operator_repo: OperatorRepository,
) -> Iterator[tuple[ResourceKind, Conflict]]:
    """Yield every committed slot the candidate would collide with.

    Machine conflicts come before operator conflicts. Within one resource the
    order is unspecified. The operator query only runs once the machine
    conflicts have been consumed.
    """
    start, end = check.scheduled_at, check.end
    for kind, resource_id in check.resources():
        candidates = task_repo.find_candidate_slots(
            kind,
            resource_id,
            starts_before=end,
            exclude_task_id=check.exclude_task_id,
            exclude_time_slot_id=check.exclude_time_slot_id,
        )
        for candidate in candidates:
            slot = candidate.slot
            if overlaps(start, end, slot.start_date_time, slot.effective_end):
                yield kind, _describe(kind, resource_id, candidate, machine_repo, operator_repo)


def check_conflicts(
    check: ConflictCheck,
    task_repo: TaskRepository,
    machine_repo: MachineRepository,
    operator_repo: OperatorRepository,
) -> ConflictResult:
    """Report the first conflict found for the candidate, machine checked first."""
    found = next(iter_conflicts(check, task_repo, machine_repo, operator_repo), None)
    if found is None:
        return ConflictResult(has_conflict=False)

    kind, conflict = found
    logger.warning(
        "%s conflict: candidate %s+%dmin overlaps slot %s of task %s",
        kind.label,
        check.scheduled_at.isoformat(),
        check.duration_min,
        conflict.time_slot.id,
        conflict.task_id,
    )
    return ConflictResult(has_conflict=True, conflict_type=kind, conflict_data=conflict)


def describe_conflict(result: ConflictResult) -> str:
    """Human-readable sentence naming the resource, the task and its slot."""
    data = result.conflict_data
    resource = data.machine if result.conflict_type is ResourceKind.MACHINE else data.operator
    name = resource.name if resource is not None else "unknown"
    return (
        f'{result.conflict_type.label} "{name}" is already assigned to task '
        f'"{data.title}" from {data.time_slot.start_date_time.isoformat()} '
        f"to {data.time_slot.end_date_time.isoformat()}"
    )
