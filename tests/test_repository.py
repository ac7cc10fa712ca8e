"""Tests for the in-memory task/time-slot repository."""

from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from workshop.domain.errors import StoreError
from workshop.domain.models import ResourceKind, Task, TimeSlot
from workshop.repos.memory import ResourceLockRegistry, TaskRepository


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 1, 8, hour, minute, tzinfo=timezone.utc)


def _task_with_slots(repo: TaskRepository, *starts: datetime, **links) -> tuple[Task, list[TimeSlot]]:
    task = Task(title="Task", **links)
    slots = [TimeSlot(task_id=task.id, start_date_time=s, duration_min=60) for s in starts]
    repo.add(task, slots)
    return task, slots


def test_find_candidate_slots_filters_by_resource_field():
    repo = TaskRepository()
    on_machine, _ = _task_with_slots(repo, _at(9), machine_id="m1")
    _task_with_slots(repo, _at(9), operator_id="m1")  # same id, other kind

    found = repo.find_candidate_slots(ResourceKind.MACHINE, "m1")

    assert [c.task.id for c in found] == [on_machine.id]


def test_find_candidate_slots_coarse_start_filter():
    repo = TaskRepository()
    _, slots = _task_with_slots(repo, _at(8), _at(10), _at(12), machine_id="m1")

    found = repo.find_candidate_slots(ResourceKind.MACHINE, "m1", starts_before=_at(10))

    assert [c.slot.id for c in found] == [slots[0].id]


def test_find_candidate_slots_exclusions():
    repo = TaskRepository()
    own, own_slots = _task_with_slots(repo, _at(8), _at(10), operator_id="o1")
    other, _ = _task_with_slots(repo, _at(9), operator_id="o1")

    by_task = repo.find_candidate_slots(ResourceKind.OPERATOR, "o1", exclude_task_id=own.id)
    assert {c.task.id for c in by_task} == {other.id}

    by_slot = repo.find_candidate_slots(
        ResourceKind.OPERATOR, "o1", exclude_time_slot_id=own_slots[0].id
    )
    assert {c.slot.id for c in by_slot} == {own_slots[1].id} | {
        c.slot.id for c in by_task
    }


def test_candidates_follow_current_task_link():
    """Slots move with their task when its machine link changes."""
    repo = TaskRepository()
    task, _ = _task_with_slots(repo, _at(9), machine_id="m1")

    repo.save(task.model_copy(update={"machine_id": "m2"}))

    assert repo.find_candidate_slots(ResourceKind.MACHINE, "m1") == []
    assert len(repo.find_candidate_slots(ResourceKind.MACHINE, "m2")) == 1


def test_save_replaces_whole_slot_set():
    repo = TaskRepository()
    task, old = _task_with_slots(repo, _at(8), _at(10))
    new = TimeSlot(task_id=task.id, start_date_time=_at(14), duration_min=30)

    repo.save(task, slots=[new])

    assert repo.slots_for_task(task.id) == [new]


def test_save_without_slots_keeps_existing_slots():
    repo = TaskRepository()
    task, slots = _task_with_slots(repo, _at(8))
    repo.save(task.model_copy(update={"title": "Renamed"}))
    assert repo.get(task.id).title == "Renamed"
    assert repo.slots_for_task(task.id) == slots


def test_save_rejects_foreign_slots_without_changing_anything():
    repo = TaskRepository()
    task, slots = _task_with_slots(repo, _at(8))
    foreign = TimeSlot(task_id="someone-else", start_date_time=_at(9), duration_min=30)

    with pytest.raises(StoreError):
        repo.save(task.model_copy(update={"title": "Changed"}), slots=[foreign])

    assert repo.get(task.id).title == "Task"
    assert repo.slots_for_task(task.id) == slots


def test_save_refuses_slot_ids_owned_by_another_task():
    repo = TaskRepository()
    owner, owner_slots = _task_with_slots(repo, _at(8), machine_id="m1")
    other, _ = _task_with_slots(repo)
    stolen = TimeSlot(id=owner_slots[0].id, task_id=other.id, start_date_time=_at(10), duration_min=30)

    with pytest.raises(StoreError):
        repo.save(other, slots=[stolen])

    assert repo.slots_for_task(owner.id) == owner_slots
    assert repo.slots_for_task(other.id) == []


def test_add_refuses_repeated_slot_ids():
    repo = TaskRepository()
    task = Task(title="Twins")
    first = TimeSlot(task_id=task.id, start_date_time=_at(8), duration_min=30)
    twin = first.model_copy(update={"start_date_time": _at(10)})

    with pytest.raises(StoreError):
        repo.add(task, [first, twin])

    assert repo.get(task.id) is None
    assert repo.slots_for_task(task.id) == []


def test_save_unknown_task_is_a_store_error():
    repo = TaskRepository()
    with pytest.raises(StoreError):
        repo.save(Task(title="Ghost"))


def test_delete_cascades_to_slots():
    repo = TaskRepository()
    task, _ = _task_with_slots(repo, _at(8), machine_id="m1")
    repo.delete(task.id)
    assert repo.get(task.id) is None
    assert repo.slots_for_task(task.id) == []
    assert repo.find_candidate_slots(ResourceKind.MACHINE, "m1") == []


def test_slots_for_task_sorted_by_start():
    repo = TaskRepository()
    task, _ = _task_with_slots(repo, _at(12), _at(8), _at(10))
    starts = [s.start_date_time for s in repo.slots_for_task(task.id)]
    assert starts == [_at(8), _at(10), _at(12)]


def test_list_with_slots_between_is_inclusive():
    repo = TaskRepository()
    early, _ = _task_with_slots(repo, _at(8))
    late, _ = _task_with_slots(repo, _at(12))
    _task_with_slots(repo)  # unscheduled

    assert {t.id for t in repo.list_with_slots_between(_at(8), _at(12))} == {early.id, late.id}
    assert [t.id for t in repo.list_with_slots_between(start=_at(9))] == [late.id]
    assert [t.id for t in repo.list_with_slots_between(end=_at(9))] == [early.id]


def test_resource_locks_serialize_holders_of_the_same_resource():
    locks = ResourceLockRegistry()
    inside = threading.Event()
    release = threading.Event()
    second_entered = threading.Event()

    def first():
        with locks.hold([(ResourceKind.MACHINE, "m1")]):
            inside.set()
            release.wait(timeout=5)

    def second():
        with locks.hold([(ResourceKind.OPERATOR, "o1"), (ResourceKind.MACHINE, "m1")]):
            second_entered.set()

    t1 = threading.Thread(target=first)
    t1.start()
    inside.wait(timeout=5)
    t2 = threading.Thread(target=second)
    t2.start()

    assert second_entered.wait(timeout=0.2) is False
    release.set()
    t1.join(timeout=5)
    t2.join(timeout=5)
    assert second_entered.is_set()


def test_resource_locks_do_not_block_other_resources():
    locks = ResourceLockRegistry()
    with locks.hold([(ResourceKind.MACHINE, "m1")]):
        with locks.hold([(ResourceKind.MACHINE, "m2")]):
            pass
