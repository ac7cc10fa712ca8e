"""Tests for the event bus handlers that build a task's timeline."""

from __future__ import annotations

import pytest

from workshop.domain.bus import EventBus
from workshop.domain.events import (
    SchedulingConflictDetected,
    TaskCreated,
    TaskResourcesChanged,
    TaskScheduled,
)
from workshop.domain.handlers import HandlerRegistry
from workshop.domain.models import ResourceKind, Task, TimelineEntryType
from workshop.repos.memory import TaskRepository, TimelineRepository


@pytest.fixture()
def env():
    """Fresh bus + repos + registry for each test."""
    bus = EventBus()
    task_repo = TaskRepository()
    timeline_repo = TimelineRepository()
    registry = HandlerRegistry(bus=bus, task_repo=task_repo, timeline_repo=timeline_repo)

    class Env:
        pass

    e = Env()
    e.bus = bus
    e.task_repo = task_repo
    e.timeline_repo = timeline_repo
    e.registry = registry
    return e


def _stored_task(env) -> Task:
    task = Task(title="Polish housing")
    env.task_repo.add(task)
    return task


def test_created_then_scheduled(env):
    task = _stored_task(env)

    env.bus.publish(TaskCreated(task_id=task.id))
    env.bus.publish(TaskScheduled(task_id=task.id, time_slot_ids=["s1"], machine_id="m1"))

    entries = env.timeline_repo.list_for_task(task.id)
    assert [e.type for e in entries] == [TimelineEntryType.CREATED, TimelineEntryType.SCHEDULED]
    assert entries[1].payload == {
        "time_slot_ids": ["s1"],
        "machine_id": "m1",
        "operator_id": None,
    }


def test_rescheduled_flag_changes_entry_type(env):
    task = _stored_task(env)
    env.bus.publish(TaskScheduled(task_id=task.id, time_slot_ids=["s2"], rescheduled=True))
    assert env.timeline_repo.list_for_task(task.id)[0].type == TimelineEntryType.RESCHEDULED


def test_resources_changed(env):
    task = _stored_task(env)
    env.bus.publish(TaskResourcesChanged(task_id=task.id, operator_id="o1"))
    entry = env.timeline_repo.list_for_task(task.id)[0]
    assert entry.type == TimelineEntryType.RESOURCES_CHANGED
    assert entry.payload["operator_id"] == "o1"


def test_conflict_detected_records_the_blocking_slot(env):
    task = _stored_task(env)

    env.bus.publish(
        SchedulingConflictDetected(
            task_id=task.id,
            conflict_type=ResourceKind.OPERATOR,
            conflicting_task_id="other",
            conflicting_time_slot_id="slot-9",
        )
    )

    entry = env.timeline_repo.list_for_task(task.id)[0]
    assert entry.type == TimelineEntryType.CONFLICT_REJECTED
    assert entry.payload == {
        "conflict_type": "operator",
        "conflicting_task_id": "other",
        "conflicting_time_slot_id": "slot-9",
    }


def test_events_for_unknown_tasks_are_ignored(env):
    env.bus.publish(TaskCreated(task_id="ghost"))
    env.bus.publish(TaskScheduled(task_id="ghost", time_slot_ids=[]))
    assert env.timeline_repo.list_for_task("ghost") == []


def test_bus_calls_handlers_in_registration_order():
    bus = EventBus()
    calls: list[str] = []
    bus.subscribe(TaskCreated, lambda e: calls.append("first"))
    bus.subscribe(TaskCreated, lambda e: calls.append("second"))

    bus.publish(TaskCreated(task_id="t"))

    assert calls == ["first", "second"]
