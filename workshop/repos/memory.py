"""In-memory repositories for tasks, time slots, resources and timelines."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import ExitStack, contextmanager
from datetime import datetime

from workshop.domain.errors import StoreError
from workshop.domain.models import (
    CandidateSlot,
    Machine,
    Operator,
    ResourceKind,
    Task,
    TimelineEntry,
    TimeSlot,
)

logger = logging.getLogger(__name__)


class MachineRepository:
    """Dict-backed store for Machine instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, Machine] = {}

    def add(self, machine: Machine) -> None:
        self._store[machine.id] = machine

    def get(self, machine_id: str) -> Machine | None:
        return self._store.get(machine_id)

    def list_all(self) -> list[Machine]:
        return sorted(self._store.values(), key=lambda m: m.name)


class OperatorRepository:
    """Dict-backed store for Operator instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, Operator] = {}

    def add(self, operator: Operator) -> None:
        self._store[operator.id] = operator

    def get(self, operator_id: str) -> Operator | None:
        return self._store.get(operator_id)

    def list_all(self) -> list[Operator]:
        return sorted(self._store.values(), key=lambda o: o.name)


class TaskRepository:
    """Dict-backed store for tasks and the time slots each task owns.

    Slots are never patched: :meth:`save` swaps a task's whole slot set in one
    step under the repository lock, so readers see either the old schedule or
    the new one.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._slots: dict[str, TimeSlot] = {}
        self._lock = threading.RLock()

    def add(self, task: Task, slots: Iterable[TimeSlot] = ()) -> None:
        with self._lock:
            if task.id in self._tasks:
                raise StoreError(f"Task {task.id} already exists")
            new_slots = list(slots)
            self._check_slot_ids(task.id, new_slots)
            self._tasks[task.id] = task
            self._put_slots(new_slots)

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def list_all(self) -> list[Task]:
        with self._lock:
            return sorted(self._tasks.values(), key=lambda t: t.created_at)

    def save(self, task: Task, slots: Iterable[TimeSlot] | None = None) -> None:
        """Store *task*, replacing its slot set when *slots* is given."""
        with self._lock:
            if task.id not in self._tasks:
                raise StoreError(f"Task {task.id} does not exist")
            new_slots = None if slots is None else list(slots)
            self._check_slot_ids(task.id, new_slots or [])
            self._tasks[task.id] = task
            if new_slots is not None:
                self._drop_slots(task.id)
                self._put_slots(new_slots)

    def delete(self, task_id: str) -> None:
        """Delete a task and its slots (cascade)."""
        with self._lock:
            self._tasks.pop(task_id, None)
            self._drop_slots(task_id)

    def slots_for_task(self, task_id: str) -> list[TimeSlot]:
        with self._lock:
            return sorted(
                (s for s in self._slots.values() if s.task_id == task_id),
                key=lambda s: s.start_date_time,
            )

    def list_with_slots_between(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> list[Task]:
        """Return tasks owning at least one slot that starts within [start, end]."""
        with self._lock:
            task_ids = {
                s.task_id
                for s in self._slots.values()
                if (start is None or s.start_date_time >= start)
                and (end is None or s.start_date_time <= end)
            }
            return [t for t in self.list_all() if t.id in task_ids]

    def find_candidate_slots(
        self,
        kind: ResourceKind,
        resource_id: str,
        *,
        starts_before: datetime | None = None,
        exclude_task_id: str | None = None,
        exclude_time_slot_id: str | None = None,
    ) -> list[CandidateSlot]:
        """Return slots of tasks currently linked to the given resource.

        This is only a coarse pre-filter on resource identity and stored start;
        deciding actual overlap is left to the conflict detector.
        """
        with self._lock:
            candidates = []
            for slot in self._slots.values():
                task = self._tasks.get(slot.task_id)
                if task is None or task.resource_id(kind) != resource_id:
                    continue
                if exclude_task_id is not None and task.id == exclude_task_id:
                    continue
                if exclude_time_slot_id is not None and slot.id == exclude_time_slot_id:
                    continue
                if starts_before is not None and slot.start_date_time >= starts_before:
                    continue
                candidates.append(CandidateSlot(slot=slot, task=task))
        logger.debug(
            "%d candidate slot(s) for %s %s", len(candidates), kind.value, resource_id
        )
        return candidates

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _check_slot_ids(self, task_id: str, slots: list[TimeSlot]) -> None:
        """Reject slots owned by another task, already stored for one, or repeated."""
        seen: set[str] = set()
        for slot in slots:
            if slot.task_id != task_id:
                raise StoreError(f"Time slot {slot.id} does not belong to task {task_id}")
            stored = self._slots.get(slot.id)
            if stored is not None and stored.task_id != task_id:
                raise StoreError(f"Time slot {slot.id} is owned by task {stored.task_id}")
            if slot.id in seen:
                raise StoreError(f"Time slot {slot.id} appears twice")
            seen.add(slot.id)

    def _put_slots(self, slots: list[TimeSlot]) -> None:
        for slot in slots:
            self._slots[slot.id] = slot

    def _drop_slots(self, task_id: str) -> None:
        for slot_id in [sid for sid, s in self._slots.items() if s.task_id == task_id]:
            del self._slots[slot_id]


class TimelineRepository:
    """List-backed store for TimelineEntry instances."""

    def __init__(self) -> None:
        self._entries: list[TimelineEntry] = []

    def add(self, entry: TimelineEntry) -> None:
        self._entries.append(entry)

    def list_for_task(self, task_id: str) -> list[TimelineEntry]:
        return sorted(
            [e for e in self._entries if e.task_id == task_id],
            key=lambda e: e.timestamp,
        )


class ResourceLockRegistry:
    """Advisory locks held across a conflict check and its write.

    A writer takes the lock of the task it rewrites first, reads the task
    under it, and only then takes the locks of the resources involved.
    Task locks are never requested while a resource lock is held.
    """

    def __init__(self) -> None:
        self._locks: dict[tuple[ResourceKind, str], threading.Lock] = {}
        self._task_locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: tuple[ResourceKind, str]) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    @contextmanager
    def hold_task(self, task_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._task_locks.setdefault(task_id, threading.Lock())
        with lock:
            yield

    @contextmanager
    def hold(self, resources: Iterable[tuple[ResourceKind, str]]) -> Iterator[None]:
        # Sorted acquisition keeps two writers on overlapping resources deadlock-free.
        keys = sorted(set(resources))
        with ExitStack() as stack:
            for key in keys:
                stack.enter_context(self._lock_for(key))
            yield
