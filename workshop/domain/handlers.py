"""Timeline handlers subscribed to the event bus at startup."""

from __future__ import annotations

import logging

from workshop.domain.bus import EventBus
from workshop.domain.events import (
    SchedulingConflictDetected,
    TaskCreated,
    TaskResourcesChanged,
    TaskScheduled,
)
from workshop.domain.models import TimelineEntry, TimelineEntryType
from workshop.repos.memory import TaskRepository, TimelineRepository

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Records a per-task timeline from the events published by the API layer."""

    def __init__(
        self,
        bus: EventBus,
        task_repo: TaskRepository,
        timeline_repo: TimelineRepository,
    ) -> None:
        self.bus = bus
        self.task_repo = task_repo
        self.timeline_repo = timeline_repo
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(TaskCreated, self.on_task_created)
        self.bus.subscribe(TaskScheduled, self.on_task_scheduled)
        self.bus.subscribe(TaskResourcesChanged, self.on_task_resources_changed)
        self.bus.subscribe(SchedulingConflictDetected, self.on_conflict_detected)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_task_created(self, event: TaskCreated) -> None:
        if self.task_repo.get(event.task_id) is None:
            return
        self.timeline_repo.add(
            TimelineEntry(task_id=event.task_id, type=TimelineEntryType.CREATED)
        )

    def on_task_scheduled(self, event: TaskScheduled) -> None:
        if self.task_repo.get(event.task_id) is None:
            return
        entry_type = (
            TimelineEntryType.RESCHEDULED if event.rescheduled else TimelineEntryType.SCHEDULED
        )
        self.timeline_repo.add(
            TimelineEntry(
                task_id=event.task_id,
                type=entry_type,
                payload={
                    "time_slot_ids": event.time_slot_ids,
                    "machine_id": event.machine_id,
                    "operator_id": event.operator_id,
                },
            )
        )

    def on_task_resources_changed(self, event: TaskResourcesChanged) -> None:
        if self.task_repo.get(event.task_id) is None:
            return
        self.timeline_repo.add(
            TimelineEntry(
                task_id=event.task_id,
                type=TimelineEntryType.RESOURCES_CHANGED,
                payload={"machine_id": event.machine_id, "operator_id": event.operator_id},
            )
        )

    def on_conflict_detected(self, event: SchedulingConflictDetected) -> None:
        if self.task_repo.get(event.task_id) is None:
            return
        logger.info(
            "Task %s rejected: %s busy with task %s",
            event.task_id,
            event.conflict_type.value,
            event.conflicting_task_id,
        )
        self.timeline_repo.add(
            TimelineEntry(
                task_id=event.task_id,
                type=TimelineEntryType.CONFLICT_REJECTED,
                payload={
                    "conflict_type": event.conflict_type.value,
                    "conflicting_task_id": event.conflicting_task_id,
                    "conflicting_time_slot_id": event.conflicting_time_slot_id,
                },
            )
        )
