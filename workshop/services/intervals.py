"""Interval arithmetic shared by conflict detection and slot validation."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from workshop.domain.models import TimeSlot


def overlaps(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    """Return True if [start_a, end_a) and [start_b, end_b) overlap.

    Overlap rule: start_a < end_b AND end_a > start_b.
    Ranges that only touch at an endpoint (end_a == start_b) do NOT overlap.
    """
    return start_a < end_b and end_a > start_b


def find_overlapping_pair(slots: Sequence[TimeSlot]) -> tuple[TimeSlot, TimeSlot] | None:
    """Return the first pair of slots in *slots* that overlap each other, if any."""
    for i, slot_a in enumerate(slots):
        for slot_b in slots[i + 1 :]:
            if overlaps(
                slot_a.start_date_time,
                slot_a.effective_end,
                slot_b.start_date_time,
                slot_b.effective_end,
            ):
                return slot_a, slot_b
    return None
