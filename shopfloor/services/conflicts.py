"""Service for detecting machine/operator double-booking between tasks."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

from shopfloor.domain.models import (
    AssignmentWindow,
    ConflictCheckResult,
    ConflictReport,
    ResourceType,
)
from shopfloor.repos.sql import ShopfloorRepository
from shopfloor.services.overlap import TimeWindow, overlaps

logger = logging.getLogger(__name__)


def find_window_conflict(
    repo: ShopfloorRepository,
    window: TimeWindow,
    machine_ids: Sequence[str],
    operator_ids: Sequence[str],
    exclude_task_id: str | None = None,
) -> ConflictReport | None:
    """Return the first existing booking that collides with *window*.

    Machines are checked before operators; within a type, resources in the
    order given; within a resource, existing slots by start time.
    """
    if not machine_ids and not operator_ids:
        return None

    existing = repo.find_assignments_for(
        machine_ids,
        operator_ids,
        exclude_task_id,
        window=(window.start, window.end),
    )

    for resource_type, resource_ids in (
        (ResourceType.MACHINE, machine_ids),
        (ResourceType.OPERATOR, operator_ids),
    ):
        for resource_id in resource_ids:
            for booking in existing:
                if booking.resource_type != resource_type or booking.resource_id != resource_id:
                    continue
                if overlaps(window.start, window.end, booking.slot_start, booking.slot_end):
                    return _report(window, booking)
    return None


def find_slots_conflict(
    repo: ShopfloorRepository,
    windows: Sequence[TimeWindow],
    machine_ids: Sequence[str],
    operator_ids: Sequence[str],
    exclude_task_id: str | None = None,
) -> ConflictReport | None:
    """Check each of a task's windows in order; stop at the first conflict."""
    for window in windows:
        report = find_window_conflict(repo, window, machine_ids, operator_ids, exclude_task_id)
        if report is not None:
            return report
    return None


def check_scheduling_conflicts(
    repo: ShopfloorRepository,
    scheduled_at: datetime,
    duration_min: int,
    machine_ids: Sequence[str] = (),
    operator_ids: Sequence[str] = (),
    exclude_task_id: str | None = None,
) -> ConflictCheckResult:
    """Pre-flight check of ``[scheduled_at, scheduled_at + duration_min)``.

    Used by the calendar before it submits a drag/drop move.
    """
    window = TimeWindow.from_duration(scheduled_at, duration_min)
    report = find_window_conflict(repo, window, machine_ids, operator_ids, exclude_task_id)
    if report is None:
        return ConflictCheckResult(has_conflict=False)

    logger.info(
        "Conflict on %s %s with task %s",
        report.conflict_type.value,
        report.resource_id,
        report.conflicting_task_id,
    )
    return ConflictCheckResult(
        has_conflict=True, conflict_type=report.conflict_type, conflict=report
    )


def _report(window: TimeWindow, booking: AssignmentWindow) -> ConflictReport:
    shared = window.intersection(TimeWindow(start=booking.slot_start, end=booking.slot_end))
    return ConflictReport(
        conflict_type=booking.resource_type,
        resource_id=booking.resource_id,
        resource_name=booking.resource_name,
        conflicting_task_id=booking.task_id,
        conflicting_task_title=booking.task_title,
        window_start=shared.start,
        window_end=shared.end,
        slot_start=booking.slot_start,
        slot_end=booking.slot_end,
    )
