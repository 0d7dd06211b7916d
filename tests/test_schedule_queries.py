"""Tests for the calendar listing, the Gantt view and the schedule action."""

from datetime import datetime, timezone

import pytest

from shopfloor.domain.errors import NotFound, SchedulingConflict
from shopfloor.domain.models import (
    ProjectStatus,
    ScheduleRequest,
    TaskPayload,
    TaskStatus,
    TimeSlotInput,
)
from shopfloor.repos.sql import ShopfloorRepository


def _day(day: int, hour: int = 9) -> datetime:
    return datetime(2026, 6, day, hour, 0, tzinfo=timezone.utc)


def _task(service, title, *starts, **fields):
    return service.create(
        TaskPayload(
            title=title,
            time_slots=[TimeSlotInput(start=start, duration_min=60) for start in starts],
            **fields,
        )
    )


@pytest.fixture()
def calendar(service):
    """Three scheduled tasks on June 1, 3 and 5, plus one without slots."""
    return {
        "early": _task(service, "early", _day(1)),
        "middle": _task(service, "middle", _day(3)),
        "late": _task(service, "late", _day(5)),
        "backlog": _task(service, "backlog"),
    }


def _titles(tasks):
    return [task.title for task in tasks]


# ── Listing ───────────────────────────────────────────────────────────


def test_no_bounds_lists_every_task_in_creation_order(queries, calendar):
    """Without bounds every task is listed, slotted or not."""
    assert _titles(queries.list_scheduled_tasks()) == ["early", "middle", "late", "backlog"]


def test_both_bounds_are_inclusive_on_slot_start(queries, calendar):
    """A slot starting exactly on either bound is included."""
    tasks = queries.list_scheduled_tasks(_day(3), _day(5))
    assert _titles(tasks) == ["middle", "late"]


def test_start_bound_only(queries, calendar):
    """A start bound alone filters out earlier tasks."""
    assert _titles(queries.list_scheduled_tasks(start=_day(2))) == ["middle", "late"]


def test_end_bound_only(queries, calendar):
    """An end bound alone filters out later tasks."""
    assert _titles(queries.list_scheduled_tasks(end=_day(3))) == ["early", "middle"]


def test_naive_bounds_are_taken_as_utc(queries, calendar):
    """Naive bounds are read as UTC."""
    tasks = queries.list_scheduled_tasks(datetime(2026, 6, 3, 9), datetime(2026, 6, 3, 9))
    assert _titles(tasks) == ["middle"]


def test_task_with_any_matching_slot_is_returned_with_all_slots(service, queries):
    """One matching slot lists the task with all of its slots."""
    task = _task(service, "split", _day(10), _day(1), _day(20))

    (listed,) = queries.list_scheduled_tasks(_day(9), _day(11))

    assert listed.id == task.id
    assert [slot.start for slot in listed.time_slots] == [_day(1), _day(10), _day(20)]


# ── Gantt ─────────────────────────────────────────────────────────────


def test_gantt_groups_slotted_tasks_by_project_and_item(service, queries, seed, db):
    """Gantt lists active projects by name and hides unscheduled tasks."""
    pump = seed.project("Pump housing")
    housing = seed.item(pump, "Housing")
    anchor = seed.project("Anchor bolts")
    with db.atomic("seed") as session:
        ShopfloorRepository(session).add_project(name="Archived", status=ProjectStatus.ON_HOLD)

    _task(service, "cut", _day(1), item_id=housing)
    _task(service, "unscheduled", item_id=housing)

    projects = queries.gantt_projects()

    assert [p.name for p in projects] == ["Anchor bolts", "Pump housing"]
    assert projects[0].id == anchor
    assert projects[0].items == []
    (item,) = projects[1].items
    assert item.name == "Housing"
    assert _titles(item.tasks) == ["cut"]


# ── Schedule action ───────────────────────────────────────────────────


def test_schedule_sets_single_slot_and_status(service, seed):
    """Scheduling replaces the slots with one and marks SCHEDULED."""
    m1 = seed.machine()
    task = _task(service, "cut", _day(1), _day(2))

    scheduled = service.schedule(
        ScheduleRequest(task_id=task.id, scheduled_at=_day(4, 13), duration_min=90, machine_ids=[m1])
    )

    assert scheduled.status == TaskStatus.SCHEDULED
    assert [(s.start, s.duration_min) for s in scheduled.time_slots] == [(_day(4, 13), 90)]
    assert [m.id for m in scheduled.machines] == [m1]


def test_schedule_conflict_leaves_task_untouched(service, seed):
    """A conflicting schedule changes nothing."""
    m1 = seed.machine()
    _task(service, "busy", _day(4, 13), machine_ids=[m1])
    task = _task(service, "cut", _day(1))

    with pytest.raises(SchedulingConflict):
        service.schedule(
            ScheduleRequest(task_id=task.id, scheduled_at=_day(4, 13), duration_min=30, machine_ids=[m1])
        )

    unchanged = service.get(task.id)
    assert unchanged.status == TaskStatus.PENDING
    assert [s.start for s in unchanged.time_slots] == [_day(1)]


def test_schedule_unknown_task(service):
    """Scheduling a missing task is TASK_NOT_FOUND."""
    with pytest.raises(NotFound):
        service.schedule(ScheduleRequest(task_id="missing", scheduled_at=_day(1), duration_min=30))


def test_schedule_without_item_keeps_current_item(service, seed):
    """Scheduling leaves the task's item alone unless item_id is sent."""
    project_id = seed.project()
    housing = seed.item(project_id, "Housing")
    task = _task(service, "cut", item_id=housing)

    kept = service.schedule(ScheduleRequest(task_id=task.id, scheduled_at=_day(4), duration_min=30))
    assert kept.item_id == housing

    cleared = service.schedule(
        ScheduleRequest(task_id=task.id, scheduled_at=_day(4), duration_min=30, item_id=None)
    )
    assert cleared.item_id is None
