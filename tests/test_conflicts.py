"""Tests for the conflict-detection service."""

from datetime import datetime, timezone

from shopfloor.domain.errors import conflict_message
from shopfloor.domain.models import ResourceType, TaskPayload, TimeSlotInput
from shopfloor.repos.sql import ShopfloorRepository
from shopfloor.services.conflicts import check_scheduling_conflicts


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 6, 1, hour, minute, tzinfo=timezone.utc)


def _book(service, title, start, duration_min=60, machine_ids=(), operator_ids=()):
    return service.create(
        TaskPayload(
            title=title,
            machine_ids=list(machine_ids),
            operator_ids=list(operator_ids),
            time_slots=[TimeSlotInput(start=start, duration_min=duration_min)],
        )
    )


class _ExplodingRepo:
    def find_assignments_for(self, *args, **kwargs):
        raise AssertionError("no query expected for an unassigned task")


def test_unassigned_never_conflicts_and_issues_no_query():
    """A task with no machines or operators never hits storage."""
    result = check_scheduling_conflicts(_ExplodingRepo(), _at(10), 60, [], [])
    assert result.has_conflict is False
    assert result.conflict is None


def test_no_overlap(service, seed, db):
    """A window after the existing booking is not a conflict."""
    m1 = seed.machine()
    _book(service, "Drill batch", _at(8), machine_ids=[m1])

    with db.session() as session:
        result = check_scheduling_conflicts(ShopfloorRepository(session), _at(10), 60, [m1])
    assert result.has_conflict is False


def test_partial_overlap_reports_resource_task_and_window(service, seed, db):
    """A partial overlap reports the machine, the other task and the shared window."""
    m1 = seed.machine("CNC Mill 2")
    existing = _book(service, "Drill batch", _at(10), machine_ids=[m1])

    with db.session() as session:
        result = check_scheduling_conflicts(
            ShopfloorRepository(session), _at(10, 30), 60, [m1]
        )

    assert result.has_conflict is True
    assert result.conflict_type == ResourceType.MACHINE
    report = result.conflict
    assert report.resource_id == m1
    assert report.resource_name == "CNC Mill 2"
    assert report.conflicting_task_id == existing.id
    assert report.conflicting_task_title == "Drill batch"
    assert report.window_start == _at(10, 30)
    assert report.window_end == _at(11)
    assert conflict_message(report) == (
        'Machine "CNC Mill 2" is already assigned to task "Drill batch" '
        "from 10:00 AM to 11:00 AM"
    )


def test_exact_boundary_no_conflict(service, seed, db):
    """When the existing slot ends exactly where the new one starts, no conflict."""
    m1 = seed.machine()
    _book(service, "Drill batch", _at(9), machine_ids=[m1])

    with db.session() as session:
        result = check_scheduling_conflicts(ShopfloorRepository(session), _at(10), 60, [m1])
    assert result.has_conflict is False


def test_excluded_task_is_ignored(service, seed, db):
    """A task's own bookings are skipped when it is excluded."""
    m1 = seed.machine()
    existing = _book(service, "Drill batch", _at(10), machine_ids=[m1])

    with db.session() as session:
        result = check_scheduling_conflicts(
            ShopfloorRepository(session), _at(10), 60, [m1], exclude_task_id=existing.id
        )
    assert result.has_conflict is False


def test_machine_reported_before_operator(service, seed, db):
    """When both a machine and an operator are double-booked, the machine wins."""
    m1 = seed.machine()
    o1 = seed.operator()
    _book(service, "Operator job", _at(10), operator_ids=[o1])
    _book(service, "Machine job", _at(10), machine_ids=[m1])

    with db.session() as session:
        result = check_scheduling_conflicts(ShopfloorRepository(session), _at(10), 30, [m1], [o1])

    assert result.conflict_type == ResourceType.MACHINE
    assert result.conflict.conflicting_task_title == "Machine job"


def test_operator_conflict(service, seed, db):
    """Operators are checked the same way machines are."""
    o1 = seed.operator("Dana")
    _book(service, "Weld frame", _at(13), operator_ids=[o1])

    with db.session() as session:
        result = check_scheduling_conflicts(ShopfloorRepository(session), _at(12, 30), 45, [], [o1])

    assert result.conflict_type == ResourceType.OPERATOR
    assert result.conflict.resource_name == "Dana"
    assert result.conflict.window_start == _at(13)
    assert result.conflict.window_end == _at(13, 15)
    assert conflict_message(result.conflict).startswith('Operator "Dana"')


def test_first_listed_resource_wins(service, seed, db):
    """Among busy machines, the first one listed is reported."""
    m1 = seed.machine("Lathe")
    m2 = seed.machine("Press")
    _book(service, "Lathe job", _at(10), machine_ids=[m1])
    _book(service, "Press job", _at(10), machine_ids=[m2])

    with db.session() as session:
        repo = ShopfloorRepository(session)
        assert check_scheduling_conflicts(repo, _at(10), 30, [m2, m1]).conflict.resource_id == m2
        assert check_scheduling_conflicts(repo, _at(10), 30, [m1, m2]).conflict.resource_id == m1
