"""Concurrent writers must never double-book a resource."""

import gc
import threading
from datetime import datetime, timezone

import pytest

from shopfloor.domain.errors import SchedulingConflict
from shopfloor.domain.models import TaskPatch, TaskPayload, TimeSlotInput
from shopfloor.repos.tables import Task, TaskMachine
from shopfloor.services.locks import ResourceBusy, ResourceLocks

_START = datetime(2026, 6, 1, 10, 0, tzinfo=timezone.utc)


def _race(workers, target):
    barrier = threading.Barrier(workers)
    outcomes = []
    guard = threading.Lock()

    def run(index):
        barrier.wait()
        try:
            result = target(index)
        except Exception as exc:  # collected and asserted on below
            result = exc
        with guard:
            outcomes.append(result)

    threads = [threading.Thread(target=run, args=(i,)) for i in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


def test_only_one_of_many_racing_creates_wins(service, seed):
    """Eight creates race for one machine and window; exactly one commits."""
    m1 = seed.machine()

    outcomes = _race(
        8,
        lambda i: service.create(
            TaskPayload(
                title=f"job {i}",
                machine_ids=[m1],
                time_slots=[TimeSlotInput(start=_START, duration_min=60)],
            )
        ),
    )

    failures = [o for o in outcomes if isinstance(o, Exception)]
    assert len(outcomes) == 8
    assert len(failures) == 7
    assert all(isinstance(f, SchedulingConflict) for f in failures)
    assert seed.count(Task) == 1


def test_disjoint_resources_do_not_block_each_other(service, seed):
    """Creates on different machines all succeed side by side."""
    machines = [seed.machine(f"M{i}") for i in range(4)]

    outcomes = _race(
        4,
        lambda i: service.create(
            TaskPayload(
                title=f"job {i}",
                machine_ids=[machines[i]],
                time_slots=[TimeSlotInput(start=_START, duration_min=60)],
            )
        ),
    )

    assert not [o for o in outcomes if isinstance(o, Exception)]
    assert seed.count(Task) == 4


def test_locks_are_released_when_the_body_raises():
    """An exception inside hold() still releases every key."""
    locks = ResourceLocks(timeout=0.1)
    keys = [("machine", "m1"), ("operator", "o1")]

    with pytest.raises(RuntimeError):
        with locks.hold(keys):
            raise RuntimeError("boom")

    with locks.hold(keys):
        pass


def test_busy_lock_times_out():
    """Waiting past the timeout on a held key raises ResourceBusy (503)."""
    locks = ResourceLocks(timeout=0.05)
    held = threading.Event()
    release = threading.Event()

    def holder():
        with locks.hold([("machine", "m1")]):
            held.set()
            release.wait(5)

    thread = threading.Thread(target=holder)
    thread.start()
    held.wait(5)
    try:
        with pytest.raises(ResourceBusy) as exc_info:
            with locks.hold([("machine", "m1")]):
                pass
        assert exc_info.value.status == 503
        assert exc_info.value.code == "RESOURCE_BUSY"
    finally:
        release.set()
        thread.join(5)


def _slot(hour, minute=0):
    return TimeSlotInput(start=_START.replace(hour=hour, minute=minute), duration_min=60)


def test_racing_operator_patches_book_the_operator_once(service, seed):
    """A [10:00,11:00) and D [10:30,11:30) both grab Dana; only one patch commits."""
    dana = seed.operator("Dana")
    task_a = service.create(TaskPayload(title="A", time_slots=[_slot(10)]))
    task_d = service.create(TaskPayload(title="D", time_slots=[_slot(10, 30)]))
    ids = [task_a.id, task_d.id]

    outcomes = _race(2, lambda i: service.patch(ids[i], TaskPatch(operator_ids=[dana])))

    failures = [o for o in outcomes if isinstance(o, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], SchedulingConflict)
    holders = [t for t in (service.get(ids[0]), service.get(ids[1])) if t.operators]
    assert len(holders) == 1


def test_replace_onto_machine_races_create_on_same_machine(service, seed):
    """Moving a task onto M1 and creating a new M1 booking cannot both win."""
    m1 = seed.machine("M1")
    moving = service.create(TaskPayload(title="moving", time_slots=[_slot(14)]))
    payloads = [
        TaskPayload(title="moving", machine_ids=[m1], time_slots=[_slot(10)]),
        TaskPayload(title="fresh", machine_ids=[m1], time_slots=[_slot(10, 30)]),
    ]

    def write(i):
        if i == 0:
            return service.replace(moving.id, payloads[0])
        return service.create(payloads[1])

    outcomes = _race(2, write)

    failures = [o for o in outcomes if isinstance(o, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], SchedulingConflict)
    assert seed.count(TaskMachine) == 1


def test_lock_entries_are_dropped_once_released(service, seed):
    """Deleted tasks and idle resources leave nothing behind in the lock registry."""
    m1 = seed.machine()
    task = service.create(
        TaskPayload(title="A", machine_ids=[m1], time_slots=[_slot(10)])
    )
    service.delete(task.id)
    gc.collect()

    assert len(service.locks) == 0
