"""Task write path: create, replace, patch, schedule and delete.

Every write validates its payload first, then takes the locks for the task
and for every machine/operator whose bookings it checks, then runs the
conflict check and all inserts/deletes inside one atomic unit. Nothing is
written unless everything succeeds.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from datetime import datetime

from shopfloor.config import Settings
from shopfloor.domain.errors import SchedulingConflict, ValidationFailed
from shopfloor.domain.models import (
    ConflictCheckRequest,
    ConflictCheckResult,
    ScheduleRequest,
    TaskPatch,
    TaskPayload,
    TaskRead,
    TaskStatus,
    TimeSlotInput,
)
from shopfloor.repos.database import Database
from shopfloor.repos.sql import ShopfloorRepository
from shopfloor.repos.tables import Task
from shopfloor.services.conflicts import check_scheduling_conflicts, find_slots_conflict
from shopfloor.services.locks import (
    ResourceLocks,
    machine_keys,
    operator_keys,
    task_key,
)
from shopfloor.services.overlap import TimeWindow, find_internal_overlap

logger = logging.getLogger(__name__)

PlannedSlot = tuple[TimeWindow, int]


def _dedupe(ids: Iterable[str] | None) -> list[str]:
    return list(dict.fromkeys(ids or []))


def _require_title(title: str | None) -> str:
    if title is None or not title.strip():
        raise ValidationFailed("MISSING_TITLE", "title is required")
    return title


def check_quantities(quantity: int, completed_quantity: int) -> None:
    if quantity < 0:
        raise ValidationFailed(
            "BAD_QUANTITY",
            "Quantity cannot be negative",
            details={"quantity": quantity},
        )
    if completed_quantity < 0 or completed_quantity > quantity:
        raise ValidationFailed(
            "BAD_QUANTITY",
            "Completed quantity cannot exceed total quantity",
            details={"quantity": quantity, "completed_quantity": completed_quantity},
        )


def plan_slots(slots: Sequence[TimeSlotInput], default_duration_min: int) -> list[PlannedSlot]:
    """Resolve each slot to a window and reject malformed or overlapping ones."""
    planned: list[PlannedSlot] = []
    for index, slot in enumerate(slots):
        if slot.end is not None:
            if slot.end <= slot.start:
                raise ValidationFailed(
                    "INVALID_TIME_SLOT",
                    "Time slot end must be after its start",
                    details={"slot": index},
                )
            window = TimeWindow(start=slot.start, end=slot.end)
            duration = slot.duration_min or math.ceil(
                (slot.end - slot.start).total_seconds() / 60
            )
        else:
            duration = slot.duration_min or default_duration_min
            window = TimeWindow.from_duration(slot.start, duration)
        planned.append((window, duration))

    clash = find_internal_overlap([window for window, _ in planned])
    if clash is not None:
        raise ValidationFailed(
            "TIME_SLOT_OVERLAP",
            "Time slots within the same task cannot overlap",
            details={"slots": list(clash)},
        )
    return planned


def _slot_rows(planned: Sequence[PlannedSlot]) -> list[tuple[datetime, datetime, int]]:
    return [(window.start, window.end, duration) for window, duration in planned]


class TaskService:
    def __init__(self, db: Database, locks: ResourceLocks, settings: Settings) -> None:
        self.db = db
        self.locks = locks
        self.settings = settings

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, task_id: str) -> TaskRead:
        with self.db.session() as session:
            return TaskRead.model_validate(ShopfloorRepository(session).load_task(task_id))

    def check_conflicts(self, request: ConflictCheckRequest) -> ConflictCheckResult:
        with self.db.session() as session:
            return check_scheduling_conflicts(
                ShopfloorRepository(session),
                request.scheduled_at,
                request.duration_min,
                _dedupe(request.machine_ids),
                _dedupe(request.operator_ids),
                request.exclude_task_id,
            )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, payload: TaskPayload) -> TaskRead:
        title = _require_title(payload.title)
        check_quantities(payload.quantity, payload.completed_quantity)
        planned = plan_slots(payload.time_slots, self.settings.DEFAULT_SLOT_DURATION_MIN)
        machine_ids = _dedupe(payload.machine_ids)
        operator_ids = _dedupe(payload.operator_ids)

        with self.locks.hold(machine_keys(machine_ids) + operator_keys(operator_ids)):
            with self.db.atomic("create_task") as session:
                repo = ShopfloorRepository(session)
                repo.require_machines(machine_ids)
                repo.require_operators(operator_ids)
                self._raise_on_conflict(
                    repo, "create_task", planned, machine_ids, operator_ids, exclude_task_id=None
                )
                item_id = self._resolve_item(repo, payload.item_id, payload.project_id)

                task = repo.add_task(
                    title=title,
                    description=payload.description,
                    status=payload.status,
                    quantity=payload.quantity,
                    completed_quantity=payload.completed_quantity,
                    item_id=item_id,
                )
                repo.replace_time_slots(task, _slot_rows(planned))
                repo.replace_machine_links(task, machine_ids)
                repo.replace_operator_links(task, operator_ids)
                result = TaskRead.model_validate(repo.refresh_task(task))

        logger.info(
            "Created task %s with %d slot(s), machines=%s operators=%s",
            result.id,
            len(planned),
            machine_ids,
            operator_ids,
        )
        return result

    def replace(self, task_id: str, payload: TaskPayload) -> TaskRead:
        """Overwrite the task and swap its whole slot and assignment sets."""
        title = _require_title(payload.title)
        check_quantities(payload.quantity, payload.completed_quantity)
        planned = plan_slots(payload.time_slots, self.settings.DEFAULT_SLOT_DURATION_MIN)
        machine_ids = _dedupe(payload.machine_ids)
        operator_ids = _dedupe(payload.operator_ids)

        with self.locks.hold([task_key(task_id)]):
            with self.locks.hold(machine_keys(machine_ids) + operator_keys(operator_ids)):
                with self.db.atomic("replace_task") as session:
                    repo = ShopfloorRepository(session)
                    task = repo.require_task(task_id)
                    repo.require_machines(machine_ids)
                    repo.require_operators(operator_ids)
                    self._raise_on_conflict(
                        repo, "replace_task", planned, machine_ids, operator_ids, task_id
                    )

                    fields = dict(
                        title=title,
                        description=payload.description,
                        status=payload.status,
                        quantity=payload.quantity,
                        completed_quantity=payload.completed_quantity,
                    )
                    if payload.model_fields_set & {"item_id", "project_id"}:
                        fields["item_id"] = self._resolve_item(
                            repo, payload.item_id, payload.project_id
                        )

                    repo.update_task(task, **fields)
                    repo.replace_time_slots(task, _slot_rows(planned))
                    repo.replace_machine_links(task, machine_ids)
                    repo.replace_operator_links(task, operator_ids)
                    result = TaskRead.model_validate(repo.refresh_task(task))

        logger.info("Replaced task %s with %d slot(s)", task_id, len(planned))
        return result

    def patch(self, task_id: str, patch: TaskPatch) -> TaskRead:
        """Apply only the fields present in *patch*.

        A change of machines or operators alone still re-checks the task's
        existing slots against the new resource set.
        """
        if patch.is_set("title"):
            _require_title(patch.title)
        planned = (
            plan_slots(patch.time_slots or [], self.settings.DEFAULT_SLOT_DURATION_MIN)
            if patch.is_set("time_slots")
            else None
        )
        resources_changed = patch.is_set("machine_ids") or patch.is_set("operator_ids")

        with self.locks.hold([task_key(task_id)]):
            # Assignments cannot change under us while we hold the task lock.
            with self.db.session() as session:
                current = ShopfloorRepository(session).require_task(task_id)
                machine_ids = [link.machine_id for link in current.machine_links]
                operator_ids = [link.operator_id for link in current.operator_links]

            if patch.is_set("machine_ids"):
                machine_ids = _dedupe(patch.machine_ids)
            if patch.is_set("operator_ids"):
                operator_ids = _dedupe(patch.operator_ids)

            needs_check = resources_changed or planned is not None
            resource_keys = (
                machine_keys(machine_ids) + operator_keys(operator_ids) if needs_check else []
            )

            with self.locks.hold(resource_keys):
                with self.db.atomic("patch_task") as session:
                    repo = ShopfloorRepository(session)
                    task = repo.require_task(task_id)
                    fields = self._patched_fields(repo, task, patch)

                    if needs_check:
                        repo.require_machines(machine_ids)
                        repo.require_operators(operator_ids)
                        slots = planned
                        if slots is None:
                            slots = [
                                (TimeWindow(start=slot.start, end=slot.end), slot.duration_min)
                                for slot in task.time_slots
                            ]
                        self._raise_on_conflict(
                            repo, "patch_task", slots, machine_ids, operator_ids, task_id
                        )

                    repo.update_task(task, **fields)
                    if planned is not None:
                        repo.replace_time_slots(task, _slot_rows(planned))
                    if patch.is_set("machine_ids"):
                        repo.replace_machine_links(task, machine_ids)
                    if patch.is_set("operator_ids"):
                        repo.replace_operator_links(task, operator_ids)
                    result = TaskRead.model_validate(repo.refresh_task(task))

        logger.info("Patched task %s fields=%s", task_id, sorted(patch.model_fields_set))
        return result

    def schedule(self, request: ScheduleRequest) -> TaskRead:
        """Put a task on a single slot with the given resources and mark it SCHEDULED."""
        window = TimeWindow.from_duration(request.scheduled_at, request.duration_min)
        planned = [(window, request.duration_min)]
        machine_ids = _dedupe(request.machine_ids)
        operator_ids = _dedupe(request.operator_ids)

        with self.locks.hold([task_key(request.task_id)]):
            with self.locks.hold(machine_keys(machine_ids) + operator_keys(operator_ids)):
                with self.db.atomic("schedule_task") as session:
                    repo = ShopfloorRepository(session)
                    task = repo.require_task(request.task_id)
                    repo.require_machines(machine_ids)
                    repo.require_operators(operator_ids)
                    self._raise_on_conflict(
                        repo,
                        "schedule_task",
                        planned,
                        machine_ids,
                        operator_ids,
                        request.task_id,
                    )

                    fields: dict = {"status": TaskStatus.SCHEDULED}
                    if "item_id" in request.model_fields_set:
                        fields["item_id"] = self._resolve_item(repo, request.item_id, None)

                    repo.update_task(task, **fields)
                    repo.replace_time_slots(task, _slot_rows(planned))
                    repo.replace_machine_links(task, machine_ids)
                    repo.replace_operator_links(task, operator_ids)
                    result = TaskRead.model_validate(repo.refresh_task(task))

        logger.info(
            "Scheduled task %s at %s for %d min",
            request.task_id,
            request.scheduled_at.isoformat(),
            request.duration_min,
        )
        return result

    def delete(self, task_id: str) -> None:
        with self.locks.hold([task_key(task_id)]):
            with self.db.atomic("delete_task") as session:
                repo = ShopfloorRepository(session)
                repo.delete_task(repo.require_task(task_id))
        logger.info("Deleted task %s", task_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_item(
        self,
        repo: ShopfloorRepository,
        item_id: str | None,
        project_id: str | None,
    ) -> str | None:
        """Use *item_id*, else the project's first item, creating one if needed."""
        if item_id:
            return repo.require_item(item_id).id
        if not project_id:
            return None

        repo.require_project(project_id)
        item = repo.first_item_for_project(project_id)
        if item is None:
            item = repo.add_item(project_id, self.settings.DEFAULT_ITEM_NAME)
            logger.info("Created default item %s for project %s", item.id, project_id)
        return item.id

    def _patched_fields(self, repo: ShopfloorRepository, task: Task, patch: TaskPatch) -> dict:
        fields: dict = {}
        if patch.is_set("title"):
            fields["title"] = patch.title
        if patch.is_set("description"):
            fields["description"] = patch.description
        if patch.is_set("status") and patch.status is not None:
            fields["status"] = patch.status
        if patch.is_set("quantity") and patch.quantity is not None:
            fields["quantity"] = patch.quantity
        if patch.is_set("completed_quantity") and patch.completed_quantity is not None:
            fields["completed_quantity"] = patch.completed_quantity
        if patch.is_set("item_id"):
            fields["item_id"] = self._resolve_item(repo, patch.item_id, None)

        check_quantities(
            fields.get("quantity", task.quantity),
            fields.get("completed_quantity", task.completed_quantity),
        )
        return fields

    def _raise_on_conflict(
        self,
        repo: ShopfloorRepository,
        operation: str,
        planned: Sequence[PlannedSlot],
        machine_ids: Sequence[str],
        operator_ids: Sequence[str],
        exclude_task_id: str | None,
    ) -> None:
        report = find_slots_conflict(
            repo,
            [window for window, _ in planned],
            machine_ids,
            operator_ids,
            exclude_task_id,
        )
        if report is None:
            return
        logger.warning(
            "%s rejected: %s %s already booked by task %s (%s - %s)",
            operation,
            report.conflict_type.value,
            report.resource_id,
            report.conflicting_task_id,
            report.window_start.isoformat(),
            report.window_end.isoformat(),
        )
        raise SchedulingConflict(report)
