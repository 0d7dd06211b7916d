"""SQLAlchemy-backed repository used by the scheduling services.

One ``ShopfloorRepository`` wraps one session; the caller decides the
transaction boundary (see ``Database.atomic``).
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import and_, delete, select
from sqlalchemy.orm import Session, selectinload

from shopfloor.domain.errors import NotFound
from shopfloor.domain.models import (
    AssignmentWindow,
    ProjectStatus,
    ResourceType,
)
from shopfloor.repos.tables import (
    Item,
    Machine,
    Operator,
    Project,
    Task,
    TaskMachine,
    TaskOperator,
    TimeSlot,
)


def _task_graph_options() -> list[Any]:
    return [
        selectinload(Task.item).selectinload(Item.project),
        selectinload(Task.machine_links),
        selectinload(Task.operator_links),
        selectinload(Task.time_slots),
    ]


class ShopfloorRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> Task | None:
        return self.session.get(Task, task_id)

    def require_task(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        if task is None:
            raise NotFound("task", task_id)
        return task

    def require_item(self, item_id: str) -> Item:
        item = self.session.get(Item, item_id)
        if item is None:
            raise NotFound("item", item_id)
        return item

    def require_project(self, project_id: str) -> Project:
        project = self.session.get(Project, project_id)
        if project is None:
            raise NotFound("project", project_id)
        return project

    def require_machines(self, machine_ids: Sequence[str]) -> list[Machine]:
        return self._require_all(Machine, "machine", machine_ids)

    def require_operators(self, operator_ids: Sequence[str]) -> list[Operator]:
        return self._require_all(Operator, "operator", operator_ids)

    def _require_all(self, model: type, entity: str, ids: Sequence[str]) -> list:
        if not ids:
            return []
        found = {
            row.id: row
            for row in self.session.scalars(select(model).where(model.id.in_(ids)))
        }
        for resource_id in ids:
            if resource_id not in found:
                raise NotFound(entity, resource_id)
        return [found[resource_id] for resource_id in ids]

    def first_item_for_project(self, project_id: str) -> Item | None:
        return self.session.scalars(
            select(Item)
            .where(Item.project_id == project_id)
            .order_by(Item.created_at, Item.id)
            .limit(1)
        ).first()

    # ------------------------------------------------------------------
    # Task writes
    # ------------------------------------------------------------------

    def add_task(self, **fields: Any) -> Task:
        task = Task(**fields)
        self.session.add(task)
        self.session.flush()
        return task

    def update_task(self, task: Task, **fields: Any) -> Task:
        for name, value in fields.items():
            setattr(task, name, value)
        task.updated_at = datetime.now(timezone.utc)
        self.session.flush()
        return task

    def replace_time_slots(
        self, task: Task, slots: Iterable[tuple[datetime, datetime, int]]
    ) -> None:
        """Delete every slot of *task*, then insert ``(start, end, duration_min)`` rows."""
        self.session.execute(delete(TimeSlot).where(TimeSlot.task_id == task.id))
        self.session.flush()
        self.session.expire(task, ["time_slots"])
        for start, end, duration_min in slots:
            self.session.add(
                TimeSlot(task_id=task.id, start=start, end=end, duration_min=duration_min)
            )
        self.session.flush()

    def replace_machine_links(self, task: Task, machine_ids: Sequence[str]) -> None:
        self.session.execute(delete(TaskMachine).where(TaskMachine.task_id == task.id))
        self.session.flush()
        self.session.expire(task, ["machine_links"])
        for machine_id in machine_ids:
            self.session.add(TaskMachine(task_id=task.id, machine_id=machine_id))
        self.session.flush()

    def replace_operator_links(self, task: Task, operator_ids: Sequence[str]) -> None:
        self.session.execute(delete(TaskOperator).where(TaskOperator.task_id == task.id))
        self.session.flush()
        self.session.expire(task, ["operator_links"])
        for operator_id in operator_ids:
            self.session.add(TaskOperator(task_id=task.id, operator_id=operator_id))
        self.session.flush()

    def delete_task(self, task: Task) -> None:
        self.session.delete(task)
        self.session.flush()

    def add_item(self, project_id: str, name: str) -> Item:
        item = Item(project_id=project_id, name=name)
        self.session.add(item)
        self.session.flush()
        return item

    def refresh_task(self, task: Task) -> Task:
        """Reload *task* with its whole relation graph after a write."""
        self.session.expire(task)
        return self.session.scalars(
            select(Task)
            .where(Task.id == task.id)
            .options(*_task_graph_options())
            .execution_options(populate_existing=True)
        ).one()

    # ------------------------------------------------------------------
    # Conflict lookups
    # ------------------------------------------------------------------

    def find_assignments_for(
        self,
        machine_ids: Sequence[str],
        operator_ids: Sequence[str],
        exclude_task_id: str | None = None,
        window: tuple[datetime, datetime] | None = None,
    ) -> list[AssignmentWindow]:
        """Return every slot of every task holding one of the given resources.

        *window*, when given, narrows the rows to slots that can possibly
        intersect it; the caller still decides overlap itself.
        """
        rows: list[AssignmentWindow] = []
        if machine_ids:
            rows.extend(
                self._assignment_windows(
                    ResourceType.MACHINE,
                    TaskMachine.machine_id,
                    TaskMachine.task_id,
                    Machine,
                    machine_ids,
                    exclude_task_id,
                    window,
                )
            )
        if operator_ids:
            rows.extend(
                self._assignment_windows(
                    ResourceType.OPERATOR,
                    TaskOperator.operator_id,
                    TaskOperator.task_id,
                    Operator,
                    operator_ids,
                    exclude_task_id,
                    window,
                )
            )
        return rows

    def _assignment_windows(
        self,
        resource_type: ResourceType,
        resource_fk: Any,
        task_fk: Any,
        resource_model: type,
        resource_ids: Sequence[str],
        exclude_task_id: str | None,
        window: tuple[datetime, datetime] | None,
    ) -> list[AssignmentWindow]:
        stmt = (
            select(
                resource_fk,
                resource_model.name,
                Task.id,
                Task.title,
                TimeSlot.start,
                TimeSlot.end,
            )
            .join(resource_model, resource_model.id == resource_fk)
            .join(Task, Task.id == task_fk)
            .join(TimeSlot, TimeSlot.task_id == Task.id)
            .where(resource_fk.in_(resource_ids))
            .order_by(TimeSlot.start, Task.created_at, Task.id)
        )
        if exclude_task_id is not None:
            stmt = stmt.where(Task.id != exclude_task_id)
        if window is not None:
            window_start, window_end = window
            stmt = stmt.where(and_(TimeSlot.start < window_end, TimeSlot.end > window_start))

        return [
            AssignmentWindow(
                resource_type=resource_type,
                resource_id=resource_id,
                resource_name=resource_name,
                task_id=task_id,
                task_title=task_title,
                slot_start=slot_start,
                slot_end=slot_end,
            )
            for resource_id, resource_name, task_id, task_title, slot_start, slot_end in (
                self.session.execute(stmt)
            )
        ]

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def load_task(self, task_id: str) -> Task:
        task = self.session.scalars(
            select(Task).where(Task.id == task_id).options(*_task_graph_options())
        ).first()
        if task is None:
            raise NotFound("task", task_id)
        return task

    def list_tasks(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> list[Task]:
        stmt = select(Task).options(*_task_graph_options()).order_by(Task.created_at, Task.id)

        slot_filters = []
        if start is not None:
            slot_filters.append(TimeSlot.start >= start)
        if end is not None:
            slot_filters.append(TimeSlot.start <= end)
        if slot_filters:
            stmt = stmt.where(Task.time_slots.any(and_(*slot_filters)))

        return list(self.session.scalars(stmt))

    def list_gantt_projects(self) -> list[Project]:
        stmt = (
            select(Project)
            .where(Project.status.in_([ProjectStatus.ACTIVE, ProjectStatus.COMPLETED]))
            .options(
                selectinload(Project.items)
                .selectinload(Item.tasks)
                .options(*_task_graph_options())
            )
            .order_by(Project.name)
        )
        return list(self.session.scalars(stmt))

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    def add_project(self, **fields: Any) -> Project:
        project = Project(**fields)
        self.session.add(project)
        self.session.flush()
        return project

    def list_projects(self) -> list[Project]:
        return list(self.session.scalars(select(Project).order_by(Project.name)))

    def add_project_item(self, project_id: str, **fields: Any) -> Item:
        self.require_project(project_id)
        item = Item(project_id=project_id, **fields)
        self.session.add(item)
        self.session.flush()
        return item

    def add_machine(self, **fields: Any) -> Machine:
        machine = Machine(**fields)
        self.session.add(machine)
        self.session.flush()
        return machine

    def list_machines(self) -> list[Machine]:
        return list(self.session.scalars(select(Machine).order_by(Machine.name)))

    def add_operator(self, **fields: Any) -> Operator:
        operator = Operator(**fields)
        self.session.add(operator)
        self.session.flush()
        return operator

    def list_operators(self) -> list[Operator]:
        return list(self.session.scalars(select(Operator).order_by(Operator.name)))
