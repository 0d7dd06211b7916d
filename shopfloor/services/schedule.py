"""Read side for the calendar and Gantt views."""

from __future__ import annotations

from datetime import datetime

from shopfloor.domain.models import GanttItem, GanttProject, TaskRead, to_utc
from shopfloor.repos.database import Database
from shopfloor.repos.sql import ShopfloorRepository


class ScheduleQueries:
    def __init__(self, db: Database) -> None:
        self.db = db

    def list_scheduled_tasks(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[TaskRead]:
        """Return tasks with at least one slot starting inside ``[start, end]``.

        Each bound is optional and applies on its own; with neither bound
        every task is returned, slotted or not. Tasks come back in creation
        order, their slots by start time.
        """
        start = to_utc(start) if start is not None else None
        end = to_utc(end) if end is not None else None
        with self.db.session() as session:
            tasks = ShopfloorRepository(session).list_tasks(start, end)
            return [TaskRead.model_validate(task) for task in tasks]

    def gantt_projects(self) -> list[GanttProject]:
        """Active and completed projects, with only the tasks that have slots."""
        with self.db.session() as session:
            projects = ShopfloorRepository(session).list_gantt_projects()
            return [
                GanttProject(
                    id=project.id,
                    name=project.name,
                    status=project.status,
                    items=[
                        GanttItem(
                            id=item.id,
                            name=item.name,
                            status=item.status,
                            tasks=[
                                TaskRead.model_validate(task)
                                for task in item.tasks
                                if task.time_slots
                            ],
                        )
                        for item in project.items
                    ],
                )
                for project in projects
            ]
