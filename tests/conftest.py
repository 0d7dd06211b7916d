"""Shared fixtures: a fresh SQLite file database per test."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from shopfloor.config import Settings
from shopfloor.repos.database import Database
from shopfloor.repos.sql import ShopfloorRepository
from shopfloor.services.locks import ResourceLocks
from shopfloor.services.schedule import ScheduleQueries
from shopfloor.services.tasks import TaskService


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(DATABASE_URL=f"sqlite:///{tmp_path / 'shopfloor.db'}")


@pytest.fixture()
def db(settings):
    database = Database(settings.DATABASE_URL)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture()
def service(db, settings) -> TaskService:
    return TaskService(db, ResourceLocks(timeout=5), settings)


@pytest.fixture()
def queries(db) -> ScheduleQueries:
    return ScheduleQueries(db)


class Seed:
    """Creates reference rows (machines, operators, projects) and returns their ids."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def machine(self, name: str = "CNC Mill 2", type: str = "CNC") -> str:
        with self.db.atomic("seed") as session:
            return ShopfloorRepository(session).add_machine(name=name, type=type).id

    def operator(self, name: str = "Dana") -> str:
        with self.db.atomic("seed") as session:
            return ShopfloorRepository(session).add_operator(name=name, skills=["milling"]).id

    def project(self, name: str = "Pump housing") -> str:
        with self.db.atomic("seed") as session:
            return ShopfloorRepository(session).add_project(name=name).id

    def item(self, project_id: str, name: str = "Housing") -> str:
        with self.db.atomic("seed") as session:
            return ShopfloorRepository(session).add_project_item(project_id, name=name).id

    def count(self, model) -> int:
        with self.db.session() as session:
            return session.scalar(select(func.count()).select_from(model))


@pytest.fixture()
def seed(db) -> Seed:
    return Seed(db)
