"""Relational schema for projects, items, resources, tasks and their slots."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shopfloor.domain.models import (
    ItemStatus,
    MachineStatus,
    OperatorStatus,
    ProjectStatus,
    TaskStatus,
)
from shopfloor.repos.database import Base, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[ProjectStatus] = mapped_column(
        Enum(ProjectStatus, native_enum=False), default=ProjectStatus.ACTIVE, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    items: Mapped[list[Item]] = relationship(
        back_populates="project", order_by="Item.created_at"
    )


class Item(Base):
    __tablename__ = "items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[ItemStatus] = mapped_column(
        Enum(ItemStatus, native_enum=False), default=ItemStatus.ACTIVE, nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    project: Mapped[Project] = relationship(back_populates="items")
    tasks: Mapped[list[Task]] = relationship(
        back_populates="item", order_by="Task.created_at"
    )


class Machine(Base):
    __tablename__ = "machines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[MachineStatus] = mapped_column(
        Enum(MachineStatus, native_enum=False), default=MachineStatus.AVAILABLE, nullable=False
    )
    location: Mapped[str | None] = mapped_column(String(255))
    color: Mapped[str | None] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)


class Operator(Base):
    __tablename__ = "operators"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    skills: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    status: Mapped[OperatorStatus] = mapped_column(
        Enum(OperatorStatus, native_enum=False), default=OperatorStatus.ACTIVE, nullable=False
    )
    shift: Mapped[str | None] = mapped_column(String(50))
    color: Mapped[str | None] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_task_quantity_non_negative"),
        CheckConstraint(
            "completed_quantity >= 0 AND completed_quantity <= quantity",
            name="ck_task_completed_quantity_range",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus, native_enum=False), default=TaskStatus.PENDING, nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    completed_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    item_id: Mapped[str | None] = mapped_column(
        ForeignKey("items.id", ondelete="SET NULL"), index=True
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )

    item: Mapped[Item | None] = relationship(back_populates="tasks")
    time_slots: Mapped[list[TimeSlot]] = relationship(
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TimeSlot.start",
    )
    machine_links: Mapped[list[TaskMachine]] = relationship(
        cascade="all, delete-orphan", passive_deletes=True, order_by="TaskMachine.created_at"
    )
    operator_links: Mapped[list[TaskOperator]] = relationship(
        cascade="all, delete-orphan", passive_deletes=True, order_by="TaskOperator.created_at"
    )

    @property
    def machines(self) -> list[Machine]:
        return [link.machine for link in self.machine_links]

    @property
    def operators(self) -> list[Operator]:
        return [link.operator for link in self.operator_links]

    @property
    def project(self) -> Project | None:
        return self.item.project if self.item is not None else None


class TimeSlot(Base):
    __tablename__ = "task_time_slots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    task_id: Mapped[str] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    start: Mapped[datetime] = mapped_column(
        "start_date_time", UTCDateTime, nullable=False, index=True
    )
    end: Mapped[datetime] = mapped_column("end_date_time", UTCDateTime, nullable=False)
    duration_min: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    task: Mapped[Task] = relationship(back_populates="time_slots")

    __table_args__ = (
        CheckConstraint("duration_min > 0", name="ck_time_slot_duration_positive"),
    )


class TaskMachine(Base):
    __tablename__ = "task_machines"
    __table_args__ = (UniqueConstraint("task_id", "machine_id", name="uq_task_machine"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    task_id: Mapped[str] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    machine_id: Mapped[str] = mapped_column(
        ForeignKey("machines.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    machine: Mapped[Machine] = relationship(lazy="joined")


class TaskOperator(Base):
    __tablename__ = "task_operators"
    __table_args__ = (UniqueConstraint("task_id", "operator_id", name="uq_task_operator"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    task_id: Mapped[str] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    operator_id: Mapped[str] = mapped_column(
        ForeignKey("operators.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    operator: Mapped[Operator] = relationship(lazy="joined")
