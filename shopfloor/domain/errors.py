"""Typed errors raised by the scheduling core.

Every error carries a machine-readable ``code``, a human ``message``, the
HTTP ``status`` it maps to and optional structured ``details``. The HTTP
layer turns them into ``{"error": {...}}`` bodies one-to-one.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from shopfloor.domain.models import ConflictReport, ResourceType


class ShopfloorError(Exception):
    status: int = 400

    def __init__(
        self,
        code: str,
        message: str,
        *,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        if status is not None:
            self.status = status
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "status": self.status,
        }
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationFailed(ShopfloorError):
    """Bad input the caller can fix: missing title, bad quantity, slot overlap."""

    status = 400


class NotFound(ShopfloorError):
    status = 404

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            f"{entity.upper()}_NOT_FOUND",
            f"{entity.capitalize()} not found",
            details={"id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class SchedulingConflict(ShopfloorError):
    """A machine or operator is already booked for an overlapping window."""

    status = 409

    def __init__(self, report: ConflictReport) -> None:
        super().__init__(
            f"{report.conflict_type.upper()}_CONFLICT",
            conflict_message(report),
            details={
                "conflict": {
                    "type": report.conflict_type.value,
                    "resource_id": report.resource_id,
                    "resource_name": report.resource_name,
                    "conflicting_task_id": report.conflicting_task_id,
                    "conflicting_task_title": report.conflicting_task_title,
                    "window_start": report.window_start.isoformat(),
                    "window_end": report.window_end.isoformat(),
                }
            },
        )
        self.report = report


class InfrastructureFailure(ShopfloorError):
    """Storage failed for a reason unrelated to the request's content."""

    status = 500

    def __init__(self, operation: str) -> None:
        super().__init__("INTERNAL_ERROR", "Internal server error")
        self.operation = operation


def conflict_message(report: ConflictReport) -> str:
    """Format a conflict the way the calendar shows it, e.g.

    Machine "CNC Mill 2" is already assigned to task "Drill batch" from 10:00 AM to 11:00 AM
    """
    label = "Machine" if report.conflict_type == ResourceType.MACHINE else "Operator"
    return (
        f'{label} "{report.resource_name}" is already assigned to task '
        f'"{report.conflicting_task_title}" from {_clock(report.slot_start)} '
        f"to {_clock(report.slot_end)}"
    )


def _clock(value: datetime) -> str:
    return value.strftime("%I:%M %p")
