"""FastAPI application: entry point for the shop-floor scheduling service."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from shopfloor.config import Settings, get_settings
from shopfloor.domain.errors import ShopfloorError
from shopfloor.domain.models import (
    ConflictCheckRequest,
    ConflictCheckResult,
    GanttProject,
    ItemCreate,
    ItemRead,
    MachineCreate,
    MachineRead,
    OperatorCreate,
    OperatorRead,
    ProjectCreate,
    ProjectRead,
    ScheduleRequest,
    TaskPatch,
    TaskPayload,
    TaskRead,
)
from shopfloor.logging_setup import setup_logging
from shopfloor.repos.database import Database
from shopfloor.repos.sql import ShopfloorRepository
from shopfloor.services.locks import ResourceLocks
from shopfloor.services.schedule import ScheduleQueries
from shopfloor.services.tasks import TaskService

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Dependencies ──────────────────────────────────────────────────────


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_task_service(request: Request) -> TaskService:
    return request.app.state.task_service


def get_schedule_queries(request: Request) -> ScheduleQueries:
    return request.app.state.schedule_queries


# ── Tasks ─────────────────────────────────────────────────────────────


@router.post("/tasks", response_model=TaskRead, status_code=201)
def create_task(
    payload: TaskPayload, service: TaskService = Depends(get_task_service)
) -> TaskRead:
    """Create a task together with its slots and machine/operator assignments."""
    return service.create(payload)


@router.get("/tasks", response_model=list[TaskRead])
def list_tasks(
    start: datetime | None = None,
    end: datetime | None = None,
    queries: ScheduleQueries = Depends(get_schedule_queries),
) -> list[TaskRead]:
    return queries.list_scheduled_tasks(start, end)


@router.get("/tasks/{task_id}", response_model=TaskRead)
def get_task(task_id: str, service: TaskService = Depends(get_task_service)) -> TaskRead:
    return service.get(task_id)


@router.put("/tasks/{task_id}", response_model=TaskRead)
def replace_task(
    task_id: str,
    payload: TaskPayload,
    service: TaskService = Depends(get_task_service),
) -> TaskRead:
    """Replace the task, including its full set of slots and assignments."""
    return service.replace(task_id, payload)


@router.patch("/tasks/{task_id}", response_model=TaskRead)
def patch_task(
    task_id: str,
    patch: TaskPatch,
    service: TaskService = Depends(get_task_service),
) -> TaskRead:
    """Update only the fields present in the body."""
    return service.patch(task_id, patch)


@router.delete("/tasks/{task_id}")
def delete_task(task_id: str, service: TaskService = Depends(get_task_service)) -> dict:
    service.delete(task_id)
    return {"message": "Task deleted successfully"}


# ── Scheduling ────────────────────────────────────────────────────────


@router.get("/schedule", response_model=list[TaskRead])
def list_scheduled_tasks(
    start: datetime | None = None,
    end: datetime | None = None,
    queries: ScheduleQueries = Depends(get_schedule_queries),
) -> list[TaskRead]:
    """Tasks with a slot starting inside the requested window (calendar view)."""
    return queries.list_scheduled_tasks(start, end)


@router.post("/schedule", response_model=TaskRead)
def schedule_task(
    body: ScheduleRequest, service: TaskService = Depends(get_task_service)
) -> TaskRead:
    return service.schedule(body)


@router.post("/conflicts/check", response_model=ConflictCheckResult)
def check_conflicts(
    body: ConflictCheckRequest, service: TaskService = Depends(get_task_service)
) -> ConflictCheckResult:
    """Dry-run conflict check used before a drag/drop move is submitted."""
    return service.check_conflicts(body)


@router.get("/gantt", response_model=list[GanttProject])
def gantt(queries: ScheduleQueries = Depends(get_schedule_queries)) -> list[GanttProject]:
    return queries.gantt_projects()


# ── Reference data ────────────────────────────────────────────────────


@router.post("/projects", response_model=ProjectRead, status_code=201)
def create_project(body: ProjectCreate, db: Database = Depends(get_db)) -> ProjectRead:
    with db.atomic("create_project") as session:
        project = ShopfloorRepository(session).add_project(**body.model_dump())
        return ProjectRead.model_validate(project)


@router.get("/projects", response_model=list[ProjectRead])
def list_projects(db: Database = Depends(get_db)) -> list[ProjectRead]:
    with db.session() as session:
        return [ProjectRead.model_validate(p) for p in ShopfloorRepository(session).list_projects()]


@router.post("/projects/{project_id}/items", response_model=ItemRead, status_code=201)
def create_item(project_id: str, body: ItemCreate, db: Database = Depends(get_db)) -> ItemRead:
    with db.atomic("create_item") as session:
        item = ShopfloorRepository(session).add_project_item(project_id, **body.model_dump())
        return ItemRead.model_validate(item)


@router.post("/machines", response_model=MachineRead, status_code=201)
def create_machine(body: MachineCreate, db: Database = Depends(get_db)) -> MachineRead:
    with db.atomic("create_machine") as session:
        machine = ShopfloorRepository(session).add_machine(**body.model_dump())
        return MachineRead.model_validate(machine)


@router.get("/machines", response_model=list[MachineRead])
def list_machines(db: Database = Depends(get_db)) -> list[MachineRead]:
    with db.session() as session:
        return [MachineRead.model_validate(m) for m in ShopfloorRepository(session).list_machines()]


@router.post("/operators", response_model=OperatorRead, status_code=201)
def create_operator(body: OperatorCreate, db: Database = Depends(get_db)) -> OperatorRead:
    with db.atomic("create_operator") as session:
        operator = ShopfloorRepository(session).add_operator(**body.model_dump())
        return OperatorRead.model_validate(operator)


@router.get("/operators", response_model=list[OperatorRead])
def list_operators(db: Database = Depends(get_db)) -> list[OperatorRead]:
    with db.session() as session:
        return [
            OperatorRead.model_validate(o) for o in ShopfloorRepository(session).list_operators()
        ]


# ── Error mapping ─────────────────────────────────────────────────────


def _operation(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "name", None) or request.url.path


async def handle_shopfloor_error(request: Request, exc: ShopfloorError) -> JSONResponse:
    level = logging.ERROR if exc.status >= 500 else logging.WARNING
    logger.log(
        level,
        "%s failed with %s (%s) ids=%s",
        _operation(request),
        exc.code,
        exc.message,
        dict(request.path_params),
    )
    return JSONResponse(status_code=exc.status, content={"error": jsonable_encoder(exc.to_dict())})


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.warning("%s rejected: invalid request body", _operation(request))
    error = ShopfloorError(
        "VALIDATION_ERROR",
        "Request validation failed",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(status_code=400, content={"error": error.to_dict()})


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("%s failed unexpectedly", _operation(request))
    return JSONResponse(
        status_code=500,
        content={
            "error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "status": 500}
        },
    )


# ── Application ───────────────────────────────────────────────────────


def create_app(settings: Settings | None = None, db: Database | None = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings)
    db = db or Database(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        db.create_all()
        yield
        db.dispose()

    app = FastAPI(title="Shop-floor Scheduling Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db
    app.state.task_service = TaskService(
        db, ResourceLocks(timeout=settings.LOCK_TIMEOUT_SECONDS), settings
    )
    app.state.schedule_queries = ScheduleQueries(db)

    app.include_router(router)
    app.add_exception_handler(ShopfloorError, handle_shopfloor_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    return app


app = create_app()
