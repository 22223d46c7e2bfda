"""
Dev Team Coordinator: FastAPI application entry point.

Command surface over the coordinator and progress monitor:
- /health: fleet health
- /api/tasks: create and list tasks, distribute or assign one
- /api/agents: registered agents with status and metrics
- /api/decisions: pending human decisions and their answers
- /api/progress: snapshots, alerts, reports, dashboard and an SSE stream
- /api/projects: template catalogue and project creation
"""

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from devteam.di_container import get_container, shutdown_container
from devteam.exceptions import DevTeamError, NoSnapshotError, TaskNotFoundError
from devteam.interfaces.event_bus import EventType
from devteam.interfaces.storage import TaskFilter
from devteam.models import AgentStatus, Task, TaskPriority, TaskStatus, TaskType, new_id
from devteam.monitoring.reports import render_markdown
from devteam.monitoring.snapshots import ReportType

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class TaskRequest(BaseModel):
    title: str
    type: TaskType
    priority: TaskPriority = TaskPriority.MEDIUM
    description: str = ""
    dependencies: List[str] = Field(default_factory=list)
    estimated_hours: float = Field(default=0.0, ge=0.0)
    due_date: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AssignRequest(BaseModel):
    agent_id: str


class DistributeRequest(BaseModel):
    strategy: Optional[str] = None


class DecisionResponseRequest(BaseModel):
    response: str
    responder: str = "human"
    reasoning: Optional[str] = None


class SnapshotRequest(BaseModel):
    project_id: Optional[str] = None


class ProjectRequest(BaseModel):
    template_id: str
    name: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Application lifecycle
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(application: FastAPI):
    logger.info("Dev team coordinator starting up")
    container = get_container()
    await container.start()
    logger.info("DI container initialized: %s", container.status())
    yield
    await container.stop()
    shutdown_container()
    logger.info("Dev team coordinator shutting down")


app = FastAPI(
    title="Dev Team Coordinator",
    version="0.1.0",
    description="Agent orchestration and task distribution",
    lifespan=lifespan,
)


def _cors_origins() -> list[str]:
    env = os.environ.get("DEVTEAM_ENVIRONMENT", "development")
    raw = os.environ.get("DEVTEAM_CORS_ORIGINS", "")
    if raw:
        return [o.strip() for o in raw.split(",") if o.strip()]
    if env == "development":
        return ["*"]
    return ["http://localhost:3000"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_methods=["*"],
    allow_headers=["*"],
)

from devteam.middleware.request_id import RequestIDMiddleware  # noqa: E402

app.add_middleware(RequestIDMiddleware)


@app.exception_handler(DevTeamError)
async def devteam_error_handler(request: Request, exc: DevTeamError):
    logger.warning("%s on %s %s", exc, request.method, request.url.path)
    body = exc.to_dict()
    body["request_id"] = getattr(request.state, "request_id", None)
    return JSONResponse(content=body, status_code=exc.http_status)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@app.get("/health")
async def health():
    """Healthy while no agent is in ERROR."""
    container = get_container()
    agents = container.coordinator.get_all_agents()
    failed = [a.id for a in agents if a.status == AgentStatus.ERROR]
    body = {
        "status": "degraded" if failed else "healthy",
        "agents": len(agents),
        "failed_agents": failed,
        "services": container.status(),
    }
    if failed:
        return JSONResponse(content=body, status_code=503)
    return body


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@app.post("/api/tasks", status_code=201)
async def create_task(req: TaskRequest):
    container = get_container()
    task = Task(id=new_id(), **req.model_dump())
    created = await container.coordinator.create_task(task)
    return created.to_dict()


@app.get("/api/tasks")
async def list_tasks(status: Optional[TaskStatus] = None, assigned_to: Optional[str] = None):
    container = get_container()
    tasks = await container.task_store.get_tasks(TaskFilter(status=status, assigned_to=assigned_to))
    return {"tasks": [t.to_dict() for t in tasks]}


@app.get("/api/tasks/available")
async def available_tasks():
    """Tasks not yet started."""
    container = get_container()
    tasks = await container.coordinator.get_available_tasks()
    return {"tasks": [t.to_dict() for t in tasks]}


@app.get("/api/tasks/{task_id}")
async def get_task(task_id: str):
    container = get_container()
    task = await container.task_store.get_task(task_id)
    if task is None:
        raise TaskNotFoundError(f"Task {task_id} not found", details={"task_id": task_id})
    return task.to_dict()


@app.post("/api/tasks/{task_id}/distribute")
async def distribute_task(task_id: str, req: Optional[DistributeRequest] = None):
    container = get_container()
    strategy = req.strategy if req else None
    assignment = await container.coordinator.distribute_task(task_id, strategy)
    if assignment is None:
        return {"assigned": False, "task_id": task_id, "assignment": None}
    return {"assigned": True, "task_id": task_id, "assignment": assignment.to_dict()}


@app.post("/api/tasks/{task_id}/assign")
async def assign_task(task_id: str, req: AssignRequest):
    container = get_container()
    task = await container.coordinator.assign_task(task_id, req.agent_id)
    return task.to_dict()


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------


@app.get("/api/agents")
async def list_agents(available: bool = False, task_type: Optional[TaskType] = None):
    """All agents, or with ``available`` those READY or INITIALIZING, optionally for one task type."""
    container = get_container()
    coordinator = container.coordinator
    if available or task_type is not None:
        agents = coordinator.get_available_agents(task_type)
    else:
        agents = coordinator.get_all_agents()
    return {"agents": [a.snapshot() for a in agents]}


@app.get("/api/agents/{agent_id}")
async def get_agent(agent_id: str):
    container = get_container()
    body = container.coordinator.get_agent(agent_id).snapshot()
    workload = container.engine.get_workload(agent_id)
    body["workload"] = workload.to_dict() if workload else None
    return body


@app.post("/api/agents/{agent_id}/restart")
async def restart_agent(agent_id: str):
    container = get_container()
    await container.coordinator.restart_agent(agent_id)
    return container.coordinator.get_agent(agent_id).snapshot()


# ---------------------------------------------------------------------------
# Human decisions
# ---------------------------------------------------------------------------


@app.get("/api/decisions")
async def pending_decisions():
    container = get_container()
    return {"decisions": [d.to_dict() for d in container.decision_broker.pending()]}


@app.post("/api/decisions/{decision_id}/respond")
async def respond_to_decision(decision_id: str, req: DecisionResponseRequest):
    container = get_container()
    decision = await container.decision_broker.respond(
        decision_id, req.response, responder=req.responder, reasoning=req.reasoning
    )
    return decision.to_dict()


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


@app.post("/api/progress/snapshot")
async def capture_snapshot(req: Optional[SnapshotRequest] = None):
    container = get_container()
    sample = await container.sample(req.project_id if req else None)
    snapshot = await container.monitor.capture_progress_snapshot(
        sample.project_id, sample.agents, sample.tasks, sample.critical_path
    )
    return snapshot.to_dict()


@app.get("/api/progress/current")
async def current_snapshot():
    container = get_container()
    snapshot = container.monitor.current_snapshot
    if snapshot is None:
        raise NoSnapshotError("No progress snapshot captured yet")
    return snapshot.to_dict()


@app.get("/api/progress/alerts")
async def progress_alerts():
    """Evaluate the current snapshot for alerts."""
    container = get_container()
    alerts = await container.monitor.check_for_alerts()
    return {"alerts": [a.to_dict() for a in alerts]}


@app.get("/api/progress/reports/{report_type}")
async def progress_report(report_type: str, format: str = "json"):
    try:
        kind = ReportType(report_type.upper())
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown report type {report_type!r}; expected one of {[t.value for t in ReportType]}",
        )
    container = get_container()
    report = container.monitor.generate_progress_report(kind)
    if format == "markdown":
        return PlainTextResponse(render_markdown(report), media_type="text/markdown")
    return report.to_dict()


@app.get("/api/progress/dashboard")
async def dashboard():
    container = get_container()
    return container.monitor.get_dashboard_data().to_dict()


@app.get("/api/progress/stream")
async def stream_progress():
    """Stream snapshots and alerts as Server-Sent Events."""
    container = get_container()
    progress_queue: asyncio.Queue = asyncio.Queue()

    async def on_snapshot(data):
        await progress_queue.put(("snapshot", data))

    async def on_alert(data):
        await progress_queue.put(("alert", data))

    snapshot_sub = await container.event_bus.subscribe(EventType.PROGRESS_SNAPSHOT, on_snapshot)
    alert_sub = await container.event_bus.subscribe(EventType.PROGRESS_ALERT, on_alert)

    async def event_generator():
        try:
            while True:
                try:
                    event, data = await asyncio.wait_for(progress_queue.get(), timeout=30.0)
                    yield {"event": event, "data": json.dumps(data, default=str)}
                except asyncio.TimeoutError:
                    yield {"event": "ping", "data": ""}
        finally:
            await container.event_bus.unsubscribe(snapshot_sub)
            await container.event_bus.unsubscribe(alert_sub)

    return EventSourceResponse(event_generator())


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@app.get("/api/projects/templates")
async def project_templates():
    container = get_container()
    return {"templates": [t.to_dict() for t in container.coordinator.get_project_templates()]}


@app.get("/api/projects")
async def list_projects():
    container = get_container()
    return {"projects": [p.to_dict() for p in container.coordinator.get_projects()]}


@app.post("/api/projects", status_code=201)
async def create_project(req: ProjectRequest):
    container = get_container()
    project = await container.coordinator.create_project(req.template_id, req.name)
    return project.to_dict()


@app.get("/api/stats")
async def stats():
    container = get_container()
    body = container.coordinator.stats()
    body["events"] = container.event_bus.stats()
    return body


def main() -> None:
    import uvicorn

    from devteam.config.settings import get_settings
    from devteam.enhanced_logging import configure_logging

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
