"""Tests for the coordinator FastAPI application (devteam/api/coordinator_api.py).

Uses httpx AsyncClient over ASGITransport. Lifespan does not run, so each
test installs its own container and initializes agents where it needs them.
"""

import pytest
from httpx import AsyncClient, ASGITransport

from devteam.config.settings import Settings


@pytest.fixture(autouse=True)
def _reset_container():
    """Reset DI container between tests."""
    from devteam import di_container
    di_container._container = None
    yield
    di_container._container = None


@pytest.fixture
def container(tmp_path):
    from devteam import di_container
    from devteam.di_container import DevTeamContainer
    settings = Settings(
        working_directory=str(tmp_path),
        anthropic_api_key="test-anthropic",
        tavily_api_key="test-tavily",
        monitor_interval=60.0,
    )
    di_container._container = DevTeamContainer(settings)
    return di_container._container


@pytest.fixture
async def ready(container):
    """Container whose default agents are all READY."""
    failed = await container.coordinator.initialize(container.settings.agent_config())
    assert failed == []
    return container


@pytest.fixture
async def client(container):
    from devteam.api.coordinator_api import app
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _create(client, **overrides):
    body = {"title": "Schema", "type": "FOUNDATION", "priority": "HIGH"}
    body.update(overrides)
    resp = await client.post("/api/tasks", json=body)
    assert resp.status_code == 201
    return resp.json()


# --- Health ---

async def test_health_ok(client, ready):
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["agents"] == 4
    assert data["failed_agents"] == []
    assert data["services"]["coordinator"] is True


async def test_health_degraded_when_agent_in_error(client, ready):
    ready.coordinator.get_agent("backend-001").mark_error("lost database connection")

    resp = await client.get("/health")
    assert resp.status_code == 503
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["failed_agents"] == ["backend-001"]


async def test_health_degraded_without_credentials(client, container):
    from devteam.models import AgentConfig
    failed = await container.coordinator.initialize(AgentConfig(working_directory=container.settings.working_directory))
    assert len(failed) == 4

    resp = await client.get("/health")
    assert resp.status_code == 503
    assert len(resp.json()["failed_agents"]) == 4


# --- Tasks ---

async def test_create_and_get_task(client):
    created = await _create(client, estimated_hours=3.0, tags=["db"])
    assert created["status"] == "NOT_STARTED"
    assert created["type"] == "FOUNDATION"
    assert created["tags"] == ["db"]

    resp = await client.get(f"/api/tasks/{created['id']}")
    assert resp.status_code == 200
    assert resp.json()["title"] == "Schema"


async def test_create_task_validation(client):
    resp = await client.post("/api/tasks", json={"title": "x", "type": "COOKING"})
    assert resp.status_code == 422


async def test_get_task_404(client):
    resp = await client.get("/api/tasks/missing")
    assert resp.status_code == 404
    assert resp.json()["code"] == "TASK_NOT_FOUND"


async def test_list_and_available_tasks(client):
    first = await _create(client)
    second = await _create(client, title="Endpoints", type="INTEGRATION", dependencies=[first["id"]])

    resp = await client.get("/api/tasks")
    assert {t["id"] for t in resp.json()["tasks"]} == {first["id"], second["id"]}

    resp = await client.get("/api/tasks/available")
    assert {t["id"] for t in resp.json()["tasks"]} == {first["id"], second["id"]}

    resp = await client.get("/api/tasks", params={"status": "IN_PROGRESS"})
    assert resp.json()["tasks"] == []


async def test_distribute_task(client, ready):
    created = await _create(client)
    resp = await client.post(f"/api/tasks/{created['id']}/distribute", json={"strategy": "capability"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["assigned"] is True
    assert data["assignment"]["agent_id"] in {"arch-lead-001", "frontend-core-001", "backend-001"}

    task = (await client.get(f"/api/tasks/{created['id']}")).json()
    assert task["status"] == "IN_PROGRESS"
    assert task["assigned_to"] == data["assignment"]["agent_id"]


async def test_distribute_waits_on_dependencies(client, ready):
    first = await _create(client)
    second = await _create(client, title="Endpoints", type="INTEGRATION", dependencies=[first["id"]])
    resp = await client.post(f"/api/tasks/{second['id']}/distribute")
    assert resp.status_code == 200
    assert resp.json() == {"assigned": False, "task_id": second["id"], "assignment": None}


async def test_distribute_unknown_strategy(client, ready):
    created = await _create(client)
    resp = await client.post(f"/api/tasks/{created['id']}/distribute", json={"strategy": "coin-flip"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "STRATEGY_NOT_FOUND"


async def test_assign_task(client, ready):
    created = await _create(client, type="TESTING")
    resp = await client.post(f"/api/tasks/{created['id']}/assign", json={"agent_id": "qa-001"})
    assert resp.status_code == 200
    assert resp.json()["assigned_to"] == "qa-001"
    assert ready.coordinator.queue_length == 1


async def test_assign_unknown_agent(client, ready):
    created = await _create(client)
    resp = await client.post(
        f"/api/tasks/{created['id']}/assign",
        json={"agent_id": "ghost"},
        headers={"X-Request-ID": "req-42"},
    )
    assert resp.status_code == 404
    data = resp.json()
    assert data["code"] == "AGENT_NOT_FOUND"
    assert data["category"] == "not_found"
    assert data["request_id"] == "req-42"
    assert resp.headers["X-Request-ID"] == "req-42"


async def test_assign_unsupported_type(client, ready):
    created = await _create(client, type="TESTING")
    resp = await client.post(f"/api/tasks/{created['id']}/assign", json={"agent_id": "arch-lead-001"})
    assert resp.status_code == 409
    assert resp.json()["code"] == "AGENT_CANNOT_HANDLE_TASK"


async def test_assign_blocked_by_dependency(client, ready):
    first = await _create(client)
    second = await _create(client, type="INTEGRATION", dependencies=[first["id"]])
    resp = await client.post(f"/api/tasks/{second['id']}/assign", json={"agent_id": "backend-001"})
    assert resp.status_code == 409
    data = resp.json()
    assert data["code"] == "DEPENDENCY_BLOCKED"
    assert data["details"]["dependencies"] == [first["id"]]


# --- Agents ---

async def test_list_agents(client, ready):
    resp = await client.get("/api/agents")
    agents = resp.json()["agents"]
    assert {a["id"] for a in agents} == {"arch-lead-001", "frontend-core-001", "qa-001", "backend-001"}
    assert all(a["status"] == "READY" for a in agents)

    resp = await client.get("/api/agents", params={"available": True})
    assert len(resp.json()["agents"]) == 4


async def test_list_agents_for_task_type(client, ready):
    resp = await client.get("/api/agents", params={"task_type": "TESTING"})
    assert [a["id"] for a in resp.json()["agents"]] == ["qa-001"]

    resp = await client.get("/api/agents", params={"task_type": "UI_DEVELOPMENT", "available": True})
    assert {a["id"] for a in resp.json()["agents"]} == {"frontend-core-001", "qa-001"}

    resp = await client.get("/api/agents", params={"task_type": "COOKING"})
    assert resp.status_code == 422


async def test_get_agent_with_workload(client, ready):
    created = await _create(client, type="TESTING")
    await client.post(f"/api/tasks/{created['id']}/assign", json={"agent_id": "qa-001"})

    resp = await client.get("/api/agents/qa-001")
    assert resp.status_code == 200
    data = resp.json()
    assert data["type"] == "QUALITY_ASSURANCE"
    assert data["workload"]["current_tasks"] == 1


async def test_get_agent_404(client):
    resp = await client.get("/api/agents/ghost")
    assert resp.status_code == 404
    assert resp.json()["code"] == "AGENT_NOT_FOUND"


async def test_restart_agent(client, ready):
    resp = await client.post("/api/agents/backend-001/restart")
    assert resp.status_code == 200
    assert resp.json()["status"] == "READY"


# --- Decisions ---

async def test_decisions_round_trip(client, container):
    decision_id = await container.decision_broker.request_decision(
        "t1", "arch-lead-001", "technical", "Use Postgres?", ["yes", "no"]
    )
    resp = await client.get("/api/decisions")
    assert [d["id"] for d in resp.json()["decisions"]] == [decision_id]

    resp = await client.post(
        f"/api/decisions/{decision_id}/respond",
        json={"response": "yes", "responder": "lead"},
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "RESPONDED"
    assert (await client.get("/api/decisions")).json()["decisions"] == []

    resp = await client.post(f"/api/decisions/{decision_id}/respond", json={"response": "no"})
    assert resp.status_code == 409
    assert resp.json()["code"] == "DECISION_ALREADY_RESPONDED"


async def test_respond_unknown_decision(client):
    resp = await client.post("/api/decisions/nope/respond", json={"response": "yes"})
    assert resp.status_code == 404
    assert resp.json()["code"] == "DECISION_NOT_FOUND"


# --- Progress ---

async def test_progress_before_snapshot(client):
    resp = await client.get("/api/progress/current")
    assert resp.status_code == 404
    resp = await client.get("/api/progress/dashboard")
    assert resp.status_code == 404
    assert resp.json()["code"] == "NO_SNAPSHOT"
    resp = await client.get("/api/progress/alerts")
    assert resp.json() == {"alerts": []}


async def test_snapshot_current_and_dashboard(client, ready):
    await _create(client)
    resp = await client.post("/api/progress/snapshot")
    assert resp.status_code == 200
    snapshot = resp.json()
    assert snapshot["project_id"] == "default"
    assert len(snapshot["agent_status"]) == 4
    assert snapshot["overall_progress"] == 0

    resp = await client.get("/api/progress/current")
    assert resp.json()["timestamp"] == snapshot["timestamp"]

    resp = await client.get("/api/progress/dashboard")
    assert resp.status_code == 200
    assert resp.json()["overall_health"] in {"HEALTHY", "WARNING", "CRITICAL"}

    resp = await client.get("/api/progress/alerts")
    assert isinstance(resp.json()["alerts"], list)


async def test_snapshot_with_naive_due_date(client, ready):
    created = await _create(client, due_date="2030-01-01T00:00:00", estimated_hours=4.0)
    assert created["due_date"].startswith("2030-01-01T00:00:00")

    resp = await client.post("/api/progress/snapshot")
    assert resp.status_code == 200
    assert resp.json()["phase_progress"]


async def test_snapshot_for_named_project(client, ready):
    resp = await client.post("/api/progress/snapshot", json={"project_id": "apollo"})
    assert resp.json()["project_id"] == "apollo"


async def test_progress_reports(client, ready):
    await client.post("/api/progress/snapshot")
    resp = await client.get("/api/progress/reports/daily")
    assert resp.status_code == 200
    data = resp.json()
    assert data["report_type"] == "DAILY"
    assert data["metrics"]["snapshot_count"] == 1

    resp = await client.get("/api/progress/reports/weekly", params={"format": "markdown"})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/markdown")
    assert resp.text.startswith("# Weekly Progress Report")


async def test_unknown_report_type(client):
    resp = await client.get("/api/progress/reports/hourly")
    assert resp.status_code == 400


# --- Projects ---

async def test_project_templates(client):
    resp = await client.get("/api/projects/templates")
    ids = {t["id"] for t in resp.json()["templates"]}
    assert ids == {"react-app", "mcp-server"}


async def test_create_project(client):
    resp = await client.post("/api/projects", json={"template_id": "mcp-server", "name": "Tools"})
    assert resp.status_code == 201
    project = resp.json()
    assert project["template_id"] == "mcp-server"
    assert len(project["task_ids"]) == 4

    resp = await client.get("/api/projects")
    assert [p["id"] for p in resp.json()["projects"]] == [project["id"]]

    tasks = (await client.get("/api/tasks")).json()["tasks"]
    assert {t["id"] for t in tasks} == set(project["task_ids"])


async def test_create_project_unknown_template(client):
    resp = await client.post("/api/projects", json={"template_id": "cobol-app", "name": "Legacy"})
    assert resp.status_code == 404
    data = resp.json()
    assert data["code"] == "TEMPLATE_NOT_FOUND"
    assert "react-app" in data["details"]["available"]


# --- Stats / middleware ---

async def test_stats(client, ready):
    await _create(client)
    resp = await client.get("/api/stats")
    data = resp.json()
    assert data["running"] is False
    assert data["agents"] == 4
    assert data["agents_by_status"]["READY"] == 4
    assert data["queue_length"] == 0
    assert data["events"]["published"]["task_created"] == 1


async def test_request_id_header_generated(client):
    resp = await client.get("/api/projects")
    assert len(resp.headers["X-Request-ID"]) == 36
