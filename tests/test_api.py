"""
Tests for the FastAPI endpoints.
"""

import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport

from dagflow.config import settings
from dagflow.engine.graph import StateGraph
from dagflow.engine.node import END, START
from dagflow.engine.schema import StateSchema, number, string
from dagflow.main import app
from dagflow.storage.memory import graph_storage, run_storage


@pytest.fixture
def client(monkeypatch):
    """Client with the app lifespan running and external services disabled."""
    monkeypatch.setattr(settings, "API_KEY", None)
    monkeypatch.setattr(settings, "GEMINI_API_KEY", None)
    with TestClient(app) as test_client:
        yield test_client


def build_test_graph(left, right):
    schema = StateSchema({"value": number(required=True), "note": string(), "other": string()})
    graph = StateGraph(schema, name="Fan-out Test")
    graph.add_node("split", lambda s: {})
    graph.add_node("left", left)
    graph.add_node("right", right)
    graph.add_edge(START, "split")
    graph.add_edge("split", "left")
    graph.add_edge("split", "right")
    graph.add_edge("left", END)
    graph.add_edge("right", END)
    return graph.compile()


class TestRootEndpoints:
    """Tests for root endpoints."""

    def test_root(self, client):
        """Test root endpoint."""
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert "name" in data
        assert "version" in data
        assert "endpoints" in data
        assert data["demo_workflow"] == "currency-demo"

    def test_health(self, client):
        """Test health endpoint."""
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["graphs_count"] >= 1


class TestGraphEndpoints:
    """Tests for graph inspection endpoints."""

    def test_list_graphs(self, client):
        """Test listing graphs."""
        response = client.get("/graph/")
        assert response.status_code == 200

        data = response.json()
        assert data["total"] >= 1
        ids = [g["graph_id"] for g in data["graphs"]]
        assert "currency-demo" in ids

    def test_get_graph(self, client):
        """Test getting the demo graph."""
        response = client.get("/graph/currency-demo")
        assert response.status_code == 200

        data = response.json()
        assert data["node_count"] == 5
        assert data["nodes"][0] == "fetch_rate"
        assert data["join_points"] == {"summarize": END}
        assert data["state_schema"]["amount_usd"] == {"type": "number", "required": True}
        assert data["mermaid_diagram"].startswith("graph TD\n")
        assert {"source": "summarize", "target": "send_email"} in data["edges"]

    def test_get_nonexistent_graph(self, client):
        """Test getting a graph that doesn't exist."""
        response = client.get("/graph/nonexistent")
        assert response.status_code == 404

    def test_get_diagram(self, client):
        """Test the plain-text diagram endpoint."""
        response = client.get("/graph/currency-demo/diagram")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "  summarize --> send_slack\n" in response.text
        assert "  send_email --> END\n" in response.text


class TestRunEndpoints:
    """Tests for executing graphs."""

    def test_run_sync(self, client):
        """Test running the demo workflow synchronously."""
        response = client.post("/graph/run", json={
            "graph_id": "currency-demo",
            "initial_state": {"amount_usd": 100},
        })
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "completed"
        assert data["final_state"]["total_inr"] == 8500
        assert data["final_state"]["slack_status"] == "sent"
        assert data["final_state"]["email_status"] == "sent"
        assert len(data["execution_log"]) == 5
        assert data["waves"] == 4

        state = client.get(f"/graph/state/{data['run_id']}").json()
        assert state["status"] == "completed"
        assert state["current_state"]["rate"] == 85

    def test_run_invalid_state(self, client):
        """Test that a state missing a required field is rejected."""
        response = client.post("/graph/run", json={
            "graph_id": "currency-demo",
            "initial_state": {"rate": 80},
        })
        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "amount_usd"

    def test_run_wrong_type(self, client):
        """Test that a mistyped field is rejected."""
        response = client.post("/graph/run", json={
            "graph_id": "currency-demo",
            "initial_state": {"amount_usd": "100"},
        })
        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "amount_usd"

    def test_run_nonexistent_graph(self, client):
        """Test running a graph that doesn't exist."""
        response = client.post("/graph/run", json={
            "graph_id": "nonexistent",
            "initial_state": {},
        })
        assert response.status_code == 404

    def test_run_async(self, client):
        """Test running in the background and polling the state."""
        response = client.post("/graph/run", json={
            "graph_id": "currency-demo",
            "initial_state": {"amount_usd": 1},
            "async_execution": True,
        })
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "pending"

        # The test client returns once background tasks have finished
        state = client.get(f"/graph/state/{data['run_id']}").json()
        assert state["status"] == "completed"
        assert state["current_state"]["total_inr"] == 85

    def test_get_nonexistent_run(self, client):
        """Test getting a run that doesn't exist."""
        response = client.get("/graph/state/nonexistent")
        assert response.status_code == 404

    def test_list_runs(self, client):
        """Test listing runs, filtered by graph."""
        client.post("/graph/run", json={
            "graph_id": "currency-demo",
            "initial_state": {"amount_usd": 5},
        })

        response = client.get("/graph/runs", params={"graph_id": "currency-demo"})
        assert response.status_code == 200
        data = response.json()
        assert data["total"] >= 1
        assert all(r["graph_id"] == "currency-demo" for r in data["runs"])


# ============================================================
# Async Tests
# ============================================================

@pytest.mark.asyncio
async def test_async_health():
    """Test health endpoint with async client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.get("/health")
        assert response.status_code == 200


@pytest.mark.asyncio
async def test_run_with_merge_conflict():
    """Test that a conflict between parallel branches fails the run."""
    await graph_storage.save(
        "conflict-test",
        "Conflict",
        build_test_graph(lambda s: {"note": "left"}, lambda s: {"note": "right"}),
    )

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.post("/graph/run", json={
            "graph_id": "conflict-test",
            "initial_state": {"value": 1},
        })

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "failed"
    assert "note" in data["error"]

    stored = await run_storage.get(data["run_id"])
    assert stored.status == "failed"
    await graph_storage.delete("conflict-test")


@pytest.mark.asyncio
async def test_run_with_failing_node():
    """Test that a failing node is reported with its name."""
    def failing(state):
        raise RuntimeError("downstream unavailable")

    await graph_storage.save(
        "failure-test",
        "Failure",
        build_test_graph(lambda s: {"note": "ok"}, failing),
    )

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.post("/graph/run", json={
            "graph_id": "failure-test",
            "initial_state": {"value": 1},
        })

    data = response.json()
    assert data["status"] == "failed"
    assert data["failed_node"] == "right"
    assert "downstream unavailable" in data["error"]
    assert data["final_state"] == {"value": 1}
    await graph_storage.delete("failure-test")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
