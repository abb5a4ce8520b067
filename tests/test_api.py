"""Tests for the debug API routes"""

import pytest
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fastapi.testclient import TestClient

from app.main import app
from app.services.ai_manager import AIManager


@pytest.fixture(autouse=True)
def fresh_manager():
    AIManager.reset_instance()
    yield
    AIManager.reset_instance()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def _spawn(client, client_id, name, team=None, origin=None, personality="balanced"):
    body = {"client_id": client_id, "name": name, "personality": personality}
    if team is not None:
        body["team"] = team
    if origin is not None:
        body["origin"] = origin
    return client.post("/api/v1/agents/", json=body)


class TestRoot:
    """Tests for root and health endpoints."""

    def test_root(self, client):
        """Test API info is served."""
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_health(self, client):
        """Test health reports the AI as initialised after startup."""
        response = client.get("/health")
        assert response.json() == {"status": "healthy", "ai": True}

    def test_not_initialised(self):
        """Test routes answer 503 when the lifespan has not run."""
        c = TestClient(app)
        assert c.get("/api/v1/agents/").status_code == 503
        assert c.get("/api/v1/simulation/summary").status_code == 503


class TestAgents:
    """Tests for bot spawning and inspection."""

    def test_spawn_and_list(self, client):
        """Test a spawned bot shows up in the listing."""
        response = _spawn(client, 1, "grunt", personality="Aggressive")
        assert response.status_code == 201
        body = response.json()
        assert body["client_id"] == 1
        assert body["personality"] == "aggressive"

        listing = client.get("/api/v1/agents/").json()
        assert listing["count"] == 1
        assert listing["agents"][0]["name"] == "grunt"

    def test_bad_personality(self, client):
        """Test an unknown personality is rejected."""
        assert _spawn(client, 1, "grunt", personality="pacifist").status_code == 400

    def test_bad_client_id(self, client):
        """Test an out of range client slot is rejected."""
        assert _spawn(client, 64, "grunt").status_code == 400

    def test_bad_origin(self, client):
        """Test a malformed origin is rejected."""
        assert _spawn(client, 1, "grunt", team=1, origin=[0.0, 0.0]).status_code == 400

    def test_detail(self, client):
        """Test the detail view exposes every debug section."""
        _spawn(client, 3, "scout", team=1, origin=[0.0, 0.0, 24.0])
        body = client.get("/api/v1/agents/3").json()
        for key in ("perception", "threats", "decision", "movement", "skill", "command"):
            assert key in body
        assert body["learning"] is None

    def test_missing_agent(self, client):
        """Test unknown agents answer 404."""
        assert client.get("/api/v1/agents/9").status_code == 404
        assert client.delete("/api/v1/agents/9").status_code == 404

    def test_despawn(self, client):
        """Test a despawned bot leaves the table and the arena."""
        _spawn(client, 2, "grunt", team=2, origin=[100.0, 0.0, 24.0])
        response = client.delete("/api/v1/agents/2")
        assert response.json() == {"client_id": 2, "status": "removed"}
        assert client.get("/api/v1/agents/").json()["count"] == 0
        assert client.delete("/api/v1/simulation/entities/2").status_code == 404


class TestTeams:
    """Tests for team inspection."""

    def test_no_teams(self, client):
        """Test no coordinators exist before a frame runs."""
        assert client.get("/api/v1/teams/").json() == {"teams": []}
        assert client.get("/api/v1/teams/1").status_code == 404

    def test_team_after_frame(self, client):
        """Test placed bots are grouped under their team coordinator."""
        _spawn(client, 1, "red", team=1, origin=[0.0, 0.0, 24.0])
        _spawn(client, 2, "blue", team=2, origin=[400.0, 0.0, 24.0])
        client.post("/api/v1/simulation/frame", json={"frames": 1})

        assert client.get("/api/v1/teams/").json() == {"teams": [1, 2]}
        body = client.get("/api/v1/teams/1").json()
        assert body["team_id"] == 1
        assert body["members"] == [1]
        assert set(body["planner"]) == {"situation", "plan", "strategy_effectiveness"}


class TestCvars:
    """Tests for runtime cvars."""

    def test_list(self, client):
        """Test every cvar is listed."""
        cvars = client.get("/api/v1/cvars/").json()["cvars"]
        assert cvars["ai_think_time"] == 50
        assert cvars["ai_enable"] is True

    def test_get(self, client):
        """Test a single cvar lookup."""
        assert client.get("/api/v1/cvars/ai_skill").json() == {"name": "ai_skill", "value": 3.0}
        assert client.get("/api/v1/cvars/ai_nonsense").status_code == 404

    def test_set(self, client):
        """Test a valid value is applied."""
        response = client.put("/api/v1/cvars/ai_think_time", json={"value": 100})
        assert response.status_code == 200
        assert response.json()["value"] == 100
        assert client.get("/api/v1/cvars/ai_think_time").json()["value"] == 100

    def test_set_unknown(self, client):
        """Test unknown cvars answer 404."""
        assert client.put("/api/v1/cvars/ai_nonsense", json={"value": 1}).status_code == 404

    def test_set_out_of_range(self, client):
        """Test out of range values are rejected and the old value kept."""
        assert client.put("/api/v1/cvars/ai_think_time", json={"value": 5}).status_code == 400
        assert client.get("/api/v1/cvars/ai_think_time").json()["value"] == 50


class TestSimulation:
    """Tests for stepping the sandbox arena."""

    def test_frame(self, client):
        """Test frames advance the clock and run thinks."""
        _spawn(client, 1, "red", team=1, origin=[0.0, 0.0, 24.0])
        response = client.post("/api/v1/simulation/frame", json={"dt_ms": 50, "frames": 4})
        body = response.json()
        assert body["level_time_ms"] == 200
        assert body["frames"] == 4
        assert body["agents"] == 1
        assert body["thinks"] >= 1

    def test_frame_validation(self, client):
        """Test frame counts outside the allowed range are rejected."""
        assert client.post("/api/v1/simulation/frame", json={"frames": 0}).status_code == 422

    def test_put_entity(self, client):
        """Test an entity is placed in the arena."""
        response = client.post("/api/v1/simulation/entities", json={
            "entity_id": 5, "kind": "player", "origin": [64.0, 0.0, 24.0], "team": 2,
        })
        assert response.status_code == 200
        assert response.json() == {
            "entity_id": 5, "kind": "player", "origin": [64.0, 0.0, 24.0], "health": 100, "team": 2,
        }

    def test_put_entity_bad_kind(self, client):
        """Test an unknown entity kind is rejected."""
        response = client.post("/api/v1/simulation/entities", json={"entity_id": 5, "kind": "ghost", "origin": [0, 0, 0]})
        assert response.status_code == 400

    def test_put_entity_bad_vector(self, client):
        """Test malformed vectors are rejected."""
        response = client.post("/api/v1/simulation/entities", json={"entity_id": 5, "origin": [0, 0]})
        assert response.status_code == 400

    def test_delete_entity(self, client):
        """Test removing an entity."""
        client.post("/api/v1/simulation/entities", json={"entity_id": 7, "origin": [0.0, 0.0, 24.0]})
        assert client.delete("/api/v1/simulation/entities/7").json() == {"entity_id": 7, "status": "removed"}
        assert client.delete("/api/v1/simulation/entities/7").status_code == 404

    def test_summary(self, client):
        """Test the summary reports the sandbox map."""
        body = client.get("/api/v1/simulation/summary").json()
        assert body["map"] == "arena"
        assert body["agents"] == 0
        assert isinstance(body["cover_points"], int)
