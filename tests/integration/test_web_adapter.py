"""Integration tests for the web adapter.

Tests REST endpoints, the observer WebSocket, authentication and the
perimeter limiters against an in-memory canvas service.
"""

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from gridplace.adapters.web import RateLimiter, create_web_adapter
from gridplace.config import Config
from gridplace.core.canvas import CanvasService
from gridplace.core.validation import generate_credential

pytestmark = pytest.mark.integration

COOLDOWN = 10_000


class FakeClock:
    def __init__(self, now: int = 0):
        self.now = now

    def __call__(self) -> int:
        return self.now


def make_config(**broadcaster) -> Config:
    return Config(
        environment="testing",
        canvas={"grid_size": 100, "cooldown_ms": COOLDOWN, "max_region_span": 50},
        storage={"backend": "memory"},
        broadcaster={"ping_interval_seconds": 3600, **broadcaster},
        security={"auth_failures_per_minute": 3},
    )


@pytest.fixture
def clock():
    return FakeClock(1_000)


@pytest.fixture
def client(clock):
    """Create a test client with the app lifespan running."""
    service = CanvasService(make_config(), clock=clock)
    adapter = create_web_adapter(service=service)
    with TestClient(adapter.app) as test_client:
        yield test_client


def register(client: TestClient, name: str = "pixel-bot", color: str = "#E50000"):
    response = client.post("/api/agents", json={"name": name, "color": color})
    assert response.status_code == 201
    return response.json()


def auth(credential: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {credential}"}


class TestRegistration:
    def test_register(self, client):
        data = register(client, "Pixel Bot", "#0083c7")

        assert len(data["credential"]) == 64
        assert data["name"] == "Pixel Bot"
        assert data["color"] == "#0083C7"
        assert data["cooldown_ms"] == COOLDOWN
        assert data["grid_size"] == 100
        assert len(data["palette"]) == 16

    def test_invalid_name(self, client):
        response = client.post("/api/agents", json={"name": "!!!"})
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_name"

    def test_registration_throttled(self, client, clock):
        """Test the per-client registration limit."""
        for i in range(10):
            register(client, f"bot{i}")

        response = client.post("/api/agents", json={"name": "one-too-many"})

        assert response.status_code == 429
        assert response.json()["detail"]["error"] == "too_many_registrations"
        assert "Retry-After" in response.headers

    def test_agent_list_hides_credentials(self, client):
        first = register(client, "first")
        register(client, "second")

        response = client.get("/api/agents")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert first["credential"] not in response.text
        for agent in data["agents"]:
            assert "credential" not in agent
            assert agent["cells_placed"] == 0


class TestPlacement:
    """Test POST /api/pixel through the full stack."""

    def test_place_and_cooldown(self, client, clock):
        """Test accept, 429 inside the window, and accept after it."""
        credential = register(client)["credential"]

        response = client.post(
            "/api/pixel",
            json={"x": 5, "y": 5, "color": "#E50000"},
            headers=auth(credential),
        )
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["was_override"] is False
        assert data["next_eligible_at"] == 1_000 + COOLDOWN

        clock.now = 5_000
        response = client.post(
            "/api/pixel",
            json={"x": 6, "y": 6, "color": "#E50000"},
            headers=auth(credential),
        )
        assert response.status_code == 429
        detail = response.json()["detail"]
        assert detail["error"] == "rate_limited"
        assert detail["details"]["wait_ms"] == 6_000
        assert response.headers["Retry-After"] == "6"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert response.headers["X-RateLimit-Reset"] == "11"
        assert client.get("/api/pixel", params={"x": 6, "y": 6}).status_code == 404

        clock.now = 11_001
        response = client.post(
            "/api/pixel", json={"x": 6, "y": 6}, headers=auth(credential)
        )
        assert response.status_code == 200
        assert response.json()["color"] == "#E50000"

    def test_override(self, client, clock):
        a = register(client, "a", "#E50000")
        b = register(client, "b", "#0000EA")

        client.post("/api/pixel", json={"x": 1, "y": 1}, headers=auth(a["credential"]))
        response = client.post(
            "/api/pixel", json={"x": 1, "y": 1}, headers=auth(b["credential"])
        )

        data = response.json()
        assert data["was_override"] is True
        assert data["previous_writer_id"] == a["id"]

    def test_missing_credential(self, client):
        response = client.post("/api/pixel", json={"x": 0, "y": 0})
        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "invalid_credential"

    def test_unknown_credential(self, client):
        response = client.post(
            "/api/pixel", json={"x": 0, "y": 0}, headers=auth(generate_credential())
        )
        assert response.status_code == 401

    def test_auth_failures_throttled(self, client):
        """Test repeated bad credentials lock the client out."""
        for _ in range(3):
            response = client.post(
                "/api/pixel", json={"x": 0, "y": 0}, headers=auth("bad")
            )
            assert response.status_code == 401

        response = client.post("/api/pixel", json={"x": 0, "y": 0}, headers=auth("bad"))

        assert response.status_code == 429
        assert response.json()["detail"]["error"] == "too_many_auth_failures"

    def test_invalid_coordinates(self, client):
        credential = register(client)["credential"]

        response = client.post(
            "/api/pixel", json={"x": 100, "y": 0}, headers=auth(credential)
        )

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "invalid_coordinates"
        assert detail["details"] == {"min": 0, "max": 99}

    def test_invalid_color(self, client):
        credential = register(client)["credential"]

        response = client.post(
            "/api/pixel",
            json={"x": 0, "y": 0, "color": "#010203"},
            headers=auth(credential),
        )

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "invalid_color"
        assert "#E50000" in detail["details"]["palette"]


class TestReads:
    def test_get_pixel(self, client):
        agent = register(client)
        client.post(
            "/api/pixel", json={"x": 3, "y": 4}, headers=auth(agent["credential"])
        )

        response = client.get("/api/pixel", params={"x": 3, "y": 4})

        assert response.status_code == 200
        data = response.json()
        assert data["color"] == "#E50000"
        assert data["agent"]["id"] == agent["id"]
        assert "credential" not in data["agent"]

    def test_get_pixel_unclaimed(self, client):
        response = client.get("/api/pixel", params={"x": 3, "y": 4})
        assert response.status_code == 404

    def test_get_pixel_invalid(self, client):
        response = client.get("/api/pixel", params={"x": "abc", "y": 4})
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_coordinates"

    def test_canvas_and_region(self, client, clock):
        a = register(client, "a")
        b = register(client, "b")
        client.post("/api/pixel", json={"x": 2, "y": 2}, headers=auth(a["credential"]))
        client.post(
            "/api/pixel", json={"x": 90, "y": 90}, headers=auth(b["credential"])
        )

        full = client.get("/api/canvas").json()
        assert set(full["canvas"]) == {"2,2", "90,90"}
        assert full["cell_count"] == 2
        assert full["bounds"] == {"min_x": 2, "max_x": 90, "min_y": 2, "max_y": 90}

        region = client.get(
            "/api/canvas", params={"min_x": 0, "max_x": 10, "min_y": 0, "max_y": 10}
        ).json()
        assert set(region["canvas"]) == {"2,2"}
        assert region["returned_cells"] == 1
        assert region["cell_count"] == 2

    def test_region_too_large(self, client):
        response = client.get(
            "/api/canvas", params={"min_x": 0, "max_x": 99, "min_y": 0, "max_y": 1}
        )
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "region_too_large"
        assert detail["details"] == {"max_width": 50, "max_height": 50}

    def test_stats(self, client):
        register(client)

        data = client.get("/api/stats").json()

        assert data["agent_count"] == 1
        assert data["cell_count"] == 0
        assert data["cooldown_ms"] == COOLDOWN
        assert data["bounds"] == {"min_x": 0, "max_x": 0, "min_y": 0, "max_y": 0}

    def test_activity(self, client):
        agent = register(client)
        client.post(
            "/api/pixel", json={"x": 7, "y": 7}, headers=auth(agent["credential"])
        )

        data = client.get("/api/canvas/activity", params={"limit": 5}).json()

        assert data["count"] == 1
        assert data["activity"][0]["writer_name"] == "pixel-bot"

    def test_status(self, client, clock):
        credential = register(client)["credential"]
        client.post("/api/pixel", json={"x": 0, "y": 0}, headers=auth(credential))
        clock.now = 3_500

        response = client.get("/api/agents/status", headers=auth(credential))

        assert response.status_code == 200
        data = response.json()
        assert data["cells_placed"] == 1
        assert data["cooldown"]["can_place_now"] is False
        assert data["cooldown"]["wait_ms"] == 7_500

    def test_status_unauthorized(self, client):
        assert client.get("/api/agents/status").status_code == 401

    def test_health(self, client):
        data = client.get("/health").json()
        assert data["status"] == "healthy"


class TestObserverStream:
    """Test the WebSocket feed."""

    def test_receives_pixel_events(self, client):
        credential = register(client)["credential"]

        with client.websocket_connect("/api/stream") as websocket:
            connected = websocket.receive_json()
            assert connected["type"] == "connected"
            assert connected["liveViewerCount"] == 1
            assert websocket.receive_json()["type"] == "viewers"

            client.post("/api/pixel", json={"x": 8, "y": 9}, headers=auth(credential))

            event = websocket.receive_json()
            assert event["type"] == "pixel"
            assert (event["x"], event["y"]) == (8, 9)
            assert event["color"] == "#E50000"
            assert event["wasOverride"] is False

    def test_per_origin_limit(self, clock):
        """Test a connection over the per-origin cap gets an error then 1008."""
        service = CanvasService(
            make_config(max_connections=10, max_per_origin=1), clock=clock
        )
        adapter = create_web_adapter(service=service)

        with TestClient(adapter.app) as client:
            with client.websocket_connect("/api/stream") as first:
                assert first.receive_json()["type"] == "connected"

                with client.websocket_connect("/api/stream") as second:
                    error = second.receive_json()
                    assert error["error"] == "per_origin_limit_exceeded"
                    with pytest.raises(WebSocketDisconnect) as exc_info:
                        second.receive_json()
                    assert exc_info.value.code == 1008

    def test_capacity(self, clock):
        service = CanvasService(
            make_config(max_connections=1, max_per_origin=1), clock=clock
        )
        adapter = create_web_adapter(service=service)

        with TestClient(adapter.app) as client:
            with client.websocket_connect("/api/stream") as first:
                assert first.receive_json()["type"] == "connected"

                with client.websocket_connect("/api/stream") as second:
                    assert second.receive_json()["error"] == "capacity_exceeded"
                    with pytest.raises(WebSocketDisconnect) as exc_info:
                        second.receive_json()
                    assert exc_info.value.code == 1013

    def test_viewer_count_drops_on_disconnect(self, client):
        with client.websocket_connect("/api/stream") as first:
            first.receive_json()
            first.receive_json()
            with client.websocket_connect("/api/stream") as second:
                second.receive_json()
                assert first.receive_json()["liveViewerCount"] == 2

            assert first.receive_json()["liveViewerCount"] == 1


class TestRateLimiter:
    def test_sliding_window(self):
        limiter = RateLimiter(max_requests=2, window_seconds=60)

        assert limiter.is_allowed("a")
        assert limiter.remaining("a") == 1
        assert limiter.is_allowed("a")
        assert not limiter.is_allowed("a")
        assert limiter.retry_after("a") >= 1
        assert limiter.is_allowed("b")
