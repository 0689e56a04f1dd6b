"""Unit tests for the AdmissionController."""

import asyncio

import pytest

from gridplace.core.activity import ActivityLog
from gridplace.core.admission import (
    AdmissionController,
    PlacementAccepted,
    PlacementRejected,
)
from gridplace.core.broadcaster import Broadcaster
from gridplace.core.validation import DEFAULT_PALETTE, generate_credential
from gridplace.storage.agents import InMemoryAgentDirectory
from gridplace.storage.grid import InMemoryGridStore
from gridplace.utils.errors import InvalidCoordinatesError, InvalidCredentialError

COOLDOWN = 10_000


class FakeClock:
    def __init__(self, now: int = 0):
        self.now = now

    def __call__(self) -> int:
        return self.now


class BrokenGrid(InMemoryGridStore):
    async def put(self, *args):
        raise RuntimeError("database is locked")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def directory():
    store = InMemoryAgentDirectory()
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def broadcaster(clock):
    return Broadcaster(clock=clock)


@pytest.fixture
def controller(directory, broadcaster, clock):
    return AdmissionController(
        directory,
        InMemoryGridStore(),
        broadcaster,
        grid_size=1000,
        cooldown_ms=COOLDOWN,
        activity=ActivityLog(),
        clock=clock,
    )


async def register(directory, agent_id: str, color: str = "#E50000") -> str:
    credential = generate_credential()
    await directory.create(agent_id, agent_id.upper(), credential, color, 0)
    return credential


class TestPlacement:
    """Test the placement pipeline end to end against in-memory stores."""

    async def test_cooldown_scenario(self, controller, directory, clock):
        """Test accept at T=0, reject at T=4000, accept again after the window."""
        credential = await register(directory, "agent-a")

        first = await controller.place(credential, 5, 5, "#E50000")
        assert isinstance(first, PlacementAccepted)
        assert first.success
        assert first.next_eligible_at == COOLDOWN
        assert not first.was_override

        clock.now = 4000
        second = await controller.place(credential, 6, 6, "#E50000")
        assert isinstance(second, PlacementRejected)
        assert not second.success
        assert second.error.code == "rate_limited"
        assert second.error.details()["wait_ms"] == 6000
        assert second.error.details()["next_eligible_at"] == COOLDOWN
        assert await controller.grid.get(6, 6) is None

        clock.now = 10_001
        third = await controller.place(credential, 6, 6, "#E50000")
        assert isinstance(third, PlacementAccepted)
        assert third.next_eligible_at == 10_001 + COOLDOWN

    async def test_override_reports_previous_writer(self, controller, directory, clock):
        """Test that overwriting another agent's cell is reported."""
        credential_a = await register(directory, "agent-a", "#E50000")
        credential_b = await register(directory, "agent-b", "#0000EA")

        await controller.place(credential_a, 1, 1, "#E50000")
        clock.now = 20_000
        result = await controller.place(credential_b, 1, 1, "#0000EA")

        assert result.was_override
        assert result.previous_writer_id == "agent-a"
        cell = await controller.grid.get(1, 1)
        assert cell == {
            "x": 1,
            "y": 1,
            "color": "#0000EA",
            "writer_id": "agent-b",
            "written_at": 20_000,
        }

    async def test_invalid_coordinates(self, controller, directory):
        credential = await register(directory, "agent-a")

        result = await controller.place(credential, 1000, 0, "#E50000")

        assert result.error.code == "invalid_coordinates"
        assert result.error.details() == {"min": 0, "max": 999}

    async def test_invalid_coordinates_do_not_start_cooldown(
        self, controller, directory
    ):
        credential = await register(directory, "agent-a")

        await controller.place(credential, -1, 0, "#E50000")
        result = await controller.place(credential, 0, 0, "#E50000")

        assert result.success

    async def test_invalid_color(self, controller, directory):
        credential = await register(directory, "agent-a")

        result = await controller.place(credential, 0, 0, "#123456")

        assert result.error.code == "invalid_color"
        assert result.error.details()["palette"] == list(DEFAULT_PALETTE)

    async def test_default_color(self, controller, directory):
        """Test that omitting the color uses the agent's own color."""
        credential = await register(directory, "agent-a", "#02BE01")

        result = await controller.place(credential, 3, 4)

        assert result.color == "#02BE01"

    async def test_lowercase_color_normalized(self, controller, directory):
        credential = await register(directory, "agent-a")

        result = await controller.place(credential, 3, 4, "#0083c7")

        assert result.color == "#0083C7"

    @pytest.mark.parametrize("credential", [None, "", "not-a-credential"])
    async def test_malformed_credential(self, controller, credential):
        result = await controller.place(credential, 0, 0, "#E50000")
        assert result.error.code == "invalid_credential"

    async def test_unknown_credential(self, controller):
        result = await controller.place(generate_credential(), 0, 0, "#E50000")
        assert result.error.code == "invalid_credential"

    async def test_concurrent_placements_admit_exactly_one(
        self, controller, directory
    ):
        """Test that simultaneous requests from one agent admit only one."""
        credential = await register(directory, "agent-a")

        results = await asyncio.gather(
            *(controller.place(credential, i, i, "#E50000") for i in range(10))
        )

        accepted = [r for r in results if r.success]
        rejected = [r for r in results if not r.success]
        assert len(accepted) == 1
        assert len(rejected) == 9
        assert all(r.error.code == "rate_limited" for r in rejected)
        assert await controller.grid.count() == 1

    async def test_unexpected_failure_becomes_internal_error(
        self, directory, broadcaster, clock
    ):
        """Test that store failures are reported without detail."""
        controller = AdmissionController(
            directory, BrokenGrid(), broadcaster, cooldown_ms=COOLDOWN, clock=clock
        )
        credential = await register(directory, "agent-a")

        result = await controller.place(credential, 0, 0, "#E50000")

        assert result.error.code == "internal_error"
        assert result.error.details() == {}
        assert "locked" not in result.error.message

    async def test_observers_receive_pixel_event(
        self, controller, directory, broadcaster
    ):
        credential = await register(directory, "agent-a")
        subscription = broadcaster.subscribe("1.2.3.4")
        while subscription.pending():
            await subscription.next_event()

        await controller.place(credential, 7, 8, "#E50000")

        event = await subscription.next_event()
        assert event["type"] == "pixel"
        assert (event["x"], event["y"]) == (7, 8)
        assert event["writerId"] == "agent-a"
        assert event["writerName"] == "AGENT-A"
        assert event["wasOverride"] is False
        assert event["liveViewerCount"] == 1

    async def test_rejections_are_not_broadcast(
        self, controller, directory, broadcaster
    ):
        credential = await register(directory, "agent-a")
        subscription = broadcaster.subscribe("1.2.3.4")
        while subscription.pending():
            await subscription.next_event()

        await controller.place(credential, 7, 8, "#BADBAD")

        assert subscription.pending() == 0

    async def test_activity_recorded(self, controller, directory, clock):
        credential_a = await register(directory, "agent-a")
        credential_b = await register(directory, "agent-b")

        await controller.place(credential_a, 1, 1, "#E50000")
        clock.now = 50
        await controller.place(credential_b, 1, 1, "#FFFFFF")

        entries = controller.activity.recent()
        assert [e["writer_id"] for e in entries] == ["agent-b", "agent-a"]
        assert entries[0]["was_override"]
        assert entries[0]["previous_writer_id"] == "agent-a"


class TestStatusAndLookup:
    async def test_status_before_and_after_placement(
        self, controller, directory, clock
    ):
        """Test cooldown and contribution reporting."""
        credential = await register(directory, "agent-a")

        status = await controller.status(credential)
        assert status.can_place_now
        assert status.wait_ms == 0
        assert status.cells_placed == 0

        await controller.place(credential, 0, 0, "#E50000")
        clock.now = 2500
        status = await controller.status(credential)

        assert not status.can_place_now
        assert status.wait_ms == 7500
        assert status.next_eligible_at == COOLDOWN
        assert status.cells_placed == 1
        assert "credential" not in status.agent

    async def test_status_requires_valid_credential(self, controller):
        with pytest.raises(InvalidCredentialError):
            await controller.status(generate_credential())

    async def test_get_cell(self, controller, directory):
        credential = await register(directory, "agent-a")
        await controller.place(credential, 9, 9, "#E50000")

        cell, writer = await controller.get_cell(9, 9)

        assert cell["color"] == "#E50000"
        assert writer == {
            "id": "agent-a",
            "name": "AGENT-A",
            "color": "#E50000",
            "created_at": 0,
        }

    async def test_get_unclaimed_cell(self, controller):
        assert await controller.get_cell(9, 9) is None

    async def test_get_cell_out_of_range(self, controller):
        with pytest.raises(InvalidCoordinatesError):
            await controller.get_cell(0, 1000)
