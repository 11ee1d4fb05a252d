from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from kaisight.orchestrator.events import AgentState

try:
    from kaisight import main
except OSError as exc:  # PortAudio missing on the test host
    pytest.skip(f"audio stack unavailable: {exc}", allow_module_level=True)


class FakeMachine:
    state = AgentState.LISTENING_FOR_WAKE_WORD
    conversation_active = False
    recognition_failures = 0

    def __init__(self) -> None:
        self.calls: list[str] = []

    def status_text(self) -> str:
        return "Listening for wake word"

    def armed_timers(self) -> set[str]:
        return set()

    def manual_activation(self) -> None:
        self.calls.append("activate")

    def manual_deactivation(self) -> None:
        self.calls.append("deactivate")


class FakeSources:
    def __init__(self) -> None:
        self.lighting: list[float] = []
        self.obstacles: list = []

    def report_lighting(self, level: float) -> None:
        self.lighting.append(level)

    def report_obstacles(self, obstacles) -> None:
        self.obstacles.extend(obstacles)


@pytest.fixture
def client():
    # No context manager: the startup hook (real microphone) never runs.
    test_client = TestClient(main.app)
    yield test_client
    main.app.state.runtime = None


def install_runtime() -> tuple[FakeMachine, FakeSources]:
    machine = FakeMachine()
    sources = FakeSources()
    main.app.state.runtime = main.Runtime(machine, pipeline=None, speech=None, monitor=None, sources=sources)
    return machine, sources


def test_status_without_runtime_reports_offline(client) -> None:
    main.app.state.runtime = None
    response = client.get("/agent/status")
    assert response.status_code == 200
    assert response.json() == {"state": "offline", "status": "Agent offline"}


def test_activate_without_runtime_is_unavailable(client) -> None:
    main.app.state.runtime = None
    assert client.post("/agent/activate").status_code == 503


def test_status_and_manual_controls(client) -> None:
    machine, _ = install_runtime()

    status = client.get("/agent/status").json()
    assert status["state"] == "listening_for_wake_word"
    assert status["status"] == "Listening for wake word"

    assert client.post("/agent/activate").json() == {"status": "ok"}
    assert client.post("/agent/deactivate").json() == {"status": "ok"}
    assert machine.calls == ["activate", "deactivate"]


def test_sensor_reports_feed_risk_sources(client) -> None:
    _, sources = install_runtime()

    assert client.post("/risk/lighting", json={"level": 0.05}).status_code == 200
    response = client.post(
        "/risk/obstacles",
        json={"obstacles": [{"identifier": "step-1", "description": "Step", "distance": 0.6, "location": [0, 0, -0.6]}]},
    )

    assert response.json() == {"accepted": 1}
    assert sources.lighting == [0.05]
    assert sources.obstacles[0].identifier == "step-1"
    assert sources.obstacles[0].location.z == -0.6
