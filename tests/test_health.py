from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from control.health import create_app, serve_health
from control.reconcile import CycleState, Reconciler
from sinks.base import ManualCommand


def make_reconciler(mocker, store):
    return Reconciler(mocker.AsyncMock(), store, lambda: None)


def test_root_reports_running(mocker, store):
    client = TestClient(create_app(make_reconciler(mocker, store)))

    response = client.get("/")

    assert response.status_code == 200
    assert response.text == "Power Monitor Running"


def test_status_reflects_reconciler(mocker, store):
    reconciler = make_reconciler(mocker, store)
    reconciler.last_known_on = True
    reconciler.pending_command = ManualCommand(False, datetime.now(timezone.utc))
    reconciler.state = CycleState.COMMANDING
    client = TestClient(create_app(reconciler))

    response = client.get("/status")

    assert response.json() == {
        "state": "commanding",
        "relayOn": True,
        "commandPending": True,
    }


def test_status_before_first_reading(mocker, store):
    client = TestClient(create_app(make_reconciler(mocker, store)))

    assert client.get("/status").json() == {
        "state": "idle",
        "relayOn": None,
        "commandPending": False,
    }


@pytest.mark.asyncio
async def test_serve_health_runs_uvicorn(mocker, store):
    mock_server = mocker.patch('control.health.uvicorn.Server')
    mock_server.return_value.serve = mocker.AsyncMock()

    await serve_health(make_reconciler(mocker, store), 8080)

    config = mock_server.call_args[0][0]
    assert config.port == 8080
    assert config.host == "0.0.0.0"
    mock_server.return_value.serve.assert_awaited_once()
