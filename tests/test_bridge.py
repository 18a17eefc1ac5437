"""Tests for bridge.py configuration and factory functions"""
import json

import pytest

from bridge import get_device_client, get_port, get_state_store, get_timezone
from sinks.firebase import FirebaseStateStore
from sources.tuya import TuyaDeviceClient

TUYA_ENV = {
    "TUYA_CLIENT_ID": "cid",
    "TUYA_SECRET": "secret",
    "TUYA_DEVICE_ID": "dev1",
}


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in (
        *TUYA_ENV,
        "TUYA_BASE_URL",
        "FIREBASE_DATABASE_URL",
        "FIREBASE_KEY_BASE64",
        "FIREBASE_SERVICE_ACCOUNT",
        "BRIDGE_TIMEZONE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("FIREBASE_SERVICE_ACCOUNT_FILE", str(tmp_path / "missing.json"))
    return monkeypatch


class TestGetDeviceClient:
    """Test the get_device_client() factory function"""

    def test_success(self, clean_env, mocker, store):
        for name, value in TUYA_ENV.items():
            clean_env.setenv(name, value)
        clean_env.setenv("TUYA_BASE_URL", "https://openapi.tuyaeu.com")

        client = get_device_client(store, mocker.AsyncMock())

        assert isinstance(client, TuyaDeviceClient)
        assert client.device_id == "dev1"
        assert client.session.client_id == "cid"
        assert client.session.base_url == "https://openapi.tuyaeu.com"

    def test_default_base_url(self, clean_env, mocker, store):
        for name, value in TUYA_ENV.items():
            clean_env.setenv(name, value)

        client = get_device_client(store, mocker.AsyncMock())

        assert client.session.base_url == "https://openapi.tuyaus.com"

    @pytest.mark.parametrize("missing", list(TUYA_ENV))
    def test_missing_credentials_exit(self, clean_env, mocker, store, missing):
        for name, value in TUYA_ENV.items():
            if name != missing:
                clean_env.setenv(name, value)

        with pytest.raises(SystemExit) as exc_info:
            get_device_client(store, mocker.AsyncMock())

        assert exc_info.value.code == 1


class TestGetStateStore:
    """Test the get_state_store() factory function"""

    def test_success(self, clean_env):
        clean_env.setenv("FIREBASE_DATABASE_URL", "https://example-rtdb.firebaseio.com")
        clean_env.setenv("FIREBASE_SERVICE_ACCOUNT", json.dumps({"project_id": "p"}))

        store = get_state_store(timeout=5)

        assert isinstance(store, FirebaseStateStore)
        assert store.database_url == "https://example-rtdb.firebaseio.com"
        assert store.service_account == {"project_id": "p"}
        assert store.timeout == 5

    def test_missing_database_url_exits(self, clean_env):
        clean_env.setenv("FIREBASE_SERVICE_ACCOUNT", json.dumps({"project_id": "p"}))

        with pytest.raises(SystemExit) as exc_info:
            get_state_store()

        assert exc_info.value.code == 1

    def test_missing_service_account_exits(self, clean_env):
        clean_env.setenv("FIREBASE_DATABASE_URL", "https://example-rtdb.firebaseio.com")

        with pytest.raises(SystemExit) as exc_info:
            get_state_store()

        assert exc_info.value.code == 1


class TestGetTimezone:
    def test_default(self, clean_env):
        assert get_timezone().key == "Asia/Kuala_Lumpur"

    def test_unknown_timezone_exits(self, clean_env):
        clean_env.setenv("BRIDGE_TIMEZONE", "Mars/Olympus_Mons")

        with pytest.raises(SystemExit):
            get_timezone()


class TestGetPort:
    def test_default(self, monkeypatch):
        monkeypatch.delenv("PORT", raising=False)

        assert get_port() == 3000

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PORT", "8080")

        assert get_port() == 8080

    @pytest.mark.parametrize("value", ["http", "0", "70000"])
    def test_invalid_port_exits(self, monkeypatch, value):
        monkeypatch.setenv("PORT", value)

        with pytest.raises(SystemExit) as exc_info:
            get_port()

        assert exc_info.value.code == 1
