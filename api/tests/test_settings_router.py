"""Tests for the settings API router."""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock

from settings_db import SettingsDB
from settings import init_settings, SETTING_DEFS
from settings_router import router, init_settings_router


@pytest.fixture
def db(tmp_path):
    """Create a fresh SettingsDB."""
    return SettingsDB(str(tmp_path / "test.db"))


@pytest.fixture
def mock_connections():
    """Mock stash-box connection manager."""
    import stashbox_connection_manager as conn_mod
    original = conn_mod._manager
    mgr = MagicMock()
    mgr.get_connections.return_value = [
        {"endpoint": "https://stashdb.org/graphql", "name": "StashDB",
         "domain": "stashdb.org", "max_requests_per_minute": 240},
    ]
    mgr.resolve_endpoint.return_value = "https://stashdb.org/graphql"
    mgr.refresh = AsyncMock(return_value=1)
    conn_mod._manager = mgr
    yield mgr
    conn_mod._manager = original


@pytest.fixture
def client(db, mock_connections):
    """Create a test client with initialized settings."""
    import settings as settings_mod

    original_mgr = settings_mod._settings_manager
    init_settings(db)
    init_settings_router()

    from fastapi import FastAPI
    app = FastAPI()
    app.include_router(router)
    client = TestClient(app)

    yield client

    settings_mod._settings_manager = original_mgr


class TestGetAllSettings:
    """Test GET /settings."""

    def test_all_settings_present(self, client):
        resp = client.get("/settings")
        assert resp.status_code == 200
        all_keys = set()
        for cat in resp.json()["categories"].values():
            all_keys.update(cat["settings"].keys())
        assert all_keys == set(SETTING_DEFS)


class TestGetSingleSetting:
    """Test GET /settings/{key}."""

    def test_existing_setting(self, client):
        resp = client.get("/settings/tag_operation")
        assert resp.status_code == 200
        data = resp.json()
        assert data["value"] == "merge"
        assert data["is_override"] is False
        assert data["choices"] == ["merge", "overwrite"]

    def test_unknown_setting(self, client):
        assert client.get("/settings/nonexistent").status_code == 404


class TestUpdateSetting:
    """Test PUT /settings/{key} and PUT /settings."""

    def test_update(self, client):
        resp = client.put("/settings/show_males", json={"value": True})
        assert resp.status_code == 200
        assert resp.json()["value"] is True
        assert client.get("/settings/show_males").json()["is_override"] is True

    def test_invalid_value(self, client):
        resp = client.put("/settings/mode", json={"value": "guess"})
        assert resp.status_code == 422

    def test_unknown_key(self, client):
        assert client.put("/settings/nope", json={"value": 1}).status_code == 404

    def test_bulk_update(self, client):
        resp = client.put("/settings", json={"settings": {"set_tags": True, "stash_api_rate": 2}})
        assert resp.status_code == 200
        assert resp.json()["stored"] == {"set_tags": True, "stash_api_rate": 2.0}

    def test_bulk_update_reports_errors(self, client):
        resp = client.put("/settings", json={"settings": {"set_tags": True, "bogus": 1}})
        assert resp.status_code == 422
        detail = resp.json()["detail"]
        assert "bogus" in detail["errors"]
        assert detail["stored"] == {"set_tags": True}


class TestResetSetting:

    def test_reset(self, client):
        client.put("/settings/set_organized", json={"value": True})
        resp = client.delete("/settings/set_organized")
        assert resp.status_code == 200
        assert resp.json() == {"key": "set_organized", "value": False, "is_override": False}


class TestModesAndSystem:

    def test_modes(self, client):
        modes = client.get("/settings/modes").json()["modes"]
        assert set(modes) == {"auto", "filename", "dir", "path", "metadata"}

    def test_system_info(self, client):
        data = client.get("/system/info").json()
        assert "version" in data
        assert data["uptime_seconds"] >= 0

    def test_stashbox_connections(self, client):
        data = client.get("/system/stashbox-connections").json()
        assert data["connections"][0]["domain"] == "stashdb.org"
        assert "api_key" not in data["connections"][0]

    def test_refresh(self, client, mock_connections):
        resp = client.post("/system/refresh-stashbox-config")
        assert resp.status_code == 200
        assert resp.json()["endpoints_loaded"] == 1
        mock_connections.refresh.assert_awaited_once()

    def test_active_endpoint_uses_selected_setting(self, client, mock_connections):
        client.put("/settings/selected_endpoint", json={"value": "stashdb.org"})
        data = client.get("/system/stashbox-connections").json()
        assert data["active_endpoint"] == "https://stashdb.org/graphql"
        mock_connections.resolve_endpoint.assert_called_with("stashdb.org")


class TestSnapshotAndResetAll:

    def test_snapshot_reflects_overrides(self, client):
        client.put("/settings/show_males", json={"value": True})
        data = client.get("/settings/snapshot").json()
        assert data["mode"] == "auto"
        assert data["show_males"] is True
        assert data["tag_operation"] == "merge"
        assert isinstance(data["excluded_fields"], list)

    def test_reset_all(self, client):
        client.put("/settings", json={"settings": {"set_tags": True, "set_organized": True}})
        resp = client.delete("/settings")
        assert resp.status_code == 200
        assert sorted(resp.json()["reset"]) == ["set_organized", "set_tags"]
        assert client.get("/settings/set_tags").json()["is_override"] is False

    def test_reset_all_without_overrides(self, client):
        assert client.delete("/settings").json() == {"reset": []}
