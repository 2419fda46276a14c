"""Tests for the primary API."""

import pytest
from fastapi.testclient import TestClient

from fieldsync.api.dependencies import get_configuration_service, get_orchestrator
from fieldsync.database.database import get_db
from fieldsync.main import app
from fieldsync.models.sync_conflict import SyncConflict
from fieldsync.models.sync_history import SyncHistory

from tests.helpers import EDITED, LAST_SYNC, PEER_API_KEY, fetch_rows, insert_rows


@pytest.fixture
def client(env, session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_configuration_service] = lambda: env.configuration_service
    app.dependency_overrides[get_orchestrator] = lambda: env.orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_payload(**overrides):
    payload = {
        "serverName": "Regional office",
        "serverUrl": "http://remote.test",
        "apiKey": PEER_API_KEY,
    }
    payload.update(overrides)
    return payload


class TestConfigurationsApi:

    def test_create_returns_camel_case_without_secrets(self, client):
        response = client.post("/api/sync/configurations", json=create_payload(syncFiles=True))

        assert response.status_code == 201
        body = response.json()
        assert body["serverName"] == "Regional office"
        assert body["hasApiKey"] is True
        assert body["hasPassword"] is False
        assert body["syncFiles"] is True
        assert "apiKey" not in body
        assert PEER_API_KEY not in response.text

    def test_create_without_credentials(self, client):
        response = client.post("/api/sync/configurations", json=create_payload(apiKey=None))

        assert response.status_code == 400

    def test_get_update_delete(self, client):
        config_id = client.post("/api/sync/configurations", json=create_payload()).json()["id"]

        assert client.get(f"/api/sync/configurations/{config_id}").json()["exportFormat"] == "sql"

        response = client.put(f"/api/sync/configurations/{config_id}", json={"exportFormat": "csv", "apiKey": ""})
        assert response.status_code == 200
        assert response.json()["exportFormat"] == "csv"
        assert response.json()["hasApiKey"] is True

        assert client.delete(f"/api/sync/configurations/{config_id}").status_code == 204
        assert client.get(f"/api/sync/configurations/{config_id}").status_code == 404

    def test_invalid_update(self, client):
        config_id = client.post("/api/sync/configurations", json=create_payload()).json()["id"]

        response = client.put(f"/api/sync/configurations/{config_id}", json={"syncDirection": "sideways"})

        assert response.status_code == 400

    def test_list(self, client):
        client.post("/api/sync/configurations", json=create_payload())
        client.post("/api/sync/configurations", json=create_payload(serverName="Depot"))

        names = [c["serverName"] for c in client.get("/api/sync/configurations").json()]
        assert names == ["Regional office", "Depot"]


class TestExecuteApi:

    def test_execute_runs_in_background_and_records_history(self, client, env):
        insert_rows(env.local_engine, "customers", {"id": 1, "organization_id": 1, "name": "Acme", "updated_at": EDITED})
        config_id = client.post("/api/sync/configurations", json=create_payload()).json()["id"]

        response = client.post("/api/sync/execute", json={"configurationId": config_id, "syncType": "database"})

        assert response.status_code == 202
        history_id = response.json()["historyId"]

        history = client.get(f"/api/sync/history/{history_id}").json()
        assert history["status"] == "completed"
        assert history["recordsSynced"] == 1
        assert fetch_rows(env.remote_engine, "customers")[0]["name"] == "Acme"

        listed = client.get("/api/sync/history", params={"configurationId": config_id}).json()
        assert [h["id"] for h in listed] == [history_id]

    def test_execute_unknown_configuration(self, client):
        response = client.post("/api/sync/execute", json={"configurationId": 999, "syncType": "database"})

        assert response.status_code == 404

    def test_execute_out_of_scope(self, client):
        config_id = client.post("/api/sync/configurations", json=create_payload()).json()["id"]

        response = client.post("/api/sync/execute", json={"configurationId": config_id, "syncType": "files"})

        assert response.status_code == 400

    def test_execute_while_running(self, client, env):
        config_id = client.post("/api/sync/configurations", json=create_payload()).json()["id"]
        env.orchestrator.start_run(env.db, config_id, "database")

        response = client.post("/api/sync/execute", json={"configurationId": config_id, "syncType": "database"})

        assert response.status_code == 409
        status = client.get("/api/sync/status").json()
        assert status["activeRuns"][0]["configurationId"] == config_id
        assert status["activeRuns"][0]["state"] == "idle"

    def test_history_not_found(self, client):
        assert client.get("/api/sync/history/12345").status_code == 404


class TestConflictsApi:

    def seed_conflict(self, client, env):
        insert_rows(env.local_engine, "customers", {"id": 1, "organization_id": 1, "name": "Acme Local", "updated_at": EDITED})
        insert_rows(env.remote_engine, "customers", {"id": 1, "organization_id": 1, "name": "Acme Remote", "updated_at": EDITED})
        config_id = client.post(
            "/api/sync/configurations",
            json=create_payload(syncDirection="bidirectional"),
        ).json()["id"]
        config = env.configuration_service.get_configuration(env.db, config_id)
        config.last_sync_at = LAST_SYNC
        env.db.commit()
        client.post("/api/sync/execute", json={"configurationId": config_id, "syncType": "database"})
        return config_id

    def test_list_and_resolve(self, client, env):
        self.seed_conflict(client, env)

        conflicts = client.get("/api/sync/conflicts").json()
        assert len(conflicts) == 1
        assert conflicts[0]["conflictType"] == "both-modified"
        assert conflicts[0]["localData"]["name"] == "Acme Local"

        response = client.post(
            f"/api/sync/conflicts/{conflicts[0]['id']}/resolve",
            json={"resolution": "resolved-merged", "mergedData": {**conflicts[0]["localData"], "name": "Acme Merged"}},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "resolved-merged"
        assert client.get("/api/sync/conflicts").json() == []
        assert len(client.get("/api/sync/conflicts", params={"status": "all"}).json()) == 1
        assert fetch_rows(env.local_engine, "customers")[0]["name"] == "Acme Merged"
        assert fetch_rows(env.remote_engine, "customers")[0]["name"] == "Acme Merged"

    def test_merged_requires_data(self, client, env):
        self.seed_conflict(client, env)
        conflict_id = client.get("/api/sync/conflicts").json()[0]["id"]

        response = client.post(f"/api/sync/conflicts/{conflict_id}/resolve", json={"resolution": "resolved-merged"})

        assert response.status_code == 400

    def test_resolve_missing_conflict(self, client):
        response = client.post("/api/sync/conflicts/999/resolve", json={"resolution": "resolved-local"})

        assert response.status_code == 404


class TestConnectionApi:

    def test_test_connection_requires_credentials(self, client):
        response = client.post("/api/sync/test-connection", json={"serverUrl": "http://remote.test"})

        assert response.status_code == 400

    def test_test_connection_rejects_bad_url(self, client):
        response = client.post("/api/sync/test-connection", json={"serverUrl": "remote", "apiKey": "k"})

        assert response.status_code == 400


class TestHealthAndStats:

    def test_health(self, client):
        body = client.get("/api/health").json()

        assert body["status"] == "healthy"
        assert body["encryption"] == "valid"

    def test_stats(self, client, env):
        client.post("/api/sync/configurations", json=create_payload())

        body = client.get("/api/stats").json()

        assert body["configurationsCount"] == 1
        assert body["syncRunsCount"] == 0
        assert body["pendingConflictsCount"] == 0
