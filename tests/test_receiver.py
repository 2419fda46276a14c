"""Tests for the receiver service."""

import json

import pytest
from fastapi.testclient import TestClient

from fieldsync.receiver.auth import Authenticator, hash_password, verify_password
from fieldsync.receiver.config import ReceiverSettings
from fieldsync.services.checksum import checksum_bytes

from tests.helpers import EDITED, PEER_API_KEY, PEER_PASSWORD, PEER_USERNAME, fetch_rows, insert_rows

API_KEY_HEADERS = {"Authorization": f"Bearer {PEER_API_KEY}"}


@pytest.fixture
def client(receiver_app):
    return TestClient(receiver_app)


def sql_body(*statements, organization_id=1):
    return {"organizationId": organization_id, "format": "sql", "statements": list(statements)}


class TestAuthentication:

    def test_missing_credentials(self, client):
        response = client.get("/api/sync/status")

        assert response.status_code == 401

    def test_wrong_api_key(self, client):
        response = client.get("/api/sync/status", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_api_key(self, client):
        response = client.get("/api/sync/status", headers=API_KEY_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["database"] == "connected"
        assert body["version"]
        assert body["serverTime"]

    def test_username_and_password(self, client):
        response = client.get("/api/sync/status", headers={"X-Username": PEER_USERNAME, "X-Password": PEER_PASSWORD})

        assert response.status_code == 200

    def test_wrong_password(self, client):
        response = client.get("/api/sync/status", headers={"X-Username": PEER_USERNAME, "X-Password": "guess"})

        assert response.status_code == 401

    def test_business_endpoints_require_auth(self, client):
        assert client.post("/api/sync/database", json=sql_body()).status_code == 401
        assert client.get("/api/sync/files", params={"organizationId": 1}).status_code == 401

    def test_unconfigured_credential_kind_never_authenticates(self):
        authenticator = Authenticator(ReceiverSettings(api_key=None, username=None, password_hash=None))

        assert authenticator.authenticate("Bearer ", None, None) is None

    def test_non_ascii_credentials_are_rejected(self, receiver_settings):
        authenticator = Authenticator(receiver_settings)

        assert authenticator.authenticate("Bearer caf\u00e9", None, None) is None
        assert authenticator.authenticate(None, "\u00e9", PEER_PASSWORD) is None

    def test_latin1_headers_get_401(self, client):
        bearer = client.get("/api/sync/status", headers={"Authorization": "Bearer caf\u00e9".encode("latin-1")})
        username = client.get(
            "/api/sync/status",
            headers={"X-Username": "\u00e9".encode("latin-1"), "X-Password": PEER_PASSWORD},
        )

        assert bearer.status_code == 401
        assert username.status_code == 401


def test_password_hash_round_trip():
    stored = hash_password("s3cret", iterations=1000)

    assert stored.startswith("1000$")
    assert verify_password("s3cret", stored)
    assert not verify_password("other", stored)
    assert not verify_password("s3cret", "garbage")


class TestDatabaseEndpoint:

    def test_applies_statements(self, client, remote_engine):
        response = client.post("/api/sync/database", headers=API_KEY_HEADERS, json=sql_body(
            "INSERT INTO customers (id, organization_id, name) VALUES (1, 1, 'Acme')",
            "INSERT INTO customers (id, organization_id, name) VALUES (2, 1, 'Birch')",
        ))

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["recordsApplied"] == 2
        assert [c["name"] for c in fetch_rows(remote_engine, "customers")] == ["Acme", "Birch"]

    def test_failure_rolls_back_everything(self, client, remote_engine):
        response = client.post("/api/sync/database", headers=API_KEY_HEADERS, json=sql_body(
            "INSERT INTO customers (id, organization_id, name) VALUES (1, 1, 'Acme')",
            "INSERT INTO jobs (id, organization_id, customer_id, title, status) VALUES (5, 1, 404, 'Orphan', 'open')",
        ))

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["recordsApplied"] == 0
        assert body["failedIndex"] == 1
        assert "FOREIGN KEY" in body["error"].upper()
        assert fetch_rows(remote_engine, "customers") == []

    def test_csv_payload(self, client, remote_engine):
        insert_rows(remote_engine, "customers", {"id": 3, "organization_id": 1, "name": "Old", "email": None})
        body = {
            "organizationId": 1,
            "format": "csv",
            "tables": [{
                "table": "customers",
                "primaryKey": "id",
                "columns": ["id", "organization_id", "name", "email"],
                "rowCount": 2,
                "csv": "id,organization_id,name,email\n1,1,\"Acme, Inc\",\\N\n2,1,Birch,\n",
            }],
            "deletes": [{"table": "customers", "primaryKey": "id", "ids": ["3"]}],
        }

        response = client.post("/api/sync/database", headers=API_KEY_HEADERS, json=body)

        assert response.status_code == 200
        assert response.json()["recordsApplied"] == 3
        rows = fetch_rows(remote_engine, "customers")
        assert [(r["id"], r["name"], r["email"]) for r in rows] == [(1, "Acme, Inc", None), (2, "Birch", "")]

    def test_unknown_format(self, client):
        response = client.post("/api/sync/database", headers=API_KEY_HEADERS, json={"organizationId": 1, "format": "xml"})

        assert response.status_code == 400
        assert response.json()["success"] is False


class TestFilesEndpoints:

    def test_upload_returns_computed_checksums(self, client, receiver_app):
        response = client.post(
            "/api/sync/files",
            headers=API_KEY_HEADERS,
            data={"organizationId": "4", "checksums": json.dumps({"plan.pdf": checksum_bytes(b"plan")})},
            files=[("files", ("plan.pdf", b"plan", "application/octet-stream"))],
        )

        assert response.status_code == 200
        stored = response.json()["files"]
        assert stored == [{"filename": "plan.pdf", "checksum": checksum_bytes(b"plan"), "size": 4, "matches": True}]
        assert receiver_app.state.file_store.read_bytes(4, "plan.pdf") == b"plan"

    def test_manifest(self, client, receiver_app):
        receiver_app.state.file_store.write_bytes(4, "a.txt", b"a")

        response = client.get("/api/sync/files", headers=API_KEY_HEADERS, params={"organizationId": 4})

        assert response.json()["files"] == {"a.txt": checksum_bytes(b"a")}

    def test_combined_receive(self, client, receiver_app, remote_engine):
        database = sql_body("INSERT INTO customers (id, organization_id, name) VALUES (1, 1, 'Acme')")

        response = client.post(
            "/api/sync/receive",
            headers=API_KEY_HEADERS,
            data={"organizationId": "1", "database": json.dumps(database)},
            files=[("files", ("a.txt", b"a", "application/octet-stream"))],
        )

        assert response.status_code == 200
        body = response.json()
        assert body["database"]["recordsApplied"] == 1
        assert body["files"][0]["checksum"] == checksum_bytes(b"a")
        assert len(fetch_rows(remote_engine, "customers")) == 1

    def test_combined_receive_skips_files_when_database_fails(self, client, receiver_app):
        database = sql_body("INSERT INTO nowhere VALUES (1)")

        response = client.post(
            "/api/sync/receive",
            headers=API_KEY_HEADERS,
            data={"organizationId": "1", "database": json.dumps(database)},
            files=[("files", ("a.txt", b"a", "application/octet-stream"))],
        )

        assert response.status_code == 500
        assert receiver_app.state.file_store.list_files(1) == []


class TestRecordsEndpoint:

    def test_returns_rows_for_organization(self, client, remote_engine):
        insert_rows(
            remote_engine, "customers",
            {"id": 1, "organization_id": 1, "name": "Acme", "updated_at": EDITED},
            {"id": 2, "organization_id": 2, "name": "Other org", "updated_at": EDITED},
        )

        response = client.post("/api/sync/records", headers=API_KEY_HEADERS, json={
            "organizationId": 1,
            "tables": [{"table": "customers", "primaryKey": "id"}, {"table": "missing", "primaryKey": "id"}],
        })

        records = response.json()["records"]
        assert [r["name"] for r in records["customers"]] == ["Acme"]
        assert records["customers"][0]["updated_at"] == "2024-06-01T12:00:00"
        assert records["missing"] == []
