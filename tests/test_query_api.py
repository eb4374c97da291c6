"""End-to-end tests of the HTTP surface against a faked remote service."""

import json

import httpx
import pytest
from fastapi.testclient import TestClient
from remote_fakes import jsonl_payload

from analytics_gateway.main import create_app


def _rows(count: int) -> list[dict]:
    return [{"id": i, "label": f"row-{i}"} for i in range(count)]


def _serve_rows(remote, count: int) -> None:
    remote.on_tool("sql", lambda arguments: jsonl_payload(_rows(count), ["id", "label"]))


@pytest.fixture
def anonymous(settings, transport):
    """Client that sends no tenant header by default."""
    with TestClient(create_app(settings=settings, transport=transport)) as client:
        yield client


class TestExecute:
    def test_small_result_is_buffered(self, api, remote):
        _serve_rows(remote, 3)

        response = api.post("/api/query/execute", json={"query": "SELECT id, label FROM t"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        assert response.json() == {
            "success": True,
            "data": _rows(3),
            "metadata": {"rowCount": 3, "executionTime": 12.5, "columns": ["id", "label"]},
        }

    def test_database_is_forwarded(self, api, remote):
        _serve_rows(remote, 1)

        response = api.post("/api/query/execute", json={"query": "SELECT 1", "database": "sales"})

        assert response.json()["metadata"]["database"] == "sales"
        assert remote.calls("tools/call")[0]["params"]["arguments"]["database"] == "sales"

    def test_threshold_sized_result_is_buffered(self, api, remote):
        _serve_rows(remote, 1000)

        response = api.post("/api/query/execute", json={"query": "SELECT * FROM t"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        body = response.json()
        assert body["metadata"]["rowCount"] == 1000
        assert len(body["data"]) == 1000

    def test_large_result_is_streamed(self, api, remote):
        _serve_rows(remote, 1001)

        response = api.post("/api/query/execute", json={"query": "SELECT * FROM t"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        assert response.headers["cache-control"] == "no-cache"

        lines = [json.loads(line) for line in response.text.splitlines()]
        assert len(lines) == 1002
        assert lines[0] == {
            "type": "metadata",
            "success": True,
            "rowCount": 1001,
            "columns": ["id", "label"],
            "executionTime": 12.5,
        }
        assert all(line["type"] == "row" for line in lines[1:])
        assert [line["data"]["id"] for line in lines[1:]] == list(range(1001))

    def test_stream_decision_uses_reported_row_count(self, api, remote):
        remote.on_tool(
            "sql",
            lambda arguments: jsonl_payload(_rows(10), ["id", "label"], actual_row_count=5000),
        )

        response = api.post("/api/query/execute", json={"query": "SELECT * FROM t"})

        lines = response.text.splitlines()
        assert response.headers["content-type"].startswith("application/x-ndjson")
        assert json.loads(lines[0])["rowCount"] == 5000
        assert len(lines) == 11

    def test_timeout_is_server_error_without_stream(self, api, remote):
        remote.on_tool("sql", lambda arguments: httpx.ReadTimeout("read timed out"))

        response = api.post("/api/query/execute", json={"query": "SELECT * FROM huge"})

        assert response.status_code == 500
        assert response.headers["content-type"].startswith("application/json")
        body = response.json()
        assert body["success"] is False
        assert "timed out" in body["error"]

    def test_query_error_is_client_error(self, api, remote):
        remote.on_tool("sql", lambda arguments: "Error: X")

        response = api.post("/api/query/execute", json={"query": "SELECT nope"})

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Error: X"}

    def test_protocol_error_is_server_error(self, api, remote):
        remote.on_tool("sql", lambda arguments: httpx.Response(200, text="<html>proxy</html>"))

        response = api.post("/api/query/execute", json={"query": "SELECT 1"})

        assert response.status_code == 500
        assert response.json()["success"] is False

    @pytest.mark.parametrize(
        "body",
        [
            {"query": ""},
            {"query": "x" * 10001},
            {"database": "sales"},
            {"query": 42},
        ],
    )
    def test_invalid_body_is_rejected(self, api, remote, body):
        response = api.post("/api/query/execute", json=body)

        assert response.status_code == 400
        payload = response.json()
        assert payload["success"] is False
        assert payload["error"] == "Invalid request"
        assert payload["details"]
        assert remote.requests == []

    def test_longest_allowed_query_is_accepted(self, api, remote):
        _serve_rows(remote, 1)

        response = api.post("/api/query/execute", json={"query": "x" * 10000})

        assert response.status_code == 200


class TestTenantResolution:
    def test_missing_tenant_is_rejected(self, anonymous, remote):
        response = anonymous.post("/api/query/execute", json={"query": "SELECT 1"})

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "error": "Tenant identification required. Please provide X-Tenant-ID or X-Tenant-Slug header",
        }
        assert remote.requests == []

    def test_blank_tenant_is_rejected(self, anonymous):
        response = anonymous.get("/api/query/health", headers={"X-Tenant-ID": "   "})

        assert response.status_code == 400

    def test_tenant_slug_header(self, anonymous, remote):
        _serve_rows(remote, 1)

        anonymous.post(
            "/api/query/execute",
            json={"query": "SELECT 1"},
            headers={"X-Tenant-Slug": "globex"},
        )

        assert remote.calls("tools/call")[0]["headers"]["x-tenant-id"] == "globex"

    def test_tenant_cookie(self, anonymous, remote):
        _serve_rows(remote, 1)
        response = anonymous.post(
            "/api/query/execute",
            json={"query": "SELECT 1"},
            headers={"Cookie": "tenant=initech"},
        )

        assert response.status_code == 200
        assert remote.calls("tools/call")[0]["headers"]["x-tenant-id"] == "initech"

    def test_tenants_get_separate_sessions(self, api, remote):
        _serve_rows(remote, 1)

        api.post("/api/query/execute", json={"query": "SELECT 1"})
        api.post("/api/query/execute", json={"query": "SELECT 1"}, headers={"X-Tenant-ID": "globex"})
        api.post("/api/query/execute", json={"query": "SELECT 1"})

        assert remote.handshakes == 2
        tenants = [call["headers"]["x-tenant-id"] for call in remote.calls("tools/call")]
        assert tenants == ["acme", "globex", "acme"]


class TestCatalogEndpoints:
    def test_health(self, api, remote):
        response = api.get("/api/query/health")

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "healthy": True,
            "message": "Remote query service is connected",
        }
        assert remote.handshakes == 0

    def test_health_when_remote_is_down(self, api, remote):
        remote.healthy = False

        body = api.get("/api/query/health").json()

        assert body["success"] is True
        assert body["healthy"] is False

    def test_databases(self, api, remote):
        remote.on_tool("list_databases", lambda arguments: '{"databases": ["sales", "hr"]}')

        response = api.get("/api/query/databases")

        assert response.status_code == 200
        assert response.json() == {"success": True, "databases": ["sales", "hr"]}

    def test_schema(self, api, remote):
        remote.on_tool("catalog", lambda arguments: '{"tables": [{"name": "orders"}]}')

        response = api.get("/api/query/schema", params={"database": "sales"})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "schema": {"tables": [{"name": "orders"}]},
            "database": "sales",
        }
        assert remote.calls("tools/call")[0]["params"]["arguments"]["database"] == "sales"

    def test_schema_failure(self, api, remote):
        remote.on_tool("catalog", lambda arguments: "Catalog Error: database sales does not exist")

        response = api.get("/api/query/schema", params={"database": "sales"})

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_statistics_search(self, api, remote):
        remote.on_tool("search-statistics", lambda arguments: '[{"id": 101, "title": "Population"}]')

        response = api.post("/api/query/statistics/search", json={"query": "population", "limit": 3})

        assert response.status_code == 200
        assert response.json() == {"success": True, "results": [{"id": 101, "title": "Population"}]}
        assert remote.calls("tools/call")[0]["params"]["arguments"] == {"query": "population", "limit": 3}

    def test_statistics_search_validation(self, api):
        response = api.post("/api/query/statistics/search", json={"query": "population", "limit": 0})

        assert response.status_code == 400

    def test_chart_data(self, api, remote):
        remote.on_tool("get-chart-data-by-id", lambda arguments: '{"id": 101, "series": [4, 5]}')

        response = api.get("/api/query/statistics/charts/101")

        assert response.status_code == 200
        assert response.json() == {"success": True, "chart": {"id": 101, "series": [4, 5]}}

    def test_chart_id_must_be_positive(self, api):
        assert api.get("/api/query/statistics/charts/0").status_code == 400


class TestService:
    def test_index(self, api):
        assert api.get("/").json()["modules"]["query"] == "/api/query"

    def test_gateway_health_reports_clients(self, api, remote):
        _serve_rows(remote, 1)
        api.post("/api/query/execute", json={"query": "SELECT 1"})

        body = api.get("/api/health").json()

        assert body["status"] == "healthy"
        assert body["remote"]["base_url"] == "http://remote.test"
        assert body["clients"] == {"total_clients": 1, "initialized_clients": 1, "tenants": ["acme"]}

    def test_unknown_route(self, api):
        response = api.get("/api/query/nope")

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Not Found"}
