"""Tests for the HTTP API."""

from evaluasi.handler import app, get_source


class TestHealth:
    """Health endpoint."""

    def test_health(self, api_client):
        response = api_client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"ok": True}


class TestReports:
    """JSON report endpoints."""

    def test_summary(self, api_client):
        data = api_client.get("/api/summary").json()
        assert data["summary"][0] == {"departemen": "HR", "total": 2, "done": 1, "pending": 1, "percent": 50}
        assert data["overall"]["total"] == 3
        assert "records" not in data

    def test_records_filtered(self, api_client):
        data = api_client.get("/api/records", params={"department": "HR"}).json()
        assert [r["nik"] for r in data] == ["1", "2"]
        assert data[1]["status"] == "pending"

    def test_duplicates_empty(self, api_client):
        assert api_client.get("/api/duplicates").json() == []

    def test_upload(self, api_client, sheet_csv):
        response = api_client.post("/api/upload", files={"sheet_csv": ("sheet.csv", sheet_csv, "text/csv")})
        assert response.status_code == 200
        data = response.json()
        assert data["counts"]["unique_employees"] == 2
        assert len(data["duplicates"]) == 2


class TestExports:
    """CSV and workbook downloads."""

    def test_rekap_csv(self, api_client):
        response = api_client.get("/api/export/rekap")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "filename=rekap_semua_" in response.headers["content-disposition"]
        assert response.text.splitlines()[0] == "departemen,total,done,pending,percent"

    def test_pending_for_department(self, api_client):
        response = api_client.get("/api/export/pending", params={"department": "IT"})
        assert response.status_code == 200
        assert "filename=pending_it_" in response.headers["content-disposition"]
        assert response.text.splitlines()[1:] == ['"3","C","IT","pending","",""']

    def test_nothing_to_export(self, api_client):
        response = api_client.get("/api/export/duplikat")
        assert response.status_code == 204
        assert response.headers["x-export-warning"] == "nothing to export"

    def test_unknown_kind(self, api_client):
        assert api_client.get("/api/export/bogus").status_code == 404

    def test_workbook(self, api_client):
        response = api_client.get("/api/export.xlsx")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/vnd.openxmlformats")
        assert response.content[:2] == b"PK"


class TestTransportFailure:
    """Backend failures surface as 502."""

    def test_bad_gateway(self, api_client, failing_source):
        app.dependency_overrides[get_source] = lambda: failing_source
        response = api_client.get("/api/summary")
        assert response.status_code == 502
        assert response.json()["status"] == 503


class TestConfiguration:
    """Misconfigured sources answer with a JSON error."""

    def test_unknown_source_mode(self, monkeypatch):
        from fastapi.testclient import TestClient

        monkeypatch.setenv("EVALUASI_SOURCE", "xml")
        with TestClient(app) as client:
            response = client.get("/api/summary")
        assert response.status_code == 400
        assert "Unknown source mode" in response.json()["error"]

    def test_missing_url(self, monkeypatch):
        from fastapi.testclient import TestClient

        monkeypatch.setenv("EVALUASI_SOURCE", "json")
        monkeypatch.delenv("EVALUASI_BACKEND_URL", raising=False)
        with TestClient(app) as client:
            response = client.get("/api/records")
        assert response.status_code == 400
        assert "No URL configured" in response.json()["error"]
