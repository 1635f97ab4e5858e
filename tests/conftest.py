"""Pytest configuration and fixtures for the evaluation dashboard tests."""

import httpx
import pytest

from evaluasi import sources

SHEET_URL = "https://sheets.example/pub?output=csv"
BACKEND_URL = "https://script.example/macros/exec"


@pytest.fixture
def employees() -> list:
    """Roster as returned by ``?action=employees``."""
    return [
        {"nik": "1", "nama": "A", "departemen": "HR"},
        {"nik": "2", "nama": "B", "departemen": "HR"},
        {"nik": "3", "nama": "C", "departemen": "IT"},
    ]


@pytest.fixture
def responses() -> list:
    """Submissions as returned by ``?action=responses``."""
    return [{"nik": "1", "nilai": 90, "waktu": "t1"}]


@pytest.fixture
def sheet_csv() -> str:
    """Published sheet export with one double input and one blank name."""
    return (
        "Timestamp,Email,Nama,Departemen\r\n"
        '2024-01-01 08:00,a@x.id,"Doe, Jane",Sales\r\n'
        "2024-01-01 09:00,b@x.id,John,IT\r\n"
        '2024-01-02 10:00,c@x.id," DOE, JANE ",Sales\r\n'
        "2024-01-02 11:00,d@x.id,,IT\r\n"
    )


@pytest.fixture
def backend_transport(employees, responses) -> httpx.MockTransport:
    """Mock script backend keyed by the ``action`` query parameter."""

    def handler(request: httpx.Request) -> httpx.Response:
        action = request.url.params.get("action")
        if action == "employees":
            return httpx.Response(200, json=employees)
        if action == "responses":
            return httpx.Response(200, json=responses)
        return httpx.Response(400, json={"error": "unknown action"})

    return httpx.MockTransport(handler)


@pytest.fixture
def backend_source(backend_transport) -> sources.HttpSource:
    client = httpx.AsyncClient(transport=backend_transport)
    return sources.make_source("json", BACKEND_URL, http_client=client)


@pytest.fixture
def failing_source() -> sources.HttpSource:
    transport = httpx.MockTransport(lambda request: httpx.Response(503, text="unavailable"))
    return sources.make_source("json", BACKEND_URL, http_client=httpx.AsyncClient(transport=transport))


@pytest.fixture
def api_client(backend_source):
    """FastAPI test client wired to the mock backend."""
    from fastapi.testclient import TestClient
    from evaluasi.handler import app, get_source

    app.dependency_overrides[get_source] = lambda: backend_source
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
