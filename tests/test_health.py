from fastapi.testclient import TestClient

from database import get_db
from main import app


class PingDb:
    def __init__(self, ok):
        self.ok = ok

    async def command(self, name):
        if not self.ok:
            raise ConnectionError("no servers available")
        return {"ok": 1.0}


def client_with(db):
    app.dependency_overrides[get_db] = lambda: db
    return TestClient(app, base_url="https://testserver")


def teardown_function():
    app.dependency_overrides.clear()


def test_health_ok():
    response = client_with(PingDb(True)).get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "OK"}


def test_health_reports_database_failure():
    response = client_with(PingDb(False)).get("/health")
    assert response.status_code == 503
    assert response.json()["status"] == "ERROR"


def test_responses_are_not_cached(client):
    response = client.get("/")
    assert response.json() == {"message": "Server is running"}
    assert response.headers["cache-control"] == "no-store, no-cache, must-revalidate, private"
