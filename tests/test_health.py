"""The module-level ASGI app serves /health without touching the database."""

from unittest.mock import patch

from fastapi.testclient import TestClient

from campstay.api.app import app


def test_health_ok_without_database():
    with patch("campstay.infra.db.get_conn") as get_conn:
        response = TestClient(app).get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    get_conn.assert_not_called()


def test_booking_routes_mounted():
    paths = set(app.openapi()["paths"])
    assert "/bookings/{booking_id}/tents" in paths
    assert "/quotes" in paths
