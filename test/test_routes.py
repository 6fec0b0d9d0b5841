"""
Tests for the Flask health and status routes.
"""

from unittest.mock import MagicMock, patch

import pytest

from app import create_app


@pytest.fixture()
def client():
    return create_app(start_background_seeker=False).test_client()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json() == {"status": "healthy"}


def test_status_without_seeker(client):
    with patch("app.seeker.routes.get_seeker", return_value=None):
        response = client.get("/seeker/status")
    assert response.status_code == 500


def test_status(client):
    running_seeker = MagicMock()
    running_seeker.status.return_value = {"running": True, "watched_accounts": 3}
    with patch("app.seeker.routes.get_seeker", return_value=running_seeker):
        response = client.get("/seeker/status")
    assert response.status_code == 200
    assert response.get_json() == {"running": True, "watched_accounts": 3}
