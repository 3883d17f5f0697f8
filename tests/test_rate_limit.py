"""
tests/test_rate_limit.py -- Per-IP rate limiting on the credential endpoints.

conftest.py disables the limiter for every other module; the fixture here
enables it and clears the in-memory counters on both sides of each test.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from conftest import TEST_PASSWORD, unique_email

LIMIT = 10


@pytest.fixture
def rate_limited():
    limiter.reset()
    limiter.enabled = True
    yield limiter
    limiter.enabled = False
    limiter.reset()


@pytest.mark.parametrize("path", ["/api/login", "/api/mobile-login", "/api/auth/callback/credentials"])
def test_login_limited_after_ten_attempts(api_client: TestClient, rate_limited, path: str) -> None:
    body = {"email": unique_email("brute"), "password": TEST_PASSWORD}
    for _ in range(LIMIT):
        assert api_client.post(path, json=body).status_code == 404

    resp = api_client.post(path, json=body)
    assert resp.status_code == 429
    assert resp.json()["error"]["code"] == "rate_limited"
    assert "retry-after" in resp.headers


def test_forgot_password_limited(api_client: TestClient, rate_limited) -> None:
    body = {"email": unique_email("flood")}
    statuses = [api_client.post("/api/auth/forgot-password", json=body).status_code for _ in range(LIMIT + 1)]
    assert statuses[:LIMIT] == [404] * LIMIT
    assert statuses[LIMIT] == 429


def test_register_not_limited(api_client: TestClient, rate_limited) -> None:
    for _ in range(LIMIT + 1):
        resp = api_client.post("/api/register", json={"email": unique_email("reg"), "password": TEST_PASSWORD})
        assert resp.status_code == 201
