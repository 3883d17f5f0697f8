"""
tests/test_api_vault.py -- Integration tests for the password and card routes.

Coverage:
  - 401 without credentials; browser routes take only the session cookie,
    mobile routes take only the bearer header
  - Password CRUD, countOnly, newest-first ordering
  - Card CRUD with last4 derived server-side
  - Ownership isolation: another identity's record is a plain 404
  - An ?email= owner selector is refused with 400, never silently ignored
  - PUT/DELETE without an id is 400; an owner_email in the body is ignored
  - Records are stored as envelopes, never plaintext
  - A corrupted envelope fails the whole list with 500 internal_error
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text

from conftest import bearer_headers, make_identity, session_client, unique_email

PASSWORD_BODY = {"website": "example.com", "username": "alice", "password": "hunter2", "notes": "personal"}
CARD_BODY = {
    "cardholder_name": "Alice Example",
    "card_number": "4111 1111 1111 1234",
    "expiry_date": "12/29",
    "cvv": "123",
}


@pytest.fixture
def owner(api_client: TestClient):
    return make_identity(api_client.app.state.identity_store, unique_email("owner"))


@pytest.fixture
def intruder(api_client: TestClient):
    return make_identity(api_client.app.state.identity_store, unique_email("intruder"))


class TestVaultAuth:
    @pytest.mark.parametrize("path", ["/api/password", "/api/card", "/api/mobile-passwords", "/api/mobile-cards"])
    def test_unauthenticated_is_401(self, api_client: TestClient, path: str) -> None:
        resp = session_client().get(path)
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "error": {"code": "unauthorized", "message": "Unauthorized"}}

    @pytest.mark.parametrize("path", ["/api/password", "/api/card"])
    def test_browser_routes_ignore_bearer(self, api_client: TestClient, owner, path: str) -> None:
        assert session_client().get(path, headers=bearer_headers(owner)).status_code == 401

    @pytest.mark.parametrize("path", ["/api/mobile-passwords", "/api/mobile-cards"])
    def test_mobile_routes_ignore_session(self, owner, path: str) -> None:
        assert session_client(owner).get(path).status_code == 401

    def test_garbage_bearer_is_401(self, api_client: TestClient) -> None:
        resp = session_client().get("/api/mobile-passwords", headers={"Authorization": "Bearer not.a.jwt"})
        assert resp.status_code == 401

    def test_unauthenticated_create_stores_nothing(self, api_client: TestClient, owner) -> None:
        assert session_client().post("/api/password", json=PASSWORD_BODY).status_code == 401
        assert api_client.app.state.vault.count_passwords(owner) == 0


class TestPasswordRoutes:
    def test_create_and_list(self, owner) -> None:
        client = session_client(owner)
        resp = client.post("/api/password", json=PASSWORD_BODY)
        assert resp.status_code == 201, resp.text
        created = resp.json()["data"]
        assert created["password"] == "hunter2"
        assert created["id"] > 0

        listed = client.get("/api/password").json()
        assert listed["success"] is True
        assert [e["id"] for e in listed["data"]] == [created["id"]]

    def test_list_is_newest_first(self, owner) -> None:
        client = session_client(owner)
        for site in ("first.com", "second.com", "third.com"):
            client.post("/api/password", json={**PASSWORD_BODY, "website": site})
        sites = [e["website"] for e in client.get("/api/password").json()["data"]]
        assert sites == ["third.com", "second.com", "first.com"]

    def test_count_only(self, owner) -> None:
        client = session_client(owner)
        client.post("/api/password", json=PASSWORD_BODY)
        client.post("/api/password", json=PASSWORD_BODY)
        resp = client.get("/api/password", params={"countOnly": "true"})
        assert resp.json() == {"success": True, "count": 2}

    def test_update(self, owner) -> None:
        client = session_client(owner)
        entry = client.post("/api/password", json=PASSWORD_BODY).json()["data"]
        resp = client.put("/api/password", json={**PASSWORD_BODY, "id": entry["id"], "password": "n3w-secret"})
        assert resp.status_code == 200, resp.text
        assert resp.json()["data"]["password"] == "n3w-secret"
        assert client.get("/api/password").json()["data"][0]["password"] == "n3w-secret"

    def test_update_without_id_is_400(self, owner) -> None:
        resp = session_client(owner).put("/api/password", json=PASSWORD_BODY)
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Missing password ID"

    def test_delete(self, owner) -> None:
        client = session_client(owner)
        entry = client.post("/api/password", json=PASSWORD_BODY).json()["data"]
        resp = client.delete("/api/password", params={"id": entry["id"]})
        assert resp.json() == {"success": True}
        assert client.get("/api/password").json()["data"] == []

    def test_delete_without_id_is_400(self, owner) -> None:
        assert session_client(owner).delete("/api/password").status_code == 400

    def test_missing_field_is_422(self, owner) -> None:
        resp = session_client(owner).post("/api/password", json={"website": "example.com"})
        assert resp.status_code == 422

    def test_password_whitespace_preserved(self, owner) -> None:
        client = session_client(owner)
        resp = client.post("/api/password", json={**PASSWORD_BODY, "website": "  padded.com ", "password": "  pad  "})
        assert resp.status_code == 201, resp.text
        created = resp.json()["data"]
        assert created["password"] == "  pad  "
        assert created["website"] == "padded.com"
        assert client.get("/api/password").json()["data"][0]["password"] == "  pad  "

    def test_whitespace_only_password_kept(self, owner) -> None:
        resp = session_client(owner).post("/api/password", json={**PASSWORD_BODY, "password": "   "})
        assert resp.status_code == 201, resp.text
        assert resp.json()["data"]["password"] == "   "

    def test_owner_email_in_body_is_ignored(self, owner, intruder) -> None:
        session_client(intruder).post("/api/password", json={**PASSWORD_BODY, "owner_email": owner.email})
        assert session_client(owner).get("/api/password").json()["data"] == []
        assert len(session_client(intruder).get("/api/password").json()["data"]) == 1

    def test_stored_password_is_an_envelope(self, api_client: TestClient, owner) -> None:
        entry = session_client(owner).post("/api/password", json=PASSWORD_BODY).json()["data"]
        stored = api_client.app.state.vault_store.get_password(owner, entry["id"])
        assert stored.password_encrypted != "hunter2"
        assert len(stored.password_encrypted.split(":")) == 3

    def test_corrupted_envelope_is_500_without_plaintext(self, api_client: TestClient, owner) -> None:
        client = session_client(owner)
        entry = client.post("/api/password", json={**PASSWORD_BODY, "website": "corrupt.example"}).json()["data"]
        with api_client.app.state.vault_store.engine.connect() as conn:
            conn.execute(
                text("UPDATE password_entries SET password_encrypted = :v WHERE id = :id"),
                {"v": "00" * 12 + ":abcd:" + "00" * 16, "id": entry["id"]},
            )
            conn.commit()

        resp = client.get("/api/password")
        assert resp.status_code == 500
        assert resp.json()["error"] == {
            "code": "internal_error",
            "message": "An unexpected error occurred.",
            "detail": None,
        }
        assert "corrupt.example" not in resp.text
        assert "alice" not in resp.text
        assert resp.headers["x-frame-options"] == "DENY"


class TestOwnershipIsolation:
    def test_foreign_records_invisible(self, owner, intruder) -> None:
        session_client(owner).post("/api/password", json=PASSWORD_BODY)
        session_client(owner).post("/api/card", json=CARD_BODY)
        thief = session_client(intruder)
        assert thief.get("/api/password").json()["data"] == []
        assert thief.get("/api/card", params={"countOnly": "true"}).json()["count"] == 0

    def test_foreign_update_is_404(self, owner, intruder) -> None:
        entry = session_client(owner).post("/api/password", json=PASSWORD_BODY).json()["data"]
        resp = session_client(intruder).put(
            "/api/password", json={**PASSWORD_BODY, "id": entry["id"], "password": "pwned"}
        )
        assert resp.status_code == 404
        assert resp.json()["error"] == {"code": "not_found", "message": "Password not found"}
        assert session_client(owner).get("/api/password").json()["data"][0]["password"] == "hunter2"

    def test_foreign_delete_matches_missing_delete(self, owner, intruder) -> None:
        entry = session_client(owner).post("/api/password", json=PASSWORD_BODY).json()["data"]
        thief = session_client(intruder)
        foreign = thief.delete("/api/password", params={"id": entry["id"]})
        missing = thief.delete("/api/password", params={"id": 987654})
        assert foreign.status_code == missing.status_code == 404
        assert foreign.json() == missing.json()
        assert len(session_client(owner).get("/api/password").json()["data"]) == 1

    def test_foreign_card_delete_is_404(self, owner, intruder) -> None:
        card = session_client(owner).post("/api/card", json=CARD_BODY).json()["data"]
        resp = session_client(intruder).delete("/api/card", params={"id": card["id"]})
        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "Card not found"

    @pytest.mark.parametrize("path", ["/api/password", "/api/card"])
    def test_email_selector_rejected(self, owner, intruder, path: str) -> None:
        session_client(owner).post("/api/password", json=PASSWORD_BODY)
        thief = session_client(intruder)
        resp = thief.get(path, params={"countOnly": "true", "email": owner.email})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "bad_request"
        assert "count" not in resp.json()
        assert thief.get(path, params={"email": owner.email}).status_code == 400
        assert thief.delete(path, params={"id": 1, "email": owner.email}).status_code == 400

    def test_email_selector_rejected_on_mobile_routes(self, owner) -> None:
        resp = session_client().get(
            "/api/mobile-passwords", params={"countOnly": "true", "email": owner.email}, headers=bearer_headers(owner)
        )
        assert resp.status_code == 400

    def test_email_selector_still_needs_auth(self, owner) -> None:
        resp = session_client().get("/api/password", params={"countOnly": "true", "email": owner.email})
        assert resp.status_code == 401


class TestCardRoutes:
    def test_create_derives_last4(self, owner) -> None:
        resp = session_client(owner).post("/api/card", json={**CARD_BODY, "card_number_last4": "0000"})
        assert resp.status_code == 201, resp.text
        data = resp.json()["data"]
        assert data["card_number_last4"] == "1234"
        assert data["card_number"] == "4111 1111 1111 1234"
        assert data["cvv"] == "123"

    def test_update_card(self, owner) -> None:
        client = session_client(owner)
        card = client.post("/api/card", json=CARD_BODY).json()["data"]
        resp = client.put("/api/card", json={**CARD_BODY, "id": card["id"], "card_number": "5500-0000-0000-0004"})
        assert resp.status_code == 200
        assert resp.json()["data"]["card_number_last4"] == "0004"

    def test_update_card_without_id_is_400(self, owner) -> None:
        resp = session_client(owner).put("/api/card", json=CARD_BODY)
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Missing card ID"

    @pytest.mark.parametrize(
        "override",
        [{"card_number": "4111-abcd-1111"}, {"card_number": "1234 5678"}, {"cvv": "12"}, {"cvv": "12a"}],
    )
    def test_invalid_card_is_422(self, owner, override) -> None:
        resp = session_client(owner).post("/api/card", json={**CARD_BODY, **override})
        assert resp.status_code == 422

    def test_delete_card(self, owner) -> None:
        client = session_client(owner)
        card = client.post("/api/card", json=CARD_BODY).json()["data"]
        assert client.delete("/api/card", params={"id": card["id"]}).status_code == 200
        assert client.get("/api/card", params={"countOnly": "true"}).json()["count"] == 0


class TestMobileVaultRoutes:
    def test_bearer_crud_round(self, owner) -> None:
        client = session_client()
        headers = bearer_headers(owner)

        created = client.post("/api/mobile-passwords", json=PASSWORD_BODY, headers=headers)
        assert created.status_code == 201
        entry_id = created.json()["data"]["id"]

        updated = client.put(
            "/api/mobile-passwords", json={**PASSWORD_BODY, "id": entry_id, "username": "bob"}, headers=headers
        )
        assert updated.json()["data"]["username"] == "bob"

        assert client.get("/api/mobile-passwords", params={"countOnly": "true"}, headers=headers).json()["count"] == 1
        assert client.delete("/api/mobile-passwords", params={"id": entry_id}, headers=headers).status_code == 200

    def test_mobile_and_browser_share_records(self, owner) -> None:
        session_client().post("/api/mobile-cards", json=CARD_BODY, headers=bearer_headers(owner))
        cards = session_client(owner).get("/api/card").json()["data"]
        assert len(cards) == 1
        assert cards[0]["card_number_last4"] == "1234"
