"""Unit tests for vault/store.py and vault/service.py -- record access control.

Covers:
- Secrets reach the store only as envelopes; reads decrypt for the owner
- Ownership isolation: list/count/update/delete never cross identities
- Newest-first ordering and list limit
- Card last4 derived from digits of the plaintext number
- Tampered stored envelope surfaces as DecryptionError
"""

import pytest
from sqlalchemy import text

from core.crypto import DecryptionError
from conftest import make_identity
from vault.models import CardFields, PasswordFields
from vault.service import VaultService, last4_digits


@pytest.fixture
def owners(identity_store):
    alice = make_identity(identity_store, "alice@example.com")
    bob = make_identity(identity_store, "bob@example.com")
    return alice, bob


@pytest.fixture
def service(vault_store, cipher) -> VaultService:
    return VaultService(vault_store, cipher)


def _pw(website: str = "example.com", password: str = "hunter2") -> PasswordFields:
    return PasswordFields(website=website, username="alice", password=password, notes="personal")


def _card(number: str = "4111 1111 1111 1234") -> CardFields:
    return CardFields(cardholder_name="Alice A", card_number=number, expiry_date="12/29", cvv="123")


class TestPasswordEntries:
    def test_add_returns_decrypted_entry(self, service, owners) -> None:
        alice, _ = owners
        entry = service.add_password(alice, _pw())
        assert entry["id"] is not None
        assert entry["password"] == "hunter2"
        assert entry["website"] == "example.com"
        assert entry["created_at"]

    def test_store_holds_only_envelopes(self, service, vault_store, owners) -> None:
        alice, _ = owners
        entry = service.add_password(alice, _pw(password="plain-secret"))
        stored = vault_store.get_password(alice, entry["id"])
        assert stored.password_encrypted != "plain-secret"
        assert len(stored.password_encrypted.split(":")) == 3
        assert stored.owner_email == "alice@example.com"

    def test_list_is_owner_scoped_and_newest_first(self, service, owners) -> None:
        alice, bob = owners
        service.add_password(alice, _pw("first.com"))
        service.add_password(alice, _pw("second.com"))
        service.add_password(bob, _pw("bob.com"))

        sites = [e["website"] for e in service.list_passwords(alice)]
        assert sites == ["second.com", "first.com"]
        assert [e["website"] for e in service.list_passwords(bob)] == ["bob.com"]

    def test_list_limit(self, service, owners) -> None:
        alice, _ = owners
        for i in range(5):
            service.add_password(alice, _pw(f"site{i}.com"))
        assert len(service.list_passwords(alice, limit=3)) == 3

    def test_count_is_owner_scoped(self, service, owners) -> None:
        alice, bob = owners
        service.add_password(alice, _pw())
        service.add_password(alice, _pw())
        assert service.count_passwords(alice) == 2
        assert service.count_passwords(bob) == 0

    def test_update_own_entry(self, service, owners) -> None:
        alice, _ = owners
        entry = service.add_password(alice, _pw())
        updated = service.update_password(alice, entry["id"], _pw("new.com", "n3w"))
        assert updated["website"] == "new.com"
        assert updated["password"] == "n3w"

    def test_update_foreign_entry_is_a_miss(self, service, owners) -> None:
        alice, bob = owners
        entry = service.add_password(alice, _pw())
        assert service.update_password(bob, entry["id"], _pw("evil.com", "pwned")) is None
        assert service.list_passwords(alice)[0]["website"] == "example.com"

    def test_delete_foreign_entry_is_a_miss(self, service, owners) -> None:
        alice, bob = owners
        entry = service.add_password(alice, _pw())
        assert service.delete_password(bob, entry["id"]) is False
        assert service.count_passwords(alice) == 1
        assert service.delete_password(alice, entry["id"]) is True
        assert service.count_passwords(alice) == 0

    def test_delete_missing_entry(self, service, owners) -> None:
        alice, _ = owners
        assert service.delete_password(alice, 424242) is False

    def test_tampered_envelope_raises(self, service, vault_store, owners) -> None:
        alice, _ = owners
        entry = service.add_password(alice, _pw())
        with vault_store.engine.connect() as conn:
            conn.execute(
                text("UPDATE password_entries SET password_encrypted = :v WHERE id = :id"),
                {"v": "00" * 12 + ":abcd:" + "00" * 16, "id": entry["id"]},
            )
            conn.commit()
        with pytest.raises(DecryptionError):
            service.list_passwords(alice)


class TestCardEntries:
    def test_add_card_derives_last4_and_encrypts(self, service, vault_store, owners) -> None:
        alice, _ = owners
        card = service.add_card(alice, _card("4111-1111-1111-9876"))
        assert card["card_number"] == "4111-1111-1111-9876"
        assert card["card_number_last4"] == "9876"
        assert card["cvv"] == "123"

        stored = vault_store.get_card(alice, card["id"])
        assert "4111" not in stored.card_number_encrypted
        assert stored.cvv_encrypted != "123"

    def test_update_recomputes_last4(self, service, owners) -> None:
        alice, _ = owners
        card = service.add_card(alice, _card())
        updated = service.update_card(alice, card["id"], _card("5500 0000 0000 0004"))
        assert updated["card_number_last4"] == "0004"

    def test_cards_are_owner_scoped(self, service, owners) -> None:
        alice, bob = owners
        card = service.add_card(alice, _card())
        assert service.list_cards(bob) == []
        assert service.count_cards(bob) == 0
        assert service.update_card(bob, card["id"], _card()) is None
        assert service.delete_card(bob, card["id"]) is False
        assert service.count_cards(alice) == 1


class TestLast4:
    @pytest.mark.parametrize(
        "number,expected",
        [("4111111111111111", "1111"), ("4111 1111 1111 1234", "1234"), ("5500-0000-0000-0004 ", "0004")],
    )
    def test_last4_ignores_separators(self, number: str, expected: str) -> None:
        assert last4_digits(number) == expected
