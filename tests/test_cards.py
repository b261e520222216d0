"""
Tests for card issuance, activation, blocking and charges.

These tests verify:
  - Opening a card-eligible account issues exactly one card
  - Issuance is idempotent: asking again returns the existing card
  - Card numbers carry the network prefix and a valid Luhn check digit
  - Card numbers and CVVs are encrypted at rest and never returned
  - Activation requires the code delivered at issuance
  - Charges settle through the Transfer Engine like any other movement
"""

import uuid

import pytest
from sqlalchemy import delete, select

from bankcore.models.card import Card, CardNetwork
from bankcore.security import decrypt_value
from bankcore.services.card_service import (
    NETWORK_FORMATS,
    generate_card_number,
    generate_cvv,
    luhn_check_digit,
    luhn_valid,
)


async def _open(client, kind: str = "checking") -> dict:
    response = await client.post("/accounts", json={"kind": kind})
    assert response.status_code == 201, response.text
    return response.json()


async def _open_with_active_card(client, kind: str = "checking") -> dict:
    account = await _open(client, kind)
    card = account["card"]
    response = await client.post(
        f"/cards/{card['id']}/activate",
        json={"activation_code": card["activation_code"]},
    )
    assert response.status_code == 200
    return account


async def _deposit(client, account_id: str, amount: str):
    response = await client.post(
        "/movements/deposits",
        json={
            "destination_account_id": account_id,
            "amount": amount,
            "rail": "card",
            "idempotency_key": f"dep-{uuid.uuid4()}",
        },
    )
    assert response.status_code == 201


class TestCardNumbers:

    def test_known_luhn_check_digit(self):
        # 7992739871 -> 3 is the textbook example
        assert luhn_check_digit("7992739871") == "3"
        assert luhn_valid("79927398713")
        assert not luhn_valid("79927398710")

    @pytest.mark.parametrize("network", list(CardNetwork))
    def test_generated_numbers(self, network):
        prefix, length, cvv_length = NETWORK_FORMATS[network]
        for _ in range(20):
            number = generate_card_number(network)
            assert number.startswith(prefix)
            assert len(number) == length
            assert luhn_valid(number)
        assert len(generate_cvv(network)) == cvv_length


class TestIssuance:

    async def test_opening_an_account_issues_a_card(self, authenticated_client):
        account = await _open(authenticated_client)
        card = account["card"]

        assert card["account_id"] == account["id"]
        assert card["network"] == "visa_like"
        assert card["status"] == "pending"
        assert card["activation_status"] == "inactive"
        assert len(card["pan_last4"]) == 4
        assert len(card["activation_code"]) == 6
        assert card["activation_code"].isdigit()

    @pytest.mark.parametrize(
        "kind, network",
        [
            ("savings", "visa_like"),
            ("business", "mastercard_like"),
            ("investment", "discover_like"),
            ("credit", "amex_like"),
        ],
    )
    async def test_network_by_account_kind(self, authenticated_client, kind, network):
        account = await _open(authenticated_client, kind)
        assert account["card"]["network"] == network

    @pytest.mark.parametrize("kind", ["fixed", "mortgage"])
    async def test_kinds_without_a_card(self, authenticated_client, kind):
        account = await _open(authenticated_client, kind)
        assert account["card"] is None

        response = await authenticated_client.post(f"/accounts/{account['id']}/card")
        assert response.status_code == 422
        assert response.json()["reason"] == "card_not_available"

    async def test_issuance_is_idempotent(self, authenticated_client, session_factory):
        account = await _open(authenticated_client)

        again = await authenticated_client.post(f"/accounts/{account['id']}/card")
        assert again.status_code == 200
        assert again.json()["id"] == account["card"]["id"]
        assert again.json()["activation_code"] is None

        async with session_factory() as session:
            result = await session.execute(select(Card).where(Card.account_id == uuid.UUID(account["id"])))
            assert len(result.scalars().all()) == 1

    async def test_activation_code_shown_only_when_created(self, authenticated_client, session_factory):
        account = await _open(authenticated_client)
        async with session_factory() as session:
            await session.execute(delete(Card).where(Card.account_id == uuid.UUID(account["id"])))
            await session.commit()

        created = await authenticated_client.post(f"/accounts/{account['id']}/card")
        assert created.status_code == 201
        code = created.json()["activation_code"]
        assert code.isdigit() and len(code) == 6

        again = await authenticated_client.post(f"/accounts/{account['id']}/card")
        assert again.status_code == 200
        assert again.json()["id"] == created.json()["id"]
        assert again.json()["activation_code"] is None

    async def test_card_details_are_masked(self, authenticated_client):
        account = await _open(authenticated_client)

        response = await authenticated_client.get(f"/accounts/{account['id']}/card")

        assert response.status_code == 200
        body = response.json()
        assert body["pan_last4"] == account["card"]["pan_last4"]
        for hidden in ("pan_encrypted", "cvv_encrypted", "activation_code_encrypted", "activation_code"):
            assert hidden not in body

    async def test_secrets_are_encrypted_at_rest(self, authenticated_client, session_factory):
        account = await _open(authenticated_client)

        async with session_factory() as session:
            card = await session.get(Card, uuid.UUID(account["card"]["id"]))

        number = decrypt_value(card.pan_encrypted)
        assert card.pan_encrypted != number
        assert number.endswith(card.pan_last4)
        assert luhn_valid(number)
        assert decrypt_value(card.activation_code_encrypted) == account["card"]["activation_code"]
        assert len(decrypt_value(card.cvv_encrypted)) == 3

    async def test_other_customers_card_is_forbidden(self, authenticated_client, second_authenticated_client):
        account = await _open(authenticated_client)

        response = await second_authenticated_client.get(f"/accounts/{account['id']}/card")
        assert response.status_code == 403


class TestActivationAndBlocking:

    async def test_activate_with_code(self, authenticated_client):
        account = await _open(authenticated_client)
        card = account["card"]

        response = await authenticated_client.post(
            f"/cards/{card['id']}/activate",
            json={"activation_code": card["activation_code"]},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "active"
        assert response.json()["activation_status"] == "active"

    async def test_wrong_code(self, authenticated_client):
        account = await _open(authenticated_client)
        card = account["card"]
        wrong = "000000" if card["activation_code"] != "000000" else "111111"

        response = await authenticated_client.post(
            f"/cards/{card['id']}/activate", json={"activation_code": wrong}
        )

        assert response.status_code == 422
        assert response.json()["reason"] == "invalid_activation_code"

    async def test_block(self, authenticated_client):
        account = await _open(authenticated_client)
        card = account["card"]

        response = await authenticated_client.post(f"/cards/{card['id']}/block")
        assert response.status_code == 200
        assert response.json()["status"] == "blocked"

        again = await authenticated_client.post(f"/cards/{card['id']}/block")
        assert again.status_code == 200

        activate = await authenticated_client.post(
            f"/cards/{card['id']}/activate",
            json={"activation_code": card["activation_code"]},
        )
        assert activate.status_code == 422
        assert activate.json()["reason"] == "card_blocked"

    async def test_cannot_block_someone_elses_card(self, authenticated_client, second_authenticated_client):
        account = await _open(authenticated_client)

        response = await second_authenticated_client.post(f"/cards/{account['card']['id']}/block")
        assert response.status_code == 403

    async def test_unknown_card(self, authenticated_client):
        response = await authenticated_client.post(f"/cards/{uuid.uuid4()}/block")
        assert response.status_code == 404
        assert response.json()["reason"] == "card_not_found"


class TestCharges:

    async def test_charge_settles_against_the_account(self, authenticated_client):
        account = await _open_with_active_card(authenticated_client)
        await _deposit(authenticated_client, account["id"], "50.00")

        response = await authenticated_client.post(
            f"/cards/{account['card']['id']}/charges",
            json={"amount": "12.34", "merchant": "Corner Coffee", "idempotency_key": "coffee-1"},
        )

        assert response.status_code == 201
        movement = response.json()["movement"]
        assert movement["kind"] == "card_settlement"
        assert movement["card_id"] == account["card"]["id"]
        assert movement["source_account_id"] == account["id"]
        assert movement["memo"] == "CARD Corner Coffee"

        balance = await authenticated_client.get(f"/accounts/{account['id']}/balance")
        assert balance.json()["balance_cents"] == 5000 - 1234

    async def test_charge_replay(self, authenticated_client):
        account = await _open_with_active_card(authenticated_client)
        await _deposit(authenticated_client, account["id"], "50.00")
        path = f"/cards/{account['card']['id']}/charges"

        first = await authenticated_client.post(path, json={"amount": "5.00"}, headers={"Idempotency-Key": "c-1"})
        second = await authenticated_client.post(path, json={"amount": "5.00"}, headers={"Idempotency-Key": "c-1"})

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["replayed"] is True
        balance = await authenticated_client.get(f"/accounts/{account['id']}/balance")
        assert balance.json()["balance_cents"] == 4500

    async def test_pending_card_cannot_be_charged(self, authenticated_client):
        account = await _open(authenticated_client)
        await _deposit(authenticated_client, account["id"], "50.00")

        response = await authenticated_client.post(
            f"/cards/{account['card']['id']}/charges",
            json={"amount": "5.00", "idempotency_key": "pending-1"},
        )
        assert response.status_code == 422
        assert response.json()["reason"] == "card_not_active"

    async def test_blocked_card_cannot_be_charged(self, authenticated_client):
        account = await _open_with_active_card(authenticated_client)
        await _deposit(authenticated_client, account["id"], "50.00")
        await authenticated_client.post(f"/cards/{account['card']['id']}/block")

        response = await authenticated_client.post(
            f"/cards/{account['card']['id']}/charges",
            json={"amount": "5.00", "idempotency_key": "blocked-1"},
        )
        assert response.status_code == 422
        assert response.json()["reason"] == "card_not_active"

    async def test_charge_beyond_balance(self, authenticated_client):
        account = await _open_with_active_card(authenticated_client)

        response = await authenticated_client.post(
            f"/cards/{account['card']['id']}/charges",
            json={"amount": "5.00", "idempotency_key": "broke-1"},
        )
        assert response.status_code == 422
        assert response.json()["reason"] == "insufficient_funds"

    async def test_credit_card_draws_on_the_line(self, authenticated_client):
        account = await _open_with_active_card(authenticated_client, kind="credit")

        response = await authenticated_client.post(
            f"/cards/{account['card']['id']}/charges",
            json={"amount": "80.00", "idempotency_key": "credit-1"},
        )
        assert response.status_code == 201
        balance = await authenticated_client.get(f"/accounts/{account['id']}/balance")
        assert balance.json()["balance_cents"] == -8000

    async def test_missing_key(self, authenticated_client):
        account = await _open_with_active_card(authenticated_client)
        response = await authenticated_client.post(
            f"/cards/{account['card']['id']}/charges", json={"amount": "5.00"}
        )
        assert response.status_code == 422
        assert response.json()["reason"] == "missing_fields"

    async def test_cannot_charge_someone_elses_card(self, authenticated_client, second_authenticated_client):
        account = await _open_with_active_card(authenticated_client)
        await _deposit(authenticated_client, account["id"], "50.00")

        response = await second_authenticated_client.post(
            f"/cards/{account['card']['id']}/charges",
            json={"amount": "5.00", "idempotency_key": "theft-1"},
        )
        assert response.status_code == 403
        balance = await authenticated_client.get(f"/accounts/{account['id']}/balance")
        assert balance.json()["balance_cents"] == 5000

    async def test_unknown_card(self, authenticated_client):
        response = await authenticated_client.post(
            f"/cards/{uuid.uuid4()}/charges", json={"amount": "5.00", "idempotency_key": "ghost"}
        )
        assert response.status_code == 404
