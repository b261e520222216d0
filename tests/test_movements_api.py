"""
Tests for the movement endpoints (/movements/*).

These tests verify:
  - Transfers, deposits and withdrawals return 201 with the completed movement
  - Repeating a request with the same key returns 200 and moves money once
  - The Idempotency-Key header takes precedence over the body key
  - A replay with different parameters is flagged, never executed
  - Business rejections come back with their machine-readable reason
  - Movements and receipts are only visible to the people involved
  - Timeouts answer 503 and the same request can be retried
"""

import uuid

import pytest

from bankcore.config import settings
from bankcore.services import ledger_store


async def _open(client, kind: str = "checking") -> str:
    response = await client.post("/accounts", json={"kind": kind})
    assert response.status_code == 201, response.text
    return response.json()["id"]


async def _deposit(client, account_id: str, amount: str, key: str | None = None):
    return await client.post(
        "/movements/deposits",
        json={
            "destination_account_id": account_id,
            "amount": amount,
            "rail": "card",
            "idempotency_key": key or f"dep-{uuid.uuid4()}",
        },
    )


async def _transfer(client, source: str, destination: str, amount: str, key: str, **extra):
    return await client.post(
        "/movements/transfers",
        json={
            "source_account_id": source,
            "destination_account_id": destination,
            "amount": amount,
            "idempotency_key": key,
            **extra,
        },
    )


async def _balance(client, account_id: str) -> int:
    response = await client.get(f"/accounts/{account_id}/balance")
    assert response.status_code == 200
    return response.json()["balance_cents"]


class TestTransfers:

    async def test_transfer_succeeds(self, authenticated_client):
        x = await _open(authenticated_client)
        y = await _open(authenticated_client)
        await _deposit(authenticated_client, x, "100.00")
        await _deposit(authenticated_client, y, "10.00")

        response = await _transfer(authenticated_client, x, y, "40.00", "api-a", memo="rent")

        assert response.status_code == 201
        body = response.json()
        assert body["replayed"] is False
        assert body["idempotency_conflict"] is False
        assert body["movement"]["kind"] == "internal"
        assert body["movement"]["state"] == "completed"
        assert body["movement"]["amount_cents"] == 4000
        assert body["movement"]["memo"] == "rent"
        assert await _balance(authenticated_client, x) == 6000
        assert await _balance(authenticated_client, y) == 5000

    async def test_replay_returns_200_and_moves_money_once(self, authenticated_client):
        x = await _open(authenticated_client)
        y = await _open(authenticated_client)
        await _deposit(authenticated_client, x, "100.00")

        first = await _transfer(authenticated_client, x, y, "25.00", "api-replay")
        second = await _transfer(authenticated_client, x, y, "25.00", "api-replay")

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["replayed"] is True
        assert second.json()["movement"]["id"] == first.json()["movement"]["id"]
        assert await _balance(authenticated_client, x) == 7500

    async def test_conflicting_replay_is_flagged(self, authenticated_client):
        x = await _open(authenticated_client)
        y = await _open(authenticated_client)
        await _deposit(authenticated_client, x, "100.00")

        await _transfer(authenticated_client, x, y, "25.00", "api-conflict")
        response = await _transfer(authenticated_client, x, y, "30.00", "api-conflict")

        assert response.status_code == 200
        body = response.json()
        assert body["replayed"] is True
        assert body["idempotency_conflict"] is True
        assert body["movement"]["amount_cents"] == 2500
        assert await _balance(authenticated_client, x) == 7500

    async def test_header_key_takes_precedence(self, authenticated_client):
        x = await _open(authenticated_client)
        y = await _open(authenticated_client)
        await _deposit(authenticated_client, x, "100.00")

        response = await authenticated_client.post(
            "/movements/transfers",
            json={
                "source_account_id": x,
                "destination_account_id": y,
                "amount": "5.00",
                "idempotency_key": "from-body",
            },
            headers={"Idempotency-Key": "from-header"},
        )
        assert response.status_code == 201
        assert response.json()["movement"]["idempotency_key"] == "from-header"

    async def test_key_in_header_only(self, authenticated_client):
        x = await _open(authenticated_client)
        response = await authenticated_client.post(
            "/movements/deposits",
            json={"destination_account_id": x, "amount": "5.00", "rail": "card"},
            headers={"Idempotency-Key": "header-only"},
        )
        assert response.status_code == 201

    async def test_missing_key(self, authenticated_client):
        x = await _open(authenticated_client)
        response = await authenticated_client.post(
            "/movements/deposits",
            json={"destination_account_id": x, "amount": "5.00", "rail": "card"},
        )
        assert response.status_code == 422
        assert response.json()["reason"] == "missing_fields"

    async def test_key_too_long(self, authenticated_client):
        x = await _open(authenticated_client)
        response = await _deposit(authenticated_client, x, "5.00", key="k" * 129)
        assert response.status_code == 422
        assert response.json()["reason"] == "invalid_idempotency_key"

    async def test_key_used_by_another_customer(self, authenticated_client, second_authenticated_client):
        mine = await _open(authenticated_client)
        theirs = await _open(second_authenticated_client)

        await _deposit(authenticated_client, mine, "5.00", key="taken")
        response = await _deposit(second_authenticated_client, theirs, "5.00", key="taken")

        assert response.status_code == 409
        assert response.json()["reason"] == "idempotency_key_conflict"
        assert await _balance(second_authenticated_client, theirs) == 0

    async def test_insufficient_funds(self, authenticated_client):
        x = await _open(authenticated_client)
        y = await _open(authenticated_client)
        await _deposit(authenticated_client, x, "50.00")

        response = await _transfer(authenticated_client, x, y, "100.00", "api-b")

        assert response.status_code == 422
        body = response.json()
        assert body["reason"] == "insufficient_funds"
        assert body["requested_cents"] == 10000
        assert body["available_cents"] == 5000
        assert await _balance(authenticated_client, x) == 5000

    async def test_displayed_balance_precheck(self, authenticated_client):
        x = await _open(authenticated_client)
        y = await _open(authenticated_client)
        await _deposit(authenticated_client, x, "50.00")

        response = await _transfer(
            authenticated_client, x, y, "40.00", "api-displayed", displayed_balance="30.00"
        )
        assert response.status_code == 422
        assert response.json()["reason"] == "insufficient_displayed_balance"

    async def test_same_account(self, authenticated_client):
        x = await _open(authenticated_client)
        response = await _transfer(authenticated_client, x, x, "1.00", "api-same")
        assert response.status_code == 422
        assert response.json()["reason"] == "same_account"

    async def test_unknown_destination(self, authenticated_client):
        x = await _open(authenticated_client)
        await _deposit(authenticated_client, x, "50.00")
        response = await _transfer(authenticated_client, x, str(uuid.uuid4()), "1.00", "api-unknown")
        assert response.status_code == 404
        assert response.json()["reason"] == "account_not_found"

    async def test_transfer_to_another_customer(self, authenticated_client, second_authenticated_client):
        mine = await _open(authenticated_client)
        theirs = await _open(second_authenticated_client)
        await _deposit(authenticated_client, mine, "50.00")

        response = await _transfer(authenticated_client, mine, theirs, "20.00", "api-gift")

        assert response.status_code == 201
        assert await _balance(second_authenticated_client, theirs) == 2000

    async def test_cannot_transfer_from_another_customers_account(
        self, authenticated_client, second_authenticated_client
    ):
        mine = await _open(authenticated_client)
        theirs = await _open(second_authenticated_client)
        await _deposit(second_authenticated_client, theirs, "50.00")

        response = await _transfer(authenticated_client, theirs, mine, "20.00", "api-steal")

        assert response.status_code == 403
        assert await _balance(second_authenticated_client, theirs) == 5000

    async def test_frozen_destination(self, authenticated_client, admin_client):
        x = await _open(authenticated_client)
        y = await _open(authenticated_client)
        await _deposit(authenticated_client, x, "50.00")
        freeze = await admin_client.post(f"/admin/accounts/{y}/status", json={"status": "frozen"})
        assert freeze.status_code == 200

        response = await _transfer(authenticated_client, x, y, "20.00", "api-frozen")

        assert response.status_code == 409
        assert response.json()["reason"] == "account_frozen"
        assert await _balance(authenticated_client, x) == 5000


class TestDepositsAndWithdrawals:

    async def test_ach_deposit(self, authenticated_client):
        x = await _open(authenticated_client)
        response = await authenticated_client.post(
            "/movements/deposits",
            json={
                "destination_account_id": x,
                "amount": "1000.00",
                "rail": "ach",
                "bank_name": "First Example Bank",
                "routing_number": "021000021",
                "external_account_number": "9876543210",
                "idempotency_key": "ach-1",
            },
        )
        assert response.status_code == 201
        movement = response.json()["movement"]
        assert movement["kind"] == "deposit"
        assert movement["source_account_id"] is None
        assert "****3210" in movement["memo"]
        assert await _balance(authenticated_client, x) == 100000

    async def test_deposit_missing_rail_details(self, authenticated_client):
        x = await _open(authenticated_client)
        response = await authenticated_client.post(
            "/movements/deposits",
            json={
                "destination_account_id": x,
                "amount": "10.00",
                "rail": "wire",
                "idempotency_key": "wire-1",
            },
        )
        assert response.status_code == 422
        assert response.json()["reason"] == "missing_fields"

    async def test_withdrawal(self, authenticated_client):
        x = await _open(authenticated_client)
        await _deposit(authenticated_client, x, "50.00")

        response = await authenticated_client.post(
            "/movements/withdrawals",
            json={
                "source_account_id": x,
                "amount": "20.00",
                "rail": "check",
                "check_number": "1001",
                "idempotency_key": "wd-1",
            },
        )
        assert response.status_code == 201
        assert response.json()["movement"]["memo"] == "CHECK #1001"
        assert await _balance(authenticated_client, x) == 3000

    async def test_withdrawal_below_zero(self, authenticated_client):
        x = await _open(authenticated_client)
        response = await authenticated_client.post(
            "/movements/withdrawals",
            json={"source_account_id": x, "amount": "0.01", "rail": "card", "idempotency_key": "wd-2"},
        )
        assert response.status_code == 422
        assert response.json()["reason"] == "insufficient_funds"

    async def test_credit_account_withdrawal(self, authenticated_client):
        credit = await _open(authenticated_client, kind="credit")
        response = await authenticated_client.post(
            "/movements/withdrawals",
            json={"source_account_id": credit, "amount": "150.00", "rail": "card", "idempotency_key": "wd-3"},
        )
        assert response.status_code == 201
        assert await _balance(authenticated_client, credit) == -15000

    async def test_unverified_limit(self, authenticated_client):
        x = await _open(authenticated_client)
        too_much = f"{(settings.UNVERIFIED_MOVEMENT_LIMIT_CENTS + 100) // 100}.00"
        response = await _deposit(authenticated_client, x, too_much, key="big")
        assert response.status_code == 422
        assert response.json()["reason"] == "limit_exceeded"


class TestTransientFailures:

    async def test_lock_timeout_returns_503_and_retry_succeeds(self, authenticated_client, monkeypatch):
        x = await _open(authenticated_client)
        monkeypatch.setattr(settings, "LEDGER_TIMEOUT_SECONDS", 0.05)

        async with ledger_store.account_locks.hold([uuid.UUID(x)]):
            response = await _deposit(authenticated_client, x, "5.00", key="api-slow")

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
        assert response.json()["reason"] == "storage_unavailable"
        assert response.json()["idempotency_key"] == "api-slow"

        monkeypatch.undo()
        retried = await _deposit(authenticated_client, x, "5.00", key="api-slow")
        assert retried.status_code == 201
        assert retried.json()["movement"]["state"] == "completed"
        assert await _balance(authenticated_client, x) == 500


class TestReadingMovements:

    async def test_get_own_movement(self, authenticated_client):
        x = await _open(authenticated_client)
        created = await _deposit(authenticated_client, x, "5.00")
        movement_id = created.json()["movement"]["id"]

        response = await authenticated_client.get(f"/movements/{movement_id}")
        assert response.status_code == 200
        assert response.json()["id"] == movement_id
        assert response.json()["completed_at"] is not None

    async def test_other_customers_movement_is_not_found(self, authenticated_client, second_authenticated_client):
        x = await _open(authenticated_client)
        created = await _deposit(authenticated_client, x, "5.00")
        movement_id = created.json()["movement"]["id"]

        response = await second_authenticated_client.get(f"/movements/{movement_id}")
        assert response.status_code == 404

    async def test_recipient_can_see_incoming_transfer(self, authenticated_client, second_authenticated_client):
        mine = await _open(authenticated_client)
        theirs = await _open(second_authenticated_client)
        await _deposit(authenticated_client, mine, "50.00")
        created = await _transfer(authenticated_client, mine, theirs, "20.00", "api-visible")

        response = await second_authenticated_client.get(f"/movements/{created.json()['movement']['id']}")
        assert response.status_code == 200

    async def test_admin_can_read_any_movement(self, authenticated_client, admin_client):
        x = await _open(authenticated_client)
        created = await _deposit(authenticated_client, x, "5.00")

        response = await admin_client.get(f"/movements/{created.json()['movement']['id']}")
        assert response.status_code == 200

    async def test_unknown_movement(self, authenticated_client):
        response = await authenticated_client.get(f"/movements/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json()["reason"] == "movement_not_found"

    async def test_receipt(self, authenticated_client):
        x = await _open(authenticated_client)
        y = await _open(authenticated_client, kind="savings")
        await _deposit(authenticated_client, x, "100.00")
        created = await _transfer(authenticated_client, x, y, "12.56", "api-receipt")
        movement_id = created.json()["movement"]["id"]

        response = await authenticated_client.get(f"/movements/{movement_id}/receipt")

        assert response.status_code == 200
        receipt = response.json()
        assert receipt["title"] == "Transfer"
        assert receipt["amount"] == "12.56"
        assert receipt["currency"] == "USD"
        assert receipt["state"] == "completed"
        assert receipt["reference"] == uuid.UUID(movement_id).hex[:12].upper()
        assert receipt["source"]["kind"] == "checking"
        assert receipt["destination"]["kind"] == "savings"
        assert receipt["source"]["account_number_masked"].startswith("****")
        assert len(receipt["source"]["account_number_masked"]) == 8

    async def test_receipt_never_shows_full_account_numbers(self, authenticated_client):
        x = await _open(authenticated_client)
        account = (await authenticated_client.get(f"/accounts/{x}")).json()
        created = await _deposit(authenticated_client, x, "5.00")

        response = await authenticated_client.get(f"/movements/{created.json()['movement']['id']}/receipt")

        assert account["account_number"] not in response.text
        assert response.json()["destination"]["account_number_masked"] == "****" + account["account_number"][-4:]


class TestAccess:

    async def test_requires_authentication(self, client):
        response = await client.post("/movements/transfers", json={})
        assert response.status_code == 401

    @pytest.mark.parametrize("path", ["/movements/transfers", "/movements/deposits", "/movements/withdrawals"])
    async def test_admins_are_blocked(self, admin_client, path):
        response = await admin_client.post(path, json={"idempotency_key": "admin-try"})
        assert response.status_code == 403
