"""
Tests for authorization boundaries — cross-user isolation and role enforcement.

These tests verify two critical security properties:

1. **Cross-user isolation**: A logged-in MEMBER cannot read or move money
   out of another user's accounts, and cannot see movements or cards that
   don't involve them. Account reads answer 403; movements the caller has
   no part in answer 404 so their existence is not revealed.

2. **Role enforcement**: Regular MEMBER users cannot reach any /admin/*
   endpoint, and ADMIN users cannot use the member banking endpoints.
   Admins act on customer money only through audited adjustments.

Together, these tests ensure that authentication alone is insufficient —
the system enforces *authorization* (who can do what) at every endpoint.
"""

import uuid

import pytest


async def _funded_account(client, amount: str = "100.00") -> str:
    acct = await client.post("/accounts", json={})
    account_id = acct.json()["id"]
    resp = await client.post(
        "/movements/deposits",
        json={
            "destination_account_id": account_id,
            "amount": amount,
            "rail": "card",
            "idempotency_key": f"fund-{uuid.uuid4()}",
        },
    )
    assert resp.status_code == 201
    return account_id


class TestCrossUserAccountAccess:
    """A logged-in user cannot see or modify another user's accounts."""

    async def test_cannot_view_other_users_account(
        self, authenticated_client, second_authenticated_client
    ):
        """User B cannot retrieve User A's account details."""
        acct = await authenticated_client.post("/accounts", json={})
        account_id = acct.json()["id"]

        resp = await second_authenticated_client.get(f"/accounts/{account_id}")
        assert resp.status_code == 403

    async def test_cannot_view_other_users_balance(
        self, authenticated_client, second_authenticated_client
    ):
        """User B cannot check User A's balance."""
        acct = await authenticated_client.post("/accounts", json={})
        account_id = acct.json()["id"]

        resp = await second_authenticated_client.get(f"/accounts/{account_id}/balance")
        assert resp.status_code == 403

    async def test_cannot_list_other_users_accounts(
        self, authenticated_client, second_authenticated_client
    ):
        """Each user's account list only contains their own accounts."""
        await authenticated_client.post("/accounts", json={})
        await second_authenticated_client.post("/accounts", json={})

        user_a_list = await authenticated_client.get("/accounts")
        user_b_list = await second_authenticated_client.get("/accounts")

        a_ids = {a["id"] for a in user_a_list.json()}
        b_ids = {b["id"] for b in user_b_list.json()}

        # No overlap — each user only sees their own
        assert a_ids.isdisjoint(b_ids)

    async def test_cannot_deposit_into_other_users_account(
        self, authenticated_client, second_authenticated_client
    ):
        """User B cannot credit User A's account from an external rail."""
        acct = await authenticated_client.post("/accounts", json={})
        account_id = acct.json()["id"]

        resp = await second_authenticated_client.post(
            "/movements/deposits",
            json={
                "destination_account_id": account_id,
                "amount": "50.00",
                "rail": "card",
                "idempotency_key": "foreign-deposit",
            },
        )
        assert resp.status_code == 403
        assert resp.json()["error_type"] == "unauthorized_access"


class TestCrossUserMovementAccess:
    """A user cannot list or read movements they have no part in."""

    async def test_cannot_list_other_users_movements(
        self, authenticated_client, second_authenticated_client
    ):
        """User B cannot list User A's movement history."""
        account_id = await _funded_account(authenticated_client, "10.00")

        resp = await second_authenticated_client.get(f"/accounts/{account_id}/movements")
        assert resp.status_code == 403

    async def test_cannot_view_other_users_single_movement(
        self, authenticated_client, second_authenticated_client
    ):
        """A movement that doesn't involve User B looks like it doesn't exist."""
        account_id = await _funded_account(authenticated_client, "10.00")
        page = await authenticated_client.get(f"/accounts/{account_id}/movements")
        movement_id = page.json()["items"][0]["id"]

        resp = await second_authenticated_client.get(f"/movements/{movement_id}")
        assert resp.status_code == 404

        resp = await second_authenticated_client.get(f"/movements/{movement_id}/receipt")
        assert resp.status_code == 404


class TestCrossUserTransferProtection:
    """Transfers between accounts respect ownership rules."""

    async def test_cannot_transfer_from_other_users_account(
        self, authenticated_client, second_authenticated_client
    ):
        """User B cannot initiate a transfer FROM User A's account."""
        a_id = await _funded_account(authenticated_client)

        acct_b = await second_authenticated_client.post("/accounts", json={})
        b_id = acct_b.json()["id"]

        resp = await second_authenticated_client.post(
            "/movements/transfers",
            json={
                "source_account_id": a_id,
                "destination_account_id": b_id,
                "amount": "50.00",
                "idempotency_key": "steal-1",
            },
        )
        assert resp.status_code == 403

    async def test_cannot_withdraw_from_other_users_account(
        self, authenticated_client, second_authenticated_client
    ):
        """User B cannot drain User A's account to an external rail."""
        a_id = await _funded_account(authenticated_client, "500.00")

        resp = await second_authenticated_client.post(
            "/movements/withdrawals",
            json={
                "source_account_id": a_id,
                "amount": "500.00",
                "rail": "card",
                "idempotency_key": "steal-2",
            },
        )
        assert resp.status_code == 403

        # Verify User A's balance is unchanged
        bal = await authenticated_client.get(f"/accounts/{a_id}/balance")
        assert bal.json()["balance_cents"] == 50000
        assert bal.json()["match"] is True


class TestCrossUserCardAccess:
    """A user cannot view, issue, or use cards on another user's account."""

    async def test_cannot_view_other_users_card(
        self, authenticated_client, second_authenticated_client
    ):
        """User B cannot retrieve User A's card details."""
        acct = await authenticated_client.post("/accounts", json={})
        account_id = acct.json()["id"]

        resp = await second_authenticated_client.get(f"/accounts/{account_id}/card")
        assert resp.status_code == 403

    async def test_cannot_issue_card_on_other_users_account(
        self, authenticated_client, second_authenticated_client
    ):
        """User B cannot issue a card on User A's account."""
        acct = await authenticated_client.post("/accounts", json={})
        account_id = acct.json()["id"]

        resp = await second_authenticated_client.post(f"/accounts/{account_id}/card")
        assert resp.status_code == 403

    async def test_cannot_activate_other_users_card(
        self, authenticated_client, second_authenticated_client
    ):
        """Knowing the activation code is not enough; the card must be yours."""
        acct = await authenticated_client.post("/accounts", json={})
        card = acct.json()["card"]

        resp = await second_authenticated_client.post(
            f"/cards/{card['id']}/activate",
            json={"activation_code": card["activation_code"]},
        )
        assert resp.status_code == 403


class TestNonAdminBlockedFromAdminEndpoints:
    """Regular MEMBER users cannot access any /admin/* endpoint.

    The admin router uses `require_admin` dependency on every endpoint,
    which checks the user's role and returns 403 for non-ADMIN users.
    This test class hits every admin endpoint to verify the gate works.
    """

    @pytest.mark.parametrize(
        "path",
        [
            "/admin/accounts",
            "/admin/accounts/{id}/balance",
            "/admin/movements",
            "/admin/alerts",
        ],
    )
    async def test_member_cannot_read_admin_views(self, authenticated_client, path):
        resp = await authenticated_client.get(path.format(id=uuid.uuid4()))
        assert resp.status_code == 403

    async def test_member_cannot_adjust_balances(self, authenticated_client):
        """POST /admin/accounts/{id}/adjustments requires ADMIN role."""
        account_id = await _funded_account(authenticated_client, "1.00")

        resp = await authenticated_client.post(
            f"/admin/accounts/{account_id}/adjustments",
            json={"direction": "credit", "amount": "1000.00", "idempotency_key": "self-credit"},
        )
        assert resp.status_code == 403

        bal = await authenticated_client.get(f"/accounts/{account_id}/balance")
        assert bal.json()["balance_cents"] == 100

    async def test_member_cannot_change_account_status(self, authenticated_client):
        acct = await authenticated_client.post("/accounts", json={})
        account_id = acct.json()["id"]

        resp = await authenticated_client.post(
            f"/admin/accounts/{account_id}/status", json={"status": "closed"}
        )
        assert resp.status_code == 403

    async def test_member_cannot_resolve_alerts(self, authenticated_client):
        resp = await authenticated_client.post(f"/admin/alerts/{uuid.uuid4()}/resolve", json={})
        assert resp.status_code == 403

    async def test_member_blocked_even_for_own_account(self, authenticated_client):
        """A MEMBER cannot use admin endpoints even for their own account.

        This verifies that the admin check happens BEFORE any account
        ownership check — the request should be rejected at the role
        gate, not at the ownership gate.
        """
        acct = await authenticated_client.post("/accounts", json={})
        account_id = acct.json()["id"]

        resp = await authenticated_client.get(f"/admin/accounts/{account_id}/balance")
        assert resp.status_code == 403

        resp = await authenticated_client.get(
            "/admin/movements", params={"account_id": account_id}
        )
        assert resp.status_code == 403


class TestAdminBlockedFromMemberEndpoints:
    """Admins work through /admin/*; member endpoints turn them away."""

    @pytest.mark.parametrize(
        "method, path",
        [
            ("get", "/accounts"),
            ("post", "/accounts"),
            ("post", "/movements/transfers"),
            ("post", "/movements/deposits"),
            ("post", "/movements/withdrawals"),
        ],
    )
    async def test_admin_cannot_use_member_endpoints(self, admin_client, method, path):
        kwargs = {"json": {}} if method == "post" else {}
        resp = await getattr(admin_client, method)(path, **kwargs)
        assert resp.status_code == 403

    async def test_admin_cannot_move_customer_money_directly(self, admin_client, authenticated_client):
        """An admin cannot withdraw from a customer account as if it were theirs."""
        account_id = await _funded_account(authenticated_client, "20.00")

        resp = await admin_client.post(
            "/movements/withdrawals",
            json={
                "source_account_id": account_id,
                "amount": "20.00",
                "rail": "card",
                "idempotency_key": "admin-wd",
            },
        )
        assert resp.status_code == 403

        bal = await admin_client.get(f"/admin/accounts/{account_id}/balance")
        assert bal.json()["balance_cents"] == 2000
