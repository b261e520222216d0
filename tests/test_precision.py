"""
Tests for integer minor-unit precision — no floating point anywhere.

Amounts are entered in major units ("40.00") and converted with Decimal;
everything stored or returned is integer cents. These tests verify:
  - All amounts are integers in responses
  - Entered amounts with too many decimals are rejected, never rounded
  - Amounts too large for the ledger's integer columns are rejected
  - Repeated small movements don't accumulate rounding errors
  - Stored balance = exact sum of all applied movements
  - Transfers preserve the total money supply
"""

import pytest

from bankcore.money import MAX_AMOUNT_CENTS, format_minor_units, to_minor_units
from bankcore.exceptions import ValidationError


async def _open(client) -> str:
    response = await client.post("/accounts", json={})
    assert response.status_code == 201
    return response.json()["id"]


async def _deposit(client, account_id: str, amount, key: str):
    return await client.post(
        "/movements/deposits",
        json={
            "destination_account_id": account_id,
            "amount": amount,
            "rail": "card",
            "idempotency_key": key,
        },
    )


class TestMoneyConversion:

    @pytest.mark.parametrize(
        "amount, cents",
        [("0.10", 10), ("0.20", 20), ("33.33", 3333), ("1", 100), ("-10.50", -1050)],
    )
    def test_to_minor_units(self, amount, cents):
        assert to_minor_units(amount) == cents

    def test_float_input_goes_through_its_shortest_repr(self):
        # 0.1 + 0.2 would be 0.30000000000000004 as a float sum
        assert to_minor_units(0.1) + to_minor_units(0.2) == to_minor_units("0.30")

    def test_extra_precision_is_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            to_minor_units("0.105")
        assert exc_info.value.reason == "invalid_precision"

    @pytest.mark.parametrize("amount", ["abc", "Infinity", "1e"])
    def test_not_a_number(self, amount):
        with pytest.raises(ValidationError) as exc_info:
            to_minor_units(amount)
        assert exc_info.value.reason == "invalid_amount"

    def test_largest_representable_amount(self):
        assert to_minor_units("92233720368547758.07") == MAX_AMOUNT_CENTS
        assert to_minor_units("-92233720368547758.07") == -MAX_AMOUNT_CENTS

    @pytest.mark.parametrize(
        "amount",
        ["92233720368547758.08", "1000000000000000000", "1e30", "-1e30", "1E+400"],
    )
    def test_too_large_for_the_ledger(self, amount):
        with pytest.raises(ValidationError) as exc_info:
            to_minor_units(amount)
        assert exc_info.value.reason == "invalid_amount"

    def test_exponent_notation_within_range(self):
        assert to_minor_units("1e2") == 10000
        assert to_minor_units("2.5E1") == 2500

    @pytest.mark.parametrize(
        "cents, text",
        [(0, "0.00"), (5, "0.05"), (-1050, "-10.50"), (123456789, "1,234,567.89")],
    )
    def test_format_minor_units(self, cents, text):
        assert format_minor_units(cents) == text


class TestIntegerCentPrecision:
    """Tests that all monetary operations use integer cents exactly."""

    async def test_all_amounts_are_integers(self, authenticated_client):
        """Every monetary field in the response should be an integer, never a float."""
        account_id = await _open(authenticated_client)

        response = await _deposit(authenticated_client, account_id, "10.50", "int-1")
        assert response.status_code == 201
        movement = response.json()["movement"]
        assert isinstance(movement["amount_cents"], int)
        assert movement["amount_cents"] == 1050

        balance = await authenticated_client.get(f"/accounts/{account_id}/balance")
        data = balance.json()
        assert isinstance(data["balance_cents"], int)
        assert isinstance(data["ledger_balance_cents"], int)

    async def test_too_many_decimals_is_rejected(self, authenticated_client):
        account_id = await _open(authenticated_client)

        response = await _deposit(authenticated_client, account_id, "10.505", "precision-1")
        assert response.status_code == 422
        assert response.json()["reason"] == "invalid_precision"

        balance = await authenticated_client.get(f"/accounts/{account_id}/balance")
        assert balance.json()["balance_cents"] == 0

    @pytest.mark.parametrize("amount", ["1e30", "1000000000000000000"])
    async def test_unrepresentable_amount_is_rejected(self, authenticated_client, amount):
        account_id = await _open(authenticated_client)

        response = await _deposit(authenticated_client, account_id, amount, f"huge-{amount}")
        assert response.status_code == 422
        assert response.json()["reason"] == "invalid_amount"

        balance = await authenticated_client.get(f"/accounts/{account_id}/balance")
        assert balance.json()["balance_cents"] == 0

    async def test_no_rounding_errors_with_repeated_small_movements(self, authenticated_client):
        """Depositing one cent 100 times gives exactly 1.00."""
        account_id = await _open(authenticated_client)

        for i in range(100):
            response = await _deposit(authenticated_client, account_id, "0.01", f"cent-{i}")
            assert response.status_code == 201

        balance = await authenticated_client.get(f"/accounts/{account_id}/balance")
        assert balance.json()["balance_cents"] == 100

    async def test_sum_verification_after_mixed_operations(self, authenticated_client):
        """Stored balance equals the exact sum of credits minus debits."""
        account_id = await _open(authenticated_client)

        # Amounts that don't add up cleanly in float
        await _deposit(authenticated_client, account_id, "33.33", "mix-1")
        await _deposit(authenticated_client, account_id, "66.67", "mix-2")
        for key, amount in (("mix-3", "16.66"), ("mix-4", "8.34")):
            response = await authenticated_client.post(
                "/movements/withdrawals",
                json={
                    "source_account_id": account_id,
                    "amount": amount,
                    "rail": "card",
                    "idempotency_key": key,
                },
            )
            assert response.status_code == 201

        # 3333 + 6667 - 1666 - 834 = 7500
        balance = await authenticated_client.get(f"/accounts/{account_id}/balance")
        data = balance.json()
        assert data["balance_cents"] == 7500
        assert data["ledger_balance_cents"] == 7500
        assert data["match"] is True

    async def test_transfer_preserves_total_money_supply(self, authenticated_client):
        """Money is never created or destroyed by a transfer, only moved."""
        a_id = await _open(authenticated_client)
        b_id = await _open(authenticated_client)
        c_id = await _open(authenticated_client)
        await _deposit(authenticated_client, a_id, "100.00", "supply")

        for key, source, destination, amount in (
            ("s-1", a_id, b_id, "30.00"),
            ("s-2", a_id, c_id, "20.00"),
            ("s-3", b_id, c_id, "10.00"),
        ):
            response = await authenticated_client.post(
                "/movements/transfers",
                json={
                    "source_account_id": source,
                    "destination_account_id": destination,
                    "amount": amount,
                    "idempotency_key": key,
                },
            )
            assert response.status_code == 201

        balances = []
        for account_id in (a_id, b_id, c_id):
            response = await authenticated_client.get(f"/accounts/{account_id}/balance")
            balances.append(response.json()["balance_cents"])

        assert balances == [5000, 2000, 3000]
        assert sum(balances) == 10000
