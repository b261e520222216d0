#!/usr/bin/env python3
"""
Demo seed script — populates the database with sample data for demos.

!! NOT FOR PRODUCTION !!
This script creates test users with known passwords and fake movement
history. It is intended ONLY for local demos and frontend development.

Usage:
    # With the API server running on localhost:8000:
    python demo/seed.py

    # Reset the database and re-seed:
    python demo/seed.py --reset

    # Custom server URL:
    python demo/seed.py --base-url http://localhost:9000

The server and this script must agree on VERIFICATION_WEBHOOK_SECRET so
that the seeded members can be marked as verified.

Login credentials after seeding:
    ┌──────────────────────────────┬───────────────────┬────────┐
    │ Email                        │ Password          │ Role   │
    ├──────────────────────────────┼───────────────────┼────────┤
    │ admin@bankdemo.com           │ AdminDemo123!     │ ADMIN  │
    │ alice.chen@example.com       │ AliceDemo123!     │ USER   │
    │ bob.martinez@example.com     │ BobDemo123!       │ USER   │
    │ carol.nguyen@example.com     │ CarolDemo123!     │ USER   │
    │ dave.johnson@example.com     │ DaveDemo123!      │ USER   │
    └──────────────────────────────┴───────────────────┴────────┘
"""

import argparse
import asyncio
import os
import random
import sys
import uuid

import httpx

BASE_URL = "http://localhost:8000"

# ---------------------------------------------------------------------------
# Demo users
# ---------------------------------------------------------------------------

ADMIN = {
    "email": "admin@bankdemo.com",
    "password": "AdminDemo123!",
    "first_name": "Admin",
    "last_name": "User",
}

MEMBERS = [
    {
        "email": "alice.chen@example.com",
        "password": "AliceDemo123!",
        "first_name": "Alice",
        "last_name": "Chen",
        "phone": "+15555550101",
        "verified": True,
        "accounts": [
            {"kind": "checking", "initial_deposit": "850.00", "rail": "ach"},
            {"kind": "savings", "initial_deposit": "5000.00", "rail": "wire"},
        ],
    },
    {
        "email": "bob.martinez@example.com",
        "password": "BobDemo123!",
        "first_name": "Bob",
        "last_name": "Martinez",
        "verified": False,
        "accounts": [
            {"kind": "checking", "initial_deposit": "1200.00", "rail": "ach"},
            {"kind": "credit", "initial_deposit": None, "rail": None},
        ],
    },
    {
        "email": "carol.nguyen@example.com",
        "password": "CarolDemo123!",
        "first_name": "Carol",
        "last_name": "Nguyen",
        "verified": True,
        "accounts": [
            {"kind": "business", "initial_deposit": "3200.00", "rail": "check"},
            {"kind": "investment", "initial_deposit": "1500.00", "rail": "crypto"},
        ],
    },
    {
        "email": "dave.johnson@example.com",
        "password": "DaveDemo123!",
        "first_name": "Dave",
        "last_name": "Johnson",
        "verified": False,
        "accounts": [
            {"kind": "checking", "initial_deposit": "600.00", "rail": "ach"},
        ],
    },
]

MERCHANTS = [
    "Coffee shop", "Grocery store", "Gas station", "Online subscription",
    "Restaurant", "Pharmacy", "Hardware store", "Movie tickets",
]

# Reference fields each external rail needs
RAIL_DETAILS = {
    "ach": {"bank_name": "First Example Bank", "routing_number": "021000021",
            "external_account_number": "000123456789"},
    "wire": {"bank_name": "First Example Bank", "routing_number": "021000021",
             "external_account_number": "000987654321"},
    "check": {"check_number": "1042"},
    "crypto": {"crypto_currency": "BTC", "wallet_address": "bc1qdemo0wallet0address0000000000000"},
    "card": {},
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def log(msg: str) -> None:
    print(f"  {msg}")


def cents_to_dollars(cents: int) -> str:
    return f"${cents / 100:,.2f}"


def new_key() -> str:
    return f"seed-{uuid.uuid4()}"


async def signup(client: httpx.AsyncClient, user: dict) -> dict:
    """Sign up a user, return {user_id, token}."""
    body = {
        "email": user["email"],
        "password": user["password"],
        "first_name": user["first_name"],
        "last_name": user["last_name"],
    }
    if user.get("phone"):
        body["phone"] = user["phone"]
    resp = await client.post(f"{BASE_URL}/auth/signup", json=body)
    resp.raise_for_status()
    data = resp.json()
    return {"user_id": data["user_id"], "token": data["token"]}


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def verify(client: httpx.AsyncClient, user_id: str, secret: str) -> str:
    """Complete every required verification step as the provider would."""
    data = {}
    for step_id in ("identity", "address", "phone"):
        resp = await client.post(
            f"{BASE_URL}/verification/events",
            json={"user_id": user_id, "step_id": step_id, "status": "completed"},
            headers={"X-Verification-Secret": secret},
        )
        resp.raise_for_status()
        data = resp.json()
    return data["status"]


async def open_account(client: httpx.AsyncClient, token: str, kind: str) -> dict:
    """Open an account; the response carries the new card, if any."""
    resp = await client.post(
        f"{BASE_URL}/accounts",
        json={"kind": kind},
        headers=auth_header(token),
    )
    resp.raise_for_status()
    return resp.json()


async def activate_card(client: httpx.AsyncClient, token: str, card: dict) -> None:
    resp = await client.post(
        f"{BASE_URL}/cards/{card['id']}/activate",
        json={"activation_code": card["activation_code"]},
        headers=auth_header(token),
    )
    resp.raise_for_status()


async def deposit(client: httpx.AsyncClient, token: str, account_id: str,
                  amount: str, rail: str, memo: str) -> dict:
    body = {
        "destination_account_id": account_id,
        "amount": amount,
        "rail": rail,
        "memo": memo,
        **RAIL_DETAILS[rail],
    }
    resp = await client.post(
        f"{BASE_URL}/movements/deposits",
        json=body,
        headers={**auth_header(token), "Idempotency-Key": new_key()},
    )
    return resp.json()


async def withdraw(client: httpx.AsyncClient, token: str, account_id: str,
                   amount: str, memo: str) -> dict:
    resp = await client.post(
        f"{BASE_URL}/movements/withdrawals",
        json={
            "source_account_id": account_id,
            "amount": amount,
            "rail": "ach",
            "memo": memo,
            **RAIL_DETAILS["ach"],
        },
        headers={**auth_header(token), "Idempotency-Key": new_key()},
    )
    return resp.json()


async def charge(client: httpx.AsyncClient, token: str, card_id: str,
                 amount: str, merchant: str) -> dict:
    resp = await client.post(
        f"{BASE_URL}/cards/{card_id}/charges",
        json={"amount": amount, "merchant": merchant},
        headers={**auth_header(token), "Idempotency-Key": new_key()},
    )
    return resp.json()


async def do_transfer(client: httpx.AsyncClient, token: str,
                      from_id: str, to_id: str, amount: str, memo: str) -> dict:
    resp = await client.post(
        f"{BASE_URL}/movements/transfers",
        json={
            "source_account_id": from_id,
            "destination_account_id": to_id,
            "amount": amount,
            "memo": memo,
        },
        headers={**auth_header(token), "Idempotency-Key": new_key()},
    )
    return resp.json()


async def get_balance(client: httpx.AsyncClient, token: str, account_id: str) -> int:
    resp = await client.get(
        f"{BASE_URL}/accounts/{account_id}/balance",
        headers=auth_header(token),
    )
    resp.raise_for_status()
    return resp.json()["balance_cents"]


def random_amount(low_cents: int, high_cents: int) -> str:
    cents = random.randint(low_cents, high_cents)
    return f"{cents // 100}.{cents % 100:02d}"


# ---------------------------------------------------------------------------
# Seed logic
# ---------------------------------------------------------------------------

async def seed_history(client: httpx.AsyncClient, token: str, account: dict) -> int:
    """
    Generate a little realistic activity on one account.

    Card accounts get purchases on their (activated) card; everything else
    gets a payroll-style deposit and the odd withdrawal. Returns how many
    movements were rejected, which is expected now and then.
    """
    rejected = 0
    card = account.get("card")

    if card and account["kind"] in ("checking", "credit"):
        for _ in range(random.randint(4, 8)):
            result = await charge(
                client, token, card["id"], random_amount(3_00, 120_00), random.choice(MERCHANTS)
            )
            if result.get("reason"):
                rejected += 1

    if account["kind"] in ("checking", "savings", "business"):
        await deposit(client, token, account["id"], random_amount(1_800_00, 3_200_00),
                      "ach", "Payroll deposit")
        if random.random() < 0.5:
            result = await withdraw(client, token, account["id"],
                                    random_amount(100_00, 300_00), "Rent share")
            if result.get("reason"):
                rejected += 1

    return rejected


async def promote_to_admin(admin_email: str) -> None:
    """Directly update the user's role to ADMIN in the database.

    This bypasses the API since there's no admin-promotion endpoint
    (by design — admin provisioning is an operator action, not self-service).
    """
    from sqlalchemy import update
    from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
    from bankcore.config import settings
    from bankcore.models.user import User, UserRole

    engine = create_async_engine(settings.DATABASE_URL)
    session_factory = async_sessionmaker(engine, class_=AsyncSession)

    async with session_factory() as session:
        await session.execute(
            update(User)
            .where(User.email == admin_email)
            .values(role=UserRole.ADMIN)
        )
        await session.commit()

    await engine.dispose()


async def seed(base_url: str, verification_secret: str) -> None:
    global BASE_URL
    BASE_URL = base_url

    print("\n========================================")
    print("  DEMO SEED — NOT FOR PRODUCTION")
    print("========================================\n")

    async with httpx.AsyncClient(timeout=30.0) as client:
        # Health check
        try:
            health = await client.get(f"{BASE_URL}/health")
            health.raise_for_status()
        except (httpx.ConnectError, httpx.HTTPStatusError):
            print(f"  ERROR: Cannot connect to {BASE_URL}")
            print("  Start the server first: uvicorn bankcore.main:app --reload\n")
            sys.exit(1)

        # --- Admin ---
        print("Creating admin user...")
        admin_token = (await signup(client, ADMIN))["token"]
        await promote_to_admin(ADMIN["email"])
        log(f"Admin: {ADMIN['email']} / {ADMIN['password']}")

        # --- Members ---
        all_accounts: list[dict] = []  # Track for inter-user transfers

        for member in MEMBERS:
            name = f"{member['first_name']} {member['last_name']}"
            print(f"\nCreating {name}...")
            identity = await signup(client, member)
            token = identity["token"]
            log(f"Login: {member['email']} / {member['password']}")

            if member["verified"]:
                status = await verify(client, identity["user_id"], verification_secret)
                log(f"  Verification: {status}")

            for acct_info in member["accounts"]:
                account = await open_account(client, token, acct_info["kind"])
                log(f"  {acct_info['kind'].capitalize()} account: {account['account_number']}")

                if account.get("card"):
                    await activate_card(client, token, account["card"])
                    log(f"  {account['card']['network'].capitalize()} card activated")

                if acct_info["initial_deposit"]:
                    await deposit(client, token, account["id"], acct_info["initial_deposit"],
                                  acct_info["rail"], "Opening deposit")
                    log(f"  Opening deposit via {acct_info['rail']}: ${acct_info['initial_deposit']}")

                rejected = await seed_history(client, token, account)
                balance = await get_balance(client, token, account["id"])
                log(f"  Balance: {cents_to_dollars(balance)} ({rejected} rejected)")

                all_accounts.append({
                    "account_id": account["id"],
                    "token": token,
                    "name": name,
                    "kind": acct_info["kind"],
                })

        # --- Inter-user transfers ---
        print("\nCreating inter-user transfers...")
        payers = [a for a in all_accounts if a["kind"] in ("checking", "business")]
        for a, b in zip(payers, payers[1:] + payers[:1]):
            amount = random_amount(15_00, 150_00)
            result = await do_transfer(
                client, a["token"], a["account_id"], b["account_id"],
                amount, f"Payment from {a['name']} to {b['name']}"
            )
            if "reason" not in result:
                log(f"{a['name']} -> {b['name']}: ${amount}")
            else:
                log(f"{a['name']} -> {b['name']}: rejected ({result['reason']})")

        # --- One correction, as an operator would record it ---
        if payers:
            target = payers[0]
            resp = await client.post(
                f"{BASE_URL}/admin/accounts/{target['account_id']}/adjustments",
                json={"direction": "credit", "amount": "5.00", "memo": "Fee refund"},
                headers={**auth_header(admin_token), "Idempotency-Key": new_key()},
            )
            if resp.status_code < 300:
                log(f"Admin adjustment: $5.00 fee refund to {target['name']}")

    # --- Summary ---
    print("\n========================================")
    print("  SEED COMPLETE — Login Credentials")
    print("========================================")
    print(f"\n  {'Email':<30s} {'Password':<20s} {'Role'}")
    print(f"  {'─' * 30} {'─' * 20} {'─' * 6}")
    print(f"  {ADMIN['email']:<30s} {ADMIN['password']:<20s} ADMIN")
    for m in MEMBERS:
        print(f"  {m['email']:<30s} {m['password']:<20s} USER")
    print()


def reset_database() -> None:
    """Delete the SQLite database file so the server recreates it on restart."""
    db_path = os.path.join(os.path.dirname(__file__), "..", "data", "bank.db")
    db_path = os.path.normpath(db_path)

    if os.path.exists(db_path):
        os.remove(db_path)
        print(f"\n  Deleted {db_path}")
        print("  Restart the server to recreate empty tables.\n")
    else:
        print(f"\n  No database found at {db_path}\n")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

async def main() -> None:
    parser = argparse.ArgumentParser(
        description="Demo seed script — NOT FOR PRODUCTION",
        epilog="Creates sample users, accounts, cards, and movements for demos.",
    )
    parser.add_argument(
        "--base-url", default="http://localhost:8000",
        help="Base URL of the running API (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--verification-secret",
        default=os.environ.get("VERIFICATION_WEBHOOK_SECRET", "change-me"),
        help="Shared secret for /verification/events (default: $VERIFICATION_WEBHOOK_SECRET)",
    )
    parser.add_argument(
        "--reset", action="store_true",
        help="Delete the database file and exit (restart server to recreate)",
    )
    args = parser.parse_args()

    if args.reset:
        reset_database()
        return

    await seed(args.base_url, args.verification_secret)


if __name__ == "__main__":
    asyncio.run(main())
