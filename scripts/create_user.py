#!/usr/bin/env python3
"""Register an account from the command line.

Usage:
    # Using environment variables:
    NEW_USER_NAME=alice NEW_USER_EMAIL=alice@example.com NEW_USER_PASSWORD=secret1 \
        python scripts/create_user.py

    # Or with command line args:
    python scripts/create_user.py --username alice --email alice@example.com --password secret1

Environment Variables:
    NEW_USER_NAME / NEW_USER_EMAIL / NEW_USER_PASSWORD: account fields
    DATABASE_URL: PostgreSQL connection string (uses the memory store if not set)
    REDIS_URL: Redis for the session cache (falls back to in-process when unreachable)
"""
from __future__ import annotations

import argparse
import asyncio
import json
import os
import secrets
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def find_existing_account(store, username: str, email: str, password: str):
    """Look up an account the way registration would, after normalizing the fields."""
    from identity_service.service.validation import validate_registration

    request = validate_registration(
        {"username": username, "email": email, "password": password}
    )
    return store.find_user_by_email_or_username(request.email, request.username)


async def create_user(username: str, email: str, password: str, dry_run: bool = False) -> dict:
    """Register one account through the identity engine.

    Returns:
        the operation result as a dict (``ok`` plus payload or error fields)
    """
    # Import here to avoid loading config before env vars are set
    from identity_service.logging import set_correlation_id
    from identity_service.service.runtime import get_runtime

    set_correlation_id()
    runtime = get_runtime()
    try:
        if dry_run:
            existing = find_existing_account(runtime.store, username, email, password)
            status = "exists" if existing else "would_create"
            print(f"[DRY RUN] {username} <{email}>: {status}")
            return {"ok": True, "payload": {"status": status}}

        result = await runtime.engine.execute(
            "register", username=username, email=email, password=password
        )
        return result.to_dict()
    finally:
        await runtime.close()


def main():
    parser = argparse.ArgumentParser(
        description="Register an identity-service account",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--username",
        default=os.environ.get("NEW_USER_NAME"),
        help="Username (or set NEW_USER_NAME env var)",
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("NEW_USER_EMAIL"),
        help="Email (or set NEW_USER_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("NEW_USER_PASSWORD"),
        help="Password (or set NEW_USER_PASSWORD env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report whether the account exists without creating it",
    )

    args = parser.parse_args()

    missing = [name for name in ("username", "email", "password") if not getattr(args, name)]
    if missing:
        print(f"Error: missing {', '.join(missing)}")
        sys.exit(1)

    if not os.environ.get("JWT_SECRET"):
        os.environ["JWT_SECRET"] = secrets.token_urlsafe(48)

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    try:
        result = asyncio.run(
            create_user(args.username, args.email, args.password, args.dry_run)
        )
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if not result["ok"]:
        print(f"Error: {result['message']}")
        if result.get("detail"):
            print(json.dumps(result["detail"], indent=2))
        sys.exit(1)

    payload = result["payload"]
    if payload.get("userId"):
        print("\nUser created successfully!")
        print(f"  User ID: {payload['userId']}")
        print(f"  Access Token: {payload['accessToken'][:50]}...")


if __name__ == "__main__":
    main()
