#!/usr/bin/env python3
"""Register an account for testing and initial setup.

Usage:
    # Using environment variables:
    BOOTSTRAP_USERNAME=admin BOOTSTRAP_EMAIL=admin@example.com \
        BOOTSTRAP_PASSWORD=SecurePassword123! python scripts/bootstrap_user.py

    # Or with command line args:
    python scripts/bootstrap_user.py --username admin --email admin@example.com \
        --password SecurePassword123!

Environment Variables:
    BOOTSTRAP_USERNAME: Username for the account
    BOOTSTRAP_EMAIL: Email for the account
    BOOTSTRAP_PASSWORD: Password (must meet complexity requirements)
    DATABASE_URL: PostgreSQL connection string (optional, uses memory store if not set)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def validate_password(password: str) -> bool:
    """Check password meets complexity requirements."""
    if len(password) < 12:
        return False
    has_upper = any(c.isupper() for c in password)
    has_lower = any(c.islower() for c in password)
    has_digit = any(c.isdigit() for c in password)
    has_special = any(c in "!@#$%^&*()_+-=[]{}|;':\",./<>?" for c in password)
    return sum([has_upper, has_lower, has_digit, has_special]) >= 3


async def bootstrap_user(
    username: str, email: str, password: str, dry_run: bool = False, runtime=None
) -> dict:
    """Register the account, or report that it already exists.

    Returns:
        dict with user_id, username, and status ('created', 'exists' or 'dry_run')
    """
    # Import here to avoid loading config before env vars are set
    from tokenward.service.errors import DuplicateEmail, DuplicateUsername
    from tokenward.service.runtime import Runtime

    runtime = runtime or Runtime()
    async with runtime:
        existing = await runtime.store.find_users_matching(username, email)
        if existing:
            print(f"Account {username} / {email} already exists (id: {existing[0].id})")
            return {"user_id": existing[0].id, "username": username, "status": "exists"}

        if dry_run:
            print(f"[DRY RUN] Would create account: {username} <{email}>")
            return {"user_id": None, "username": username, "status": "dry_run"}

        try:
            profile = await runtime.auth.register(username, email, password)
        except (DuplicateUsername, DuplicateEmail) as exc:
            print(f"Account already exists: {exc.message}")
            return {"user_id": None, "username": username, "status": "exists"}

    print(f"Created account: {profile.username} (id: {profile.id})")
    return {"user_id": profile.id, "username": profile.username, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Register an account in the tokenward store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--username",
        default=os.environ.get("BOOTSTRAP_USERNAME"),
        help="Username (or set BOOTSTRAP_USERNAME env var)",
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("BOOTSTRAP_EMAIL"),
        help="Email (or set BOOTSTRAP_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("BOOTSTRAP_PASSWORD"),
        help="Password (or set BOOTSTRAP_PASSWORD env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    for name in ("username", "email", "password"):
        if not getattr(args, name):
            print(f"Error: --{name} or BOOTSTRAP_{name.upper()} environment variable required")
            sys.exit(1)

    if not validate_password(args.password):
        print("Error: Password must be at least 12 characters with 3+ character classes")
        print("       (uppercase, lowercase, digits, special characters)")
        sys.exit(1)

    # Use memory store if no database configured
    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    try:
        result = asyncio.run(
            bootstrap_user(args.username, args.email, args.password, args.dry_run)
        )
    except Exception as e:
        from tokenward.service.errors import describe_error

        print(f"Error: {describe_error(e)['message']}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nAccount created successfully!")
        print(f"  Username: {result['username']}")
        print(f"  User ID: {result['user_id']}")
    elif result["status"] == "exists":
        print("\nNo changes needed - account already exists.")


if __name__ == "__main__":
    main()
