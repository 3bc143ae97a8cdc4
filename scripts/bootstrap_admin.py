#!/usr/bin/env python3
"""Bootstrap a tenant-less super-admin account.

Usage:
    # Using environment variables:
    export MEMORY_STORE_PATH=/srv/wayfare/identity.json
    ADMIN_EMAIL=root@example.com ADMIN_PASSWORD=SecurePassword123! python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --email root@example.com --password SecurePassword123! --state-path /srv/wayfare/identity.json

Environment Variables:
    ADMIN_EMAIL: Email for the super-admin
    ADMIN_PASSWORD: Password for the super-admin
    MEMORY_STORE_PATH: identity store file shared with the API process
    JWT_ACCESS_SECRET / JWT_REFRESH_SECRET: the API's signing secrets (required)
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

REQUIRED_SECRETS = ("JWT_ACCESS_SECRET", "JWT_REFRESH_SECRET")


async def bootstrap_admin(
    email: str,
    password: str,
    first_name: str = "Super",
    last_name: str = "Admin",
    dry_run: bool = False,
) -> dict:
    """Create the super-admin and log it in once to prove the credentials work."""
    # Import here to avoid loading config before env vars are set
    from wayfare.service.auth import normalize_email
    from wayfare.service.runtime import get_runtime

    runtime = get_runtime()
    existing = runtime.store.find_user_by_email_and_tenant(normalize_email(email), None)
    if existing is not None:
        print(f"Tenant-less account {email} already exists (id: {existing.id}, role: {existing.role})")
        return {"user_id": existing.id, "email": email, "status": "exists"}

    if dry_run:
        print(f"[DRY RUN] Would create super-admin: {email}")
        return {"user_id": None, "email": email, "status": "dry_run"}

    user = await runtime.auth.create_super_admin(email, password, first_name, last_name)
    session = await runtime.auth.login(email, password)
    return {
        "user_id": user["id"],
        "email": user["email"],
        "status": "created",
        "access_token": session["access_token"],
    }


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap a super-admin for the travel CRM",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument(
        "--state-path",
        default=os.environ.get("MEMORY_STORE_PATH"),
        help="Identity store file shared with the API (or set MEMORY_STORE_PATH env var)",
    )
    parser.add_argument("--first-name", default="Super")
    parser.add_argument("--last-name", default="Admin")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        sys.exit(1)
    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        sys.exit(1)

    missing = [name for name in REQUIRED_SECRETS if not os.environ.get(name)]
    if missing:
        print(f"Error: {', '.join(missing)} must be set to the API's signing secrets")
        sys.exit(1)
    if not args.state_path:
        print("Error: --state-path or MEMORY_STORE_PATH required so the account outlives this run")
        sys.exit(1)

    os.environ["MEMORY_STORE_PATH"] = args.state_path
    # Only the identity store must persist; sessions from the check login may be dropped
    os.environ.setdefault("USE_MEMORY_STORE", "true")
    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    from wayfare.service.errors import ServiceError

    try:
        result = asyncio.run(
            bootstrap_admin(
                args.email, args.password, args.first_name, args.last_name, args.dry_run
            )
        )
    except ServiceError as exc:
        print(f"Error [{exc.code}]: {exc.message}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nSuper-admin created successfully!")
        print(f"  Email: {result['email']}")
        print(f"  User ID: {result['user_id']}")
        print(f"  Identity store: {args.state_path}")
        print(f"  Access Token: {result['access_token'][:50]}...")


if __name__ == "__main__":
    main()
