#!/usr/bin/env python3
"""
Bootstrap script for the Contracting Workflow API.

Creates the first super_admin account. Users can only be created by an
admin, so a fresh database needs this once before anyone can log in.

    python scripts/seed_admin.py --email admin@example.com --password secret123
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add parent directory to path so we can import from the main application
sys.path.append(str(Path(__file__).parent.parent))

from database.db import init_db, close_db, entity_store
from database.operations import USERS
from models.user import UserRole
from services.exceptions import WorkflowError
from services.users import create_user

def parse_args():
    parser = argparse.ArgumentParser(description="Create the first super_admin account")
    parser.add_argument("--email", default=os.getenv("ADMIN_EMAIL", "admin@example.com"))
    parser.add_argument("--password", default=os.getenv("ADMIN_PASSWORD"))
    parser.add_argument("--first-name", default="System")
    parser.add_argument("--last-name", default="Administrator")
    parser.add_argument("--phone", default="+971500000000")
    return parser.parse_args()

async def main():
    args = parse_args()
    if not args.password:
        print("A password is required (--password or ADMIN_PASSWORD)")
        return 1

    print("Initializing database connection...")
    await init_db()
    try:
        existing = await entity_store.find_one(USERS, {"role": UserRole.SUPER_ADMIN.value})
        if existing:
            print(f"A super_admin already exists: {existing['email']}")
            return 0

        user = await create_user(entity_store, None, {
            "email": args.email,
            "password": args.password,
            "first_name": args.first_name,
            "last_name": args.last_name,
            "phone_numbers": [args.phone],
            "role": UserRole.SUPER_ADMIN.value,
        })
        print(f"Created super_admin: {user['email']} (ID: {user['id']})")
        return 0
    except WorkflowError as e:
        print(f"Could not create super_admin: {e.message}")
        return 1
    finally:
        close_db()

if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
