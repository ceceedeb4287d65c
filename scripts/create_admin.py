#!/usr/bin/env python3
"""
Create (or promote) an administrator account.
Run with: python -m scripts.create_admin --username admin --email admin@example.com

The password is read from --password or prompted for.
"""

import argparse
import getpass
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.database import SessionLocal
from app.core.exceptions import AuthAPIException
from app.core.password_policy import PasswordPolicy
from app.services.user_service import UserService


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Create an admin account")
    parser.add_argument("--username", required=True)
    parser.add_argument("--email", required=True)
    parser.add_argument("--display-name", default="Administrator")
    parser.add_argument("--password", help="Prompted for when omitted")
    parser.add_argument(
        "--legacy-policy",
        action="store_true",
        help="Accept the shorter legacy minimum length (for migrated accounts)",
    )
    parser.add_argument(
        "--promote",
        action="store_true",
        help="Give an existing account with this email the admin role instead",
    )
    return parser.parse_args(argv)


def create_admin(args) -> int:
    db = SessionLocal()
    try:
        existing = UserService.get_by_email(db, args.email)
        if existing is not None:
            if not args.promote:
                print(f"An account for {args.email} already exists. Use --promote to make it an admin.")
                return 1
            UserService.set_role(db, existing, "admin")
            print(f"Promoted {existing.username} to admin")
            return 0

        password = args.password or getpass.getpass("Password: ")
        policy = PasswordPolicy.legacy() if args.legacy_policy else PasswordPolicy.default()
        user = UserService.create_user(
            db,
            username=args.username,
            display_name=args.display_name,
            email=args.email,
            password=password,
            role="admin",
            policy=policy,
        )
        user.email_verified = True
        db.commit()
        print(f"Created admin {user.username} ({user.email})")
        return 0
    except AuthAPIException as e:
        db.rollback()
        print(f"Error creating admin: {e.detail}")
        for violation in e.extra.get("violations", []):
            print(f"  - {violation}")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(create_admin(parse_args()))
