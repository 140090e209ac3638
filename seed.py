#!/usr/bin/env python3
"""
RoleGate seeding CLI.

Usage:
  python seed.py permissions
  python seed.py admin --email owner@example.com --password 's3cret-pass'
  python seed.py --database-url sqlite:///other.db permissions

Commands:
  permissions   Insert the built-in permission catalog. Names already present
                are left alone, so the command is safe to re-run.
  admin         Create the first account of the elevated user type. Does
                nothing if one already exists.

The database URL defaults to DATABASE_URL from the environment / .env
(see core/config.py).
"""

import argparse
import sys

from auth.models import Permission, User
from auth.store import PermissionStore, UserStore, create_db_engine
from auth.tokens import hash_password
from core.config import get_settings

_CRUD = (("manage", "Manage"), ("view", "View"), ("create", "Create"), ("edit", "Edit"), ("delete", "Delete"))


def _module_permissions(module: str, actions=_CRUD) -> list[Permission]:
    return [Permission(name=f"{module}_{action}", label=label, module=module) for action, label in actions]


PERMISSION_CATALOG: list[Permission] = [
    *_module_permissions("user"),
    *_module_permissions("role"),
    # Guards the company settings endpoints, which are served outside RoleGate;
    # nothing in this package checks it.
    Permission(name="company_setting_edit", label="Edit", module="company_setting"),
    *_module_permissions("category"),
    *_module_permissions("product"),
    *_module_permissions("review"),
    *_module_permissions("order", actions=(("manage", "Manage"), ("view", "View"))),
]


def seed_permissions(store: PermissionStore) -> int:
    """Insert missing catalog entries. Returns the number inserted."""
    return store.insert_missing(PERMISSION_CATALOG)


def seed_admin(store: UserStore, email: str, password: str, admin_type: str) -> User | None:
    """Create the elevated account. Returns None if one already exists."""
    if store.get_first_by_type(admin_type) is not None:
        return None
    admin = User(email=email, type=admin_type, hashed_password=hash_password(password))
    admin.id = store.create_user(admin)
    return admin


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Seed the RoleGate database.")
    parser.add_argument("--database-url", default=settings.database_url, help="SQLAlchemy database URL")
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("permissions", help="insert the built-in permission catalog")
    admin_cmd = commands.add_parser("admin", help="create the first elevated account")
    admin_cmd.add_argument("--email", required=True)
    admin_cmd.add_argument("--password", required=True)
    args = parser.parse_args(argv)

    engine = create_db_engine(args.database_url)
    try:
        if args.command == "permissions":
            inserted = seed_permissions(PermissionStore(engine))
            if inserted:
                print(f"  {inserted} new permissions inserted")
            print("  Permissions: seeding completed")
            return 0

        if len(args.password) < 8:
            print("  [!] Password must be at least 8 characters long.")
            return 1
        admin = seed_admin(UserStore(engine), args.email, args.password, settings.elevated_user_type)
        if admin is None:
            print(f"  {settings.elevated_user_type} account already exists -- nothing to do")
        else:
            print(f"  {settings.elevated_user_type} account created: {admin.email}")
        return 0
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
