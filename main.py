#!/usr/bin/env python3
"""
Authenticator admin console -- manage accounts without going through the API.

Talks to the same database and directory as the API server, using the same
Settings (environment variables and .env). Directory provisioning follows
AD_CREATE_USERS exactly as the admin API does.

Usage:
  python main.py create-user --name "Ann Lee" --email ann@example.com --role admin
  python main.py list-users
  python main.py set-role ann@example.com superadmin
  python main.py delete-user ann@example.com
  python main.py reset-password ann@example.com
  python main.py directory-check ann@example.com

Exit status is 0 on success and 1 on any failure.
"""

import argparse
import asyncio
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import ROLE_USER, ROLES, User
from auth.store import UserStore
from auth.tokens import MAX_PASSWORD_BYTES, hash_password, password_too_long
from core.config import Settings, get_settings
from directory import build_directory
from directory.provisioner import DirectoryProvisioner, ProvisioningOutcome


def _password_ok(settings: Settings, password: str) -> bool:
    if len(password) < settings.min_password_length:
        print(f"  [!] Password must be at least {settings.min_password_length} characters.")
        return False
    if password_too_long(password):
        print(f"  [!] Password must be at most {MAX_PASSWORD_BYTES} bytes.")
        return False
    return True


def _read_password(args, settings: Settings) -> Optional[str]:
    """--password if given, else read twice from the terminal. None if they differ or fail the length policy."""
    if args.password:
        password = args.password
    else:
        password = getpass.getpass("  Password: ")
        if getpass.getpass("  Confirm password: ") != password:
            print("  [!] Passwords do not match.")
            return None
    return password if _password_ok(settings, password) else None


def _report(outcome: ProvisioningOutcome) -> None:
    if outcome.status == "skipped":
        return
    line = f"  Directory: {outcome.status}"
    if outcome.reason:
        line += f" ({outcome.reason})"
    print(line)


# ---------------------------------------------------------------------------
# Sub-commands. Each returns the process exit status.
# ---------------------------------------------------------------------------


def cmd_create_user(args, settings: Settings, store: UserStore, provisioner: DirectoryProvisioner) -> int:
    password = _read_password(args, settings)
    if password is None:
        return 1
    email = args.email.strip()
    try:
        user_id = store.create_user(
            User(
                name=args.name.strip(),
                email=email,
                password_hash=hash_password(password, settings.bcrypt_salt_rounds),
                role=args.role,
            )
        )
    except IntegrityError:
        print(f"  [!] A user with email '{email}' already exists.")
        return 1
    print(f"  Created user {email} (id={user_id}, role={args.role}).")
    _report(asyncio.run(provisioner.create_account(args.name.strip(), email, password)))
    return 0


def cmd_list_users(args, settings: Settings, store: UserStore, provisioner: DirectoryProvisioner) -> int:
    users = store.list_users()
    if not users:
        print("  No users.")
        return 0
    print(f"  {'ID':>4}  {'ROLE':<11} {'SOURCE':<9} {'EMAIL':<35} NAME")
    for u in users:
        source = "directory" if u.is_directory_managed else "local"
        print(f"  {u.id:>4}  {u.role:<11} {source:<9} {u.email:<35} {u.name}")
    print(f"\n  {len(users)} user(s).")
    return 0


def cmd_set_role(args, settings: Settings, store: UserStore, provisioner: DirectoryProvisioner) -> int:
    user = store.get_by_email(args.email.strip())
    if user is None:
        print(f"  [!] No user with email '{args.email}'.")
        return 1
    store.update_user(user.id, role=args.role)
    print(f"  {user.email}: {user.role} -> {args.role}")
    return 0


def cmd_delete_user(args, settings: Settings, store: UserStore, provisioner: DirectoryProvisioner) -> int:
    user = store.get_by_email(args.email.strip())
    if user is None:
        print(f"  [!] No user with email '{args.email}'.")
        return 1
    store.delete_user(user.id)
    print(f"  Deleted {user.email} (id={user.id}).")
    _report(asyncio.run(provisioner.delete_account(user.email)))
    return 0


def cmd_reset_password(args, settings: Settings, store: UserStore, provisioner: DirectoryProvisioner) -> int:
    user = store.get_by_email(args.email.strip())
    if user is None:
        print(f"  [!] No user with email '{args.email}'.")
        return 1
    if user.is_directory_managed and not provisioner.enabled:
        print("  [!] Account is directory-managed and directory provisioning is disabled.")
        return 1
    password = _read_password(args, settings)
    if password is None:
        return 1
    if not user.is_directory_managed:
        store.set_password(user.id, hash_password(password, settings.bcrypt_salt_rounds))
        print(f"  Password reset for {user.email}.")
    outcome = asyncio.run(provisioner.reset_password(user.email, password))
    _report(outcome)
    # For a directory-managed account the directory reset is the whole operation.
    if user.is_directory_managed and not outcome.ok:
        return 1
    return 0


def cmd_directory_check(args, settings: Settings, store: UserStore, provisioner: DirectoryProvisioner) -> int:
    email = args.email.strip()
    if asyncio.run(provisioner.account_exists(email)):
        print(f"  {email} exists in the directory.")
        return 0
    print(f"  {email} was not found in the directory (or the directory is unreachable).")
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authenticator",
        description="Authenticator account administration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --name "Ann Lee" --email ann@example.com --role admin
  python main.py set-role ann@example.com superadmin
  AD_CREATE_USERS=true python main.py create-user --name Bob --email bob@example.com
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    p = sub.add_parser("create-user", help="Create a local account (and its directory account if enabled)")
    p.add_argument("--name", required=True)
    p.add_argument("--email", required=True)
    p.add_argument("--role", choices=ROLES, default=ROLE_USER)
    p.add_argument("--password", help="Initial password (prompted for when omitted)")
    p.set_defaults(handler=cmd_create_user)

    p = sub.add_parser("list-users", help="List all accounts")
    p.set_defaults(handler=cmd_list_users)

    p = sub.add_parser("set-role", help="Change an account's role")
    p.add_argument("email")
    p.add_argument("role", choices=ROLES)
    p.set_defaults(handler=cmd_set_role)

    p = sub.add_parser("delete-user", help="Delete an account (and its directory account if enabled)")
    p.add_argument("email")
    p.set_defaults(handler=cmd_delete_user)

    p = sub.add_parser("reset-password", help="Set a new password for an account")
    p.add_argument("email")
    p.add_argument("--password", help="New password (prompted for when omitted)")
    p.set_defaults(handler=cmd_reset_password)

    p = sub.add_parser("directory-check", help="Report whether the directory has an account for EMAIL")
    p.add_argument("email")
    p.set_defaults(handler=cmd_directory_check)

    return parser


def main(argv: Optional[list[str]] = None, settings: Optional[Settings] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings or get_settings()
    store = UserStore(settings.database_url)
    provisioner = DirectoryProvisioner(settings, build_directory(settings))
    try:
        return args.handler(args, settings, store, provisioner)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
