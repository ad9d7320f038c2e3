#!/usr/bin/env python3
"""
AuthBridge -- operator CLI for the legacy-to-hosted identity migration.

Usage:
  python main.py seed-user ada@example.com --password s3cret
  python main.py set-attribute ada@example.com "likes tea"
  python main.py migrate ada@example.com
  python main.py sign-in ada@example.com s3cret

Commands:
  seed-user      create a legacy user (password optional; passwordless users
                 are migrated without a password digest)
  set-attribute  set the special attribute shown on the home page
  migrate        provision one legacy user in the hosted provider now instead
                 of waiting for their next request; never migrates in bulk
  sign-in        sign in through the hosted frontend API with the
                 retry-on-provisioning interceptor installed, exactly as a
                 browser client would

Settings come from the environment or .env (see core/config.py). migrate needs
HOSTED_SECRET_KEY; sign-in needs HOSTED_FRONTEND_API_URL and a running
AuthBridge server at APP_BASE_URL for the provisioning endpoint.
"""

import argparse
import asyncio
import getpass
import sys
from typing import Optional

import httpx

from auth.store import LegacyUserStore
from auth.tokens import hash_password
from core.config import get_settings
from frontend.interceptor import JitProvisioner, RetryOnProvisioningInterceptor
from frontend.signin import HostedSignInClient, SignInError
from identity.client import HostedIdentityClient
from identity.models import HostedSession
from migration.provisioning import ensure_hosted_user


def _open_store() -> LegacyUserStore:
    return LegacyUserStore(get_settings().database_url)


def seed_user(email: str, password: Optional[str]) -> int:
    store = _open_store()
    try:
        if store.get_by_email(email) is not None:
            print(f"  [!] Legacy user '{email}' already exists.")
            return 1
        user_id = store.create_user(email, hash_password(password) if password else None)
    finally:
        store.close()
    print(f"  Created legacy user {user_id} ({email}).")
    return 0


def set_attribute(email: str, value: str) -> int:
    store = _open_store()
    try:
        user = store.get_by_email(email)
        if user is None:
            print(f"  [!] No legacy user '{email}'.")
            return 1
        store.set_attribute(str(user.id), value)
    finally:
        store.close()
    print(f"  Attribute set for legacy user {user.id}.")
    return 0


def migrate(email: str) -> int:
    """Provision a single legacy user in the hosted provider."""
    store = _open_store()
    identity = HostedIdentityClient()
    try:
        result = ensure_hosted_user(email, store, identity)
    finally:
        identity.close()
        store.close()
    if not result.ok:
        print(f"  [!] {email}: {result.status.value} ({result.reason})")
        return 1
    print(f"  {email}: {result.status.value} -> hosted user {result.hosted_user.id}")
    return 0


async def _sign_in(email: str, password: str) -> HostedSession:
    settings = get_settings()
    client = HostedSignInClient(settings.hosted_frontend_api_url, timeout_seconds=settings.http_timeout_seconds)
    interceptor = RetryOnProvisioningInterceptor(
        JitProvisioner(settings.provision_endpoint_url, timeout_seconds=settings.http_timeout_seconds)
    )
    with interceptor.install(client):
        return await client.sign_in_with_password(email, password)


def sign_in(email: str, password: Optional[str]) -> int:
    if not get_settings().hosted_frontend_api_url:
        print("  [!] HOSTED_FRONTEND_API_URL is not set.")
        return 1
    if password is None:
        password = getpass.getpass("Password: ")
    try:
        session = asyncio.run(_sign_in(email, password))
    except SignInError as e:
        print(f"  [!] Sign-in failed: {e} (status={e.status_code}, code={e.code})")
        return 1
    except httpx.HTTPError as e:
        print(f"  [!] Hosted frontend API unreachable: {e}")
        return 1
    print(f"  Signed in as hosted user {session.user_id} (session {session.session_id}).")
    if session.external_id:
        print(f"  Linked legacy user: {session.external_id}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="authbridge",
        description="Operator commands for the AuthBridge legacy-to-hosted identity migration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed-user ada@example.com --password s3cret
  python main.py set-attribute ada@example.com "likes tea"
  python main.py migrate ada@example.com
  python main.py sign-in ada@example.com
        """,
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = commands.add_parser("seed-user", help="Create a legacy email/password user")
    p.add_argument("email", metavar="EMAIL")
    p.add_argument("--password", metavar="PASSWORD", help="Plain-text password, bcrypt-hashed before storage")

    p = commands.add_parser("set-attribute", help="Set a legacy user's special attribute")
    p.add_argument("email", metavar="EMAIL")
    p.add_argument("value", metavar="VALUE")

    p = commands.add_parser("migrate", help="Provision one legacy user in the hosted provider")
    p.add_argument("email", metavar="EMAIL")

    p = commands.add_parser("sign-in", help="Sign in through the hosted frontend API")
    p.add_argument("email", metavar="EMAIL")
    p.add_argument("password", metavar="PASSWORD", nargs="?", help="Prompted for when omitted")

    args = parser.parse_args(argv)

    if args.command == "seed-user":
        return seed_user(args.email.strip(), args.password)
    if args.command == "set-attribute":
        return set_attribute(args.email.strip(), args.value)
    if args.command == "migrate":
        return migrate(args.email.strip())
    if args.command == "sign-in":
        return sign_in(args.email.strip(), args.password)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
