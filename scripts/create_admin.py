import argparse
import asyncio
import getpass
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from guestbook.auth import PASSWORD_MIN_LENGTH, AuthFlowError, AuthManager
from guestbook.config import load_settings
from guestbook.identity import IdentityProvider
from guestbook.realtime import RealtimeDatabase


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create the first guestbook administrator")
    parser.add_argument("email", help="Email address for the administrator login")
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to the YAML configuration (defaults to GUESTBOOK_CONFIG or config/guestbook.yaml)",
    )
    return parser.parse_args()


def read_password(attempts: int = 3) -> str:
    """Ask for the administrator password twice, enforcing the provider minimum."""

    remaining = attempts
    while remaining:
        remaining -= 1
        first = getpass.getpass("Administrator password: ")
        if len(first) < PASSWORD_MIN_LENGTH:
            print(f"Use at least {PASSWORD_MIN_LENGTH} characters.", file=sys.stderr)
        elif first == getpass.getpass("Type it again: "):
            return first
        else:
            print("The two passwords differ.", file=sys.stderr)
    raise SystemExit(f"No usable password after {attempts} attempts.")


async def create_admin(settings, email: str, password: str) -> int:
    firebase = settings.firebase
    store = RealtimeDatabase(firebase.database_url, auth=firebase.database_auth)
    identity = IdentityProvider(firebase.api_key)
    auth = AuthManager(identity, store, users_path=firebase.users_path, locale=settings.locale)
    try:
        outcome = await auth.create_first_admin(email, password, password)
    except AuthFlowError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    finally:
        await identity.aclose()
        await store.aclose()

    for warning in outcome.warnings:
        print(f"Warning: {warning}", file=sys.stderr)
    for notice in outcome.notices:
        print(notice)
    return 0


def main() -> int:
    args = parse_args()
    settings = load_settings(Path(args.config_path) if args.config_path else None)
    if not settings.firebase.configured:
        print(
            "Error: GUESTBOOK_FIREBASE_API_KEY and GUESTBOOK_DATABASE_URL must be configured.",
            file=sys.stderr,
        )
        return 1

    password = read_password()
    return asyncio.run(create_admin(settings, args.email.strip(), password))


if __name__ == "__main__":
    raise SystemExit(main())
