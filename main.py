"""Command-line entry point for running and provisioning the guestbook."""

from __future__ import annotations
import argparse
import asyncio
import logging
import sys
from getpass import getpass
from pathlib import Path
from typing import Sequence

from guestbook.auth import PASSWORD_MIN_LENGTH, AuthManager
from guestbook.config import Settings, load_settings

logger = logging.getLogger("guestbook.main")

COMMANDS = ("serve", "bootstrap-admin")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run or provision the guestbook service")
    parser.add_argument(
        "--config",
        default=None,
        help="YAML configuration file (default: GUESTBOOK_CONFIG or config/guestbook.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=("debug", "info", "warning", "error"),
        help="Logging verbosity (default: info)",
    )
    parser.set_defaults(command="serve")
    commands = parser.add_subparsers(dest="command")

    serve = commands.add_parser("serve", help="Serve the guestbook over HTTP")
    serve.add_argument("--host", default="0.0.0.0", help="Interface to listen on")
    serve.add_argument("--port", type=int, default=8000, help="TCP port to listen on (default: 8000)")
    serve.add_argument("--ssl-certfile", default=None, help="PEM certificate chain for HTTPS")
    serve.add_argument("--ssl-keyfile", default=None, help="PEM private key for HTTPS")

    bootstrap = commands.add_parser(
        "bootstrap-admin",
        help="Create the default administrator unless one already exists",
    )
    bootstrap.add_argument(
        "--email",
        default=None,
        help="Administrator email (default: admin_bootstrap.email from the configuration)",
    )
    return parser


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = _build_parser()
    args = list(sys.argv[1:] if argv is None else argv)

    # Bare options belong to the implicit "serve" command.
    wants_help = any(flag in args for flag in ("-h", "--help"))
    if not any(arg in COMMANDS for arg in args) and not wants_help:
        leading = []
        while args and args[0] in ("--config", "--log-level"):
            leading.extend(args[:2])
            args = args[2:]
        args = [*leading, "serve", *args]
    return parser.parse_args(args)


def _serve(settings: Settings, args: argparse.Namespace) -> None:
    import uvicorn

    from guestbook.service import create_app

    if bool(args.ssl_certfile) != bool(args.ssl_keyfile):
        raise SystemExit("--ssl-certfile and --ssl-keyfile must be given together.")

    try:
        app = create_app(settings=settings)
    except RuntimeError as exc:
        raise SystemExit(str(exc)) from exc

    scheme = "https" if args.ssl_certfile else "http"
    logger.info("Serving guestbook on %s://%s:%s", scheme, args.host, args.port)
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        ssl_certfile=args.ssl_certfile,
        ssl_keyfile=args.ssl_keyfile,
    )


def _ask_password() -> str | None:
    for _ in range(3):
        password = getpass(f"Administrator password (at least {PASSWORD_MIN_LENGTH} characters): ")
        if len(password) < PASSWORD_MIN_LENGTH:
            print("That password is too short.")
        elif getpass("Repeat password: ") != password:
            print("The passwords differ.")
        else:
            return password
    return None


async def _bootstrap_admin(settings: Settings, email: str, password: str) -> bool:
    from guestbook.identity import IdentityProvider
    from guestbook.realtime import RealtimeDatabase

    firebase = settings.firebase
    if not firebase.configured:
        raise SystemExit("GUESTBOOK_FIREBASE_API_KEY and GUESTBOOK_DATABASE_URL must be configured.")

    store = RealtimeDatabase(firebase.database_url, auth=firebase.database_auth)
    identity = IdentityProvider(firebase.api_key)
    try:
        auth = AuthManager(identity, store, users_path=firebase.users_path, locale=settings.locale)
        return await auth.ensure_default_admin(email, password)
    finally:
        await identity.aclose()
        await store.aclose()


def _run_bootstrap(settings: Settings, args: argparse.Namespace) -> None:
    email = args.email or settings.admin_bootstrap.email
    password = settings.admin_bootstrap.password or _ask_password()
    if password is None:
        raise SystemExit("No administrator password was provided.")
    if asyncio.run(_bootstrap_admin(settings, email, password)):
        print(f"Administrator {email} created.")
    else:
        print("No administrator was created; see the log for the reason.")


def main(argv: Sequence[str] | None = None) -> None:
    args = _parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT)

    try:
        settings = load_settings(Path(args.config) if args.config else None)
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc

    if args.command == "bootstrap-admin":
        _run_bootstrap(settings, args)
    else:
        _serve(settings, args)


if __name__ == "__main__":
    main()
