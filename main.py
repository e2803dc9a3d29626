#!/usr/bin/env python3
"""
Pulse -- team and task backend with per-team access control.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py token --subject idp-42 --email ada@example.com --name "Ada"
  python main.py whoami <TOKEN>

Environment variables:
  SECRET_KEY          Signing key for local-mode tokens (32+ chars). Required
                      unless DEBUG=true.
  IDENTITY_PROVIDER   "local" (default) or "jwks".
  DATABASE_URL        SQLAlchemy URL. Default sqlite:///pulse.db
"""

import argparse
import sys

from auth.resolver import IdentityResolver
from auth.store import UserStore
from auth.tokens import create_identity_token
from auth.verifier import verifier_from_settings
from core.config import get_settings
from core.errors import AccessControlError


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _cmd_token(args: argparse.Namespace) -> int:
    """Mint a local-mode identity token. Only useful with IDENTITY_PROVIDER=local."""
    if get_settings().identity_provider != "local":
        print("  [!] Tokens can only be minted with IDENTITY_PROVIDER=local.", file=sys.stderr)
        return 1
    print(
        create_identity_token(
            args.subject,
            email=args.email,
            display_name=args.name,
            expire_seconds=args.expires,
        )
    )
    return 0


def _cmd_whoami(args: argparse.Namespace) -> int:
    """Verify a token and resolve it against the configured database.

    Resolution provisions or links the account exactly as a request would.
    """
    settings = get_settings()
    store = UserStore(settings.database_url)
    resolver = IdentityResolver(verifier_from_settings(settings), store, settings.placeholder_email_domain)
    try:
        user = resolver.resolve_identity(args.token)
    except AccessControlError as exc:
        print(f"  [!] {exc.code}: {exc.message}", file=sys.stderr)
        return 1
    finally:
        store.close()

    print(f"  User ID:      {user.id}")
    print(f"  Subject:      {user.subject}")
    print(f"  Email:        {user.email}")
    print(f"  Display name: {user.display_name or '-'}")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="pulse",
        description="Team and task backend with per-team access control.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --port 8080
  python main.py token --subject idp-42 --email ada@example.com
  TOKEN=$(python main.py token --subject idp-42) && python main.py whoami "$TOKEN"
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes")
    serve.set_defaults(func=_cmd_serve)

    token = sub.add_parser("token", help="Mint a local-mode identity token")
    token.add_argument("--subject", required=True, help="Identity provider subject (sub claim)")
    token.add_argument("--email", default=None, help="Verified email address")
    token.add_argument("--name", default=None, help="Display name")
    token.add_argument(
        "--expires",
        type=int,
        default=3600,
        metavar="SECONDS",
        help="Lifetime in seconds (default: 3600)",
    )
    token.set_defaults(func=_cmd_token)

    whoami = sub.add_parser("whoami", help="Verify a token and show the account it resolves to")
    whoami.add_argument("token", metavar="TOKEN", help="Bearer token to resolve")
    whoami.set_defaults(func=_cmd_whoami)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
