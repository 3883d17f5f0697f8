#!/usr/bin/env python3
"""
NoPass -- Personal vault for encrypted passwords and payment cards.

Usage:
  python main.py keygen
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8000
  python main.py serve --reload

Environment variables (see core/config.py for the full list):
  SECRET_KEY      Signs session/bearer tokens and the OAuth state cookie. >= 32 chars.
  ENCRYPTION_KEY  64 hex chars. Encrypts every stored secret. Changing it makes
                  existing records unreadable.
  DEBUG=true      Development mode: missing keys are generated per process.
"""

import argparse
import secrets

from core.crypto import generate_key


def _keygen() -> None:
    """Print a fresh ENCRYPTION_KEY and SECRET_KEY in .env format.

    Does not load Settings, so it works before any key is configured.
    """
    print(f"ENCRYPTION_KEY={generate_key()}")
    print(f"SECRET_KEY={secrets.token_urlsafe(48)}")


def _serve(host: str, port: int, reload: bool) -> None:
    import uvicorn

    uvicorn.run("api.main:app", host=host, port=port, reload=reload, proxy_headers=True)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="nopass",
        description="NoPass vault API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py keygen >> .env
  DEBUG=true python main.py serve --reload
        """,
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("keygen", help="Print a new ENCRYPTION_KEY and SECRET_KEY")

    serve = sub.add_parser("serve", help="Run the API server with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development)")

    args = parser.parse_args()

    if args.command == "keygen":
        _keygen()
    elif args.command == "serve":
        _serve(args.host, args.port, args.reload)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
