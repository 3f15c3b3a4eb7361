#!/usr/bin/env python3
"""
hearthgate -- invite-only account and session service.

Usage:
  python main.py
  python main.py --port 8080
  python main.py --host 0.0.0.0 --config /etc/hearthgate --data /var/lib/hearthgate
  python main.py --reload

Environment variables (see core/config.py for the full list):
  CONFIG_PATH     Directory holding keys/auth/private.pem and the initial admin password.
  DATA_PATH       Directory holding hearthgate.db.
  SECURE_COOKIES  Set to false only for plain-HTTP local development.
"""

import argparse
import os

import uvicorn


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="hearthgate",
        description="Run the hearthgate API server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py
  python main.py --host 0.0.0.0 --port 8080
  CONFIG_PATH=./config DATA_PATH=./data python main.py --reload
        """,
    )
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port to listen on (default: 8000)")
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Configuration directory; overrides CONFIG_PATH",
    )
    parser.add_argument(
        "--data",
        metavar="PATH",
        help="Data directory; overrides DATA_PATH",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="uvicorn log level (default: info)",
    )
    parser.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    args = parser.parse_args()

    # Settings are read when asgi is imported, so directory overrides go into
    # the environment first. uvicorn gets an import string for the same reason.
    if args.config:
        os.environ["CONFIG_PATH"] = args.config
    if args.data:
        os.environ["DATA_PATH"] = args.data

    uvicorn.run(
        "asgi:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
