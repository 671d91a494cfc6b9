#!/usr/bin/env python3
"""
Secrets -- share secrets anonymously behind local or OAuth login.

Usage:
  python main.py                       # listen on HOST:PORT from settings (default 127.0.0.1:3000)
  python main.py --port 8080
  python main.py --host 0.0.0.0 --reload

Environment variables (or .env):
  SECRET_KEY            Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL          SQLAlchemy URL. Default sqlite:///./secrets.db
  PORT                  Listening port. Default 3000.
  GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET   Enable Google login.
  FACEBOOK_APP_ID / FACEBOOK_APP_SECRET     Enable Facebook login.
"""

import argparse
import sys

import uvicorn
from pydantic import ValidationError

from core.config import get_settings


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="secrets-app",
        description="Run the Secrets web server.",
    )
    parser.add_argument("--host", help="Interface to bind (overrides HOST)")
    parser.add_argument("--port", type=int, help="Port to listen on (overrides PORT)")
    parser.add_argument("--reload", action="store_true", help="Restart on code changes (development)")
    args = parser.parse_args()

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"  [!] Invalid configuration:\n{e}", file=sys.stderr)
        return 2

    host = args.host or settings.host
    port = args.port or settings.port
    print(f"  Server starting on http://{host}:{port}")
    uvicorn.run("asgi:build_app", factory=True, host=host, port=port, reload=args.reload)
    return 0


if __name__ == "__main__":
    sys.exit(main())
