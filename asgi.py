"""
asgi.py -- Application assembly for the Secrets app.

This is the ONLY module that imports from both api/ and web/. api/main.py
builds the bare app (middleware, lifespan, health); web.routes.install()
mounts the HTML UI on it.

Run with:  uvicorn asgi:build_app --factory --port 3000
           python main.py
"""

from __future__ import annotations

from fastapi import FastAPI

from api.context import AppContext
from api.main import create_app
from core.config import Settings
from web import routes as web


def build_app(settings: Settings | None = None, context: AppContext | None = None) -> FastAPI:
    """Return the fully assembled ASGI app (API + web UI)."""
    app = create_app(settings, context)
    web.install(app)
    return app
