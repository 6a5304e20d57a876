"""
FastAPI application entry point for the gallery backend.
"""

from __future__ import annotations

from fastapi import FastAPI

from gallery.config import get_settings
from gallery.nav_routes import router as nav_router
from gallery.routes import router
from gallery.sessions import NavigatorRegistry


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Wallpaper Gallery API", version="0.1.0")
    # Each app owns its navigators; nothing is shared between instances.
    app.state.navigators = NavigatorRegistry(max_sessions=settings.nav_max_sessions)
    app.include_router(router, prefix=settings.api_prefix)
    app.include_router(nav_router, prefix=settings.api_prefix)
    return app


app = create_app()
