"""FastAPI application factory for the Power Switch dashboard."""

from __future__ import annotations

from fastapi import FastAPI, Request

from power_switch import __version__
from power_switch.config.manager import ConfigManager
from power_switch.config.schema import AppConfig
from power_switch.session import DashboardSession


def create_app(
    config: AppConfig,
    session: DashboardSession,
    config_manager: ConfigManager | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Power Switch",
        description="Solar / battery / grid source selection for a remote installation",
        version=__version__,
    )

    @app.middleware("http")
    async def disable_browser_cache(request: Request, call_next):
        response = await call_next(request)
        if request.method in {"GET", "HEAD"}:
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
            response.headers["Pragma"] = "no-cache"
            response.headers["Expires"] = "0"
        return response

    app.state.config = config
    app.state.session = session
    app.state.config_manager = config_manager

    from power_switch.dashboard.routes.api import router as api_router
    from power_switch.dashboard.routes.sse import router as sse_router

    app.include_router(api_router, prefix="/api")
    app.include_router(sse_router, prefix="/api")

    return app
