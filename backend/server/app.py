"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Hold process-wide, read-only dependencies on app.state
- Register routes
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import AppConfig
from observability.logger import log_event
from server.routes import register_routes
from session.bridge import UpstreamFactory


def create_app(
    config: AppConfig | None = None,
    *,
    upstream_factory: UpstreamFactory | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    `config` defaults to the environment; `upstream_factory` defaults to the
    real Gemini Live client. Tests pass both.
    """
    config = config or AppConfig.load_from_env()

    app = FastAPI(title="Gemini Live Bridge")

    app.state.config = config
    app.state.upstream_factory = upstream_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.cors_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(app)

    log_event({
        "event_type": "APP_CREATED",
        "env": config.env,
        "gemini_bridge_enabled": config.enable_gemini_bridge,
        "gemini_model": config.gemini_model,
    })

    return app
