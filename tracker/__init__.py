from __future__ import annotations

import logging

from fastapi import FastAPI

from tracker.config import Settings, settings as default_settings
from tracker.db import init_db
from tracker.routes import portfolio
from tracker.services.pricing import PricingService, UnavailableProvider


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    pricing_service: PricingService | None = None,
    enable_startup_init: bool = True,
    settings: Settings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app_settings = settings or default_settings
    configure_logging(app_settings.log_level)

    app = FastAPI(title=app_settings.app_name)
    app.state.settings = app_settings
    app.state.pricing_service = pricing_service or PricingService(
        provider=UnavailableProvider(), ttl_seconds=app_settings.price_ttl_seconds
    )

    app.include_router(portfolio.router)

    if enable_startup_init:

        @app.on_event("startup")
        def startup() -> None:
            init_db()

    return app
