"""
Manuflix Checkout - FastAPI Application
Plans, PIX checkout sessions, provider webhook and subscription access
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from manuflix.api.routes import checkout, health, plans, subscriptions, webhooks
from manuflix.config import Settings, get_settings
from manuflix.database import build_engine, build_session_factory, init_db
from manuflix.integrations.pushinpay import PushinPayClient
from manuflix.models import now_utc
from manuflix.services.checkout import CheckoutSessionManager, PaymentProvider
from manuflix.services.payment_confirmation import PaymentConfirmationService
from manuflix.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Starting Manuflix Checkout API...")

    try:
        inserted = init_db(app.state.engine, app.state.session_factory)
        logger.info("Database initialized (%s plans seeded)", inserted)
    except Exception as e:
        logger.error("Database initialization failed: %s", e)

    logger.info("API running on %s environment", app.state.settings.app_env)
    app.state.checkout_sessions.start()
    yield
    # Open modals must not leave pollers running past shutdown.
    await app.state.checkout_sessions.close_all()
    logger.info("Shutting down Manuflix Checkout API...")


def create_app(
    settings: Optional[Settings] = None,
    *,
    engine: Optional[Engine] = None,
    provider: Optional[PaymentProvider] = None,
    clock: Callable[[], datetime] = now_utc,
) -> FastAPI:
    settings = settings or get_settings()
    engine = engine or build_engine(settings.database_url)
    session_factory = build_session_factory(engine)
    store = SubscriptionStore(session_factory)
    confirmation = PaymentConfirmationService(store)
    provider = provider or PushinPayClient(settings.pix_provider_config())

    app = FastAPI(
        title=settings.app_name,
        description="Checkout backend for Manuflix subscriptions",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.store = store
    app.state.confirmation = confirmation
    app.state.provider = provider
    app.state.checkout_sessions = CheckoutSessionManager(
        provider, store, confirmation, settings.checkout_timings(), clock
    )

    # Respect Railway/Proxy forwarded proto/host so redirects don't downgrade to http.
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root() -> dict:
        return {
            "name": settings.app_name,
            "environment": settings.app_env,
            "timestamp": now_utc().isoformat(),
        }

    prefix = settings.api_v1_prefix
    app.include_router(health.router, prefix=prefix, tags=["Health"])
    app.include_router(plans.router, prefix=f"{prefix}/plans", tags=["Plans"])
    app.include_router(checkout.router, prefix=f"{prefix}/checkout", tags=["Checkout"])
    app.include_router(webhooks.router, prefix=f"{prefix}/webhooks", tags=["Webhooks"])
    app.include_router(subscriptions.router, prefix=f"{prefix}/subscriptions", tags=["Subscriptions"])
    return app


app = create_app()
