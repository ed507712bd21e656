"""
Application factory.

Builds every client and component explicitly, hands them to the routers,
and ties their lifetime to the FastAPI lifespan: the sweeper starts with
the app, and the pools close when it shuts down.

Run with:
    uvicorn api.app:create_production_app --factory
"""

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI, Request

from auth.api import create_auth_router, create_profile_router
from auth.broker import AuthRequestBroker
from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.passwords import PasswordHasher
from auth.profile import ProfileService
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityLogger
from auth.security_middleware import AuthMiddleware
from auth.service import AuthService
from auth.session import SessionDenylist, SessionIssuer
from auth.sweeper import ExpirySweeper
from auth.tokens import TokenService
from auth.verifier import CredentialVerifier
from api.base import json_error, request_id_of, success_response, ErrorCodes
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.vault_client import (
    get_database_url,
    get_email_config,
    get_session_secret,
    get_valkey_url,
)

logger = logging.getLogger(__name__)


@dataclass
class AppComponents:
    """Everything the app needs, built once and closed once."""

    config: AuthConfig
    postgres: PostgresClient
    valkey: ValkeyClient
    auth_service: AuthService
    session_issuer: SessionIssuer
    sweeper: ExpirySweeper | None = None
    email_client: EmailGatewayClient | None = None

    def close(self) -> None:
        if self.sweeper is not None:
            self.sweeper.stop()
        if self.email_client is not None:
            self.email_client.close()
        self.valkey.close()
        self.postgres.close()


def build_components(
    config: AuthConfig,
    postgres: PostgresClient,
    valkey: ValkeyClient,
    email_client: EmailGatewayClient,
    session_secret: str,
    apply_schema: bool = False,
) -> AppComponents:
    """Wire components from already-open clients."""
    auth_db = AuthDatabase(postgres)
    if apply_schema:
        auth_db.apply_schema()

    tokens = TokenService(config, session_secret)
    security_logger = SecurityLogger(postgres)
    password_hasher = PasswordHasher()
    session_issuer = SessionIssuer(tokens, config)

    broker = AuthRequestBroker(config, auth_db, tokens, security_logger)
    verifier = CredentialVerifier(
        config,
        auth_db,
        tokens,
        RateLimiter(valkey, config),
        email_client,
        security_logger,
        password_hasher,
    )
    profile_service = ProfileService(config, auth_db, password_hasher, security_logger)

    auth_service = AuthService(
        broker,
        verifier,
        session_issuer,
        profile_service,
        security_logger,
        denylist=SessionDenylist(valkey),
    )

    return AppComponents(
        config=config,
        postgres=postgres,
        valkey=valkey,
        auth_service=auth_service,
        session_issuer=session_issuer,
        email_client=email_client,
        sweeper=ExpirySweeper(
            auth_db,
            config.sweep_interval_seconds,
            security_logger=security_logger,
            event_retention_days=config.security_event_retention_days,
        ),
    )


def create_app(components: AppComponents) -> FastAPI:
    """Create the FastAPI app around prebuilt components."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Alt Auth")
        if components.sweeper is not None:
            components.sweeper.start()

        yield

        logger.info("Shutting down Alt Auth")
        components.close()

    app = FastAPI(title="Alt Auth", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        AuthMiddleware,
        auth_service=components.auth_service,
        cookie_name=components.session_issuer.cookie_name,
    )
    # Added last so it wraps AuthMiddleware and tags its 401s too
    app.add_middleware(RequestIDMiddleware)

    register_error_handlers(app)

    app.include_router(
        create_auth_router(components.auth_service, components.session_issuer),
        prefix="/api/auth",
    )
    app.include_router(create_profile_router(components.auth_service), prefix="/api/profile")

    @app.get("/health")
    def health(request: Request):
        try:
            components.postgres.ping()
            components.valkey.ping()
        except Exception:
            logger.exception("Health check failed")
            return json_error(
                request, 503, ErrorCodes.SERVICE_UNAVAILABLE, "Dependencies unavailable"
            )
        return success_response({"status": "ok"}, request_id_of(request))

    return app


def create_production_app() -> FastAPI:
    """Build clients from Vault secrets and return the app."""
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = AuthConfig(
        app_base_url=os.environ.get("APP_BASE_URL", "http://localhost:3000"),
        cookie_secure=os.environ.get("COOKIE_SECURE", "true").lower() != "false",
    )
    email = get_email_config()

    components = build_components(
        config,
        PostgresClient(get_database_url()),
        ValkeyClient(get_valkey_url()),
        EmailGatewayClient(
            gateway_url=email["gateway_url"],
            api_key=email["api_key"],
            hmac_secret=email["hmac_secret"],
        ),
        get_session_secret(),
        apply_schema=True,
    )
    return create_app(components)
