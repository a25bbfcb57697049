"""Identity Broker Service

Main FastAPI application entry point. The broker is built in the lifespan
from settings and stored on ``app.state.broker``.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from identity_broker.api.routes import build_router
from identity_broker.config.settings import BrokerConfig, Settings, get_settings
from identity_broker.core.auth import RedisStateStore
from identity_broker.core.auth.local import CredentialVerifier
from identity_broker.infrastructure.redis import RedisClient
from identity_broker.infrastructure.storage import create_storage
from identity_broker.services import IdentityBroker

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    verifier: Optional[CredentialVerifier] = None,
) -> FastAPI:
    """Create the FastAPI application

    Args:
        settings: Settings to use (environment settings if None)
        verifier: Credential verifier for local strategies

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events"""
        logger.info(f"Starting {settings.service_name} v{settings.service_version}")
        logger.info(f"Environment: {settings.environment}")

        # Shared OAuth state store (per-strategy in-memory otherwise)
        redis_client = None
        state_store = None
        if settings.redis_url:
            redis_client = RedisClient(settings.redis_url)
            try:
                await redis_client.connect()
            except Exception as e:
                logger.error(f"Failed to connect to Redis: {e}")
                raise
            state_store = RedisStateStore(redis_client.get_client())

        storage = create_storage(
            settings.database_url,
            create_schema=settings.database_migrate,
            echo=settings.db_echo,
        )
        if storage is None:
            logger.warning("No DATABASE_URL configured: sessions and linking are disabled")

        broker = IdentityBroker(
            BrokerConfig.from_settings(settings),
            storage=storage,
            verifier=verifier,
            state_store=state_store,
        )
        await broker.init()
        app.state.broker = broker
        app.state.redis_client = redis_client

        yield

        # Shutdown
        logger.info("Shutting down Identity Broker")
        await broker.close()
        if redis_client is not None:
            await redis_client.disconnect()

    app = FastAPI(
        title="Identity Broker",
        version=settings.service_version,
        description="Multi-strategy authentication with account linking",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(build_router(cookie_secure=settings.session_cookie_secure))

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        broker: Optional[IdentityBroker] = getattr(app.state, "broker", None)
        redis_client: Optional[RedisClient] = getattr(app.state, "redis_client", None)
        return {
            "status": "healthy",
            "service": settings.service_name,
            "version": settings.service_version,
            "environment": settings.environment,
            "strategies": sorted(broker.strategies) if broker else [],
            "database": broker.database_enabled if broker else False,
            "redis": await redis_client.health_check() if redis_client else None,
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """Global exception handler for unhandled errors"""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
            },
        )

    return app


# Configure logging
_settings = get_settings()
logging.basicConfig(
    level=_settings.log_level.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

app = create_app(_settings)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "identity_broker.main:app",
        host=_settings.host,
        port=_settings.port,
        reload=_settings.debug,
        log_level=_settings.log_level.lower(),
    )
