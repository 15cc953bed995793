"""
FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.config import get_settings

# Sentry initialization (must be before app creation)
settings_early = get_settings()
if settings_early.sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
    from sentry_sdk.integrations.celery import CeleryIntegration

    sentry_sdk.init(
        dsn=settings_early.sentry_dsn,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
            CeleryIntegration(),
        ],
        traces_sample_rate=0.1,
        environment="production" if not settings_early.debug else "development",
    )
from app.api.errors import register_error_handlers
from app.api.routes import cards as cards_routes
from app.api.routes import payments as payments_routes
from app.api.routes import webhook as webhook_routes
from app.database import async_session_maker, engine

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Stripe billing service...")
    logger.info(f"Debug mode: {settings.debug}")
    if not settings.stripe_webhook_secret:
        logger.warning("STRIPE_WEBHOOK_SECRET is not set: all webhook deliveries will be rejected")

    # Test database connection
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection established")
    except Exception as e:
        logger.error(f"Database connection failed: {e}")

    yield

    logger.info("Shutting down Stripe billing service...")
    await engine.dispose()


tags_metadata = [
    {
        "name": "payments",
        "description": "Subscription creation, status lookups, cancellation and catch-up sync.",
    },
    {
        "name": "cards",
        "description": "Saved card management for a user's Stripe customer.",
    },
]

app = FastAPI(
    title="Stripe Billing Service",
    description="""
## Stripe billing bridge

- **Subscriptions** - PaymentSheet sessions, subscription creation, status and cancellation
- **Cards** - Saved payment methods of a user's Stripe customer
- **Webhooks** - Stripe events reconciled into the `subscriptions` and `payments` tables
- **Sync** - Catch-up reconciliation for missed webhook deliveries
    """,
    version="0.1.0",
    lifespan=lifespan,
    openapi_tags=tags_metadata,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)


@app.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status information
    """
    db_status = "unknown"

    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
            db_status = "healthy"
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Health check - DB error: {e}")

    return {
        "status": "ok",
        "service": "stripe-payment",
        "database": db_status,
    }


# Include routers
app.include_router(payments_routes.router, prefix="/api")
app.include_router(cards_routes.router, prefix="/api")
app.include_router(webhook_routes.router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Stripe billing service",
        "docs": "/docs",
        "health": "/health",
    }
