import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from membership_api.api.routes import admin_memberships, billing, billing_webhook, health, membership
from membership_api.core import config
from membership_api.core.errors import BillingError, ValidationError
from membership_api.core.logging_config import sanitize_log_data, setup_logging
from membership_api.services.stripe_gateway import configure_stripe_http_client

setup_logging(log_level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)


app = FastAPI(title="Membership API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError):
    """Classified billing failures: public message and type only, detail stays in the log."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_type} on {request.method} {request.url.path}: {exc}", exc_info=exc.__cause__)
    else:
        logger.warning(f"{exc.error_type} on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.public_message, "error_type": exc.error_type},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies get the same {error, error_type} envelope as billing failures."""
    logger.warning(f"validation_error on {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=ValidationError.status_code,
        content={"error": ValidationError.public_message, "error_type": ValidationError.error_type},
    )


@app.on_event("startup")
def on_startup():
    if config.RUN_MIGRATIONS:
        from membership_api.db.migrate import run_migrations
        run_migrations()
    configure_stripe_http_client()
    settings = {
        "database_url": config.DATABASE_URL,
        "production_hosts": config.PRODUCTION_HOSTS,
        "stripe_secret_key_sandbox": config.STRIPE_SECRET_KEY_SANDBOX,
        "stripe_secret_key_production": config.STRIPE_SECRET_KEY_PRODUCTION,
        "status_cache_ttl_seconds": config.STATUS_CACHE_TTL_SECONDS,
        "archive_restore_days": config.ARCHIVE_RESTORE_DAYS,
        "catalog_cross_env_fallback": config.CATALOG_CROSS_ENV_FALLBACK,
    }
    logger.info(f"Membership API started: {sanitize_log_data(settings)}")


app.include_router(health.router)
app.include_router(billing.router)
app.include_router(billing_webhook.router)
app.include_router(membership.router)
app.include_router(admin_memberships.router)


@app.get("/")
def root():
    return {"status": "Membership API running"}
