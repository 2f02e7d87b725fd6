import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from leadcapture.api.admin import router as admin_router
from leadcapture.api.webhooks import router as webhooks_router
from leadcapture.core.config import settings
from leadcapture.db.deps import get_db
from leadcapture.middleware.correlation_id import CorrelationIdMiddleware

logger = logging.getLogger(__name__)


def validate_settings() -> None:
    """
    Fail fast on missing or unsafe configuration.

    Raises:
        RuntimeError: Listing every problem found
    """
    required_settings = ["database_url"]
    missing = [key for key in required_settings if not getattr(settings, key, None)]
    if missing:
        raise RuntimeError(
            f"Missing required environment variables: {', '.join(missing)}. "
            "Please check your .env file or environment configuration."
        )

    if settings.app_env == "production":
        production_errors = []

        if not settings.admin_api_key:
            production_errors.append(
                "ADMIN_API_KEY is required in production. "
                "Set ADMIN_API_KEY environment variable with a strong random key."
            )

        if settings.ai_provider == "openai" and not settings.openai_api_key:
            production_errors.append(
                "OPENAI_API_KEY is required in production for lead-info extraction."
            )

        if settings.whatsapp_dry_run:
            logger.warning("WhatsApp dry-run is enabled in production - no messages will be sent")

        if production_errors:
            error_message = (
                "Production environment validation failed:\n\n"
                + "\n".join(f"  - {error}" for error in production_errors)
                + "\n\nFix the configuration and restart."
            )
            logger.error(error_message)
            raise RuntimeError(error_message)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run startup checks and validation."""
    validate_settings()
    logger.info(
        "Startup: Configuration loaded - "
        f"Environment: {settings.app_env}, "
        f"AI provider: {settings.ai_provider}, "
        f"WhatsApp dry-run: {settings.whatsapp_dry_run}"
    )
    yield


app = FastAPI(title="Lead Capture", lifespan=lifespan)

app.add_middleware(CorrelationIdMiddleware)


@app.get("/health")
def health():
    """Health check with feature flag visibility. Returns 200 immediately."""
    return {
        "ok": True,
        "features": {
            "reminders_enabled": settings.feature_reminders_enabled,
            "notifications_enabled": settings.feature_notifications_enabled,
            "cancel_reminders_on_reply": settings.feature_cancel_reminders_on_reply,
        },
        "reminders": {
            "reminder_1_delay_hours": settings.reminder_1_delay_hours,
            "reminder_2_delay_hours": settings.reminder_2_delay_hours,
            "unresponsive_timeout_hours": settings.unresponsive_timeout_hours,
        },
    }


@app.get("/ready")
def ready(db: Session = Depends(get_db)):
    """
    Readiness check - verifies database connectivity.

    Returns 200 if the database is reachable, 503 if not.
    """
    try:
        db.execute(text("SELECT 1"))
        return {"ok": True, "database": "connected"}
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ok": False, "database": "disconnected", "error": str(e)},
        )


app.include_router(webhooks_router, prefix="/webhooks", tags=["webhooks"])
app.include_router(admin_router, prefix="/admin", tags=["admin"])
