# =============================================================================
# Sentry Error Tracking Integration
# =============================================================================
#
# Setup:
#   1. Create a Python project at sentry.io
#   2. Copy DSN to .env: SENTRY_DSN=https://...@sentry.io/...
#
# Usage:
#   init_sentry(settings) runs in the app lifespan (practice_pulse/api/app.py)
#
# =============================================================================

import logging

from practice_pulse.config import Settings

logger = logging.getLogger(__name__)

# Sentry SDK is optional - gracefully degrade if not installed
try:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration
    SENTRY_AVAILABLE = True
except ImportError:
    SENTRY_AVAILABLE = False
    sentry_sdk = None

# Statuses that are part of normal operation, not errors worth reporting
EXPECTED_STATUSES = (400, 401, 403, 404, 409, 422)

SCRUBBED_HEADERS = ("authorization", "cookie", "set-cookie", "x-api-key")


def init_sentry(settings: Settings) -> bool:
    """
    Initialize Sentry error tracking.

    Returns True if initialized, False if skipped.
    """
    if not SENTRY_AVAILABLE:
        logger.info("Sentry SDK not installed - error tracking disabled")
        return False

    if not settings.sentry_dsn:
        logger.info("SENTRY_DSN not set - error tracking disabled")
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,

        # Sample 10% of transactions in prod
        traces_sample_rate=0.1 if settings.is_production else 1.0,

        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            StarletteIntegration(transaction_style="endpoint"),
            LoggingIntegration(
                level=logging.INFO,
                event_level=logging.ERROR,
            ),
        ],

        # Session cookies and emails stay out of reports
        send_default_pii=False,

        before_send=_filter_events,
        before_send_transaction=_filter_transactions,
    )

    logger.info(f"Sentry initialized for {settings.environment}")
    return True


def _filter_events(event: dict, hint: dict) -> dict | None:
    """Filter out expected API errors and scrub credentials."""
    if "exc_info" in hint:
        _, exc_value, _ = hint["exc_info"]

        from fastapi import HTTPException
        if isinstance(exc_value, HTTPException) and exc_value.status_code in EXPECTED_STATUSES:
            return None

    request = event.get("request")
    if request and "headers" in request:
        headers = request["headers"]
        for key in list(headers.keys()):
            if key.lower() in SCRUBBED_HEADERS:
                headers[key] = "[Filtered]"

    return event


def _filter_transactions(event: dict, hint: dict) -> dict | None:
    """Drop health check transactions."""
    if event.get("transaction", "") in ("/health", "health_check"):
        return None
    return event


def _sentry_enabled() -> bool:
    return SENTRY_AVAILABLE and sentry_sdk.get_client().is_active()


def capture_exception(error: BaseException, **context) -> str | None:
    """
    Capture an exception to Sentry.

    Returns the event ID if captured, None otherwise. Callers log the
    error themselves; this only forwards it.
    """
    if not _sentry_enabled():
        return None

    with sentry_sdk.new_scope() as scope:
        for key, value in context.items():
            scope.set_extra(key, value)
        return sentry_sdk.capture_exception(error)


def set_user(user_id: int | str, username: str | None = None, **extra) -> None:
    """Set the current user context for error reports."""
    if _sentry_enabled():
        sentry_sdk.set_user({
            "id": str(user_id),
            "username": username,
            **extra,
        })
