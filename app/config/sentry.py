"""Sentry error tracking configuration."""
import os
from typing import Optional, Dict, Any
from pydantic import Field
from pydantic_settings import BaseSettings

from app.utils.logger import get_logger

logger = get_logger(__name__)


class SentrySettings(BaseSettings):
    """Sentry configuration settings."""

    dsn: Optional[str] = Field(None, alias="SENTRY_DSN")
    environment: str = Field("development", alias="SENTRY_ENVIRONMENT")
    release: Optional[str] = Field(None, alias="SENTRY_RELEASE")
    traces_sample_rate: float = Field(0.1, alias="SENTRY_TRACES_SAMPLE_RATE")
    send_default_pii: bool = Field(False, alias="SENTRY_SEND_DEFAULT_PII")  # Remittances carry PHI
    enable_before_send_filter: bool = Field(True, alias="SENTRY_ENABLE_BEFORE_SEND_FILTER")

    sensitive_headers: str = Field(
        "authorization,cookie,x-api-key,x-auth-token,x-access-token",
        alias="SENTRY_SENSITIVE_HEADERS",
    )
    sensitive_keys: str = Field(
        "password,token,secret,key,ssn,member_id,patient,phi",
        alias="SENTRY_SENSITIVE_KEYS",
    )

    # Alert configuration
    enable_alerts: bool = Field(True, alias="SENTRY_ENABLE_ALERTS")
    alert_on_errors: bool = Field(True, alias="SENTRY_ALERT_ON_ERRORS")
    alert_on_warnings: bool = Field(False, alias="SENTRY_ALERT_ON_WARNINGS")

    enable_tracing: bool = Field(True, alias="SENTRY_ENABLE_TRACING")
    enable_celery_integration: bool = Field(True, alias="SENTRY_ENABLE_CELERY_INTEGRATION")
    enable_sqlalchemy_integration: bool = Field(True, alias="SENTRY_ENABLE_SQLALCHEMY_INTEGRATION")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"
        populate_by_name = True


settings = SentrySettings()


def init_sentry() -> None:
    """
    Initialize Sentry error tracking.

    Called from `app.core.setup.setup_application()` and from the Celery
    configuration module so workers report errors too. Without `SENTRY_DSN`
    (or when `TESTING=true`) Sentry stays disabled and errors are only logged.
    """
    if not settings.dsn:
        logger.info("Sentry DSN not configured, error tracking disabled")
        return

    if os.getenv("TESTING") == "true":
        logger.info("Skipping Sentry initialization in test environment")
        return

    try:
        import sentry_sdk
        from sentry_sdk.integrations.celery import CeleryIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
        from sentry_sdk.integrations.logging import LoggingIntegration

        integrations = []
        if settings.enable_celery_integration:
            integrations.append(CeleryIntegration())
        if settings.enable_sqlalchemy_integration:
            integrations.append(SqlalchemyIntegration())

        # Log records become breadcrumbs only; errors are captured explicitly
        integrations.append(LoggingIntegration(level=None, event_level=None))

        sentry_sdk.init(
            dsn=settings.dsn,
            environment=settings.environment,
            release=settings.release,
            traces_sample_rate=settings.traces_sample_rate if settings.enable_tracing else 0.0,
            send_default_pii=settings.send_default_pii,
            integrations=integrations,
            before_send=filter_sensitive_data if settings.enable_before_send_filter else None,
        )

        logger.info(
            "Sentry initialized",
            environment=settings.environment,
            release=settings.release,
            tracing_enabled=settings.enable_tracing,
        )
    except Exception as e:
        logger.error("Failed to initialize Sentry", error=str(e), exc_info=True)
        raise


def filter_sensitive_data(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Remove sensitive headers, user fields and extra keys from a Sentry event.

    Header names and extra-context key patterns come from
    `SENTRY_SENSITIVE_HEADERS` and `SENTRY_SENSITIVE_KEYS`; matching is
    case-insensitive and extra keys are dropped when they contain a pattern.
    """
    sensitive_headers_list = [
        header.strip().lower()
        for header in settings.sensitive_headers.split(",")
        if header.strip()
    ]
    sensitive_keys_list = [
        key.strip().lower()
        for key in settings.sensitive_keys.split(",")
        if key.strip()
    ]

    if "request" in event and "headers" in event["request"]:
        headers_to_remove = [
            h for h in event["request"]["headers"].keys()
            if h.lower() in sensitive_headers_list
        ]
        for header_key in headers_to_remove:
            event["request"]["headers"].pop(header_key, None)

    if "user" in event:
        event["user"] = {
            "id": event["user"].get("id"),
            "username": event["user"].get("username"),
        }

    if "extra" in event:
        keys_to_remove = [
            k for k in event["extra"].keys()
            if any(pattern in k.lower() for pattern in sensitive_keys_list)
        ]
        for key_to_remove in keys_to_remove:
            event["extra"].pop(key_to_remove, None)

    return event


def capture_exception(
    exception: Exception,
    level: str = "error",
    context: Optional[Dict[str, Any]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Capture an exception to Sentry with additional context.

    Returns:
        Event ID if Sentry is configured, None otherwise
    """
    try:
        import sentry_sdk

        with sentry_sdk.new_scope() as scope:
            scope.level = level
            if context:
                for key, value in context.items():
                    scope.set_context(key, value if isinstance(value, dict) else {"value": value})
            if tags:
                for key, value in tags.items():
                    scope.set_tag(key, value)
            return sentry_sdk.capture_exception(exception)
    except Exception as e:
        logger.error("Failed to capture exception to Sentry", error=str(e), exc_info=True)
        raise


def add_breadcrumb(
    message: str,
    category: str = "default",
    level: str = "info",
    data: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Add a breadcrumb to Sentry.

    Breadcrumbs help provide context about what happened before an error.
    """
    try:
        import sentry_sdk

        sentry_sdk.add_breadcrumb(
            message=message,
            category=category,
            level=level,
            data=data or {},
        )
    except Exception as e:
        logger.error("Failed to add breadcrumb to Sentry", error=str(e))
