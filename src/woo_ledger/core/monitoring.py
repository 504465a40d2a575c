"""
GlitchTip Error Monitoring Utilities

Initialization plus helper functions for error tracking and context management.
"""

import logging
from typing import Any, Dict, Optional

import sentry_sdk

from woo_ledger.core.logger import setup_logger

logger = setup_logger(__name__)


def init_monitoring(dsn: Optional[str], environment: str, with_fastapi: bool = True) -> bool:
    """
    Initialize GlitchTip (Sentry protocol) error monitoring.

    Args:
        dsn: Project DSN; monitoring stays off when empty
        environment: Deployment environment tag
        with_fastapi: Attach the FastAPI integration (off for CLI runs)

    Returns:
        True if monitoring was initialized
    """
    if not dsn:
        return False

    try:
        from sentry_sdk.integrations.logging import LoggingIntegration

        integrations = [
            LoggingIntegration(
                level=None,  # Capture all log levels as breadcrumbs
                event_level=logging.ERROR,  # Send ERROR logs as events
            ),
        ]
        if with_fastapi:
            from sentry_sdk.integrations.fastapi import FastApiIntegration

            integrations.append(FastApiIntegration(transaction_style="endpoint"))

        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            integrations=integrations,
            traces_sample_rate=0.1,
            profiles_sample_rate=0.0,
            send_default_pii=False,
        )
        logger.info("GlitchTip error monitoring initialized")
        return True
    except Exception as e:
        logger.error(f"Failed to initialize GlitchTip: {e}")
        return False


def set_sync_context(
    resource: str,
    mode: Optional[str] = None,
    order_number: Optional[str] = None,
    **extra_tags
) -> None:
    """
    Set sync-specific context for error tracking.

    Args:
        resource: orders, products, coupons or shipping
        mode: full or incremental
        order_number: Order being processed
        **extra_tags: Additional tags to add
    """
    try:
        sentry_sdk.set_tag("sync.resource", resource)
        if mode:
            sentry_sdk.set_tag("sync.mode", mode)
        if order_number:
            sentry_sdk.set_tag("sync.order_number", order_number)

        for key, value in extra_tags.items():
            sentry_sdk.set_tag(key, value)

        context_data = {
            "resource": resource,
            "mode": mode,
            "order_number": order_number,
        }
        context_data.update(extra_tags)
        sentry_sdk.set_context("sync", context_data)

    except Exception as e:
        logger.warning(f"Failed to set sync context: {e}")


def capture_exception(
    error: Exception,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error"
) -> None:
    """
    Capture an exception and send to GlitchTip.

    Args:
        error: The exception to capture
        context: Additional context data
        level: Error level (error, warning, info)
    """
    try:
        if context:
            with sentry_sdk.new_scope() as scope:
                scope.set_context("custom", context)
                scope.set_level(level)
                sentry_sdk.capture_exception(error)
        else:
            sentry_sdk.capture_exception(error)

    except Exception as e:
        logger.warning(f"Failed to capture exception in GlitchTip: {e}")


def capture_message(
    message: str,
    level: str = "info",
    context: Optional[Dict[str, Any]] = None
) -> None:
    """Capture a message and send to GlitchTip."""
    try:
        if context:
            with sentry_sdk.new_scope() as scope:
                scope.set_context("custom", context)
                sentry_sdk.capture_message(message, level=level)
        else:
            sentry_sdk.capture_message(message, level=level)

    except Exception as e:
        logger.warning(f"Failed to capture message in GlitchTip: {e}")
