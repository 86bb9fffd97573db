import logging
from typing import Any, Dict

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.pymongo import PyMongoIntegration

from config import settings

logger = logging.getLogger(__name__)

# Load balancer health checks hit this route every few seconds
UNSAMPLED_ROUTES = {"/"}


def _traces_sampler(sampling_context: Dict[str, Any]) -> float:
    if not settings.sentry.enable_performance_monitoring:
        return 0.0
    scope = sampling_context.get("asgi_scope") or {}
    if scope.get("path") in UNSAMPLED_ROUTES:
        return 0.0
    return settings.sentry.traces_sample_rate


def init_sentry() -> bool:
    """
    Start the Sentry SDK for the API process when SENTRY_DSN is set.

    Errors logged by the model layer become Sentry events, info logs become
    breadcrumbs, and MongoDB commands show up as spans.
    """
    dsn = settings.sentry.dsn
    if not dsn:
        logger.info("SENTRY_DSN not set; error reporting disabled")
        return False

    environment = settings.sentry.environment or settings.environment
    try:
        sentry_sdk.init(
            dsn=str(dsn),
            environment=environment,
            traces_sampler=_traces_sampler,
            integrations=[
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
                PyMongoIntegration(),
                FastApiIntegration(),
            ],
        )
    except Exception as e:
        logger.error(f"Failed to initialize Sentry SDK: {e}", exc_info=True)
        return False

    logger.info(f"Sentry error reporting enabled for environment '{environment}'")
    return True
