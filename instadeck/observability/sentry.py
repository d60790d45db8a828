import logging
import os

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

from .. import __version__


logger = logging.getLogger(__name__)


def init_sentry(app) -> bool:
    dsn = os.getenv("SENTRY_DSN")
    if not dsn:
        return False
    sentry_sdk.init(
        dsn=dsn,
        integrations=[FastApiIntegration()],
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.0")),
        environment=os.getenv("SENTRY_ENVIRONMENT", "dev"),
        release=os.getenv("SENTRY_RELEASE") or f"instadeck@{__version__}",
        # device access tokens travel in request bodies
        send_default_pii=False,
        max_request_body_size="never",
    )
    logger.info("Sentry error reporting enabled for %s", app.title)
    return True
