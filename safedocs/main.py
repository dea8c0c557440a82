import logging
import sys

import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from slowapi.errors import RateLimitExceeded

from .config import settings
from .dependencies.rate_limit import limiter, rate_limit_exceeded_handler
from .middleware import RequestLoggingMiddleware
from .middleware.logging import ACCESS_LOGGER_NAME
from .routers import (
    access_requests,
    analytics,
    audit_logs,
    auth,
    documents,
    folders,
    groups,
    health,
    healthcare,
    hr,
    media,
    notifications,
    organizations,
    shares,
    tags,
    users,
)

logging.basicConfig(level=logging.INFO, handlers=[logging.StreamHandler(sys.stdout)])
logging.getLogger(ACCESS_LOGGER_NAME).setLevel(logging.INFO)

if settings.sentry_dsn and str(settings.sentry_dsn).strip().lower().startswith(("http://", "https://")):
    sentry_sdk.init(
        dsn=str(settings.sentry_dsn).strip(),
        environment=settings.environment,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        traces_sample_rate=settings.sentry_traces_sample_rate,
        profiles_sample_rate=settings.sentry_profiles_sample_rate,
        send_default_pii=False,
    )

app = FastAPI(title="SafeDocs API", version="0.1.0")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

app.add_middleware(RequestLoggingMiddleware)

if settings.metrics_enabled:
    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/health", "/healthz", "/metrics"],
    )
    instrumentator.instrument(app).expose(app, include_in_schema=False)

# CORS (allow the web client to send the session cookie)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, tags=["health"])
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(organizations.router)
app.include_router(documents.router, tags=["documents"])
app.include_router(folders.router, tags=["folders"])
app.include_router(tags.router)
app.include_router(shares.router, tags=["shares"])
app.include_router(access_requests.router)
app.include_router(groups.router)
app.include_router(audit_logs.router)
app.include_router(notifications.router)
app.include_router(hr.router)
app.include_router(healthcare.router)
app.include_router(media.router)
app.include_router(analytics.router)
