# roomsync/main.py

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from roomsync.config import ALLOWED_ORIGINS, MARKETPLACE_PLATFORM
from roomsync.logging_config import setup_logging
from roomsync.middleware import RequestIDMiddleware
from roomsync.routes.calendar import router as calendar_router
from roomsync.routes.health import router as health_router
from roomsync.routes.metrics import router as metrics_router
from roomsync.routes.oauth import router as oauth_router
from roomsync.routes.sync import router as sync_router
from roomsync.routes.webhook import router as webhook_router

# Initialize structured logging
setup_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(
    title="Roomsync API",
    description="Marketplace synchronization for short-term-rental properties",
    version="1.0.0",
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS if "*" not in ALLOWED_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIDMiddleware)

# Register routers
app.include_router(health_router, tags=["Health"])
app.include_router(metrics_router, tags=["Metrics"])
app.include_router(calendar_router, tags=["Calendar"])
app.include_router(oauth_router, prefix="/marketplace", tags=["OAuth"])
app.include_router(sync_router, prefix="/marketplace", tags=["Sync"])
app.include_router(webhook_router, prefix="/marketplace", tags=["Webhooks"])


@app.on_event("startup")
def startup_event() -> None:
    """Log application startup."""
    logger.info("application_started", platform=MARKETPLACE_PLATFORM)
