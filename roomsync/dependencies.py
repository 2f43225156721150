"""
FastAPI dependency injection providers.

Routes receive the database engine and the service objects through these
providers, so tests can swap any of them with app.dependency_overrides.
"""

from __future__ import annotations

from typing import Generator

from sqlalchemy.engine import Engine

from roomsync.db.engine import engine
from roomsync.network.auth import TokenManager
from roomsync.network.client import MarketplaceClient
from roomsync.pollers.queue import QueuePoller
from roomsync.services.oauth import OAuthCallbackHandler
from roomsync.services.sync import SyncEngine
from roomsync.services.webhooks import WebhookIngester


def get_db_engine() -> Generator[Engine, None, None]:
    """
    Provide database engine for dependency injection.

    Yields:
        Engine: SQLAlchemy database engine

    Testing Example:
        >>> app.dependency_overrides[get_db_engine] = lambda: sqlite_engine
        >>> client = TestClient(app)
    """
    yield engine


def get_marketplace_client() -> MarketplaceClient:
    """Provide a marketplace HTTP client bound to the configured base URL."""
    return MarketplaceClient()


def get_token_manager() -> TokenManager:
    """Provide a TokenManager backed by the process-wide token cache."""
    return TokenManager(engine=engine, client=get_marketplace_client())


def get_sync_engine() -> SyncEngine:
    """
    Provide a SyncEngine wired to the default engine, client and token manager.

    Overridden in tests with an engine whose client is a Mock.
    """
    client = get_marketplace_client()
    return SyncEngine(
        engine=engine,
        client=client,
        token_manager=TokenManager(engine=engine, client=client),
    )


def get_oauth_handler() -> OAuthCallbackHandler:
    """Provide the OAuth callback handler."""
    client = get_marketplace_client()
    return OAuthCallbackHandler(
        engine=engine, client=client, token_manager=TokenManager(engine=engine, client=client)
    )


def get_webhook_ingester() -> WebhookIngester:
    """Provide the webhook ingester."""
    return WebhookIngester(engine=engine)


def get_queue_poller() -> QueuePoller:
    """Provide a queue poller with the configured page size and deadline."""
    return QueuePoller(engine=engine, sync_engine=get_sync_engine())
