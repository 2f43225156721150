"""
Unit tests for FastAPI dependency injection.
"""

from __future__ import annotations

from unittest.mock import Mock

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from roomsync.db.engine import engine as default_engine
from roomsync.dependencies import (
    get_db_engine,
    get_oauth_handler,
    get_queue_poller,
    get_sync_engine,
    get_webhook_ingester,
)
from roomsync.pollers.queue import QueuePoller
from roomsync.services.oauth import OAuthCallbackHandler
from roomsync.services.sync import SyncEngine
from roomsync.services.webhooks import WebhookIngester


@pytest.mark.unit
def test_get_db_engine_dependency() -> None:
    """Test that get_db_engine yields the process-wide engine."""
    engine = next(get_db_engine())

    assert isinstance(engine, Engine)
    assert engine is default_engine


@pytest.mark.unit
def test_dependency_injection_can_be_overridden() -> None:
    """Test that dependency can be overridden for testing."""
    app = FastAPI()

    @app.get("/test")
    def test_endpoint(engine: Engine = Depends(get_db_engine)) -> dict[str, str]:
        """Test endpoint."""
        return {"engine_name": engine.name}

    mock_engine = Mock(spec=Engine)
    mock_engine.name = "mock_engine"
    app.dependency_overrides[get_db_engine] = lambda: mock_engine

    response = TestClient(app).get("/test")

    assert response.status_code == 200
    assert response.json() == {"engine_name": "mock_engine"}


@pytest.mark.unit
def test_service_providers_share_the_engine() -> None:
    """Test that every service provider is wired to the default engine."""
    sync_engine = get_sync_engine()
    poller = get_queue_poller()
    handler = get_oauth_handler()
    ingester = get_webhook_ingester()

    assert isinstance(sync_engine, SyncEngine)
    assert isinstance(poller, QueuePoller)
    assert isinstance(handler, OAuthCallbackHandler)
    assert isinstance(ingester, WebhookIngester)
    assert sync_engine.engine is default_engine
    assert poller.engine is default_engine
    assert handler.engine is default_engine
    assert ingester.engine is default_engine
    assert sync_engine.token_manager.client is sync_engine.client
