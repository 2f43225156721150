import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import argparse
import json

import structlog

from roomsync.config import DRY_RUN
from roomsync.db.engine import engine
from roomsync.logging_config import setup_logging
from roomsync.network.auth import TokenManager
from roomsync.network.client import MarketplaceClient
from roomsync.services.sync import SyncEngine

setup_logging()
logger = structlog.get_logger(__name__)


def main() -> None:
    """
    Run one full push/pull sync for a single integration and print the result.

    Usage:
        python scripts/sync_one_integration.py <integration-uuid> [--dry-run]
    """
    parser = argparse.ArgumentParser(description="Sync one marketplace integration")
    parser.add_argument("integration_id")
    parser.add_argument("--dry-run", action="store_true", help="Skip remote writes")
    args = parser.parse_args()

    client = MarketplaceClient()
    sync_engine = SyncEngine(
        engine,
        client,
        TokenManager(engine=engine, client=client),
        dry_run=args.dry_run or DRY_RUN,
    )

    logger.info("manual_sync_started", integration_id=args.integration_id)
    result = sync_engine.sync(args.integration_id)
    print(json.dumps(result.to_dict(), indent=2, default=str))

    if not result.success:
        sys.exit(1)


if __name__ == "__main__":
    main()
