"""
Process configuration, read once from the environment (and a local .env file).

DATABASE_URL, ALLOWED_ORIGINS and TOKEN_ENCRYPTION_KEY are mandatory; importing
this module without them fails fast.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ValueError(f"{name} must be set in the environment")
    return value


# --- Runtime ---------------------------------------------------------------

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Skip every write to the marketplace; reads and local writes still happen
DRY_RUN = os.getenv("DRY_RUN", "false").lower() == "true"

# --- Storage ---------------------------------------------------------------

DATABASE_URL = _require("DATABASE_URL")
SCHEMA = "roomsync"

# Secret material for the AES-GCM key protecting tokens at rest
TOKEN_ENCRYPTION_KEY = _require("TOKEN_ENCRYPTION_KEY")

# --- HTTP surface ----------------------------------------------------------

ALLOWED_ORIGINS: list[str] = [
    origin.strip() for origin in _require("ALLOWED_ORIGINS").split(",") if origin.strip()
]

# --- Marketplace -----------------------------------------------------------

# Credentials are only required once a token is requested
MARKETPLACE_CLIENT_ID = os.getenv("MARKETPLACE_CLIENT_ID")
MARKETPLACE_CLIENT_SECRET = os.getenv("MARKETPLACE_CLIENT_SECRET")
MARKETPLACE_API_BASE_URL = os.getenv("MARKETPLACE_API_BASE_URL", "https://api.avito.ru").rstrip("/")
MARKETPLACE_AUTHORIZE_URL = os.getenv("MARKETPLACE_AUTHORIZE_URL", "https://www.avito.ru/oauth")
MARKETPLACE_PLATFORM = os.getenv("MARKETPLACE_PLATFORM", "avito")

# Name this service announces itself as when pushing calendar blocks
CALENDAR_SOURCE_NAME = os.getenv("CALENDAR_SOURCE_NAME", "roomi")

# --- Queue poller ----------------------------------------------------------

POLLER_PAGE_SIZE = int(os.getenv("POLLER_PAGE_SIZE", "10"))
POLLER_DEADLINE_SECONDS = float(os.getenv("POLLER_DEADLINE_SECONDS", "9.5"))
