from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SyncRequestPayload(BaseModel):
    """
    Schema for a manual sync. All fields are optional.
    """

    exclude_booking_id: Optional[UUID] = Field(
        None, description="Local booking being deleted; its dates are reopened"
    )
    pull_limit: Optional[int] = Field(None, ge=1, description="Pull page size (capped at 500)")
    pull_offset: Optional[int] = Field(None, ge=0, description="Pull offset")


class ValidateItemPayload(BaseModel):
    item_id: str = Field(..., description="Marketplace listing id to check")
    property_id: Optional[UUID] = Field(None, description="Property the listing will be bound to")


class RefreshExpiringPayload(BaseModel):
    window_seconds: int = Field(300, ge=0, le=86400, description="Look-ahead window in seconds")
