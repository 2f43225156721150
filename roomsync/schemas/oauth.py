from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class OAuthCallbackPayload(BaseModel):
    """
    Schema for the OAuth redirect forwarded by the frontend.
    """

    code: str = Field(..., min_length=1, description="Authorization code from the marketplace")
    state: str = Field(..., min_length=1, description="State issued with the authorization URL")
    redirect_uri: Optional[str] = Field(None, description="Redirect URI used for authorization")
    user_id: Optional[UUID] = Field(None, description="Authenticated requester (ownership check)")


class OAuthCallbackResponse(BaseModel):
    success: bool = True
    integration_id: UUID
    property_id: UUID
    remote_account_id: Optional[str] = None
    purpose: Literal["integration", "messenger"]
    scope: Optional[str] = None
