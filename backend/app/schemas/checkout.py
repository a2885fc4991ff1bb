"""Schemas for checkout session endpoints.

The storefront speaks camelCase; fields are snake_case here and aliased.
"""
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CheckoutSessionRequest(CamelModel):
    """Request to open a checkout session. Presence of gameId is checked by the service."""
    game_id: Optional[str] = None
    mode: Optional[str] = None


class CheckoutSessionResponse(CamelModel):
    """Charge presentation data for a freshly created session."""
    session_id: str
    correlation_id: str
    value_cents: int = Field(..., description="Amount in cents")
    mode: str
    expires_in: int = Field(..., description="Seconds until the charge expires")
    game_title: str
    rental_duration_days: int
    app_id: Optional[str] = None


class CheckoutSessionStatusResponse(CamelModel):
    """Session state returned to the polling client."""
    session_id: str
    correlation_id: str
    status: str
    expires_at: Optional[datetime] = None
    amount_cents: int
    mode: str
    game_id: str
    rental_duration_days: Optional[int] = None
    payment_ref: Optional[str] = None
