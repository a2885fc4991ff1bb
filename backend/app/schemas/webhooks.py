"""Schemas for payment provider webhooks."""
from typing import Optional
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WebhookResponse(BaseModel):
    """Acknowledgement sent back to the provider."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: str
    reason: Optional[str] = None
    correlation_id: Optional[str] = None
    email: Optional[str] = None


class WebhookListeningResponse(BaseModel):
    status: str = "listening"
    message: str
