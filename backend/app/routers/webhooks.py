"""Payment provider webhook router."""
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.webhooks import WebhookResponse, WebhookListeningResponse
from app.services.entitlement_store import EntitlementStore
from app.services.reconciler import reconcile
from app.services.signature import SIGNATURE_HEADER

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/webhooks/openpix",
    response_model=WebhookResponse,
    response_model_exclude_none=True,
)
async def openpix_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Handle OpenPix webhook deliveries.

    - Verifies the signature over the raw body
    - Ignores non-completion and uncorrelatable events with a 200
    - Marks the session paid and grants the entitlement exactly once
    """
    raw_body = await request.body()
    result = await reconcile(
        EntitlementStore(db),
        raw_body,
        request.headers.get(SIGNATURE_HEADER),
    )
    return WebhookResponse(**result.to_dict())


@router.get("/webhooks/openpix", response_model=WebhookListeningResponse)
async def openpix_webhook_listening():
    """Health-check convenience for the provider's webhook configuration screen."""
    return WebhookListeningResponse(
        message="Send a POST with the OpenPix webhook payload to process payments.",
    )
