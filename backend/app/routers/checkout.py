"""Checkout router: session creation and client-side polling."""
import json
import logging

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.identity import AuthenticatedUser
from app.config import settings
from app.database import get_db
from app.exceptions import BadRequest
from app.models.checkout_session import CheckoutSession
from app.rate_limit import limiter
from app.schemas.checkout import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    CheckoutSessionStatusResponse,
)
from app.services import checkout
from app.services.entitlement_store import EntitlementStore

logger = logging.getLogger(__name__)

router = APIRouter()


async def read_checkout_request(request: Request) -> CheckoutSessionRequest:
    """Parse the body by hand so bad input maps to the storefront's error codes."""
    raw = await request.body()
    try:
        body = json.loads(raw or b"{}")
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise BadRequest("invalid_json") from e
    if not isinstance(body, dict):
        body = {}
    try:
        return CheckoutSessionRequest.model_validate(body)
    except ValidationError as e:
        raise BadRequest("invalid_request") from e


def to_status_response(session: CheckoutSession) -> CheckoutSessionStatusResponse:
    return CheckoutSessionStatusResponse(
        session_id=session.id,
        correlation_id=session.correlation_id,
        status=session.status,
        expires_at=session.expires_at,
        amount_cents=session.amount_cents,
        mode=session.mode,
        game_id=session.game_id,
        rental_duration_days=session.game.rental_duration_days if session.game else None,
        payment_ref=session.payment_ref,
    )


@router.post("/api/checkout/session", response_model=CheckoutSessionResponse)
@limiter.limit(settings.CHECKOUT_RATE_LIMIT)
async def create_checkout_session(
    request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Open a pending checkout session for a game.

    - Validates the game exists and is sellable in the requested mode
    - Derives the amount and correlation ID
    - Persists the pending session; no entitlement is granted yet
    """
    request_data = await read_checkout_request(request)

    result = await checkout.create_session(
        EntitlementStore(db),
        user_id=current_user.id,
        game_id=request_data.game_id,
        mode=request_data.mode,
    )

    return CheckoutSessionResponse(
        session_id=result.session_id,
        correlation_id=result.correlation_id,
        value_cents=result.amount_cents,
        mode=result.mode,
        expires_in=result.expires_in,
        game_title=result.game_title,
        rental_duration_days=result.rental_duration_days,
        app_id=settings.OPENPIX_APP_ID or None,
    )


@router.get("/api/checkout/session/{session_id}", response_model=CheckoutSessionStatusResponse)
async def get_checkout_session(
    session_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Return the current state of one of the caller's sessions."""
    session = await checkout.get_session_status(EntitlementStore(db), current_user.id, session_id)
    return to_status_response(session)


@router.post("/api/checkout/session/{session_id}/cancel", response_model=CheckoutSessionStatusResponse)
async def cancel_checkout_session(
    session_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Cancel one of the caller's pending sessions."""
    session = await checkout.cancel_session(EntitlementStore(db), current_user.id, session_id)
    return to_status_response(session)
