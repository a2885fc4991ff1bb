"""Checkout session creation, polling and cancellation."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4

from app.config import settings
from app.exceptions import BadRequest, NotFound, Conflict
from app.models.checkout_session import (
    CheckoutSession,
    SESSION_PENDING,
    SESSION_EXPIRED,
    SESSION_CANCELLED,
)
from app.models.game import Game
from app.services.correlation import encode_correlation_id
from app.services.entitlement_store import EntitlementStore

logger = logging.getLogger(__name__)

MODE_RENTAL = "rental"
MODE_LIFETIME = "lifetime"

GAME_COMING_SOON = "coming_soon"


@dataclass
class CheckoutSessionResult:
    """Data the client needs to present the charge."""

    session_id: str
    correlation_id: str
    amount_cents: int
    mode: str
    expires_in: int
    game_title: str
    rental_duration_days: int


def normalize_mode(mode: Optional[str]) -> str:
    """Anything other than "lifetime" is a rental."""
    return MODE_LIFETIME if mode == MODE_LIFETIME else MODE_RENTAL


def charge_amount(game: Game, mode: str) -> int:
    """Lifetime price when buying outright and one is set, else the rental price."""
    if mode == MODE_LIFETIME and game.lifetime_price_cents is not None:
        return game.lifetime_price_cents
    return game.price_cents


def check_mode_allowed(game: Game, mode: str) -> None:
    if game.status == GAME_COMING_SOON and mode == MODE_RENTAL:
        raise Conflict("game_unavailable")
    if mode == MODE_LIFETIME and not game.is_lifetime_available:
        raise Conflict("lifetime_not_available")


async def create_session(
    store: EntitlementStore,
    user_id: str,
    game_id: Optional[str],
    mode: Optional[str],
    now: Optional[datetime] = None,
    ttl_seconds: Optional[int] = None,
) -> CheckoutSessionResult:
    """
    Create a pending checkout session for ``user_id`` and ``game_id``.

    Raises:
        BadRequest: gameId missing or an identifier cannot be encoded.
        NotFound: the game does not exist.
        Conflict: the game cannot be sold in the requested mode.
    """
    if not game_id:
        raise BadRequest("gameId_required")

    mode = normalize_mode(mode)
    game = await store.get_game(game_id)
    if game is None:
        raise NotFound("game_not_found")

    check_mode_allowed(game, mode)

    now = now or datetime.utcnow()
    expires_in = ttl_seconds if ttl_seconds is not None else settings.CHECKOUT_SESSION_TTL_SECONDS
    session_id = str(uuid4())
    try:
        correlation_id = encode_correlation_id(game.id, user_id, session_id)
    except ValueError as e:
        logger.error(f"Cannot build correlation ID for user {user_id} game {game.id}: {e}")
        raise BadRequest("invalid_identifier") from e

    amount_cents = charge_amount(game, mode)

    await store.create_checkout_session(
        session_id=session_id,
        user_id=user_id,
        game_id=game.id,
        mode=mode,
        amount_cents=amount_cents,
        correlation_id=correlation_id,
        expires_at=now + timedelta(seconds=expires_in),
    )
    await store.commit()

    logger.info(
        f"Created {mode} checkout session {session_id} for user {user_id} "
        f"game {game.id} ({amount_cents} cents)"
    )

    return CheckoutSessionResult(
        session_id=session_id,
        correlation_id=correlation_id,
        amount_cents=amount_cents,
        mode=mode,
        expires_in=expires_in,
        game_title=game.title,
        rental_duration_days=game.rental_duration_days,
    )


async def _get_owned_session(
    store: EntitlementStore,
    user_id: str,
    session_id: str,
) -> CheckoutSession:
    session = await store.get_session(session_id)
    # Other users' sessions are indistinguishable from missing ones
    if session is None or session.user_id != user_id:
        raise NotFound("session_not_found")
    return session


async def get_session_status(
    store: EntitlementStore,
    user_id: str,
    session_id: str,
    now: Optional[datetime] = None,
) -> CheckoutSession:
    """Polling path. Pending sessions past their window plus the grace period are expired on read."""
    session = await _get_owned_session(store, user_id, session_id)

    now = now or datetime.utcnow()
    # Same cutoff as the scheduler sweep
    cutoff = now - timedelta(seconds=settings.SESSION_EXPIRY_GRACE_SECONDS)
    if (
        session.status == SESSION_PENDING
        and session.expires_at is not None
        and session.expires_at < cutoff
    ):
        if await store.transition_session(session.id, SESSION_PENDING, SESSION_EXPIRED, now):
            await store.commit()
            logger.info(f"Checkout session {session.id} expired on poll")
        session = await store.get_session(session.id)

    return session


async def cancel_session(
    store: EntitlementStore,
    user_id: str,
    session_id: str,
    now: Optional[datetime] = None,
) -> CheckoutSession:
    """Owner-initiated cancellation of a pending session."""
    session = await _get_owned_session(store, user_id, session_id)

    if not await store.transition_session(session.id, SESSION_PENDING, SESSION_CANCELLED, now):
        raise Conflict("session_not_pending")
    await store.commit()
    logger.info(f"Checkout session {session.id} cancelled by user {user_id}")

    return await store.get_session(session.id)
