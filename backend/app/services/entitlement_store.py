"""Persistence gateway used by checkout and webhook reconciliation.

Wraps a single ``AsyncSession`` so that everything done for one request
(one webhook delivery, one session creation) commits or rolls back together.
Status changes on checkout sessions are conditional updates: the ``WHERE``
clause carries the expected current status and the row count tells the
caller whether its transition won.
"""
import functools
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.exceptions import UpstreamFailure
from app.models.checkout_session import (
    CheckoutSession,
    SESSION_PENDING,
    SESSION_PAID,
    SESSION_EXPIRED,
)
from app.models.game import Game
from app.models.purchase import Purchase
from app.models.rental import Rental, RENTAL_ACTIVE, RENTAL_EXPIRED

logger = logging.getLogger(__name__)


def _store_call(func):
    """Re-raise driver/ORM failures as UpstreamFailure."""

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(f"Store operation {func.__name__} failed: {e}")
            raise UpstreamFailure("store_unavailable") from e

    return wrapper


class EntitlementStore:
    """Games, checkout sessions, rentals and purchases behind one session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ── Games ────────────────────────────────────────────────────────────────

    @_store_call
    async def get_game(self, game_id: str) -> Optional[Game]:
        result = await self.db.execute(select(Game).where(Game.id == game_id))
        return result.scalar_one_or_none()

    # ── Checkout sessions ────────────────────────────────────────────────────

    @_store_call
    async def create_checkout_session(
        self,
        session_id: str,
        user_id: str,
        game_id: str,
        mode: str,
        amount_cents: int,
        correlation_id: str,
        expires_at: Optional[datetime] = None,
    ) -> CheckoutSession:
        session = CheckoutSession(
            id=session_id,
            user_id=user_id,
            game_id=game_id,
            mode=mode,
            amount_cents=amount_cents,
            status=SESSION_PENDING,
            correlation_id=correlation_id,
            expires_at=expires_at,
        )
        self.db.add(session)
        await self.db.flush()
        return session

    @_store_call
    async def get_session(self, session_id: str) -> Optional[CheckoutSession]:
        result = await self.db.execute(
            select(CheckoutSession)
            .options(selectinload(CheckoutSession.game))
            .where(CheckoutSession.id == session_id)
        )
        return result.scalar_one_or_none()

    @_store_call
    async def get_session_by_correlation(self, correlation_id: str) -> Optional[CheckoutSession]:
        """Look up a session together with its game's duration/availability."""
        result = await self.db.execute(
            select(CheckoutSession)
            .options(selectinload(CheckoutSession.game))
            .where(CheckoutSession.correlation_id == correlation_id)
        )
        return result.scalar_one_or_none()

    @_store_call
    async def mark_session_paid(
        self,
        session_id: str,
        payment_ref: Optional[str],
        now: datetime,
    ) -> bool:
        """Flip any unpaid status to paid. Returns False if another delivery got there first."""
        result = await self.db.execute(
            update(CheckoutSession)
            .where(
                and_(
                    CheckoutSession.id == session_id,
                    CheckoutSession.status != SESSION_PAID,
                )
            )
            .values(status=SESSION_PAID, payment_ref=payment_ref, paid_at=now, updated_at=now)
        )
        return result.rowcount == 1

    @_store_call
    async def transition_session(
        self,
        session_id: str,
        from_status: str,
        to_status: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """Move a session between statuses only if it is still in ``from_status``."""
        result = await self.db.execute(
            update(CheckoutSession)
            .where(
                and_(
                    CheckoutSession.id == session_id,
                    CheckoutSession.status == from_status,
                )
            )
            .values(status=to_status, updated_at=now or datetime.utcnow())
        )
        return result.rowcount == 1

    @_store_call
    async def expire_stale_sessions(self, cutoff: datetime) -> int:
        """Expire pending sessions whose ``expires_at`` is before ``cutoff``."""
        result = await self.db.execute(
            update(CheckoutSession)
            .where(
                and_(
                    CheckoutSession.status == SESSION_PENDING,
                    CheckoutSession.expires_at.is_not(None),
                    CheckoutSession.expires_at < cutoff,
                )
            )
            .values(status=SESSION_EXPIRED, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ── Rentals ──────────────────────────────────────────────────────────────

    @_store_call
    async def get_active_rental(self, user_id: str, game_id: str) -> Optional[Rental]:
        result = await self.db.execute(
            select(Rental)
            .where(
                and_(
                    Rental.user_id == user_id,
                    Rental.game_id == game_id,
                    Rental.status == RENTAL_ACTIVE,
                )
            )
            .order_by(Rental.created_at)
            .limit(1)
        )
        return result.scalars().first()

    @_store_call
    async def upsert_rental(
        self,
        user_id: str,
        game_id: str,
        expires_at: Optional[datetime],
        payment_ref: Optional[str],
        now: datetime,
    ) -> Rental:
        """Update the active rental for (user, game) or insert a new one."""
        rental = await self.get_active_rental(user_id, game_id)
        if rental is not None:
            rental.expires_at = expires_at
            rental.payment_ref = payment_ref
            rental.status = RENTAL_ACTIVE
            rental.updated_at = now
        else:
            rental = Rental(
                user_id=user_id,
                game_id=game_id,
                starts_at=now,
                expires_at=expires_at,
                payment_ref=payment_ref,
                status=RENTAL_ACTIVE,
                mode="rental",
            )
            self.db.add(rental)
        await self.db.flush()
        return rental

    @_store_call
    async def expire_lapsed_rentals(self, now: datetime) -> int:
        result = await self.db.execute(
            update(Rental)
            .where(
                and_(
                    Rental.status == RENTAL_ACTIVE,
                    Rental.expires_at.is_not(None),
                    Rental.expires_at < now,
                )
            )
            .values(status=RENTAL_EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ── Purchases ────────────────────────────────────────────────────────────

    @_store_call
    async def get_purchase(self, user_id: str, game_id: str) -> Optional[Purchase]:
        result = await self.db.execute(
            select(Purchase).where(
                and_(Purchase.user_id == user_id, Purchase.game_id == game_id)
            )
        )
        return result.scalar_one_or_none()

    @_store_call
    async def upsert_purchase(
        self,
        user_id: str,
        game_id: str,
        payment_ref: Optional[str],
        now: datetime,
    ) -> Purchase:
        """Update the purchase's payment reference or insert the purchase."""
        purchase = await self.get_purchase(user_id, game_id)
        if purchase is not None:
            purchase.payment_ref = payment_ref
        else:
            purchase = Purchase(
                user_id=user_id,
                game_id=game_id,
                payment_ref=payment_ref,
                purchased_at=now,
            )
            self.db.add(purchase)
        await self.db.flush()
        return purchase

    # ── Transaction boundary ─────────────────────────────────────────────────

    @_store_call
    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError as e:
            logger.error(f"Rollback failed: {e}")
