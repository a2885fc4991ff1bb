"""Checkout session model: one attempted payment for a game/user/mode."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, Integer, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.database import Base


SESSION_PENDING = "pending"
SESSION_PAID = "paid"
SESSION_EXPIRED = "expired"
SESSION_CANCELLED = "cancelled"


class CheckoutSession(Base):
    """Pending-to-settled record of a checkout.

    pending -> paid | expired | cancelled; a late payment still moves
    expired or cancelled to paid. Paid is terminal.
    """

    __tablename__ = "checkout_sessions"

    # Primary key
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    # Session info
    mode: Mapped[str] = mapped_column(String(20), nullable=False)  # "rental", "lifetime"
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=SESSION_PENDING, nullable=False)
    correlation_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    # Provider info
    payment_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Owner (identity lives in the external auth service)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)

    # Foreign keys
    game_id: Mapped[str] = mapped_column(String(36), ForeignKey("games.id"), nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Relationships
    game: Mapped["Game"] = relationship("Game", foreign_keys=[game_id])

    # Indexes
    __table_args__ = (
        Index("idx_checkout_session_user_id", "user_id"),
        Index("idx_checkout_session_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<CheckoutSession(id={self.id}, user_id={self.user_id}, game_id={self.game_id}, status={self.status})>"
