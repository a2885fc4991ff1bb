"""Rental model: a time-boxed entitlement to play a game."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.database import Base


RENTAL_ACTIVE = "active"
RENTAL_EXPIRED = "expired"
RENTAL_REFUNDED = "refunded"


class Rental(Base):
    """Rental window for a (user, game) pair.

    At most one active row per pair; renewals extend it in place.
    """

    __tablename__ = "rentals"

    # Primary key
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    # Rental info
    status: Mapped[str] = mapped_column(String(20), default=RENTAL_ACTIVE, nullable=False)
    mode: Mapped[str] = mapped_column(String(20), default="rental", nullable=False)
    payment_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Owner
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)

    # Foreign keys
    game_id: Mapped[str] = mapped_column(String(36), ForeignKey("games.id"), nullable=False)

    # Timestamps
    starts_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)  # None = unlimited
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    game: Mapped["Game"] = relationship("Game", foreign_keys=[game_id])

    # Indexes
    __table_args__ = (
        Index("idx_rental_user_game", "user_id", "game_id"),
        Index("idx_rental_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Rental(id={self.id}, user_id={self.user_id}, game_id={self.game_id}, expires_at={self.expires_at})>"
