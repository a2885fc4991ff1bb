"""Purchase model: lifetime ownership of a game."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.database import Base


class Purchase(Base):
    """Lifetime purchase, one row per (user, game)."""

    __tablename__ = "purchases"

    # Primary key
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    # Provider info
    payment_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Owner
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)

    # Foreign keys
    game_id: Mapped[str] = mapped_column(String(36), ForeignKey("games.id"), nullable=False)

    # Timestamps
    purchased_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    game: Mapped["Game"] = relationship("Game", foreign_keys=[game_id])

    __table_args__ = (
        UniqueConstraint("user_id", "game_id", name="uq_purchase_user_game"),
    )

    def __repr__(self) -> str:
        return f"<Purchase(id={self.id}, user_id={self.user_id}, game_id={self.game_id})>"
