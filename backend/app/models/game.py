"""Game model for the rental catalog."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, Integer, Boolean, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class Game(Base):
    """Catalog entry. Checkout only reads price, duration and availability."""

    __tablename__ = "games"

    # Primary key
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    # Catalog info
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(50), default="available")  # "available", "coming_soon"
    is_published: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Pricing (minor currency units)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    lifetime_price_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rental_duration_days: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    is_lifetime_available: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Indexes
    __table_args__ = (
        Index("idx_game_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Game(id={self.id}, slug={self.slug}, status={self.status})>"
