"""Database models for the game rental checkout backend."""
from app.models.game import Game
from app.models.checkout_session import CheckoutSession
from app.models.rental import Rental
from app.models.purchase import Purchase

__all__ = [
    "Game",
    "CheckoutSession",
    "Rental",
    "Purchase",
]
