"""
Models package - export all SQLAlchemy models.
"""

from src.models.alert import Alert
from src.models.base import Base
from src.models.listing import Listing
from src.models.price_history import PriceHistory
from src.models.user import User

__all__ = ["Alert", "Base", "Listing", "PriceHistory", "User"]
