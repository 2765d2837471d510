"""
SQLAlchemy 2.0 async DeclarativeBase for PriceWatch.

All models inherit from this Base.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all PriceWatch database models."""
    pass
