"""Database models package."""

from .account import Account
from .base import Base

__all__ = ["Account", "Base"]
