"""Application service helpers."""

from .accounts import AccountError, AccountService, AccountStore, SqlAlchemyAccountStore

__all__ = ["AccountError", "AccountService", "AccountStore", "SqlAlchemyAccountStore"]
