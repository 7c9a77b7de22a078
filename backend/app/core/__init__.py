"""Core utilities for the Digital Room backend."""

from .security import (
    TokenError,
    admin_from_token,
    create_access_token,
    decode_access_token,
    get_password_hash,
    is_admin,
    verify_password,
)

__all__ = [
    "TokenError",
    "admin_from_token",
    "create_access_token",
    "decode_access_token",
    "get_password_hash",
    "is_admin",
    "verify_password",
]
