"""Account registration, login and profile persistence."""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Any, Callable, Protocol
from urllib.parse import urlsplit

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.security import (
    TokenError,
    create_access_token,
    decode_access_token,
    get_password_hash,
    verify_password,
)
from app.database import get_db_session
from app.models import Account
from digitalroom.presence.store import DEFAULT_BADGE

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
USERNAME_MIN_LENGTH = 2
USERNAME_MAX_LENGTH = 50
PASSWORD_MIN_LENGTH = 8
NAME_STYLE_MAX_LENGTH = 50
STATUS_MAX_LENGTH = 100
_IMAGE_PATH = re.compile(r"\.(gif|jpg|jpeg|png|webp)$", re.IGNORECASE)


class AccountError(Exception):
    """A request that cannot be honoured; the message is safe to show clients."""


def clean_username(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    clean = value.strip()
    if not USERNAME_MIN_LENGTH <= len(clean) <= USERNAME_MAX_LENGTH:
        return None
    if not USERNAME_PATTERN.match(clean):
        return None
    return clean


def password_problem(password: str) -> str | None:
    """Describe why ``password`` is too weak, or return None."""

    if not password or len(password) < PASSWORD_MIN_LENGTH:
        return f"Password must be at least {PASSWORD_MIN_LENGTH} characters"
    if not re.search(r"[A-Z]", password):
        return "Password must contain at least one uppercase letter"
    if not re.search(r"[0-9]", password):
        return "Password must contain at least one number"
    return None


def is_valid_image_url(url: str) -> bool:
    try:
        parsed = urlsplit(url)
    except ValueError:
        return False
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc) and bool(_IMAGE_PATH.search(parsed.path))


@dataclass(slots=True, frozen=True)
class AccountRecord:
    id: int
    username: str
    hashed_password: str
    badge: str | None
    name_style: str
    status: str

    @classmethod
    def from_model(cls, account: Account) -> "AccountRecord":
        return cls(
            id=account.id,
            username=account.username,
            hashed_password=account.hashed_password,
            badge=account.badge,
            name_style=account.name_style or "",
            status=account.status or "",
        )

    def to_public(self) -> dict[str, Any]:
        return {
            "username": self.username,
            "badge": self.badge or DEFAULT_BADGE,
            "nameStyle": self.name_style,
            "status": self.status,
        }


class AccountStore(Protocol):
    """Persistence used by the room; implementations must not block the loop."""

    async def find_by_identity(self, username: str) -> AccountRecord | None: ...

    async def find_by_id(self, account_id: int) -> AccountRecord | None: ...

    async def create(self, username: str, hashed_password: str, *, badge: str | None = None) -> AccountRecord: ...

    async def upsert_attributes(self, account_id: int, attributes: dict[str, Any]) -> AccountRecord | None: ...


SessionFactory = Callable[[], AbstractContextManager[Session]]


class SqlAlchemyAccountStore:
    """``AccountStore`` backed by the ``accounts`` table.

    Queries run in a worker thread with a short-lived session each.
    """

    def __init__(self, session_factory: SessionFactory = get_db_session) -> None:
        self._session_factory = session_factory

    def _find_by_identity(self, username: str) -> AccountRecord | None:
        with self._session_factory() as db:
            account = db.execute(select(Account).where(Account.username == username)).scalar_one_or_none()
            return AccountRecord.from_model(account) if account else None

    def _find_by_id(self, account_id: int) -> AccountRecord | None:
        with self._session_factory() as db:
            account = db.get(Account, account_id)
            return AccountRecord.from_model(account) if account else None

    def _create(self, username: str, hashed_password: str, badge: str | None) -> AccountRecord:
        with self._session_factory() as db:
            account = Account(username=username, hashed_password=hashed_password, badge=badge)
            db.add(account)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise AccountError("Username already exists") from exc
            db.refresh(account)
            return AccountRecord.from_model(account)

    def _upsert_attributes(self, account_id: int, attributes: dict[str, Any]) -> AccountRecord | None:
        with self._session_factory() as db:
            account = db.get(Account, account_id)
            if account is None:
                return None
            for key, value in attributes.items():
                setattr(account, key, value)
            db.commit()
            db.refresh(account)
            return AccountRecord.from_model(account)

    async def find_by_identity(self, username: str) -> AccountRecord | None:
        return await asyncio.to_thread(self._find_by_identity, username)

    async def find_by_id(self, account_id: int) -> AccountRecord | None:
        return await asyncio.to_thread(self._find_by_id, account_id)

    async def create(self, username: str, hashed_password: str, *, badge: str | None = None) -> AccountRecord:
        return await asyncio.to_thread(self._create, username, hashed_password, badge)

    async def upsert_attributes(self, account_id: int, attributes: dict[str, Any]) -> AccountRecord | None:
        return await asyncio.to_thread(self._upsert_attributes, account_id, attributes)


@dataclass(slots=True, frozen=True)
class ProfileChange:
    """Validated profile edits.

    ``presence`` holds attributes visible to the room, ``stored`` what is
    written back to the account row (including a new password hash).
    """

    account_id: int
    presence: dict[str, Any]
    stored: dict[str, Any]


class AccountService:
    def __init__(self, store: AccountStore) -> None:
        self._store = store

    async def register(self, username: Any, password: Any) -> AccountRecord:
        clean = clean_username(username)
        if not clean or not isinstance(password, str) or not password:
            raise AccountError("Invalid username or password")
        problem = password_problem(password)
        if problem:
            raise AccountError(problem)
        if await self._store.find_by_identity(clean) is not None:
            raise AccountError("Username already exists")
        hashed = await asyncio.to_thread(get_password_hash, password)
        record = await self._store.create(clean, hashed, badge=DEFAULT_BADGE)
        logger.info("Registered account %s", clean)
        return record

    async def login(self, username: Any, password: Any) -> tuple[str, AccountRecord]:
        clean = clean_username(username)
        if not clean or not isinstance(password, str) or not password:
            raise AccountError("Invalid credentials")
        record = await self._store.find_by_identity(clean)
        if record is None or not await asyncio.to_thread(verify_password, password, record.hashed_password):
            raise AccountError("Invalid credentials")
        token = create_access_token({"sub": str(record.id), "username": record.username})
        return token, record

    async def resolve_token(self, token: Any) -> AccountRecord | None:
        """Return the account a session token belongs to, or None."""

        if not isinstance(token, str) or not token:
            return None
        try:
            payload = decode_access_token(token)
            account_id = int(payload["sub"])
        except (TokenError, KeyError, TypeError, ValueError):
            return None
        return await self._store.find_by_id(account_id)

    async def prepare_profile_change(
        self,
        token: str,
        *,
        badge: str | None = None,
        password: str | None = None,
        name_style: str | None = None,
        status: str | None = None,
    ) -> ProfileChange:
        try:
            payload = decode_access_token(token)
            account_id = int(payload["sub"])
        except (TokenError, KeyError, TypeError, ValueError) as exc:
            raise AccountError("Authentication failed") from exc

        presence: dict[str, Any] = {}
        stored: dict[str, Any] = {}
        if badge:
            if not is_valid_image_url(badge):
                raise AccountError("Invalid badge URL")
            presence["badge"] = badge
        if password:
            problem = password_problem(password)
            if problem:
                raise AccountError(problem)
            stored["hashed_password"] = await asyncio.to_thread(get_password_hash, password)
        if name_style is not None:
            presence["name_style"] = name_style[:NAME_STYLE_MAX_LENGTH].strip()
        if status is not None:
            presence["status"] = status[:STATUS_MAX_LENGTH].strip()
        stored.update(presence)
        return ProfileChange(account_id=account_id, presence=presence, stored=stored)

    async def persist_profile(self, change: ProfileChange) -> AccountRecord | None:
        if not change.stored:
            return await self._store.find_by_id(change.account_id)
        return await self._store.upsert_attributes(change.account_id, change.stored)


__all__ = [
    "AccountError",
    "AccountRecord",
    "AccountService",
    "AccountStore",
    "ProfileChange",
    "SqlAlchemyAccountStore",
    "clean_username",
    "is_valid_image_url",
    "password_problem",
]
