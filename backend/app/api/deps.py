"""FastAPI dependencies for the API layer."""

from app.services.accounts import AccountService, SqlAlchemyAccountStore
from digitalroom.realtime.managers import RoomManager, get_room_manager


def get_room() -> RoomManager:
    """Return the process wide room."""

    return get_room_manager()


def get_account_service() -> AccountService:
    """Account service backed by short-lived database sessions."""

    return AccountService(SqlAlchemyAccountStore())
