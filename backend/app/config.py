"""Runtime settings for the room service, read from the environment or `.env`."""

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List

from pydantic import AnyHttpUrl, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class IceServer(BaseModel):
    """One entry of the RTCPeerConnection `iceServers` list."""

    urls: list[str] = Field(default_factory=list, description="ICE server URLs")
    username: str | None = Field(default=None, description="Optional TURN username")
    credential: str | None = Field(default=None, description="Optional TURN credential")

    @field_validator("urls", mode="before")
    @classmethod
    def ensure_list(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            return [value]
        if isinstance(value, (list, tuple, set)):
            return [str(item) for item in value]
        return [] if value in (None, Ellipsis) else [str(value)]


def _split_csv(value: Any) -> list[str]:
    """Accept a comma separated string, a JSON array string or a sequence."""

    if value in (None, "", Ellipsis):
        return []
    if isinstance(value, str):
        if value.lstrip().startswith("["):
            return [str(item).strip() for item in json.loads(value) if str(item).strip()]
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(item).strip() for item in value if str(item).strip()]
    return [str(value)]


def _ice_entry(entry: Any) -> IceServer | dict[str, Any]:
    if isinstance(entry, (IceServer, dict)):
        return entry
    if isinstance(entry, str):
        return IceServer(urls=[entry])
    return IceServer(urls=[str(item) for item in entry])


FALLBACK_STUN = "stun:stun.l.google.com:19302"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="Digital Room", description="Human readable service name")
    environment: str = Field(default="development", description="Deployment environment name")
    debug: bool = Field(default=False, description="Enable debug mode")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1",
            "http://127.0.0.1:5173",
        ],
        description="List of allowed CORS origins",
    )
    cors_allow_origin_regex: str | None = Field(
        default=r"^https?://(localhost|127\.0\.0\.1|\[::1\])(:\d+)?$",
        description="Optional regular expression that matches allowed CORS origins",
    )

    database_path: Path = Field(
        default=Path("data/users.db"),
        description="SQLite file holding registered accounts",
    )

    jwt_secret_key: str = Field(default="changeme")
    jwt_algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(default=7 * 24 * 60)

    admin_user: str | None = Field(default=None, description="Name of the primary administrator")
    additional_admins: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="Comma separated list of further administrator names",
    )

    message_buffer_size: int = Field(default=50, ge=1)
    message_max_length: int = Field(default=500, ge=1)
    announcement_max_length: int = Field(default=200, ge=1)

    dj_sync_drift_tolerance_ms: int = Field(
        default=2000,
        ge=0,
        description="Drift between the DJ and the server timeline tolerated before re-anchoring.",
    )
    heartbeat_interval_seconds: float = Field(default=5.0, gt=0)
    reconcile_interval_seconds: float = Field(default=10.0, gt=0)
    dj_max_hold_seconds: float | None = Field(
        default=None,
        description="Optional maximum time a single DJ may hold the booth.",
    )
    max_streams: int = Field(default=10, ge=1, description="Concurrent screen share broadcasters.")
    rate_limit_window_ms: int = Field(default=1000, ge=1)
    rate_limit_max_events: int = Field(default=10, ge=1)

    websocket_keepalive_timeout_seconds: int = Field(default=30)
    websocket_keepalive_ping_interval_seconds: int = Field(default=25)

    webrtc_ice_servers: Annotated[list[IceServer], NoDecode] = Field(
        default_factory=list,
        description="List of ICE (STUN/TURN) servers available to WebRTC peers.",
    )
    webrtc_stun_servers: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Additional STUN endpoints exposed to clients.",
    )
    webrtc_turn_servers: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="TURN endpoints exposed to clients.",
    )
    webrtc_turn_username: str | None = Field(default=None, description="Optional TURN username shared with clients.")
    webrtc_turn_credential: str | None = Field(
        default=None, description="Optional TURN credential shared with clients."
    )

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.database_path}"

    @property
    def admin_names(self) -> frozenset[str]:
        names = set(self.additional_admins)
        if self.admin_user:
            names.add(self.admin_user)
        return frozenset(names)

    @field_validator(
        "cors_origins",
        "additional_admins",
        "webrtc_stun_servers",
        "webrtc_turn_servers",
        mode="before",
    )
    @classmethod
    def split_lists(cls, value: Any) -> list[str]:
        return _split_csv(value)

    @field_validator("webrtc_ice_servers", mode="before")
    @classmethod
    def parse_ice_servers(cls, value: Any) -> list[Any]:
        if value in (None, "", Ellipsis):
            return []
        if isinstance(value, str):
            value = json.loads(value) if value.lstrip().startswith("[") else value.split(",")
        if isinstance(value, (str, dict, IceServer)):
            value = [value]
        return [_ice_entry(entry) for entry in value]

    @field_validator("dj_max_hold_seconds", mode="before")
    @classmethod
    def empty_hold_means_unlimited(cls, value: Any) -> Any:
        if value in ("", "0", 0):
            return None
        return value

    @property
    def ice_servers(self) -> list[IceServer]:
        """Configured servers plus the STUN/TURN shorthands; Google STUN if empty."""

        servers = list(self.webrtc_ice_servers)
        if self.webrtc_stun_servers:
            servers.append(IceServer(urls=list(self.webrtc_stun_servers)))
        if self.webrtc_turn_servers:
            servers.append(
                IceServer(
                    urls=list(self.webrtc_turn_servers),
                    username=self.webrtc_turn_username,
                    credential=self.webrtc_turn_credential,
                )
            )
        return servers or [IceServer(urls=[FALLBACK_STUN])]

    @property
    def webrtc_ice_servers_payload(self) -> list[dict[str, Any]]:
        return [server.model_dump(mode="json", exclude_none=True) for server in self.ice_servers]


@lru_cache
def get_settings() -> Settings:
    return Settings()
