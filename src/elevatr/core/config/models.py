"""
Configuration data models for elevatr.

These models define the structure of .elevatr.json and
~/.config/elevatr/config.json, with validation via Pydantic.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StorageConfig(BaseModel):
    """
    Where each kind of user's data lives.

    Local-device documents and the guest database live under ``data_dir``.
    The cloud backend is only available when ``cloud_url`` is set.
    """
    data_dir: Path = Field(
        default=Path("~/.local/share/elevatr"),
        description="Directory for local-device documents and the guest database"
    )
    guest_db_path: Optional[Path] = Field(
        default=None,
        description="SQLite file for guest sessions (defaults to data_dir/guest.db)"
    )
    cloud_url: Optional[str] = Field(
        default=None,
        description="Base URL of the cloud document API"
    )
    cloud_token: Optional[str] = Field(
        default=None,
        description="Bearer token for the cloud document API"
    )
    cloud_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Cloud request timeout in seconds"
    )

    @field_validator("data_dir", "guest_db_path", mode="after")
    @classmethod
    def expand_user(cls, v: Optional[Path]) -> Optional[Path]:
        return v.expanduser() if v is not None else None

    @property
    def resolved_guest_db_path(self) -> Path:
        return self.guest_db_path or self.data_dir / "guest.db"


class SyncConfig(BaseModel):
    """Login-time reload policy."""
    refresh_interval_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Reload store data on login when the last refresh is older than this"
    )


class NavigationConfig(BaseModel):
    """Route cache and navigation history settings."""
    route_cache_max_age_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Default max age of cached route payloads"
    )
    history_limit: int = Field(
        default=10,
        ge=1,
        description="Maximum number of routes kept in navigation history"
    )
    persist_debounce_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Delay before navigation state is written to disk"
    )
    state_max_age_hours: float = Field(
        default=24.0,
        gt=0,
        description="Persisted navigation state older than this is discarded"
    )


class ElevatrConfig(BaseModel):
    """
    Top-level elevatr configuration.

    Loaded from defaults, user config, project config, and env vars.

    Example:
        >>> config = ElevatrConfig(sync=SyncConfig(refresh_interval_seconds=60))
        >>> config.navigation.history_limit
        10
    """
    environment: str = Field(
        default="development",
        description="Deployment environment reported by the health endpoint"
    )
    storage: StorageConfig = Field(default_factory=StorageConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    navigation: NavigationConfig = Field(default_factory=NavigationConfig)

    model_config = ConfigDict(
        extra="allow",
        validate_assignment=True,
    )
