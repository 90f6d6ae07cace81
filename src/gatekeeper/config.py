from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GatekeeperSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="GATEKEEPER_", extra="ignore")

    # Where the JSON document store keeps its files.
    data_dir: Path = Field(default=Path.home() / ".config" / "gatekeeper")
    document_name: str = Field(default="WhitelistManager")

    # If false, connecting players are never checked against the whitelist.
    enabled: bool = Field(default=True)

    # Expiry sweep
    sweep_interval_seconds: float = Field(default=300.0)
    kick_on_expiration: bool = Field(default=True)
    notify_admins_on_expiration: bool = Field(default=True)
    expiration_kick_message: str = Field(default="Your whitelist access has expired.")

    # Persistence
    # - deferred: mutations set a dirty flag, flushed every save_interval_seconds and at shutdown
    # - immediate: every mutating command saves synchronously
    deferred_save: bool = Field(default=True)
    save_interval_seconds: float = Field(default=60.0)

    # Command surface
    page_size: int = Field(default=10)
    admin_permission: str = Field(default="whitelistmanager.admin")
    bypass_permission: str = Field(default="whitelistmanager.bypass")

    # Grant the bypass permission on add and revoke it on remove.
    grant_bypass_permission: bool = Field(default=False)

    log_level: str = Field(default="INFO")


def get_settings() -> GatekeeperSettings:
    return GatekeeperSettings()
