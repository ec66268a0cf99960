"""
config/settings.py — Central configuration via env vars + YAML override.

Priority: ENV > config.yaml > defaults
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from obs_link.core.protocol import RPC_VERSION, EventSubscription


class OBSSettings(BaseSettings):
    host: str = Field("localhost", description="OBS WebSocket host")
    port: int = Field(4455, description="OBS WebSocket port")
    password: str = Field("", description="OBS WebSocket password")
    tls: bool = Field(False, description="Connect with wss:// instead of ws://")
    rpc_version: int = Field(RPC_VERSION, description="RPC version requested in Identify")
    event_subscriptions: Union[int, str] = Field(
        "all", description="Event categories, as names ('scenes,inputs') or a bitmask"
    )
    handshake_timeout: float = Field(5.0, description="Seconds to wait for the Hello message")
    connect_timeout: float = Field(10.0, description="Seconds to wait for the WebSocket to open")
    broadcast_capacity: int = Field(100, description="Events buffered per stream before old ones are dropped")
    verify_versions: bool = Field(True, description="Check OBS Studio and obs-websocket versions after connecting")

    model_config = SettingsConfigDict(env_prefix="OBS_")

    def subscription_mask(self) -> EventSubscription:
        return EventSubscription.parse(self.event_subscriptions)


class LogSettings(BaseSettings):
    level: str = Field("info", description="Log level")

    model_config = SettingsConfigDict(env_prefix="LOG_")


class Settings(BaseSettings):
    obs: OBSSettings = Field(default_factory=OBSSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    config_file: Path = Field(Path("config.yaml"), description="Path to YAML config file")

    model_config = SettingsConfigDict(env_prefix="LINK_")

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Settings":
        """Load settings, merging YAML file if present."""
        path = config_path or Path(os.environ.get("LINK_CONFIG_FILE", "config.yaml"))
        yaml_data: dict = {}

        if path.exists():
            with open(path) as f:
                yaml_data = yaml.safe_load(f) or {}

        # YAML values are passed as init kwargs, which pydantic-settings ranks above env,
        # so keys that are also set in the environment are dropped first
        obs = OBSSettings(**_without_env(yaml_data.get("obs", {}), "OBS_"))
        log = LogSettings(**_without_env(yaml_data.get("log", {}), "LOG_"))

        return cls(obs=obs, log=log, config_file=path)

    def to_yaml(self, path: Path) -> None:
        """Save current settings to YAML."""
        data = {
            "obs": self.obs.model_dump(),
            "log": self.log.model_dump(),
        }
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def _without_env(section: dict, prefix: str) -> dict:
    return {k: v for k, v in section.items() if f"{prefix}{k}".upper() not in os.environ}


# Singleton accessor — call get_settings() anywhere in the app
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reload_settings(config_path: Optional[Path] = None) -> Settings:
    global _settings
    _settings = Settings.load(config_path)
    return _settings
