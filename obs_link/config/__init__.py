"""config — Settings, env loading, YAML config."""
from .settings import LogSettings, OBSSettings, Settings, get_settings, reload_settings

__all__ = ["LogSettings", "OBSSettings", "Settings", "get_settings", "reload_settings"]
