"""
Configuration du LSP Relay Proxy.
"""

from .loader import apply_env_overrides, load_config, load_settings, reload_config
from .settings import MonitorConfig, ProxySettings

__all__ = [
    "apply_env_overrides",
    "load_config",
    "load_settings",
    "reload_config",
    "MonitorConfig",
    "ProxySettings",
]
