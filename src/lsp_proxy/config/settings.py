"""
Dataclasses pour la configuration.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..core.constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CONTROL_HOST,
    DEFAULT_CONTROL_PORT,
    DEFAULT_GRACE_PERIOD_S,
    DEFAULT_MONITOR_QUEUE_MAX,
    DEFAULT_PARENT_POLL_INTERVAL_S,
    DEFAULT_REQUEST_TIMEOUT_MS,
)
from ..core.exceptions import ConfigurationError


@dataclass
class MonitorConfig:
    """Configuration du monitoring de trafic."""
    enabled: bool = False
    log_path: Optional[str] = None
    queue_max: int = DEFAULT_MONITOR_QUEUE_MAX
    summary_on_exit: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MonitorConfig":
        """Crée une instance depuis un dictionnaire."""
        enabled = _as_bool(data.get("enabled", False), "monitor.enabled")
        return cls(
            enabled=enabled,
            log_path=data.get("log_path"),
            queue_max=_as_int(data.get("queue_max", DEFAULT_MONITOR_QUEUE_MAX), "monitor.queue_max", minimum=1),
            summary_on_exit=_as_bool(data.get("summary_on_exit", enabled), "monitor.summary_on_exit"),
        )


@dataclass
class ProxySettings:
    """Configuration globale du proxy."""
    timeout_ms: float = DEFAULT_REQUEST_TIMEOUT_MS
    grace_period_s: float = DEFAULT_GRACE_PERIOD_S
    parent_poll_interval_s: float = DEFAULT_PARENT_POLL_INTERVAL_S
    chunk_size: int = DEFAULT_CHUNK_SIZE
    control_enabled: bool = True
    control_host: str = DEFAULT_CONTROL_HOST
    control_port: int = DEFAULT_CONTROL_PORT
    log_level: str = "INFO"
    log_file: Optional[str] = None
    monitor: MonitorConfig = field(default_factory=MonitorConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProxySettings":
        """
        Crée une instance depuis la configuration chargée.

        Sections reconnues: `[proxy]`, `[control]`, `[logging]`, `[monitor]`.

        Raises:
            ConfigurationError: Valeur de type ou de plage invalide
        """
        proxy = data.get("proxy", {})
        control = data.get("control", {})
        logging_cfg = data.get("logging", {})

        return cls(
            timeout_ms=_as_float(proxy.get("timeout_ms", DEFAULT_REQUEST_TIMEOUT_MS), "proxy.timeout_ms"),
            grace_period_s=_as_float(proxy.get("grace_period_s", DEFAULT_GRACE_PERIOD_S), "proxy.grace_period_s"),
            parent_poll_interval_s=_as_float(
                proxy.get("parent_poll_interval_s", DEFAULT_PARENT_POLL_INTERVAL_S),
                "proxy.parent_poll_interval_s",
            ),
            chunk_size=_as_int(proxy.get("chunk_size", DEFAULT_CHUNK_SIZE), "proxy.chunk_size", minimum=1),
            control_enabled=_as_bool(control.get("enabled", True), "control.enabled"),
            control_host=str(control.get("host", DEFAULT_CONTROL_HOST)),
            control_port=_as_int(control.get("port", DEFAULT_CONTROL_PORT), "control.port", minimum=0),
            log_level=str(logging_cfg.get("level", "INFO")).upper(),
            log_file=logging_cfg.get("file"),
            monitor=MonitorConfig.from_dict(data.get("monitor", {})),
        )


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "y", "on"}:
            return True
        if lowered in {"0", "false", "no", "n", "off", ""}:
            return False
    raise ConfigurationError(f"Booléen attendu pour {key}: {value!r}", config_key=key)


def _as_int(value: Any, key: str, minimum: int = None) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Entier attendu pour {key}: {value!r}", config_key=key)
    if minimum is not None and result < minimum:
        raise ConfigurationError(f"{key} doit être >= {minimum}: {result}", config_key=key)
    return result


def _as_float(value: Any, key: str) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Nombre attendu pour {key}: {value!r}", config_key=key)
    if result <= 0:
        raise ConfigurationError(f"{key} doit être > 0: {result}", config_key=key)
    return result
