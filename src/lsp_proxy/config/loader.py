"""src.lsp_proxy.config.loader

Chargement de la configuration TOML, surchargée par les variables
d'environnement `LSP_PROXY_*`.

Ordre de priorité: valeurs par défaut < fichier TOML < environnement < CLI.
"""
import os
import re
import tomllib
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from ..core.exceptions import ConfigurationError
from .settings import ProxySettings

CONFIG_ENV_VAR = "LSP_PROXY_CONFIG"

# Variable d'environnement -> (section, clé)
ENV_OVERRIDES = {
    "LSP_PROXY_TIMEOUT_MS": ("proxy", "timeout_ms"),
    "LSP_PROXY_GRACE_PERIOD_S": ("proxy", "grace_period_s"),
    "LSP_PROXY_PARENT_POLL_INTERVAL_S": ("proxy", "parent_poll_interval_s"),
    "LSP_PROXY_CHUNK_SIZE": ("proxy", "chunk_size"),
    "LSP_PROXY_CONTROL_ENABLED": ("control", "enabled"),
    "LSP_PROXY_CONTROL_HOST": ("control", "host"),
    "LSP_PROXY_CONTROL_PORT": ("control", "port"),
    "LSP_PROXY_LOG_LEVEL": ("logging", "level"),
    "LSP_PROXY_LOG_FILE": ("logging", "file"),
    "LSP_PROXY_MONITORING_ENABLED": ("monitor", "enabled"),
    "LSP_PROXY_MONITORING_LOG_PATH": ("monitor", "log_path"),
    "LSP_PROXY_MONITORING_QUEUE_MAX": ("monitor", "queue_max"),
    "LSP_PROXY_MONITORING_SUMMARY_ON_EXIT": ("monitor", "summary_on_exit"),
}

# Cache global de configuration
_config_cache: Optional[Dict[str, Any]] = None


def _expand_env_vars(obj: Any) -> Any:
    """
    Récursivement étend les variables d'environnement ${VAR} dans la config.

    Args:
        obj: Valeur à traiter (str, dict, list)

    Returns:
        Valeur avec variables d'environnement expansées
    """
    if isinstance(obj, str):
        def replace_env_var(match):
            var_name = match.group(1)
            return os.environ.get(var_name, match.group(0))
        return re.sub(r'\$\{([^}]+)\}', replace_env_var, obj)
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    return obj


def _clear_config_cache():
    """Vide le cache de configuration."""
    global _config_cache
    _config_cache = None


def load_config(config_path: str = None) -> Dict[str, Any]:
    """
    Charge la configuration TOML.

    Sans chemin explicite, utilise `$LSP_PROXY_CONFIG`; sans fichier du tout,
    renvoie une configuration vide (valeurs par défaut).

    Raises:
        ConfigurationError: Si le fichier n'existe pas ou est invalide
    """
    global _config_cache

    if _config_cache is not None:
        return _config_cache

    if config_path is None:
        config_path = os.environ.get(CONFIG_ENV_VAR)
        if not config_path:
            _config_cache = {}
            return _config_cache

    path = Path(config_path).expanduser()
    if not path.exists():
        raise ConfigurationError(
            message=f"Fichier de configuration non trouvé: {config_path}",
            config_key="config_path"
        )

    try:
        with open(path, "rb") as f:
            raw_config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(
            message=f"TOML invalide dans {config_path}: {e}",
            config_key="config_path"
        )

    _config_cache = _expand_env_vars(raw_config)
    return _config_cache


def reload_config(config_path: str = None) -> Dict[str, Any]:
    """Recharge la configuration depuis le fichier."""
    _clear_config_cache()
    return load_config(config_path)


def apply_env_overrides(config: Dict[str, Any], environ: Mapping[str, str] = None) -> Dict[str, Any]:
    """Retourne une copie de la config surchargée par les variables `LSP_PROXY_*`."""
    environ = os.environ if environ is None else environ
    merged = {section: dict(values) for section, values in config.items() if isinstance(values, dict)}
    for var_name, (section, key) in ENV_OVERRIDES.items():
        raw = environ.get(var_name)
        if raw is None:
            continue
        merged.setdefault(section, {})[key] = raw.strip()
    return merged


def load_settings(config_path: str = None, environ: Mapping[str, str] = None) -> ProxySettings:
    """
    Construit les ProxySettings effectifs (fichier + environnement).

    Raises:
        ConfigurationError: Fichier ou valeur invalide
    """
    config = load_config(config_path)
    return ProxySettings.from_dict(apply_env_overrides(config, environ))
