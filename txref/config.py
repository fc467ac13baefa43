"""
Configuration for provider lookups.

Precedence (highest first): CLI flags, environment, TOML file, defaults.

    ~/.txref/config.toml
        provider = "blockcypher"        # or "rpc"
        chain = "mainnet"
        timeout = 30
        blockcypher_token = "..."
        rpc_url = "http://127.0.0.1:8332"
        rpc_user = "..."

RPC passwords are never read from the file or from CLI arguments. Use a
Bitcoin Core cookie file or BITCOIN_RPC_PASS.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from txref import CONFIG_DIR, CONFIG_FILE, PROVIDER_DEFAULT, PROVIDER_TIMEOUT_SECS

log = logging.getLogger(__name__)

DEFAULT_CONFIG: dict[str, Any] = {
    "provider": PROVIDER_DEFAULT,
    "chain": "mainnet",
    "timeout": PROVIDER_TIMEOUT_SECS,
    "blockcypher_token": "",
    "rpc_url": "",
    "rpc_user": "",
    "rpc_password": "",
}

# Keys a config file may set
_FILE_KEYS = frozenset(DEFAULT_CONFIG) - {"rpc_password"}

# Environment variable -> config key
_ENV_KEYS = {
    "TXREF_PROVIDER": "provider",
    "BLOCKCYPHER_TOKEN": "blockcypher_token",
    "BITCOIN_RPC_URL": "rpc_url",
    "BITCOIN_RPC_USER": "rpc_user",
    "BITCOIN_RPC_PASS": "rpc_password",
}


def default_config_path() -> Path:
    return Path.home() / CONFIG_DIR / CONFIG_FILE


def _read_file(path: Path) -> dict[str, Any]:
    try:
        import tomllib
    except ImportError:
        try:
            import tomli as tomllib
        except ImportError:
            log.warning("tomllib/tomli not available, ignoring %s", path)
            return {}

    try:
        with open(path, "rb") as f:
            file_config = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        log.warning("Failed to load config from %s: %s", path, e)
        return {}

    unknown = set(file_config) - _FILE_KEYS
    if unknown:
        log.warning("Ignoring unknown config keys in %s: %s", path, ", ".join(sorted(unknown)))
    return {k: v for k, v in file_config.items() if k in _FILE_KEYS}


def load_config(config_path: Path | None = None) -> dict[str, Any]:
    """Load config from defaults, the TOML file, then the environment."""
    config = dict(DEFAULT_CONFIG)

    path = config_path or default_config_path()
    if path.is_file():
        config.update(_read_file(path))
    elif config_path is not None:
        log.warning("Config file %s not found, using defaults", path)

    for env_name, key in _ENV_KEYS.items():
        value = os.environ.get(env_name)
        if value:
            config[key] = value

    return config
