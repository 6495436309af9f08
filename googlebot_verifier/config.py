"""
Configuration module for the Googlebot verifier.

Configuration is layered, with the following precedence:
1. Environment variables (``GBV_`` prefix, ``__`` separates nested keys,
   e.g. ``GBV_DNS__TIMEOUT=0.5``); a ``.env`` file is loaded first
2. JSON configuration file
3. Default values
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .crawlers import GOOGLE_CRAWLER_TOKENS, GOOGLE_HOSTNAME_SUFFIXES
from .time_utils import monotonic, now, now_iso

logger = logging.getLogger(__name__)

ENV_PREFIX = "GBV_"
DEFAULT_CONFIG_FILE = "googlebot_verifier.json"
CONFIG_PATHS = [
    Path(DEFAULT_CONFIG_FILE),
    Path.home() / ".googlebot-verifier" / DEFAULT_CONFIG_FILE,
]

GOOGLEBOT_RANGES_URL = "https://developers.google.com/static/search/apis/ipranges/googlebot.json"
GOOGLE_DOH_URL = "https://dns.google/resolve"

VALID_STRATEGIES = ("remote", "snapshot")
VALID_RESOLVERS = ("doh", "system")

DEFAULT_CONFIG = {
    # Published crawler IP ranges
    "ranges": {
        "strategy": "remote",
        "urls": [GOOGLEBOT_RANGES_URL],
        "ttl": 600,
        "retry_interval": 30,
        "fetch_timeout": 0.5,
        "snapshot_path": None,
        "refresh_in_background": False,
    },

    # Reverse/forward DNS fallback
    "dns": {
        "enabled": True,
        "resolver": "doh",
        "doh_url": GOOGLE_DOH_URL,
        "nameservers": [],
        "timeout": 0.25,
        "cache_ttl": 86400,
        "error_ttl": 300,
        "max_cache_entries": 10000,
        "allowed_suffixes": list(GOOGLE_HOSTNAME_SUFFIXES),
    },

    # User-agent tokens that trigger verification
    "crawler": {
        "user_agent_tokens": list(GOOGLE_CRAWLER_TOKENS),
    },

    # How the request layer resolves the client address
    "client_address": {
        "trusted_header": "X-Real-IP",
        "forwarded_header": "X-Forwarded-For",
        "fallback": "127.0.0.1",
    },

    # Flask request gate
    "gate": {
        "paths": ["/"],
        "endpoint": None,
        "verify_timeout": 1.0,
    },

    "logging": {
        "level": "INFO",
        "file": None,
        "max_size": 10485760,
        "backup_count": 5,
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    },
}


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from defaults, an optional JSON file and the environment.

    Args:
        path: Explicit config file path; overrides ``GBV_CONFIG`` and the
            default search paths.

    Returns:
        Dict: Complete configuration dictionary
    """
    load_start = monotonic()
    load_dotenv()

    config = copy.deepcopy(DEFAULT_CONFIG)

    file_config = _load_from_file(path)
    if file_config:
        _deep_update(config, file_config)

    env_config = _load_from_env()
    if env_config:
        _deep_update(config, env_config)

    config["_metadata"] = {
        "loaded_at": now_iso(),
        "loaded_timestamp": now(),
        "config_source": _get_config_source(file_config, env_config),
    }

    _validate_config(config)

    logger.debug("Configuration loaded in %.3fs", monotonic() - load_start)
    return config


def _load_from_file(path: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Returns:
        Optional[Dict]: Configuration from file, or None if no file found
    """
    if path:
        config_paths = [Path(path)]
    elif os.environ.get(ENV_PREFIX + "CONFIG"):
        config_paths = [Path(os.environ[ENV_PREFIX + "CONFIG"])]
    else:
        config_paths = CONFIG_PATHS

    for config_path in config_paths:
        if not config_path.exists():
            continue
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Error reading config file %s: %s", config_path, exc)
            continue

        if not isinstance(data, dict):
            logger.warning("Ignoring config file %s: top level is not an object", config_path)
            continue

        logger.info("Loaded configuration from %s", config_path)
        return data

    return None


def _load_from_env() -> Dict[str, Any]:
    config: Dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX) or key == ENV_PREFIX + "CONFIG":
            continue

        key_parts = key[len(ENV_PREFIX):].lower().split("__")

        current = config
        for part in key_parts[:-1]:
            current = current.setdefault(part, {})
            if not isinstance(current, dict):
                break
        else:
            current[key_parts[-1]] = _convert_value(value)

    if config:
        logger.debug("Loaded %d environment overrides", len(config))

    return config


def _convert_value(value: str) -> Any:
    """Convert string values from environment variables to appropriate types"""
    lowered = value.lower()
    if lowered in ("true", "yes"):
        return True
    if lowered in ("false", "no"):
        return False
    if lowered in ("none", "null"):
        return None
    if value.isdigit():
        return int(value)
    if value.replace(".", "", 1).isdigit() and value.count(".") == 1:
        return float(value)
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def _deep_update(base_dict: Dict, update_dict: Dict) -> None:
    """Recursively update a dictionary with another dictionary"""
    for key, value in update_dict.items():
        if key in base_dict and isinstance(base_dict[key], dict) and isinstance(value, dict):
            _deep_update(base_dict[key], value)
        else:
            base_dict[key] = value


_POSITIVE_KEYS = {
    "ranges": ("ttl", "retry_interval", "fetch_timeout"),
    "dns": ("timeout", "cache_ttl", "error_ttl", "max_cache_entries"),
    "gate": ("verify_timeout",),
}

_LIST_KEYS = {
    "ranges": ("urls",),
    "dns": ("nameservers", "allowed_suffixes"),
    "crawler": ("user_agent_tokens",),
    "gate": ("paths",),
}


def _validate_config(config: Dict) -> None:
    """Repair invalid values in place and record what was repaired."""
    issues = []

    ranges = config["ranges"]
    if ranges.get("strategy") not in VALID_STRATEGIES:
        issues.append(f"Invalid ranges strategy: {ranges.get('strategy')!r}")
        ranges["strategy"] = "remote"

    if ranges["strategy"] == "snapshot" and not ranges.get("snapshot_path"):
        issues.append("Snapshot strategy without snapshot_path, falling back to remote")
        ranges["strategy"] = "remote"

    # Env overrides arrive as plain strings; "a,b" means ["a", "b"]
    for section_name, keys in _LIST_KEYS.items():
        section = config[section_name]
        for key in keys:
            value = section.get(key)
            if value is None or isinstance(value, list):
                continue
            if isinstance(value, str):
                section[key] = [item.strip() for item in value.split(",") if item.strip()]
            elif isinstance(value, tuple):
                section[key] = list(value)
            else:
                issues.append(f"Invalid {section_name}.{key}: {value!r} is not a list")
                section[key] = copy.deepcopy(DEFAULT_CONFIG[section_name][key])

    if not ranges.get("urls"):
        issues.append("No range document URLs configured")
        ranges["urls"] = [GOOGLEBOT_RANGES_URL]

    dns_config = config["dns"]
    if dns_config.get("resolver") not in VALID_RESOLVERS:
        issues.append(f"Invalid dns resolver: {dns_config.get('resolver')!r}")
        dns_config["resolver"] = "doh"

    if not dns_config.get("allowed_suffixes"):
        issues.append("No allowed hostname suffixes configured")
        dns_config["allowed_suffixes"] = list(GOOGLE_HOSTNAME_SUFFIXES)

    if not config["crawler"].get("user_agent_tokens"):
        issues.append("No crawler user-agent tokens configured")
        config["crawler"]["user_agent_tokens"] = list(GOOGLE_CRAWLER_TOKENS)

    for section_name, keys in _POSITIVE_KEYS.items():
        section = config[section_name]
        for key in keys:
            value = section.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                issues.append(f"Invalid {section_name}.{key}: {value!r}")
                section[key] = DEFAULT_CONFIG[section_name][key]

    config["_metadata"]["validation"] = {
        "validated_at": now_iso(),
        "issues_found": len(issues),
        "issues": issues,
    }

    for issue in issues:
        logger.warning("Config validation: %s", issue)


def _get_config_source(file_config: Optional[Dict], env_config: Dict) -> str:
    sources = []
    if file_config:
        sources.append("file")
    if env_config:
        sources.append("environment")
    sources.append("defaults")
    return " + ".join(sources)


def get_config() -> Dict[str, Any]:
    """Get the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() reloads it."""
    global _config
    _config = None


_config: Optional[Dict[str, Any]] = None
