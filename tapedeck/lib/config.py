"""
Shared configuration loader for tapedeck.

Loads a single JSON config file.  Search order:
  1. $TAPEDECK_CONFIG               (explicit override)
  2. /etc/tapedeck/config.json      (system install)
  3. config.json                    (CWD — handy for local dev)

Backend credentials are not kept here; see lib.credentials.

Usage:
    from tapedeck.lib.config import cfg

    sources  = cfg("sources", default=["subsonic", "audiostation", "local"])
    timeout  = cfg("http", "timeout", default=30)
    port     = cfg("publisher", "port", default=8780)
    paths    = cfg("local", "paths", default=[])
"""

import json
import logging
import os

from tapedeck.models import BACKENDS

logger = logging.getLogger(__name__)

_config: dict | None = None


def _search_paths() -> list[str]:
    paths = []
    override = os.environ.get("TAPEDECK_CONFIG")
    if override:
        paths.append(override)
    paths += ["/etc/tapedeck/config.json", "config.json"]
    return paths


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    sources = config.get("sources")
    if sources is not None:
        if not isinstance(sources, list):
            logger.warning("Config %s: 'sources' should be a list", path)
        else:
            for s in sources:
                if s not in BACKENDS:
                    logger.warning("Config %s: unknown source '%s'", path, s)
    default = config.get("default_source")
    if default and default not in BACKENDS:
        logger.warning("Config %s: unknown default_source '%s'", path, default)
    http = config.get("http") or {}
    timeout = http.get("timeout", 30)
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        logger.warning("Config %s: http.timeout must be a positive number, got %r", path, timeout)
    local = config.get("local") or {}
    if "local" in (sources or BACKENDS) and not local.get("paths"):
        logger.warning("Config %s: no local.paths — local source will be empty", path)


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _search_paths():
        try:
            with open(path) as f:
                _config = json.load(f)
                logger.info("Config loaded from %s", path)
                _validate(_config, path)
                return _config
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", path, e)
            continue

    logger.warning("No config.json found — using empty config")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("sources")                     → config["sources"]
    cfg("http", "timeout")             → config["http"]["timeout"]
    cfg("publisher", "port", default=8780)  → config["publisher"]["port"] or 8780
    """
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        return val.get(key, default)
    return default


def reload_config():
    """Force re-read from disk (for testing or hot-reload)."""
    global _config
    _config = None
    return load_config()
