from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

log = logging.getLogger("timechat.server.config")

DEFAULTS: Dict[str, Any] = {
    "host": "0.0.0.0",
    "port": 8080,
    "data_file": "data.json",
    "log_level": "INFO",
}

# config key -> environment variable
ENV_VARS = {
    "host": "TIMECHAT_HOST",
    "port": "PORT",
    "data_file": "TIMECHAT_DATA_FILE",
    "log_level": "TIMECHAT_LOG_LEVEL",
}


def load_config(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Defaults, then the optional YAML file, then the environment."""

    config = dict(DEFAULTS)
    if path is not None:
        loaded = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"config file {path} must contain a mapping")
        unknown = set(loaded) - set(DEFAULTS)
        if unknown:
            log.warning("Ignoring unknown config key(s): %s", ", ".join(sorted(unknown)))
        config.update({key: value for key, value in loaded.items() if key in DEFAULTS})

    env = os.environ if environ is None else environ
    for key, var in ENV_VARS.items():
        value = env.get(var)
        if value:
            config[key] = value

    try:
        config["port"] = int(config["port"])
    except (TypeError, ValueError):
        raise ValueError(f"invalid port: {config['port']!r}") from None
    config["data_file"] = str(config["data_file"])
    config["log_level"] = str(config["log_level"]).upper()
    return config


__all__ = ["DEFAULTS", "ENV_VARS", "load_config"]
