from __future__ import annotations
from pathlib import Path
from typing import Any, Mapping
import logging, os, json, tomllib

from .errors import ConfigError
from .model import BuildStep, parse_steps

ENV_PREFIX = "STEPCACHE_"
CACHE_SUBDIR = "stepcache"
DEFAULT_STEPS_ENV = "BUILD_STEPS"

DEFAULTS = {
    "cache_dir": None,
    "workspace": ".",
    "log_level": "WARNING",
}

def default_cache_root(environ: Mapping[str, str] | None = None) -> Path:
    """
    Per-user cache directory: $XDG_CACHE_HOME, else ~/.cache, joined with 'stepcache'.
    """
    environ = os.environ if environ is None else environ
    base = environ.get("XDG_CACHE_HOME")
    if base:
        return Path(base) / CACHE_SUBDIR
    home = environ.get("HOME")
    root = Path(home) if home else Path.home()
    return root / ".cache" / CACHE_SUBDIR

def load_config(path: str | None) -> dict:
    if not path:
        return {}
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {p}")
    try:
        if p.suffix.lower() in {".toml", ".tml"}:
            return tomllib.loads(p.read_text(encoding="utf-8"))
        elif p.suffix.lower() == ".json":
            data = json.loads(p.read_text(encoding="utf-8"))
            # a bare JSON list is a step list
            return {"steps": data} if isinstance(data, list) else data
        else:
            raise ConfigError("Unsupported config format (use TOML or JSON)")
    except (tomllib.TOMLDecodeError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot parse {p}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {p}: {e}") from e

def steps_from_env(name: str = DEFAULT_STEPS_ENV, environ: Mapping[str, str] | None = None) -> list[BuildStep]:
    """
    Decode a JSON step list from an environment variable.
    """
    environ = os.environ if environ is None else environ
    raw = environ.get(name)
    if raw is None:
        raise ConfigError(f"Environment variable {name} is not set")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{name} is not valid JSON: {e}") from e
    return parse_steps(data)

def steps_from_config(config: dict) -> list[BuildStep]:
    if "steps" not in config:
        raise ConfigError("Config has no 'steps'")
    return parse_steps(config["steps"])

def merge_settings(config: dict, cli: dict, environ: Mapping[str, str] | None = None,
                   env_prefix: str = ENV_PREFIX, defaults: dict = DEFAULTS):
    """
    Produce effective settings and a provenance map per key following:
    CLI > ENV > config [settings] > defaults
    - env variables are matched as f'{env_prefix}{KEY.upper()}'
    - CLI values of None count as unset
    """
    environ = os.environ if environ is None else environ
    file_settings = config.get("settings", {})
    if not isinstance(file_settings, dict):
        raise ConfigError("[settings] must be a table")
    unknown = set(file_settings) - set(defaults)
    if unknown:
        raise ConfigError(f"Unknown settings: {', '.join(sorted(unknown))}")
    eff: dict[str, Any] = {}
    prov: dict[str, str] = {}
    for k in defaults:
        env_key = f"{env_prefix}{k.upper()}"
        if cli.get(k) is not None:
            eff[k] = cli[k]; prov[k] = "CLI"
        elif environ.get(env_key):
            eff[k] = environ[env_key]; prov[k] = "ENV"
        elif file_settings.get(k) is not None:
            eff[k] = file_settings[k]; prov[k] = "CONFIG"
        else:
            eff[k] = defaults[k]; prov[k] = "DEFAULT"
    level = str(eff["log_level"]).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigError(f"Unknown log_level {eff['log_level']!r} (from {prov['log_level']})")
    eff["log_level"] = level
    if eff["cache_dir"] is None:
        eff["cache_dir"] = str(default_cache_root(environ))
    return eff, prov
