import json
import os
import re
from pathlib import Path

from dotenv import dotenv_values

from dbsnap.errors import ConfigError

DBSNAPCONFIG = ".dbsnapconfig"
GLOBAL_CONFIG_FILE = Path.home() / ".dbsnap" / "config.json"

DEFAULT_CONFIG = {
    "disk": "local",
    "storage_path": "db-snapshots",
    "temporary_directory_path": None,
    "default_connection": "default",
    "compress": False,
    "connections": {},
    # Optional: "disk": "s3", "s3_bucket": "my-db-snapshots", "s3_prefix": "db-snapshots"
}

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def load_global_config():
    """Load ~/.dbsnap/config.json, the machine-wide defaults."""
    if GLOBAL_CONFIG_FILE.exists():
        try:
            return json.loads(GLOBAL_CONFIG_FILE.read_text())
        except (json.JSONDecodeError, OSError):
            pass
    return {}


def find_config(start=None):
    """Walk up from cwd to find .dbsnapconfig, like git finds .git."""
    current = Path(start) if start else Path.cwd()
    for parent in [current, *current.parents]:
        config_path = parent / DBSNAPCONFIG
        if config_path.exists():
            return config_path
    return None


def load_env(project_path):
    """Variables for ${NAME} references: .env next to the config, overridden by os.environ."""
    env = {}
    env_file = Path(project_path) / ".env"
    if env_file.exists():
        env.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    env.update(os.environ)
    return env


def _interpolate(value, env):
    if isinstance(value, str):
        def _sub(match):
            name = match.group(1)
            if name not in env:
                raise ConfigError(f"Environment variable {name} referenced in {DBSNAPCONFIG} is not set")
            return env[name]
        return _ENV_REF.sub(_sub, value)
    if isinstance(value, dict):
        return {k: _interpolate(v, env) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate(v, env) for v in value]
    return value


def load_config(config_path=None):
    # Merge order: defaults → global config → project .dbsnapconfig
    config = {**DEFAULT_CONFIG, **load_global_config()}

    config_path = Path(config_path) if config_path else find_config()
    project_path = Path.cwd()
    if config_path:
        try:
            raw = json.loads(config_path.read_text())
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {config_path}: {e}")
        if not isinstance(raw, dict):
            raise ConfigError(f"{config_path} must contain a JSON object")
        config.update(raw)
        project_path = config_path.parent

        # Relative storage paths are relative to the config file, not the cwd
        storage_path = Path(config["storage_path"])
        if not storage_path.is_absolute():
            config["storage_path"] = str(project_path / storage_path)

    config["connections"] = _interpolate(config.get("connections") or {}, load_env(project_path))
    return config


def init_config(path=None, connection=None):
    """Create a .dbsnapconfig in the given directory."""
    target = Path(path) if path else Path.cwd()
    config_path = target / DBSNAPCONFIG
    init = {
        "disk": DEFAULT_CONFIG["disk"],
        "storage_path": DEFAULT_CONFIG["storage_path"],
        "default_connection": "default",
        "connections": {
            "default": connection or {"driver": "sqlite", "database": "database.sqlite"},
        },
    }
    config_path.write_text(json.dumps(init, indent=2) + "\n")
    return config_path
