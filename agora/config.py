"""
Agora - Configuration Manager
===============================
Handles loading and saving of application configuration from two sources:

1. config.yaml  - Non-sensitive settings (port, timeouts, storage backends)
2. .env         - Secrets (session signing key, MongoDB connection string)

Recognised secrets:
    AGORA_SECRET_KEY  - key used to sign session tokens
    AGORA_MONGO_URI   - MongoDB connection string (overrides storage.mongo_uri)

Usage:
    config = ConfigManager(project_dir="/path/to/agora")
    settings = config.load()                       # Returns merged config dict
    config.update({"session": {"idle_timeout": 120}})
    secret = config.get_secret("AGORA_SECRET_KEY")
"""

import os
import secrets

import yaml
from dotenv import dotenv_values


# Default configuration values used when config.yaml is missing or incomplete.
DEFAULTS = {
    "web": {
        "host": "0.0.0.0",
        "port": 0,               # 0 lets the OS pick an ephemeral port
        "log_level": "info",
    },
    "session": {
        "idle_timeout": 60,      # seconds
        "cookie_name": "agora_session",
    },
    "hub": {
        "persistence_policy": "best_effort",   # or "strict"
    },
    "storage": {
        "backend": "memory",     # users + chat: "memory" or "mongodb"
        "mongo_uri": "mongodb://localhost:27017",
        "mongo_db": "agora",
        "catalog_url": None,     # None -> sqlite file in data/, "memory" -> in-process
        "fail_fast": False,      # abort startup when a store is unreachable
    },
}

SECTIONS = ["web", "session", "hub", "storage"]

SECRET_KEY_ENV = "AGORA_SECRET_KEY"
MONGO_URI_ENV = "AGORA_MONGO_URI"


class ConfigManager:
    """
    Unified configuration manager for Agora.

    Attributes:
        project_dir: Root directory of the Agora project.
        config_path: Full path to config.yaml.
        env_path:    Full path to .env file.
    """

    def __init__(self, project_dir: str):
        self.project_dir = project_dir
        self.config_path = os.path.join(project_dir, "config.yaml")
        self.env_path = os.path.join(project_dir, ".env")

    @property
    def data_dir(self) -> str:
        return os.path.join(self.project_dir, "data")

    def load(self) -> dict:
        """
        Load and merge configuration from config.yaml with defaults.

        Missing values are filled from DEFAULTS. A MongoDB URI found in the
        environment or .env replaces the one from the file.

        Returns:
            A dictionary containing the full configuration.
        """
        config = _deep_copy(DEFAULTS)

        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    user_config = yaml.safe_load(f) or {}
                _deep_merge(config, user_config)
            except (yaml.YAMLError, OSError) as e:
                # Corrupted file: keep defaults, caller decides how to report
                config["_config_error"] = str(e)

        mongo_uri = self.get_secret(MONGO_URI_ENV)
        if mongo_uri:
            config["storage"]["mongo_uri"] = mongo_uri

        return config

    def save(self, config: dict) -> None:
        """
        Save configuration back to config.yaml.

        Only known sections are written; internal keys (prefixed with '_')
        are dropped.
        """
        clean = {}
        for section in SECTIONS:
            if section in config:
                clean[section] = config[section]

        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.dump(
                clean,
                f,
                default_flow_style=False,
                allow_unicode=True,
                sort_keys=False,
            )

    def update(self, updates: dict) -> dict:
        """
        Partially update configuration and save.

        Returns:
            The full updated configuration.
        """
        config = self.load()
        _deep_merge(config, updates)
        self.save(config)
        return config

    # -- Secrets ---------------------------------------------------------------

    def get_secret(self, name: str) -> str | None:
        """
        Look up a secret in the process environment, then in .env.

        Returns:
            The value, or None if it is not set anywhere.
        """
        value = os.environ.get(name)
        if value:
            return value
        env_values = dotenv_values(self.env_path) if os.path.exists(self.env_path) else {}
        return env_values.get(name) or None

    def get_secret_key(self) -> str:
        """
        Return the session signing key, generating and storing one in .env
        on first use so sessions survive restarts.
        """
        key = self.get_secret(SECRET_KEY_ENV)
        if not key:
            key = secrets.token_urlsafe(32)
            self._write_env_key(SECRET_KEY_ENV, key)
        return key

    def _write_env_key(self, key_name: str, value: str) -> None:
        """
        Write a single key=value pair to the .env file.

        If the key already exists, its value is replaced in-place.
        If it doesn't exist, it's appended to the file.
        """
        lines = []
        if os.path.exists(self.env_path):
            with open(self.env_path, "r", encoding="utf-8") as f:
                lines = f.readlines()

        found = False
        new_lines = []
        for line in lines:
            if line.strip().startswith(f"{key_name}="):
                new_lines.append(f"{key_name}={value}\n")
                found = True
            else:
                new_lines.append(line)

        if not found:
            new_lines.append(f"{key_name}={value}\n")

        with open(self.env_path, "w", encoding="utf-8") as f:
            f.writelines(new_lines)


# -- Helper Functions ---------------------------------------------------------

def _deep_copy(d: dict) -> dict:
    """Create a deep copy of a nested dictionary."""
    result = {}
    for key, value in d.items():
        if isinstance(value, dict):
            result[key] = _deep_copy(value)
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _deep_merge(base: dict, override: dict) -> None:
    """
    Recursively merge 'override' into 'base' (in-place).

    For nested dicts, values are merged recursively.
    For all other types, override replaces base.
    """
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
