import os

import yaml

from agora.config import DEFAULTS, MONGO_URI_ENV, SECRET_KEY_ENV, ConfigManager


def test_defaults_when_no_file(tmp_path):
    config = ConfigManager(str(tmp_path)).load()

    assert config["web"]["port"] == 0
    assert config["session"]["idle_timeout"] == 60
    assert config["hub"]["persistence_policy"] == "best_effort"
    assert config["storage"]["backend"] == "memory"


def test_file_values_merge_over_defaults(tmp_path):
    (tmp_path / "config.yaml").write_text(yaml.dump({"session": {"idle_timeout": 5}}))

    config = ConfigManager(str(tmp_path)).load()

    assert config["session"]["idle_timeout"] == 5
    assert config["session"]["cookie_name"] == DEFAULTS["session"]["cookie_name"]


def test_corrupted_file_falls_back_to_defaults(tmp_path):
    (tmp_path / "config.yaml").write_text("web: [unclosed")

    config = ConfigManager(str(tmp_path)).load()

    assert "_config_error" in config
    assert config["web"]["port"] == 0


def test_update_persists_known_sections_only(tmp_path):
    manager = ConfigManager(str(tmp_path))

    manager.update({"hub": {"persistence_policy": "strict"}, "_internal": 1})

    saved = yaml.safe_load((tmp_path / "config.yaml").read_text())
    assert saved["hub"]["persistence_policy"] == "strict"
    assert "_internal" not in saved
    assert manager.load()["hub"]["persistence_policy"] == "strict"


def test_secret_key_is_generated_once(tmp_path, monkeypatch):
    monkeypatch.delenv(SECRET_KEY_ENV, raising=False)
    manager = ConfigManager(str(tmp_path))

    first = manager.get_secret_key()
    second = manager.get_secret_key()

    assert first and first == second
    assert f"{SECRET_KEY_ENV}={first}" in (tmp_path / ".env").read_text()


def test_mongo_uri_from_env_file_overrides_config(tmp_path, monkeypatch):
    monkeypatch.delenv(MONGO_URI_ENV, raising=False)
    (tmp_path / ".env").write_text(f"{MONGO_URI_ENV}=mongodb://db.example:27017\n")

    config = ConfigManager(str(tmp_path)).load()

    assert config["storage"]["mongo_uri"] == "mongodb://db.example:27017"
