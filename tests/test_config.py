from __future__ import annotations

import pytest

from maplister.config import DEFAULT_CONFIG, _deep_merge, load_config, settings_from_config
from maplister.errors import ConfigError


def test_load_config_defaults(monkeypatch) -> None:
    monkeypatch.delenv("MAPLISTER_CONFIG", raising=False)
    monkeypatch.delenv("MAPLISTER_DB", raising=False)
    config = load_config()
    settings = settings_from_config(config)
    assert settings.page_size == DEFAULT_CONFIG["crawl"]["page_size"]
    assert settings.retry_backoff == "fixed"
    assert config["output"]["sqlite_path"] == "maplister.sqlite"


def test_load_config_merges_user_file(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("MAPLISTER_DB", raising=False)
    path = tmp_path / "maplister.yml"
    path.write_text(
        "game: 2\ncrawl:\n  workers: 3\n  retry_backoff: exponential\n",
        encoding="utf-8",
    )
    config = load_config(path)
    settings = settings_from_config(config)
    assert config["game"] == 2
    assert settings.workers == 3
    assert settings.retry_backoff == "exponential"
    assert settings.max_attempts == DEFAULT_CONFIG["crawl"]["max_attempts"]


def test_load_config_missing_file_uses_defaults(tmp_path) -> None:
    config = load_config(tmp_path / "absent.yml")
    assert config["crawl"]["workers"] == DEFAULT_CONFIG["crawl"]["workers"]


def test_db_path_environment_override(monkeypatch) -> None:
    monkeypatch.setenv("MAPLISTER_DB", "/tmp/other.sqlite")
    assert load_config()["output"]["sqlite_path"] == "/tmp/other.sqlite"


def test_invalid_yaml_root_rejected(tmp_path) -> None:
    path = tmp_path / "bad.yml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path)


def test_settings_validation() -> None:
    config = _deep_merge(DEFAULT_CONFIG, {"crawl": {"workers": 0}})
    with pytest.raises(ConfigError, match="workers"):
        settings_from_config(config)

    config = _deep_merge(DEFAULT_CONFIG, {"crawl": {"retry_backoff": "random"}})
    with pytest.raises(ConfigError, match="retry_backoff"):
        settings_from_config(config)

    config = _deep_merge(DEFAULT_CONFIG, {"api": {"endpoints": {"count": ""}}})
    with pytest.raises(ConfigError, match="count"):
        settings_from_config(config)


def test_url_and_body_templates() -> None:
    config = _deep_merge(
        DEFAULT_CONFIG,
        {"api": {"base_url": "https://api.example/", "bodies": {"maps_page": "cat={category_id}&p={page}"}}},
    )
    settings = settings_from_config(config)
    assert (
        settings.url_for("maps_page", game_id=4660, category_id="7", page=3)
        == "https://api.example/games/4660/categories/7/maps?page=3&perpage=50"
    )
    assert settings.body_for("maps_page", game_id=4660, category_id="7", page=3) == "cat=7&p=3"
    assert settings.body_for("count", game_id=4660) is None
