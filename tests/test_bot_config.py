"""Tests for secrets and settings loading."""

import json

import pytest

import bot_config
from bot_config import DEFAULT_SETTINGS, is_admin, load_settings, read_bot_token, read_osu_client_file


def write_settings(tmp_path, data):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestLoadSettings:
    """settings.json overrides."""

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_settings(tmp_path / "nope.json") == DEFAULT_SETTINGS

    def test_overrides(self, tmp_path):
        path = write_settings(tmp_path, {"active_message_timeout": 90, "miss_analyzer_url": "http://localhost:7272"})
        settings = load_settings(path)
        assert settings["active_message_timeout"] == 90
        assert settings["miss_analyzer_url"] == "http://localhost:7272"
        assert settings["sweep_interval"] == DEFAULT_SETTINGS["sweep_interval"]

    def test_unknown_and_mistyped_are_ignored(self, tmp_path, capsys):
        path = write_settings(tmp_path, {"colour": "red", "sweep_interval": "fast", "cache_ttl": True})
        settings = load_settings(path)
        assert "colour" not in settings
        assert settings["sweep_interval"] == DEFAULT_SETTINGS["sweep_interval"]
        assert settings["cache_ttl"] == DEFAULT_SETTINGS["cache_ttl"]
        assert "[CONFIG]" in capsys.readouterr().out

    def test_null_only_where_default_is_null(self, tmp_path):
        path = write_settings(tmp_path, {"miss_analyzer_url": None, "sweep_interval": None})
        settings = load_settings(path)
        assert settings["miss_analyzer_url"] is None
        assert settings["sweep_interval"] == DEFAULT_SETTINGS["sweep_interval"]

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{broken", encoding="utf-8")
        assert load_settings(path) == DEFAULT_SETTINGS

    def test_not_an_object(self, tmp_path):
        assert load_settings(write_settings(tmp_path, [1, 2])) == DEFAULT_SETTINGS

    def test_defaults_are_not_shared(self, tmp_path):
        settings = load_settings(tmp_path / "nope.json")
        settings["active_message_timeout"] = 1
        assert bot_config.DEFAULT_SETTINGS["active_message_timeout"] == 60


class TestSecrets:
    """Token and osu! client files."""

    def test_token(self, tmp_path):
        path = tmp_path / "BOT_TOKEN.txt"
        path.write_text("  secret-token\n", encoding="utf-8")
        assert read_bot_token(path) == "secret-token"

    def test_missing_token(self, tmp_path):
        with pytest.raises(ValueError, match="BOT_TOKEN.txt"):
            read_bot_token(tmp_path / "BOT_TOKEN.txt")

    def test_osu_client(self, tmp_path):
        path = tmp_path / "OSU_CLIENT.txt"
        path.write_text("1234\n\nabcdef\n", encoding="utf-8")
        assert read_osu_client_file(path) == ("1234", "abcdef")

    def test_osu_client_incomplete(self, tmp_path):
        path = tmp_path / "OSU_CLIENT.txt"
        path.write_text("1234\n", encoding="utf-8")
        assert read_osu_client_file(path) is None
        assert read_osu_client_file(tmp_path / "missing.txt") is None


class TestIsAdmin:
    def test_ids_compare_as_strings(self):
        settings = {"admin_ids": ["123", 456]}
        assert is_admin(123, settings)
        assert is_admin(456, settings)
        assert not is_admin(789, settings)
        assert not is_admin(123, {})
