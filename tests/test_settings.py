"""Tests for the settings loader."""
import pytest

import config.settings as settings_module
from config.settings import EngineConfig, get_settings, load_settings


@pytest.fixture(autouse=True)
def reset_cached_settings(monkeypatch):
    monkeypatch.setattr(settings_module, "_settings", None)


class TestLoadSettings:
    def test_defaults_when_file_is_missing(self, tmp_path):
        settings = load_settings(str(tmp_path / "absent.yaml"))
        assert settings.engine == EngineConfig()
        assert settings.integrations.retry_attempts == 3
        assert settings.registry.typebot_paths == []

    def test_reads_yaml_with_env_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FLOWCHAT_API_HOST", "https://typebot.test")
        monkeypatch.setenv("FLOWCHAT_PREVIEW", "true")
        path = tmp_path / "settings.yaml"
        path.write_text(
            "app_name: Bots\n"
            "engine:\n"
            "  api_host: ${FLOWCHAT_API_HOST}\n"
            "  is_preview: ${FLOWCHAT_PREVIEW}\n"
            "  max_chained_blocks: 7\n"
            "integrations:\n"
            "  timeout_seconds: 2.5\n"
            "registry:\n"
            "  typebot_paths: [flows/a.yaml]\n"
        )
        settings = load_settings(str(path))
        assert settings.app_name == "Bots"
        assert settings.engine.api_host == "https://typebot.test"
        assert settings.engine.is_preview is True
        assert settings.engine.max_chained_blocks == 7
        assert settings.integrations.timeout_seconds == 2.5
        assert settings.registry.typebot_paths == ["flows/a.yaml"]

    def test_unknown_env_var_is_left_in_place(self, tmp_path, monkeypatch):
        monkeypatch.delenv("FLOWCHAT_MISSING", raising=False)
        path = tmp_path / "settings.yaml"
        path.write_text("engine:\n  api_host: ${FLOWCHAT_MISSING}\n")
        assert load_settings(str(path)).engine.api_host == "${FLOWCHAT_MISSING}"

    def test_path_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text("app_name: FromEnv\n")
        monkeypatch.setenv("FLOWCHAT_CONFIG", str(path))
        assert load_settings().app_name == "FromEnv"

    def test_get_settings_caches(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FLOWCHAT_CONFIG", str(tmp_path / "absent.yaml"))
        assert get_settings() is get_settings()
