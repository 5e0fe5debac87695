"""Tests for configuration loading and validation."""

from __future__ import annotations

import pytest
import yaml

from llmsession.config import (
    DEFAULT_SKIP_TOOL_MESSAGE,
    AppConfig,
    ChatbotConfig,
    ProviderConfig,
    load_config,
)
from llmsession.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "LLMSESSION_API_KEY",
        "LLMSESSION_MODEL",
        "LLMSESSION_STREAMING",
        "LLMSESSION_MAX_TOKENS",
        "LLMSESSION_STORE_PATH",
        "OPENAI_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "llmsession.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "provider": {"model": "file-model", "api_base": "http://localhost:8080/v1"},
                "chatbot": {"system_prompt": "be brief", "use_streaming": True},
                "store": {"path": str(tmp_path / "s.db")},
                "profiles": {
                    "fast": {"provider": {"model": "fast-model", "max_tokens": 200}},
                },
            }
        ),
        encoding="utf-8",
    )
    return path


class TestLoadConfig:
    def test_defaults(self):
        cfg = load_config()
        assert cfg.provider.model == "gpt-4o-mini"
        assert cfg.provider.api_base == "https://api.openai.com/v1"
        assert cfg.chatbot.use_streaming is False
        assert cfg.chatbot.skip_tool_message == DEFAULT_SKIP_TOOL_MESSAGE

    def test_missing_file_uses_defaults(self, tmp_path):
        cfg = load_config(tmp_path / "nope.yaml")
        assert cfg.provider.model == "gpt-4o-mini"

    def test_file_values(self, config_file):
        cfg = load_config(config_file)
        assert cfg.provider.model == "file-model"
        assert cfg.provider.api_base == "http://localhost:8080/v1"
        assert cfg.chatbot.system_prompt == "be brief"
        assert cfg.chatbot.use_streaming is True
        assert "fast" in cfg.profiles

    def test_profile_overlay(self, config_file):
        cfg = load_config(config_file, profile="fast")
        assert cfg.provider.model == "fast-model"
        assert cfg.provider.max_tokens == 200
        assert cfg.provider.api_base == "http://localhost:8080/v1"

    def test_unknown_profile(self, config_file):
        with pytest.raises(ConfigurationError, match="Unknown profile"):
            load_config(config_file, profile="missing")

    def test_env_beats_file(self, config_file, monkeypatch):
        monkeypatch.setenv("LLMSESSION_MODEL", "env-model")
        monkeypatch.setenv("LLMSESSION_STREAMING", "no")
        monkeypatch.setenv("LLMSESSION_MAX_TOKENS", "50")
        cfg = load_config(config_file)
        assert cfg.provider.model == "env-model"
        assert cfg.chatbot.use_streaming is False
        assert cfg.provider.max_tokens == 50

    def test_cli_beats_env(self, config_file, monkeypatch):
        monkeypatch.setenv("LLMSESSION_MODEL", "env-model")
        cfg = load_config(
            config_file,
            cli_overrides={"provider.model": "cli-model", "chatbot.use_streaming": None},
        )
        assert cfg.provider.model == "cli-model"
        # None means "flag not given"
        assert cfg.chatbot.use_streaming is True

    def test_unknown_override_key(self):
        with pytest.raises(ConfigurationError, match="Unknown config key"):
            load_config(cli_overrides={"provider.colour": "blue"})

    def test_invalid_yaml(self, tmp_path):
        bad = tmp_path / "bad.yaml"
        bad.write_text("provider: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid config file"):
            load_config(bad)

    def test_non_mapping_file(self, tmp_path):
        bad = tmp_path / "list.yaml"
        bad.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(bad)

    def test_callbacks_not_read_from_file(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text(
            yaml.safe_dump({"chatbot": {"tool_registry": "x", "on_streaming_chunk": "y"}}),
            encoding="utf-8",
        )
        cfg = load_config(path)
        assert cfg.chatbot.tool_registry is None
        assert cfg.chatbot.on_streaming_chunk is None

    def test_to_dict_masks_api_key(self):
        cfg = AppConfig(provider=ProviderConfig(api_key="sk-secret-value"))
        d = cfg.to_dict()
        assert d["provider"]["api_key"] == "sk-s..."
        assert set(d["chatbot"]) == {
            "system_prompt",
            "use_streaming",
            "skip_tool_message",
            "default_model",
        }


class TestProviderValidation:
    def test_valid(self):
        ProviderConfig(api_key="sk-test").validate()

    def test_key_from_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        cfg = ProviderConfig()
        assert cfg.resolve_api_key() == "sk-env"
        cfg.validate()

    def test_missing_key(self):
        with pytest.raises(ConfigurationError, match="API key"):
            ProviderConfig().validate()

    @pytest.mark.parametrize("base", ["", "not a url", "ftp://host/v1", "https://"])
    def test_bad_base_url(self, base):
        with pytest.raises(ConfigurationError, match="base URL"):
            ProviderConfig(api_key="k", api_base=base).validate()

    def test_empty_model(self):
        with pytest.raises(ConfigurationError):
            ProviderConfig(api_key="k", model="").validate()

    @pytest.mark.parametrize("temperature", [-0.1, 2.5])
    def test_temperature_range(self, temperature):
        with pytest.raises(ConfigurationError, match="Temperature"):
            ProviderConfig(api_key="k", temperature=temperature).validate()

    def test_max_tokens(self):
        with pytest.raises(ConfigurationError, match="max_tokens"):
            ProviderConfig(api_key="k", max_tokens=0).validate()


class TestChatbotValidation:
    def test_defaults_valid(self):
        ChatbotConfig().validate()

    def test_streaming_needs_callback(self):
        with pytest.raises(ConfigurationError):
            ChatbotConfig(use_streaming=True).validate()
        ChatbotConfig(use_streaming=True, on_streaming_chunk=lambda m, d: None).validate()

    def test_empty_skip_message(self):
        with pytest.raises(ConfigurationError, match="Skip tool message"):
            ChatbotConfig(skip_tool_message="").validate()
