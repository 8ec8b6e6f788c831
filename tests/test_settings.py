# Tests for configuration loading and validation

import json
from pathlib import Path

import pytest

from monk_manager.config import Settings, find_config_file, load_settings
from monk_manager.exceptions import ConfigError, ConfigFileError


class TestSettingsValidation:
    def test_defaults(self):
        settings = Settings()
        assert settings.provider == "anthropic"
        assert settings.temperature == 0.7
        assert settings.max_tokens == 1024
        assert settings.log_level == "WARNING"

    @pytest.mark.parametrize(
        "field,value",
        [
            ("temperature", 1.5),
            ("temperature", -0.1),
            ("max_tokens", 0),
            ("request_timeout", 0),
            ("cache_capacity", 0),
            ("provider", "skynet"),
            ("log_level", "LOUD"),
            ("default_format", "html"),
        ],
    )
    def test_invalid_values_are_rejected(self, field, value):
        with pytest.raises(ConfigError):
            load_settings(**{field: value})

    def test_retry_delay_bounds(self):
        with pytest.raises(ConfigError):
            load_settings(retry_base_delay=10.0, retry_max_delay=1.0)

    def test_provider_and_log_level_are_normalized(self):
        settings = load_settings(provider=" Mock ", log_level="debug")
        assert settings.provider == "mock"
        assert settings.log_level == "DEBUG"


class TestCredentials:
    def test_key_from_anthropic_variable(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-secret-0123456789")
        settings = load_settings()
        secret = settings.credentials()
        assert secret.get_secret() == "sk-ant-secret-0123456789"
        assert "secret-0123456789" not in repr(secret)
        assert "secret-0123456789" not in repr(settings)

    @pytest.mark.parametrize(
        "provider,expected",
        [("anthropic", "sk-ant-secret-0123456789"), ("openrouter", "sk-or-secret-0123456789")],
    )
    def test_key_follows_the_provider(self, monkeypatch, provider, expected):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-secret-0123456789")
        monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or-secret-0123456789")
        settings = load_settings(provider=provider)
        assert settings.require_credentials().get_secret() == expected

    def test_other_providers_key_is_never_used(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-secret-0123456789")
        settings = load_settings(provider="openrouter")
        with pytest.raises(ConfigError) as exc_info:
            settings.require_credentials()
        assert "OPENROUTER_API_KEY" in exc_info.value.message

    def test_explicit_key_wins(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-secret-0123456789")
        monkeypatch.setenv("MONK_API_KEY", "sk-monk-secret-0123456789")
        settings = load_settings()
        assert settings.credentials().get_secret() == "sk-monk-secret-0123456789"

    def test_missing_key_for_remote_provider(self):
        settings = load_settings(provider="anthropic")
        with pytest.raises(ConfigError) as exc_info:
            settings.require_credentials()
        assert "ANTHROPIC_API_KEY" in exc_info.value.message

    def test_placeholder_key_is_not_valid(self):
        settings = load_settings(provider="openrouter", api_key="your-api-key-here")
        with pytest.raises(ConfigError):
            settings.require_credentials()

    def test_mock_provider_needs_no_key(self):
        assert not load_settings(provider="mock").require_credentials()


class TestConfigFiles:
    def test_toml_sections_are_flattened(self, tmp_path):
        (tmp_path / "monk.toml").write_text(
            '[ai]\nmodel_name = "claude-test"\ntemperature = 0.2\n\n'
            '[logging]\nlevel = "info"\nfile = "logs/monk.log"\n\n'
            "[cache]\ncache_capacity = 8\n"
        )
        settings = load_settings()
        assert settings.model_name == "claude-test"
        assert settings.temperature == 0.2
        assert settings.log_level == "INFO"
        assert settings.log_file == Path("logs/monk.log")
        assert settings.cache_capacity == 8
        assert settings.config_file_path == tmp_path / "monk.toml"

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("ai:\n  provider: mock\n  max_tokens: 99\n")
        settings = load_settings(path)
        assert settings.provider == "mock"
        assert settings.max_tokens == 99

    def test_json_file(self, tmp_path):
        path = tmp_path / "monk.json"
        path.write_text(json.dumps({"retry": {"retry_max_attempts": 5}}))
        assert load_settings(path).retry_max_attempts == 5

    def test_environment_beats_file(self, tmp_path, monkeypatch):
        (tmp_path / "monk.toml").write_text("[ai]\ntemperature = 0.2\n")
        monkeypatch.setenv("MONK_TEMPERATURE", "0.9")
        assert load_settings().temperature == 0.9

    def test_command_line_beats_environment(self, monkeypatch):
        monkeypatch.setenv("MONK_MODEL_NAME", "from-env")
        assert load_settings(model_name="from-cli").model_name == "from-cli"
        assert load_settings(model_name=None).model_name == "from-env"

    def test_config_variable_points_to_file(self, tmp_path, monkeypatch):
        path = tmp_path / "elsewhere.toml"
        path.write_text('provider = "mock"\n')
        monkeypatch.setenv("MONK_CONFIG", str(path))
        assert find_config_file() == path
        assert load_settings().provider == "mock"

    def test_no_file_means_defaults(self):
        assert find_config_file() is None
        assert load_settings().config_file_path is None

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "monk.toml"
        path.write_text("[ai\nmodel_name = ")
        with pytest.raises(ConfigFileError) as exc_info:
            load_settings(path)
        assert exc_info.value.file_path == path

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "monk.ini"
        path.write_text("[ai]\n")
        with pytest.raises(ConfigFileError):
            load_settings(path)

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigFileError):
            load_settings(tmp_path / "nope.toml")
