"""
Tests for configuration validation and defaults.

Tests cover:
- Defaults class values
- RelayConfig.from_settings() - all sections
- Environment overrides (RELAY_ENV, RELAY_PUBLIC_BASE_URL)
- Credentials from the environment only
- ConfigValidationError on invalid values
- load_settings() file handling
"""

from pathlib import Path

import pytest

from relay_api.core.config import (
    ConfigValidationError,
    Credentials,
    Defaults,
    RelayConfig,
    Settings,
    load_settings,
)

REPO_ROOT = Path(__file__).resolve().parent.parent


class TestDefaults:
    """Tests for Defaults class values."""

    def test_cache_defaults(self):
        assert Defaults.CACHE_DEFAULT_TTL_SECONDS == 3600
        assert Defaults.CACHE_NAMESPACE_TTLS == {
            "completion": 7200,
            "voice": 3600,
            "profile": 1800,
            "template": 86400,
        }

    def test_provider_defaults(self):
        assert Defaults.OPENAI_MODEL == "gpt-4o-mini"
        assert Defaults.OPENAI_TEMPERATURE == 0.3
        assert Defaults.OPENAI_MAX_TOKENS == 2000
        assert Defaults.ELEVENLABS_MODEL == "eleven_multilingual_v2"

    def test_environment_defaults_to_production(self):
        assert Defaults.ENVIRONMENT == "production"


class TestRelayConfigFromSettings:
    """Tests for RelayConfig.from_settings()."""

    def test_empty_settings_use_defaults(self):
        config = Settings(raw={}, env={}).get_relay_config()
        assert config.app.environment == "production"
        assert config.app.is_development is False
        assert config.cache.namespaces["completion"] == 7200
        assert config.providers.timeout_s == 30.0
        assert config.activity.default_limit == 50
        assert config.activity.max_limit == 100
        assert config.logging.level == 2

    def test_namespace_table_merges_with_defaults(self):
        raw = {"cache": {"namespaces": {"completion": 60, "custom": 5}}}
        config = Settings(raw=raw, env={}).get_relay_config()
        assert config.cache.namespaces["completion"] == 60
        assert config.cache.namespaces["custom"] == 5
        assert config.cache.namespaces["voice"] == 3600

    def test_provider_section(self):
        raw = {
            "providers": {
                "timeout_s": 5,
                "openai": {"model": "gpt-4o", "temperature": 0.7, "base_url": "http://llm.local/v1/"},
                "elevenlabs": {"model": "eleven_turbo_v2"},
                "resend": {"from": "Team <team@example.com>"},
            }
        }
        p = Settings(raw=raw, env={}).get_relay_config().providers
        assert p.timeout_s == 5.0
        assert p.openai_model == "gpt-4o"
        assert p.openai_temperature == 0.7
        assert p.openai_base_url == "http://llm.local/v1"
        assert p.elevenlabs_model == "eleven_turbo_v2"
        assert p.email_from == "Team <team@example.com>"

    def test_env_overrides_yaml(self):
        raw = {"app": {"environment": "production", "public_base_url": "https://yaml.example"}}
        env = {"RELAY_ENV": "development", "RELAY_PUBLIC_BASE_URL": "https://relay.example/"}
        config = Settings(raw=raw, env=env).get_relay_config()
        assert config.app.environment == "development"
        assert config.app.is_development is True
        assert config.app.public_base_url == "https://relay.example"

    def test_string_log_level(self):
        config = Settings(raw={"logging": {"level": "VERBOSE"}}, env={}).get_relay_config()
        assert config.logging.level == 3

    def test_log_level_env_wins(self):
        config = Settings(raw={"logging": {"level": "VERBOSE"}}, env={"RELAY_LOG_LEVEL": "4"}).get_relay_config()
        assert config.logging.level == 4


class TestValidation:
    """Invalid values raise ConfigValidationError."""

    def test_negative_ttl_rejected(self):
        with pytest.raises(ConfigValidationError, match="cache.default_ttl_seconds"):
            Settings(raw={"cache": {"default_ttl_seconds": -1}}, env={}).get_relay_config()

    def test_zero_namespace_ttl_rejected(self):
        with pytest.raises(ConfigValidationError, match="cache.namespaces.voice"):
            Settings(raw={"cache": {"namespaces": {"voice": 0}}}, env={}).get_relay_config()

    def test_audio_must_outlive_voice_cache(self):
        raw = {"audio": {"ttl_seconds": 1}, "cache": {"namespaces": {"voice": 3600}}}
        with pytest.raises(ConfigValidationError, match="audio.ttl_seconds must be at least"):
            Settings(raw=raw, env={}).get_relay_config()

    def test_temperature_out_of_range(self):
        raw = {"providers": {"openai": {"temperature": 3}}}
        with pytest.raises(ConfigValidationError, match="temperature"):
            Settings(raw=raw, env={}).get_relay_config()

    def test_default_limit_above_max(self):
        raw = {"activity": {"default_limit": 500, "max_limit": 100}}
        with pytest.raises(ConfigValidationError, match="activity.default_limit"):
            Settings(raw=raw, env={}).get_relay_config()

    def test_non_numeric_value(self):
        with pytest.raises(ConfigValidationError):
            Settings(raw={"audio": {"ttl_seconds": "soon"}}, env={}).get_relay_config()


class TestCredentials:
    """Credentials come from the environment, never from YAML."""

    def test_from_env(self):
        creds = Credentials.from_env({"OPENAI_API_KEY": "sk", "API_SECRET_KEY": "k"})
        assert creds.openai_api_key == "sk"
        assert creds.api_secret_key == "k"
        assert creds.resend_api_key is None

    def test_empty_values_are_missing(self):
        creds = Credentials.from_env({"OPENAI_API_KEY": ""})
        assert creds.openai_api_key is None

    def test_service_status(self):
        creds = Credentials.from_env({
            "OPENAI_API_KEY": "sk",
            "SUPABASE_URL": "https://db.test",
        })
        assert creds.service_status() == {
            "openai": "configured",
            "elevenlabs": "missing",
            "resend": "missing",
            "supabase": "missing",
        }

    def test_yaml_credentials_ignored(self):
        config = Settings(raw={"credentials": {"openai_api_key": "leak"}}, env={}).get_relay_config()
        assert config.credentials.openai_api_key is None


class TestLoadSettings:
    """Tests for load_settings()."""

    def test_missing_file_gives_defaults(self, tmp_path):
        settings = load_settings(str(tmp_path / "absent.yaml"), environ={})
        assert settings.raw == {}
        assert isinstance(settings.get_relay_config(), RelayConfig)

    def test_reads_yaml(self, tmp_path):
        p = tmp_path / "settings.yaml"
        p.write_text("app:\n  environment: staging\n", encoding="utf-8")
        settings = load_settings(str(p), environ={})
        assert settings.environment == "staging"
        assert settings.get_relay_config().app.environment == "staging"

    def test_relay_settings_env(self, tmp_path):
        p = tmp_path / "other.yaml"
        p.write_text("activity:\n  default_limit: 20\n", encoding="utf-8")
        settings = load_settings(environ={"RELAY_SETTINGS": str(p)})
        assert settings.get_relay_config().activity.default_limit == 20

    def test_invalid_yaml(self, tmp_path):
        p = tmp_path / "bad.yaml"
        p.write_text("app: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigValidationError, match="cannot parse"):
            load_settings(str(p), environ={})

    def test_non_mapping_top_level(self, tmp_path):
        p = tmp_path / "list.yaml"
        p.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigValidationError, match="mapping"):
            load_settings(str(p), environ={})

    def test_repository_settings_file_is_valid(self):
        settings = load_settings(str(REPO_ROOT / "config" / "settings.yaml"), environ={})
        config = settings.get_relay_config()
        assert config.app.name == "relay-api"
        assert config.cache.namespaces["template"] == 86400
