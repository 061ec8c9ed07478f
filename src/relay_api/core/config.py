"""
Configuration Management for relay-api.

This module provides centralized configuration handling with:
    - Default values (Defaults class)
    - Dataclass-based configuration sections
    - YAML file loading with environment variable overrides
    - Validation with meaningful error messages

Configuration Hierarchy (highest priority first):
    1. Environment variables (RELAY_ENV, RELAY_PUBLIC_BASE_URL, credentials)
    2. YAML config file (config/settings.yaml, or RELAY_SETTINGS)
    3. Defaults class values

Provider credentials are only ever read from the environment, never from
the YAML file.

Example settings.yaml:
    app:
      environment: development

    cache:
      default_ttl_seconds: 3600
      sweep_interval_seconds: 600
      namespaces:
        completion: 7200

    logging:
      level: 2  # NORMAL
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from relay_api.core.logging.levels import coerce_level


class ConfigValidationError(Exception):
    """Raised when a configuration value is out of bounds or malformed."""
    pass


class Defaults:
    """
    Centralized default configuration values.

    Sections:
        - App: Identity and environment
        - Cache: Namespace TTL table and sweep interval
        - Providers: Upstream endpoints, models, timeouts
        - Audio: On-disk store for synthesized speech
        - Activity: Pagination bounds for activity logs
        - Logging: Log level
    """

    # ─────────────────────────────────────────────────────────────────────────
    # App
    # ─────────────────────────────────────────────────────────────────────────
    APP_NAME = "relay-api"
    APP_VERSION = "1.0.0"
    ENVIRONMENT = "production"          # Anything but "development" hides internals
    PUBLIC_BASE_URL = ""                # Empty -> relative audio references
    DOCS_PATH = str(Path(__file__).resolve().parent.parent / "docs" / "openapi.yaml")

    # ─────────────────────────────────────────────────────────────────────────
    # Cache
    # ─────────────────────────────────────────────────────────────────────────
    CACHE_DEFAULT_TTL_SECONDS = 3600
    CACHE_SWEEP_INTERVAL_SECONDS = 600
    CACHE_NAMESPACE_TTLS = {
        "completion": 7200,             # 2 hours
        "voice": 3600,                  # 1 hour
        "profile": 1800,                # 30 minutes
        "template": 86400,              # 24 hours
    }

    # ─────────────────────────────────────────────────────────────────────────
    # Providers
    # ─────────────────────────────────────────────────────────────────────────
    PROVIDER_TIMEOUT_S = 30.0
    OPENAI_BASE_URL = "https://api.openai.com/v1"
    OPENAI_MODEL = "gpt-4o-mini"
    OPENAI_TEMPERATURE = 0.3
    OPENAI_MAX_TOKENS = 2000
    ELEVENLABS_BASE_URL = "https://api.elevenlabs.io/v1"
    ELEVENLABS_MODEL = "eleven_multilingual_v2"
    RESEND_BASE_URL = "https://api.resend.com"
    EMAIL_FROM = "iAlla <hello@ialla.app>"

    # ─────────────────────────────────────────────────────────────────────────
    # Audio store
    # ─────────────────────────────────────────────────────────────────────────
    AUDIO_BASE_DIR = "./storage/audio"
    AUDIO_TTL_SECONDS = 3600            # Matches the voice cache namespace
    AUDIO_BITRATE_KBPS = 128            # Default ElevenLabs mp3 output

    # ─────────────────────────────────────────────────────────────────────────
    # Activity logs
    # ─────────────────────────────────────────────────────────────────────────
    ACTIVITY_DEFAULT_LIMIT = 50
    ACTIVITY_MAX_LIMIT = 100

    # ─────────────────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────────────────
    LOGGING_LEVEL = 2                   # 1=MINIMAL, 2=NORMAL, 3=VERBOSE, 4=DEBUG


# Environment variables captured into Credentials
CREDENTIAL_ENV_VARS = {
    "openai_api_key": "OPENAI_API_KEY",
    "elevenlabs_api_key": "ELEVENLABS_API_KEY",
    "resend_api_key": "RESEND_API_KEY",
    "supabase_url": "SUPABASE_URL",
    "supabase_service_key": "SUPABASE_SERVICE_ROLE_KEY",
    "api_secret_key": "API_SECRET_KEY",
}


@dataclass
class AppConfig:
    name: str = Defaults.APP_NAME
    version: str = Defaults.APP_VERSION
    environment: str = Defaults.ENVIRONMENT
    public_base_url: str = Defaults.PUBLIC_BASE_URL
    docs_path: str = Defaults.DOCS_PATH

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@dataclass
class CacheConfig:
    """
    Response cache configuration.

    Every namespace not listed in ``namespaces`` gets ``default_ttl_seconds``.
    Expired entries are swept at most once per ``sweep_interval_seconds``.
    """
    default_ttl_seconds: int = Defaults.CACHE_DEFAULT_TTL_SECONDS
    sweep_interval_seconds: int = Defaults.CACHE_SWEEP_INTERVAL_SECONDS
    namespaces: Dict[str, int] = field(default_factory=lambda: dict(Defaults.CACHE_NAMESPACE_TTLS))


@dataclass
class ProvidersConfig:
    timeout_s: float = Defaults.PROVIDER_TIMEOUT_S
    openai_base_url: str = Defaults.OPENAI_BASE_URL
    openai_model: str = Defaults.OPENAI_MODEL
    openai_temperature: float = Defaults.OPENAI_TEMPERATURE
    openai_max_tokens: int = Defaults.OPENAI_MAX_TOKENS
    elevenlabs_base_url: str = Defaults.ELEVENLABS_BASE_URL
    elevenlabs_model: str = Defaults.ELEVENLABS_MODEL
    resend_base_url: str = Defaults.RESEND_BASE_URL
    email_from: str = Defaults.EMAIL_FROM


@dataclass
class AudioConfig:
    """On-disk store for synthesized speech, served back by reference."""
    base_dir: str = Defaults.AUDIO_BASE_DIR
    ttl_seconds: int = Defaults.AUDIO_TTL_SECONDS
    bitrate_kbps: int = Defaults.AUDIO_BITRATE_KBPS


@dataclass
class ActivityConfig:
    default_limit: int = Defaults.ACTIVITY_DEFAULT_LIMIT
    max_limit: int = Defaults.ACTIVITY_MAX_LIMIT


@dataclass
class LoggingConfig:
    level: int = Defaults.LOGGING_LEVEL


@dataclass(frozen=True)
class Credentials:
    """
    Provider and datastore secrets, read from the environment only.

    A None value means the collaborator is not configured; the health
    endpoint reports it as "missing".
    """
    openai_api_key: Optional[str] = None
    elevenlabs_api_key: Optional[str] = None
    resend_api_key: Optional[str] = None
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    api_secret_key: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> "Credentials":
        values = {attr: (environ.get(var) or None) for attr, var in CREDENTIAL_ENV_VARS.items()}
        return cls(**values)

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)

    def service_status(self) -> Dict[str, str]:
        """configured/missing per upstream collaborator."""
        def status(ok: Any) -> str:
            return "configured" if ok else "missing"

        return {
            "openai": status(self.openai_api_key),
            "elevenlabs": status(self.elevenlabs_api_key),
            "resend": status(self.resend_api_key),
            "supabase": status(self.supabase_configured),
        }


@dataclass
class RelayConfig:
    """
    Validated configuration for the relay.

    Usage:
        settings = load_settings("config/settings.yaml")
        config = RelayConfig.from_settings(settings)
        config.cache.namespaces["completion"]   # 7200
    """
    app: AppConfig = field(default_factory=AppConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    providers: ProvidersConfig = field(default_factory=ProvidersConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    activity: ActivityConfig = field(default_factory=ActivityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    credentials: Credentials = field(default_factory=Credentials)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "RelayConfig":
        """
        Create RelayConfig from Settings with validation.

        Raises:
            ConfigValidationError: If any value fails validation.
        """
        raw = settings.raw
        env = settings.env

        try:
            return cls._build(raw, env, settings.environment)
        except (TypeError, ValueError) as e:
            raise ConfigValidationError(f"invalid configuration value: {e}") from e

    @classmethod
    def _build(cls, raw: Dict[str, Any], env: Mapping[str, str], environment: str) -> "RelayConfig":
        # ─────────────────────────────────────────────────────────────────────
        # App
        # ─────────────────────────────────────────────────────────────────────
        app_raw = raw.get("app", {}) or {}
        app = AppConfig(
            name=str(app_raw.get("name", Defaults.APP_NAME)),
            version=str(app_raw.get("version", Defaults.APP_VERSION)),
            environment=environment,
            public_base_url=str(
                env.get("RELAY_PUBLIC_BASE_URL") or app_raw.get("public_base_url", Defaults.PUBLIC_BASE_URL)
            ).rstrip("/"),
            docs_path=str(app_raw.get("docs_path") or Defaults.DOCS_PATH),
        )

        # ─────────────────────────────────────────────────────────────────────
        # Cache
        # ─────────────────────────────────────────────────────────────────────
        cache_raw = raw.get("cache", {}) or {}
        namespaces = dict(Defaults.CACHE_NAMESPACE_TTLS)
        namespaces.update({str(k): int(v) for k, v in (cache_raw.get("namespaces") or {}).items()})
        cache = CacheConfig(
            default_ttl_seconds=int(cache_raw.get("default_ttl_seconds", Defaults.CACHE_DEFAULT_TTL_SECONDS)),
            sweep_interval_seconds=int(
                cache_raw.get("sweep_interval_seconds", Defaults.CACHE_SWEEP_INTERVAL_SECONDS)
            ),
            namespaces=namespaces,
        )
        cls._validate_positive("cache.default_ttl_seconds", cache.default_ttl_seconds)
        cls._validate_positive("cache.sweep_interval_seconds", cache.sweep_interval_seconds)
        for ns, ttl in cache.namespaces.items():
            cls._validate_positive(f"cache.namespaces.{ns}", ttl)

        # ─────────────────────────────────────────────────────────────────────
        # Providers
        # ─────────────────────────────────────────────────────────────────────
        prov_raw = raw.get("providers", {}) or {}
        openai_raw = prov_raw.get("openai", {}) or {}
        eleven_raw = prov_raw.get("elevenlabs", {}) or {}
        resend_raw = prov_raw.get("resend", {}) or {}
        providers = ProvidersConfig(
            timeout_s=float(prov_raw.get("timeout_s", Defaults.PROVIDER_TIMEOUT_S)),
            openai_base_url=str(openai_raw.get("base_url", Defaults.OPENAI_BASE_URL)).rstrip("/"),
            openai_model=str(openai_raw.get("model", Defaults.OPENAI_MODEL)),
            openai_temperature=float(openai_raw.get("temperature", Defaults.OPENAI_TEMPERATURE)),
            openai_max_tokens=int(openai_raw.get("max_tokens", Defaults.OPENAI_MAX_TOKENS)),
            elevenlabs_base_url=str(eleven_raw.get("base_url", Defaults.ELEVENLABS_BASE_URL)).rstrip("/"),
            elevenlabs_model=str(eleven_raw.get("model", Defaults.ELEVENLABS_MODEL)),
            resend_base_url=str(resend_raw.get("base_url", Defaults.RESEND_BASE_URL)).rstrip("/"),
            email_from=str(resend_raw.get("from", Defaults.EMAIL_FROM)),
        )
        cls._validate_positive("providers.timeout_s", providers.timeout_s)
        cls._validate_range("providers.openai.temperature", providers.openai_temperature, 0, 2)
        cls._validate_positive("providers.openai.max_tokens", providers.openai_max_tokens)

        # ─────────────────────────────────────────────────────────────────────
        # Audio store
        # ─────────────────────────────────────────────────────────────────────
        audio_raw = raw.get("audio", {}) or {}
        audio = AudioConfig(
            base_dir=str(audio_raw.get("base_dir", Defaults.AUDIO_BASE_DIR)),
            ttl_seconds=int(audio_raw.get("ttl_seconds", Defaults.AUDIO_TTL_SECONDS)),
            bitrate_kbps=int(audio_raw.get("bitrate_kbps", Defaults.AUDIO_BITRATE_KBPS)),
        )
        cls._validate_positive("audio.ttl_seconds", audio.ttl_seconds)
        cls._validate_positive("audio.bitrate_kbps", audio.bitrate_kbps)
        # stored audio must outlive the cached references that point at it
        voice_ttl = cache.namespaces.get("voice", cache.default_ttl_seconds)
        if audio.ttl_seconds < voice_ttl:
            raise ConfigValidationError(
                f"audio.ttl_seconds must be at least cache.namespaces.voice ({voice_ttl}), got {audio.ttl_seconds}"
            )

        # ─────────────────────────────────────────────────────────────────────
        # Activity
        # ─────────────────────────────────────────────────────────────────────
        activity_raw = raw.get("activity", {}) or {}
        activity = ActivityConfig(
            default_limit=int(activity_raw.get("default_limit", Defaults.ACTIVITY_DEFAULT_LIMIT)),
            max_limit=int(activity_raw.get("max_limit", Defaults.ACTIVITY_MAX_LIMIT)),
        )
        cls._validate_range("activity.default_limit", activity.default_limit, 1, activity.max_limit)

        # ─────────────────────────────────────────────────────────────────────
        # Logging (RELAY_LOG_LEVEL wins over the file)
        # ─────────────────────────────────────────────────────────────────────
        logging_raw = raw.get("logging", {}) or {}
        level = env.get("RELAY_LOG_LEVEL") or logging_raw.get("level", Defaults.LOGGING_LEVEL)
        logging_cfg = LoggingConfig(level=int(coerce_level(level)))

        return cls(
            app=app,
            cache=cache,
            providers=providers,
            audio=audio,
            activity=activity,
            logging=logging_cfg,
            credentials=Credentials.from_env(env),
        )

    @staticmethod
    def _validate_positive(name: str, value: int | float) -> None:
        if value <= 0:
            raise ConfigValidationError(f"{name} must be positive, got {value}")

    @staticmethod
    def _validate_range(name: str, value: int | float, min_val: int | float, max_val: int | float) -> None:
        if not (min_val <= value <= max_val):
            raise ConfigValidationError(f"{name} must be between {min_val} and {max_val}, got {value}")


@dataclass(frozen=True)
class Settings:
    """
    Immutable settings container.

    Attributes:
        raw: Parsed YAML document (empty when no file was found).
        env: Snapshot of the environment taken at load time.
    """
    raw: Dict[str, Any]
    env: Mapping[str, str] = field(default_factory=dict)

    @property
    def environment(self) -> str:
        """RELAY_ENV, else app.environment from the file, else production."""
        app_raw = self.raw.get("app", {}) or {}
        return str(self.env.get("RELAY_ENV") or app_raw.get("environment", Defaults.ENVIRONMENT))

    def get_relay_config(self) -> RelayConfig:
        """
        Get validated RelayConfig from these settings.

        Raises:
            ConfigValidationError: If validation fails.
        """
        return RelayConfig.from_settings(self)


def load_settings(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Load settings from a YAML file plus the process environment.

    A missing file is not an error: the relay runs on defaults and
    environment variables alone.

    Args:
        path: YAML file path. Defaults to RELAY_SETTINGS or
            config/settings.yaml.
        environ: Environment mapping, os.environ when omitted.

    Raises:
        ConfigValidationError: If the file is not valid YAML or its top
            level is not a mapping.
    """
    env = dict(os.environ if environ is None else environ)
    p = Path(path or env.get("RELAY_SETTINGS") or "config/settings.yaml")

    raw: Dict[str, Any] = {}
    if p.exists():
        try:
            with p.open("r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"cannot parse {p}: {e}") from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigValidationError(f"{p} must contain a mapping at top level")
        raw = loaded or {}

    return Settings(raw=raw, env=env)
