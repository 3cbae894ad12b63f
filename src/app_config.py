"""Centralized configuration helpers for the Lark relay services."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from functools import cache
from pathlib import Path
from typing import Any, Optional, TYPE_CHECKING

from dotenv import load_dotenv

if TYPE_CHECKING:  # pragma: no cover
    from openai import AsyncOpenAI
else:  # pragma: no cover
    AsyncOpenAI = Any  # type: ignore[assignment]


ROOT_DIR = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_FILE = ROOT_DIR / "config.json"
_ENV_LOADED = False

DEFAULT_INIT_COMMAND = (
    "The following is a conversation with an AI assistant. "
    "The assistant is helpful, creative, clever, and very friendly."
)
DEFAULT_HELP_MESSAGE = (
    "/help help message\n"
    "/reset # Reset user's session context\n"
    "/img <prompt> # Generate an image with the given prompt"
)
LARK_DOMAINS = {
    "feishu": "https://open.feishu.cn",
    "lark": "https://open.larksuite.com",
}


class ConfigError(RuntimeError):
    """Base exception for configuration issues."""


class MissingSettingError(ConfigError):
    """Raised when a required environment variable is missing."""


def _load_env_file() -> None:
    global _ENV_LOADED
    if _ENV_LOADED:
        return
    try:
        load_dotenv(dotenv_path=ROOT_DIR / ".env", override=False)
    except PermissionError:  # pragma: no cover - filesystem specific
        pass
    _ENV_LOADED = True


@cache
def _load_config_file() -> dict[str, Any]:
    config_path = Path(os.getenv("LARK_RELAY_CONFIG", DEFAULT_CONFIG_FILE))
    if not config_path.exists():
        return {}
    try:
        with config_path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except json.JSONDecodeError as exc:  # pragma: no cover - invalid user config
        raise ConfigError(f"Invalid JSON in {config_path}: {exc}") from exc


def _int_setting(cfg: dict[str, Any], key: str, env_name: str, default: int) -> int:
    raw = cfg.get(key)
    if raw is None:
        raw = os.getenv(env_name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{env_name} must be an integer, got {raw!r}") from exc


def _float_setting(cfg: dict[str, Any], key: str, env_name: str, default: float) -> float:
    raw = cfg.get(key)
    if raw is None:
        raw = os.getenv(env_name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{env_name} must be a number, got {raw!r}") from exc


def _bool_setting(cfg: dict[str, Any], key: str, env_name: str, default: bool) -> bool:
    raw = cfg.get(key)
    if raw is None:
        raw = os.getenv(env_name)
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class OpenAISettings:
    api_key: str
    text_model: str = "gpt-3.5-turbo"
    image_size: str = "1024x1024"
    max_token_length: int = 4096
    max_generate_token_length: int = 1024
    temperature: float = 0.9
    top_p: float = 1.0
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.6

    @property
    def token_budget(self) -> int:
        """Prompt tokens left once the generation reserve is set aside."""
        return self.max_token_length - self.max_generate_token_length


@dataclass(frozen=True)
class LarkSettings:
    app_id: str
    app_secret: str
    app_name: Optional[str] = None
    domain: str = LARK_DOMAINS["feishu"]
    encrypt_key: Optional[str] = None
    verification_token: Optional[str] = None


@dataclass(frozen=True)
class RelaySettings:
    init_command: str = DEFAULT_INIT_COMMAND
    help_message: str = DEFAULT_HELP_MESSAGE
    session_ttl_seconds: int = 24 * 3600
    event_ttl_seconds: int = 3600
    stale_after_seconds: int = 60
    empty_message_reply: Optional[str] = None
    unsupported_message_reply: Optional[str] = None
    serialize_per_user: bool = False


@dataclass(frozen=True)
class ServerSettings:
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "info"


@cache
def get_openai_settings() -> OpenAISettings:
    """Load OpenAI configuration from config.json + env overrides."""
    _load_env_file()
    cfg = _load_config_file().get("openai", {})
    key_name = cfg.get("api_key_name", "OPENAI_API_KEY")

    api_key = cfg.get("api_key") or os.getenv(key_name)
    if not api_key:
        raise MissingSettingError(
            f"Set {key_name} or provide openai.api_key in config.json to run chat completions."
        )

    settings = OpenAISettings(
        api_key=api_key,
        text_model=cfg.get("model") or os.getenv("TEXT_MODEL", "gpt-3.5-turbo"),
        image_size=cfg.get("image_size") or os.getenv("IMAGE_SIZE", "1024x1024"),
        max_token_length=_int_setting(cfg, "max_token_length", "MAX_TOKEN_LENGTH", 4096),
        max_generate_token_length=_int_setting(
            cfg, "max_generate_token_length", "MAX_GENERATE_TOKEN_LENGTH", 1024
        ),
        temperature=_float_setting(cfg, "temperature", "OPENAI_TEMPERATURE", 0.9),
        top_p=_float_setting(cfg, "top_p", "OPENAI_TOP_P", 1.0),
        frequency_penalty=_float_setting(
            cfg, "frequency_penalty", "OPENAI_FREQUENCY_PENALTY", 0.0
        ),
        presence_penalty=_float_setting(
            cfg, "presence_penalty", "OPENAI_PRESENCE_PENALTY", 0.6
        ),
    )
    if settings.token_budget <= 0:
        raise ConfigError(
            "MAX_TOKEN_LENGTH must be larger than MAX_GENERATE_TOKEN_LENGTH "
            f"({settings.max_token_length} <= {settings.max_generate_token_length})."
        )
    return settings


def get_async_openai_client() -> AsyncOpenAI:
    """Return a ready-to-use AsyncOpenAI client."""
    try:
        from openai import AsyncOpenAI
    except ImportError as exc:  # pragma: no cover - optional dependency
        raise ConfigError(
            "Install the openai package to run the relay, or supply your own AsyncOpenAI client."
        ) from exc

    settings = get_openai_settings()
    return AsyncOpenAI(api_key=settings.api_key)


@cache
def get_lark_settings() -> LarkSettings:
    """Load Lark app credentials from config.json + env overrides."""
    _load_env_file()
    cfg = _load_config_file().get("lark", {})

    app_id = cfg.get("app_id") or os.getenv("LARK_APP_ID")
    app_secret = cfg.get("app_secret") or os.getenv("LARK_APP_SECRET")
    if not app_id or not app_secret:
        raise MissingSettingError(
            "Set LARK_APP_ID and LARK_APP_SECRET or provide lark.app_id / lark.app_secret in config.json."
        )

    domain = cfg.get("domain") or os.getenv("LARK_DOMAIN") or "feishu"
    domain = LARK_DOMAINS.get(domain.lower(), domain).rstrip("/")

    return LarkSettings(
        app_id=app_id,
        app_secret=app_secret,
        app_name=cfg.get("app_name") or os.getenv("LARK_APP_NAME") or None,
        domain=domain,
        encrypt_key=cfg.get("encrypt_key") or os.getenv("LARK_ENCRYPT_KEY") or None,
        verification_token=cfg.get("verification_token")
        or os.getenv("LARK_VERIFICATION_TOKEN")
        or None,
    )


@cache
def get_relay_settings() -> RelaySettings:
    _load_env_file()
    cfg = _load_config_file().get("relay", {})
    return RelaySettings(
        init_command=cfg.get("init_command") or os.getenv("INIT_COMMAND") or DEFAULT_INIT_COMMAND,
        help_message=cfg.get("help_message") or os.getenv("HELP_MESSAGE") or DEFAULT_HELP_MESSAGE,
        session_ttl_seconds=_int_setting(cfg, "session_ttl_seconds", "SESSION_TTL_SECONDS", 24 * 3600),
        event_ttl_seconds=_int_setting(cfg, "event_ttl_seconds", "EVENT_TTL_SECONDS", 3600),
        stale_after_seconds=_int_setting(cfg, "stale_after_seconds", "STALE_AFTER_SECONDS", 60),
        empty_message_reply=cfg.get("empty_message_reply") or os.getenv("EMPTY_MESSAGE_REPLY") or None,
        unsupported_message_reply=cfg.get("unsupported_message_reply")
        or os.getenv("UNSUPPORTED_MESSAGE_REPLY")
        or None,
        serialize_per_user=_bool_setting(cfg, "serialize_per_user", "SERIALIZE_PER_USER", False),
    )


@cache
def get_server_settings() -> ServerSettings:
    _load_env_file()
    cfg = _load_config_file().get("server", {})
    return ServerSettings(
        host=cfg.get("host") or os.getenv("LISTEN_IP") or "0.0.0.0",
        port=_int_setting(cfg, "port", "PORT", 3000),
        log_level=(cfg.get("log_level") or os.getenv("CHAT_SERVER_LOG_LEVEL") or "info").lower(),
    )


__all__ = [
    "ConfigError",
    "MissingSettingError",
    "OpenAISettings",
    "LarkSettings",
    "RelaySettings",
    "ServerSettings",
    "get_openai_settings",
    "get_async_openai_client",
    "get_lark_settings",
    "get_relay_settings",
    "get_server_settings",
]
