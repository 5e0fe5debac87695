"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < profile < env vars < CLI flags

Configuration objects are plain dataclasses passed explicitly to the
client and orchestrator; each section validates itself once, at
construction of the component that consumes it.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable
from urllib.parse import urlparse

import yaml

from llmsession.errors import ConfigurationError

if TYPE_CHECKING:
    from llmsession.llm.types import ChatMessage, ToolCall
    from llmsession.session.models import ChatMessageInfo
    from llmsession.tools.registry import ToolRegistry

DEFAULT_SKIP_TOOL_MESSAGE = "Tool execution skipped by user"


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ProviderConfig:
    api_key: str = ""
    api_key_env: str = "OPENAI_API_KEY"
    api_base: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 1000
    timeout_seconds: float = 120.0

    def resolve_api_key(self) -> str:
        """Explicit ``api_key`` wins; otherwise read ``api_key_env``."""
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.environ.get(self.api_key_env, "")
        return ""

    def validate(self) -> None:
        if not self.resolve_api_key():
            raise ConfigurationError(
                f"API key is not set (set api_key or the {self.api_key_env or 'API key'} "
                "environment variable)"
            )
        parsed = urlparse(self.api_base or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(f"Invalid API base URL: {self.api_base!r}")
        if not self.model:
            raise ConfigurationError("Default model cannot be empty")
        if not 0.0 <= float(self.temperature) <= 2.0:
            raise ConfigurationError(
                f"Temperature must be between 0 and 2, got {self.temperature}"
            )
        if int(self.max_tokens) < 1:
            raise ConfigurationError(f"max_tokens must be >= 1, got {self.max_tokens}")


@dataclass
class ChatbotConfig:
    """
    Behaviour of one orchestrator.

    ``on_streaming_chunk`` receives the accumulated assistant message and a
    ``done`` flag.  ``should_execute_tool`` is awaited once per tool call and
    returns ``False`` to skip it (the tool result becomes
    ``skip_tool_message``).
    """

    system_prompt: str = ""
    use_streaming: bool = False
    skip_tool_message: str = DEFAULT_SKIP_TOOL_MESSAGE
    default_model: str | None = None
    tool_registry: ToolRegistry | None = field(default=None, repr=False)
    on_streaming_chunk: Callable[[ChatMessage, bool], None] | None = field(
        default=None, repr=False
    )
    should_execute_tool: Callable[[ChatMessageInfo, ToolCall], Awaitable[bool]] | None = field(
        default=None, repr=False
    )

    def validate(self) -> None:
        if self.use_streaming and self.on_streaming_chunk is None:
            raise ConfigurationError(
                "Streaming chunk callback is required when streaming is enabled"
            )
        if not self.skip_tool_message:
            raise ConfigurationError("Skip tool message cannot be empty")

    def to_dict(self) -> dict:
        return {k: getattr(self, k) for k in _CHATBOT_FILE_FIELDS}


# Fields of ChatbotConfig that may come from a file or the environment.
_CHATBOT_FILE_FIELDS = ("system_prompt", "use_streaming", "skip_tool_message", "default_model")


@dataclass
class StoreConfig:
    path: str = "~/.llmsession/sessions.db"


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class AppConfig:
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    chatbot: ChatbotConfig = field(default_factory=ChatbotConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        provider = asdict(self.provider)
        if provider.get("api_key"):
            provider["api_key"] = provider["api_key"][:4] + "..."
        return {
            "provider": provider,
            "chatbot": self.chatbot.to_dict(),
            "store": asdict(self.store),
            "profiles": dict(self.profiles),
        }


# ---------------------------------------------------------------------------
# Environment variables
# ---------------------------------------------------------------------------

# LLMSESSION_* variable -> dot path.  Values are coerced to the type of the
# field's current value.
_ENV_VARS: dict[str, str] = {
    "LLMSESSION_API_KEY": "provider.api_key",
    "LLMSESSION_API_KEY_ENV": "provider.api_key_env",
    "LLMSESSION_API_BASE": "provider.api_base",
    "LLMSESSION_MODEL": "provider.model",
    "LLMSESSION_TEMPERATURE": "provider.temperature",
    "LLMSESSION_MAX_TOKENS": "provider.max_tokens",
    "LLMSESSION_TIMEOUT": "provider.timeout_seconds",
    "LLMSESSION_SYSTEM_PROMPT": "chatbot.system_prompt",
    "LLMSESSION_STREAMING": "chatbot.use_streaming",
    "LLMSESSION_SKIP_TOOL_MESSAGE": "chatbot.skip_tool_message",
    "LLMSESSION_DEFAULT_MODEL": "chatbot.default_model",
    "LLMSESSION_STORE_PATH": "store.path",
}

_TRUE_WORDS = frozenset({"1", "true", "yes", "on"})


def _from_env_string(text: str, like: Any, name: str) -> Any:
    if isinstance(like, bool):
        return text.strip().lower() in _TRUE_WORDS
    if not isinstance(like, (int, float)):
        return text
    try:
        number = float(text)
    except ValueError as exc:
        raise ConfigurationError(f"{name}={text!r} is not a valid number") from exc
    if isinstance(like, int) and number.is_integer():
        return int(number)
    return number


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _resolve_path(root: Any, dotpath: str) -> tuple[Any, str]:
    """Return the object owning the last segment of *dotpath*, and that segment."""
    *parents, leaf = dotpath.split(".")
    target = root
    for part in parents:
        target = getattr(target, part, None)
        if target is None:
            break
    if target is None or leaf.startswith("_") or not hasattr(target, leaf):
        raise ConfigurationError(f"Unknown config key: {dotpath}")
    return target, leaf


def _set_by_path(root: Any, dotpath: str, value: Any) -> None:
    target, leaf = _resolve_path(root, dotpath)
    setattr(target, leaf, value)


def _overlay(base: dict, top: dict) -> dict:
    """Nested dict merge; *top* wins, neither input is modified."""
    out = dict(base)
    for key, value in top.items():
        below = out.get(key)
        out[key] = _overlay(below, value) if isinstance(below, dict) and isinstance(value, dict) else value
    return out


def _section(cls: type, data: Any, only: tuple[str, ...] | None = None) -> Any:
    """Instantiate a section dataclass from *data*, dropping keys it does not know."""
    if not isinstance(data, dict):
        data = {}
    known = {f.name for f in fields(cls)}
    if only is not None:
        known = known.intersection(only)
    return cls(**{k: v for k, v in data.items() if k in known})


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid config file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> AppConfig:
    """
    Assemble an ``AppConfig`` from every configuration source.

    Parameters
    ----------
    config_path : YAML file to read; a missing file is skipped
    profile : entry of the file's ``profiles`` mapping to lay over it
    cli_overrides : dot path -> value; ``None`` values mean "flag not given"

    Raises ``ConfigurationError`` for an unreadable file, an unknown
    profile or an unknown override key.
    """
    raw: dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path).expanduser()
        if path.is_file():
            raw = _read_yaml(path)

    if profile:
        overlay = (raw.get("profiles") or {}).get(profile)
        if overlay is None:
            raise ConfigurationError(f"Unknown profile: {profile}")
        raw = _overlay(raw, overlay)

    cfg = AppConfig(
        provider=_section(ProviderConfig, raw.get("provider")),
        chatbot=_section(ChatbotConfig, raw.get("chatbot"), _CHATBOT_FILE_FIELDS),
        store=_section(StoreConfig, raw.get("store")),
        profiles=dict(raw.get("profiles") or {}),
    )

    for name, dotpath in _ENV_VARS.items():
        text = os.environ.get(name)
        if text is None:
            continue
        target, leaf = _resolve_path(cfg, dotpath)
        setattr(target, leaf, _from_env_string(text, getattr(target, leaf), name))

    for dotpath, value in (cli_overrides or {}).items():
        if value is not None:
            _set_by_path(cfg, dotpath, value)

    return cfg
