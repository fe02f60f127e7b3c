"""Dexter configuration management."""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any

from dexter.errors import ConfigPersistFailed

logger = logging.getLogger(__name__)

DEXTER_HOME = Path(os.environ.get("DEXTER_HOME", Path.home() / ".dexter"))
DEXTER_CONFIG = DEXTER_HOME / "config.json"
DEXTER_LOGS = DEXTER_HOME / "logs"


class ProviderKind(Enum):
    """How a backend is reached."""

    NATIVE = "native"                       # Hosted vendor endpoint
    OPENAI_COMPATIBLE = "openai_compatible"
    ANTHROPIC_COMPATIBLE = "anthropic_compatible"
    LOCAL = "local"                         # Self-hosted, usually no auth


class ProviderAuth(Enum):
    BEARER = "bearer"
    API_KEY_HEADER = "x-api-key"
    NONE = "none"


@dataclass(frozen=True)
class ProviderPreset:
    """Built-in defaults for a known provider."""

    id: str
    display_name: str
    kind: ProviderKind
    base_url: str
    auth: ProviderAuth
    default_models: tuple[str, ...] = ()


PROVIDER_PRESETS: dict[str, ProviderPreset] = {
    p.id: p
    for p in (
        ProviderPreset(
            "gemini", "Gemini", ProviderKind.NATIVE,
            "https://generativelanguage.googleapis.com/v1beta/openai", ProviderAuth.BEARER,
            ("gemini-2.5-flash-lite", "gemini-2.5-flash", "gemini-2.5-pro"),
        ),
        ProviderPreset(
            "openai", "OpenAI", ProviderKind.NATIVE,
            "https://api.openai.com/v1", ProviderAuth.BEARER,
            ("gpt-4o-mini", "gpt-4o"),
        ),
        ProviderPreset(
            "anthropic", "Anthropic", ProviderKind.ANTHROPIC_COMPATIBLE,
            "https://api.anthropic.com/v1", ProviderAuth.API_KEY_HEADER,
            ("claude-3-5-haiku-latest", "claude-3-7-sonnet-latest"),
        ),
        ProviderPreset(
            "deepseek", "DeepSeek", ProviderKind.OPENAI_COMPATIBLE,
            "https://api.deepseek.com/v1", ProviderAuth.BEARER,
            ("deepseek-chat", "deepseek-reasoner"),
        ),
        ProviderPreset(
            "groq", "Groq", ProviderKind.OPENAI_COMPATIBLE,
            "https://api.groq.com/openai/v1", ProviderAuth.BEARER,
            ("llama-3.3-70b-versatile", "llama3-8b-8192"),
        ),
        ProviderPreset(
            "openrouter", "OpenRouter", ProviderKind.OPENAI_COMPATIBLE,
            "https://openrouter.ai/api/v1", ProviderAuth.BEARER,
        ),
        ProviderPreset(
            "ollama", "Ollama", ProviderKind.LOCAL,
            "http://localhost:11434/v1", ProviderAuth.NONE,
            ("llama3.2", "qwen2.5", "gemma3"),
        ),
    )
}

_DEFAULT_AUTH = {
    ProviderKind.NATIVE: ProviderAuth.BEARER,
    ProviderKind.OPENAI_COMPATIBLE: ProviderAuth.BEARER,
    ProviderKind.ANTHROPIC_COMPATIBLE: ProviderAuth.API_KEY_HEADER,
    ProviderKind.LOCAL: ProviderAuth.NONE,
}


@dataclass
class ProviderConfig:
    """One language-model backend.

    `api_key` is opaque. A value of the form ``env:NAME`` is a reference to
    an environment variable and is resolved on every read.
    """

    id: str
    kind: ProviderKind = ProviderKind.OPENAI_COMPATIBLE
    enabled: bool = True
    api_key: str = ""
    base_url: str = ""

    @property
    def preset(self) -> ProviderPreset | None:
        return PROVIDER_PRESETS.get(self.id)

    @property
    def display_name(self) -> str:
        return self.preset.display_name if self.preset else self.id

    @property
    def auth(self) -> ProviderAuth:
        if self.preset and self.preset.kind == self.kind:
            return self.preset.auth
        return _DEFAULT_AUTH[self.kind]

    def effective_base_url(self) -> str:
        url = self.base_url.strip()
        if not url and self.preset:
            url = self.preset.base_url
        return url.rstrip("/")

    def requires_credential(self) -> bool:
        return self.auth is not ProviderAuth.NONE

    def resolve_api_key(self) -> str:
        """Return the usable secret: env override, then reference, then literal."""
        override = os.environ.get(f"DEXTER_{self.id.upper().replace('-', '_')}_API_KEY")
        if override:
            return override.strip()
        key = self.api_key.strip()
        if key.startswith("env:"):
            return os.environ.get(key[4:], "").strip()
        return key

    def is_configured(self) -> bool:
        if not self.enabled:
            return False
        if not self.requires_credential():
            return True
        return bool(self.resolve_api_key())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "enabled": self.enabled,
            "api_key": self.api_key,
            "base_url": self.base_url,
        }

    @classmethod
    def from_preset(cls, preset: ProviderPreset, enabled: bool = False) -> ProviderConfig:
        return cls(id=preset.id, kind=preset.kind, enabled=enabled)


@dataclass
class ModelEntry:
    """A selectable model within a provider. `rank` orders the fallback chain."""

    provider: str
    name: str
    enabled: bool = True
    rank: int = 0

    @property
    def key(self) -> str:
        return f"{self.provider}::{self.name}"


@dataclass
class PreferencesConfig:
    """Settings unrelated to the setup wizard."""

    theme: str = "auto"
    request_timeout_seconds: float = 30.0
    max_output_bytes: int = 64 * 1024
    context_max_files: int = 20


def _known_fields(cls, data: dict) -> dict:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def _coerce_preference(default: Any, value: Any) -> Any:
    """Convert to the type of `default`, or None if the value does not fit.

    Numbers must be positive; booleans are not numbers here.
    """
    if isinstance(default, str):
        return value.strip() if isinstance(value, str) and value.strip() else None
    if isinstance(value, bool):
        return None
    try:
        number = type(default)(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if 0 < number < float("inf") else None


@dataclass
class DexterConfig:
    """Top-level Dexter configuration."""

    providers: list[ProviderConfig] = field(default_factory=list)
    models: list[ModelEntry] = field(default_factory=list)
    preferences: PreferencesConfig = field(default_factory=PreferencesConfig)

    def get_provider(self, provider_id: str) -> ProviderConfig | None:
        for provider in self.providers:
            if provider.id == provider_id:
                return provider
        return None

    def models_for(self, provider_id: str) -> list[ModelEntry]:
        return [m for m in self.models if m.provider == provider_id]

    def enabled_chain(self) -> list[tuple[ProviderConfig, ModelEntry]]:
        """Enabled models of enabled providers, in fallback-rank order."""
        chain = []
        for position, model in enumerate(self.models):
            provider = self.get_provider(model.provider)
            if provider is None or not provider.enabled or not model.enabled:
                continue
            chain.append((model.rank, position, provider, model))
        chain.sort(key=lambda item: (item[0], item[1]))
        return [(provider, model) for _, _, provider, model in chain]

    def normalize_ranks(self) -> None:
        """Re-derive contiguous ranks 1..n over enabled models; disabled get 0."""
        enabled = sorted(
            ((pos, m) for pos, m in enumerate(self.models) if m.enabled),
            key=lambda item: (item[1].rank if item[1].rank > 0 else float("inf"), item[0]),
        )
        for rank, (_, model) in enumerate(enabled, start=1):
            model.rank = rank
        for model in self.models:
            if not model.enabled:
                model.rank = 0

    def copy(self) -> DexterConfig:
        return copy.deepcopy(self)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict) -> DexterConfig:
        """Build a config from parsed JSON. Unknown keys and bad entries are skipped."""
        config = cls()
        seen_ids: set[str] = set()
        for raw in data.get("providers", []) or []:
            if not isinstance(raw, dict) or not str(raw.get("id", "")).strip():
                continue
            provider_id = str(raw["id"]).strip()
            if provider_id in seen_ids:
                logger.warning(f"Duplicate provider '{provider_id}' ignored")
                continue
            try:
                kind = ProviderKind(raw.get("kind", ProviderKind.OPENAI_COMPATIBLE.value))
            except ValueError:
                logger.warning(f"Provider '{provider_id}' has unknown kind {raw.get('kind')!r}")
                continue
            seen_ids.add(provider_id)
            config.providers.append(
                ProviderConfig(
                    id=provider_id,
                    kind=kind,
                    enabled=bool(raw.get("enabled", True)),
                    api_key=str(raw.get("api_key") or ""),
                    base_url=str(raw.get("base_url") or ""),
                )
            )

        seen_models: set[str] = set()
        for raw in data.get("models", []) or []:
            if not isinstance(raw, dict):
                continue
            try:
                entry = ModelEntry(
                    provider=str(raw["provider"]).strip(),
                    name=str(raw["name"]).strip(),
                    enabled=bool(raw.get("enabled", True)),
                    rank=int(raw.get("rank") or 0),
                )
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Skipping malformed model entry: {raw!r}")
                continue
            if not entry.name or entry.key in seen_models:
                continue
            seen_models.add(entry.key)
            config.models.append(entry)

        if isinstance(data.get("preferences"), dict):
            defaults = PreferencesConfig()
            for k, v in _known_fields(PreferencesConfig, data["preferences"]).items():
                value = _coerce_preference(getattr(defaults, k), v)
                if value is None:
                    logger.warning(f"Ignoring invalid preference {k}={v!r}")
                    continue
                setattr(config.preferences, k, value)

        config.normalize_ranks()
        return config

    def to_dict(self) -> dict[str, Any]:
        return {
            "providers": [p.to_dict() for p in self.providers],
            "models": [asdict(m) for m in self.models],
            "preferences": asdict(self.preferences),
        }

    @classmethod
    def load(cls, path: Path | None = None) -> DexterConfig:
        """Load config from disk or return defaults."""
        path = path or DEXTER_CONFIG
        if not path.exists():
            return cls()
        try:
            data = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read {path}, using defaults: {e}")
            return cls()
        if not isinstance(data, dict):
            logger.warning(f"Config at {path} is not an object, using defaults")
            return cls()
        return cls.from_dict(data)

    def save(self, path: Path | None = None) -> None:
        """Persist config atomically. The old file survives any failure."""
        path = path or DEXTER_CONFIG
        payload = json.dumps(self.to_dict(), indent=2)
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".config-", suffix=".tmp", dir=path.parent)
            with os.fdopen(fd, "w") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise ConfigPersistFailed(f"Could not write {path}: {e}") from e
        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
        logger.info(f"Configuration saved to {path}")


def ensure_dexter_home() -> None:
    """Create Dexter home directory structure."""
    DEXTER_HOME.mkdir(parents=True, exist_ok=True)
    DEXTER_LOGS.mkdir(parents=True, exist_ok=True)
