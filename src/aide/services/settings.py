"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, is_dataclass, replace
from pathlib import Path
from typing import Any, Dict, Literal, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "CustomProviderSettings",
    "EMBEDDING_MODE_CHOICES",
    "EmbeddingSettings",
    "IndexingSettings",
    "ProviderSettings",
    "SecretVault",
    "Settings",
    "SettingsStore",
    "apply_dotted_overrides",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".aide"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "AIDE_OPENAI_API_KEY": "openai.api_key",
    "AIDE_ANTHROPIC_API_KEY": "anthropic.api_key",
    "AIDE_OLLAMA_BASE_URL": "ollama.base_url",
    "AIDE_DEFAULT_MODEL": "default_model",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "AIDE_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "AIDE_TEMPERATURE": "temperature",
    "AIDE_REQUEST_TIMEOUT": "request_timeout",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_CIPHERTEXT_FIELD = "api_key_ciphertext"
EmbeddingMode = Literal["disabled", "openai", "custom"]
EMBEDDING_MODE_CHOICES: tuple[str, ...] = ("disabled", "openai", "custom")
DEFAULT_EXCLUDE_PATTERNS: tuple[str, ...] = (
    "**/node_modules/**",
    "**/.git/**",
    "**/dist/**",
    "**/build/**",
    "**/*.min.js",
    "**/*.map",
    "**/__pycache__/**",
    "**/.venv/**",
)


@dataclass(slots=True)
class ProviderSettings:
    """Connection details for one built-in provider."""

    api_key: str = ""
    base_url: str = ""
    enabled: bool = True
    extra_headers: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class CustomProviderSettings(ProviderSettings):
    """An OpenAI-compatible endpoint exposed under its own provider id."""

    id: str = ""
    name: str = ""
    models: list[str] = field(default_factory=list)
    supports_tools: bool = True
    context_length: int = 8192


@dataclass(slots=True)
class IndexingSettings:
    exclude_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))
    max_file_bytes: int = 1024 * 1024
    max_files: int = 10_000


@dataclass(slots=True)
class EmbeddingSettings:
    mode: EmbeddingMode = "disabled"
    model: str = "text-embedding-3-small"
    base_url: str = ""
    api_key: str = ""


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    openai: ProviderSettings = field(
        default_factory=lambda: ProviderSettings(base_url="https://api.openai.com/v1")
    )
    anthropic: ProviderSettings = field(
        default_factory=lambda: ProviderSettings(base_url="https://api.anthropic.com")
    )
    ollama: ProviderSettings = field(default_factory=lambda: ProviderSettings(base_url="http://localhost:11434"))
    custom: list[CustomProviderSettings] = field(default_factory=list)
    default_model: str = ""
    temperature: float = 0.2
    max_tokens: int | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    model_cache_ttl: float = 30.0
    tool_timeout: float = 60.0
    indexing: IndexingSettings = field(default_factory=IndexingSettings)
    embeddings: EmbeddingSettings = field(default_factory=EmbeddingSettings)
    debug_logging: bool = False


class SecretVault:
    """Encrypts API keys with a symmetric Fernet key stored beside the settings file."""

    name = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._get_fernet().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{self.name}:{token}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, _, payload = token.partition(":")
        if prefix != self.name or not payload:
            raise ValueError(f"Unknown secret token prefix {prefix!r}")
        try:
            return self._get_fernet().decrypt(payload.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, then apply CLI and environment overrides.

        Args:
            overrides: Dotted keys (``"openai.base_url"``) mapped to raw values.

        Returns:
            The effective settings. A missing or corrupt file yields defaults.
        """

        payload = self._read_payload()
        settings = self._deserialize(payload) if payload else Settings()
        if overrides:
            settings = apply_dotted_overrides(settings, overrides, source="CLI")
        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        body = json.dumps(self._serialize(settings), indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------
    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        for section in ("openai", "anthropic", "ollama", "embeddings"):
            self._encrypt_section(data[section], section)
        for entry in data["custom"]:
            self._encrypt_section(entry, f"custom.{entry.get('id')}")
        data["version"] = _SETTINGS_VERSION
        return data

    def _encrypt_section(self, section: Dict[str, Any], label: str) -> None:
        plaintext = section.pop("api_key", "") or ""
        if not plaintext:
            return
        try:
            section[_CIPHERTEXT_FIELD] = self._vault.encrypt(plaintext)
        except Exception as exc:  # pragma: no cover - extremely rare
            LOGGER.warning("Failed to encrypt %s API key: %s", label, exc)

    def _decrypt_section(self, section: Mapping[str, Any], label: str) -> Dict[str, Any]:
        data = dict(section)
        ciphertext = data.pop(_CIPHERTEXT_FIELD, None)
        if ciphertext:
            try:
                data["api_key"] = self._vault.decrypt(ciphertext)
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt %s API key: %s", label, exc)
                data["api_key"] = ""
        return data

    def _deserialize(self, payload: Mapping[str, Any]) -> Settings:
        data = _filter_fields(Settings, payload)
        try:
            for section, section_cls in (
                ("openai", ProviderSettings),
                ("anthropic", ProviderSettings),
                ("ollama", ProviderSettings),
            ):
                if isinstance(data.get(section), Mapping):
                    values = self._decrypt_section(data[section], section)
                    data[section] = section_cls(**_filter_fields(section_cls, values))
            if isinstance(data.get("embeddings"), Mapping):
                values = self._decrypt_section(data["embeddings"], "embeddings")
                data["embeddings"] = EmbeddingSettings(**_filter_fields(EmbeddingSettings, values))
            if isinstance(data.get("indexing"), Mapping):
                data["indexing"] = IndexingSettings(**_filter_fields(IndexingSettings, data["indexing"]))
            custom_payload = data.get("custom")
            if isinstance(custom_payload, list):
                data["custom"] = [
                    CustomProviderSettings(
                        **_filter_fields(
                            CustomProviderSettings, self._decrypt_section(entry, f"custom.{entry.get('id')}")
                        )
                    )
                    for entry in custom_payload
                    if isinstance(entry, Mapping)
                ]
            return Settings(**data)
        except TypeError as exc:
            LOGGER.warning("Settings payload contained unexpected data: %s", exc)
            return Settings()

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        return payload if isinstance(payload, dict) else {}

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, key in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[key] = value
        for env_name, key in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[key] = value.strip().lower() in _TRUE_VALUES
        for env_name, key in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[key] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        if overrides:
            settings = apply_dotted_overrides(settings, overrides, source="environment")
        return settings


def apply_dotted_overrides(settings: Settings, overrides: Mapping[str, Any], *, source: str = "runtime") -> Settings:
    """Return a copy of *settings* with ``section.field`` style overrides applied.

    String values are coerced to the type of the field they replace; unknown
    keys and uncoercible values are logged and skipped.
    """

    applied: list[str] = []
    for key, value in overrides.items():
        if value is None:
            continue
        head, _, tail = key.partition(".")
        try:
            if tail:
                section = getattr(settings, head, None)
                if not is_dataclass(section) or tail not in _field_names(type(section)):
                    raise KeyError(key)
                coerced = _coerce(getattr(section, tail), value)
                settings = replace(settings, **{head: replace(section, **{tail: coerced})})
            else:
                if head not in _field_names(Settings) or is_dataclass(getattr(settings, head)):
                    raise KeyError(key)
                settings = replace(settings, **{head: _coerce(getattr(settings, head), value)})
        except KeyError:
            LOGGER.warning("Ignoring unknown %s settings override '%s'", source, key)
            continue
        except ValueError as exc:
            LOGGER.warning("Ignoring %s settings override '%s': %s", source, key, exc)
            continue
        applied.append(key)
    if applied:
        LOGGER.debug("Applied %s settings overrides: %s", source, sorted(applied))
    return settings


def _coerce(current: Any, value: Any) -> Any:
    if not isinstance(value, str):
        return value
    if isinstance(current, bool):
        return value.strip().lower() in _TRUE_VALUES
    if isinstance(current, int):
        return int(value, 10)
    if isinstance(current, float):
        return float(value)
    if isinstance(current, (list, dict)):
        return json.loads(value)
    if current is None and value.strip().lower() in {"none", "null", ""}:
        return None
    if current is None:
        try:
            return int(value, 10)
        except ValueError:
            return value
    return value


def _field_names(cls: type) -> set[str]:
    return {item.name for item in fields(cls)}


def _filter_fields(cls: type, payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = _field_names(cls)
    return {key: value for key, value in payload.items() if key in allowed}


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
