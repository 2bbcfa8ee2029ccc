# backend/src/notewise/config.py
"""Configuration system for the notewise backend.

This module handles loading settings from environment variables and an INI
file, providing sensible defaults for the retrieval, ranking, duplicate
detection and job subsystems.
"""

from configparser import ConfigParser
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional
import os


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


# Schema: section -> key -> (type, default, min, max, description)
CONFIG_SCHEMA: dict[str, dict[str, tuple[type, Any, Any, Any, str]]] = {
    "chunking": {
        "max_chunk_tokens": (int, 400, 50, 4000, "Token threshold that closes a chunk"),
        "overlap_words": (int, 30, 0, 200, "Words carried into the next chunk on split"),
        "min_chunk_chars": (int, 20, 0, 500, "Chunks at or under this length are dropped"),
    },
    "search": {
        "result_limit": (int, 20, 1, 100, "Default search results to return"),
        "candidate_limit": (int, 100, 10, 1000, "Max notes scored per query"),
        "max_keywords": (int, 10, 1, 50, "Max query keywords considered"),
        "snippet_max_length": (int, 200, 50, 1000, "Max excerpt length in results"),
        "ranking_top_n": (int, 10, 1, 100, "Results persisted as ranking feedback"),
        "history_weight": (float, 0.1, 0.0, 1.0, "Share of a past score reused as feedback"),
        "semantic_weight": (float, 50.0, 0.0, 500.0, "Multiplier for semantic similarity"),
        "semantic_candidates": (int, 50, 1, 500, "Notes pulled in by semantic similarity"),
    },
    "context": {
        "max_context_tokens": (int, 3000, 100, 100_000, "Default context budget"),
        "separator_tokens": (int, 20, 0, 200, "Per-chunk separator overhead"),
        "max_chunks": (int, 10, 1, 100, "Chunks considered for a context"),
        "context_ratio": (float, 0.7, 0.1, 1.0, "Share of max_tokens given to context"),
    },
    "duplicates": {
        "default_threshold": (float, 0.7, 0.0, 1.0, "Minimum similarity reported"),
        "report_threshold": (float, 0.85, 0.0, 1.0, "Similarity that auto-creates a report"),
        "merge_threshold": (float, 0.95, 0.0, 1.0, "Similarity eligible for auto-merge"),
        "corpus_scan_limit": (int, 500, 2, 10_000, "Notes considered in a corpus scan"),
        "comparison_limit": (int, 200, 1, 10_000, "Notes compared against a single note"),
        "auto_merge_batch": (int, 20, 1, 500, "Reports merged per auto-merge run"),
        "semantic_content_gate": (float, 0.3, 0.0, 1.0, "Content score that unlocks semantic"),
        "semantic_title_gate": (float, 0.5, 0.0, 1.0, "Title score that unlocks semantic"),
    },
    "jobs": {
        "worker_count": (int, 2, 1, 32, "Concurrent job workers"),
        "max_attempts": (int, 2, 1, 10, "Attempts for retryable jobs"),
        "backoff_seconds": (float, 5.0, 0.0, 600.0, "Base delay for exponential backoff"),
        "poll_interval": (float, 0.5, 0.01, 60.0, "Idle worker poll interval"),
        "ranking_retention_days": (int, 90, 1, 3650, "Ranking records kept this long"),
        "dismissed_retention_days": (int, 30, 1, 3650, "Dismissed reports kept this long"),
    },
    "llm": {
        "max_tokens": (int, 4000, 256, 32768, "Token ceiling for a chat turn"),
        "default_temperature": (float, 0.7, 0.0, 2.0, "Default LLM temperature"),
        "completion_ratio": (float, 0.3, 0.05, 1.0, "Share of max_tokens for the answer"),
        "embedding_batch_size": (int, 64, 1, 2048, "Texts per embedding request"),
    },
}


@dataclass(frozen=True)
class ChunkingConfig:
    """Chunker configuration."""

    max_chunk_tokens: int
    overlap_words: int
    min_chunk_chars: int


@dataclass(frozen=True)
class SearchConfig:
    """Search and scoring configuration."""

    result_limit: int
    candidate_limit: int
    max_keywords: int
    snippet_max_length: int
    ranking_top_n: int
    history_weight: float
    semantic_weight: float
    semantic_candidates: int


@dataclass(frozen=True)
class ContextConfig:
    """Context assembly configuration."""

    max_context_tokens: int
    separator_tokens: int
    max_chunks: int
    context_ratio: float


@dataclass(frozen=True)
class DuplicatesConfig:
    """Duplicate detection configuration."""

    default_threshold: float
    report_threshold: float
    merge_threshold: float
    corpus_scan_limit: int
    comparison_limit: int
    auto_merge_batch: int
    semantic_content_gate: float
    semantic_title_gate: float


@dataclass(frozen=True)
class JobsConfig:
    """Background job configuration."""

    worker_count: int
    max_attempts: int
    backoff_seconds: float
    poll_interval: float
    ranking_retention_days: int
    dismissed_retention_days: int


@dataclass(frozen=True)
class LLMConfig:
    """LLM client configuration."""

    max_tokens: int
    default_temperature: float
    completion_ratio: float
    embedding_batch_size: int


_SECTION_TYPES: dict[str, type] = {
    "chunking": ChunkingConfig,
    "search": SearchConfig,
    "context": ContextConfig,
    "duplicates": DuplicatesConfig,
    "jobs": JobsConfig,
    "llm": LLMConfig,
}


def _load_section(
    parser: ConfigParser, section: str, schema: dict[str, tuple[type, Any, Any, Any, str]]
) -> dict[str, Any]:
    """Load and validate a configuration section.

    Args:
        parser: ConfigParser instance with loaded config
        section: Section name to load
        schema: Schema definition for the section

    Returns:
        Dictionary of validated configuration values

    Raises:
        ConfigError: If validation fails
    """
    result = {}

    for key, (typ, default, min_val, max_val, _) in schema.items():
        if parser.has_option(section, key):
            raw_value = parser.get(section, key)
            value: bool | int | float | str
            try:
                if typ is bool:
                    value = raw_value.lower() in ("true", "1", "yes", "on")
                elif typ is int:
                    value = int(raw_value)
                elif typ is float:
                    value = float(raw_value)
                else:
                    value = raw_value
            except ValueError as e:
                raise ConfigError(
                    f"Invalid value for [{section}].{key}: {raw_value!r} (expected {typ.__name__})"
                ) from e
        else:
            value = default

        if typ in (int, float) and value is not None:
            if min_val is not None and value < min_val:
                raise ConfigError(
                    f"Value for [{section}].{key} is {value}, but minimum is {min_val}"
                )
            if max_val is not None and value > max_val:
                raise ConfigError(
                    f"Value for [{section}].{key} is {value}, but maximum is {max_val}"
                )

        result[key] = value

    return result


def _section_defaults(section: str) -> Any:
    """Build a section dataclass populated with schema defaults."""
    values = {key: default for key, (_, default, _, _, _) in CONFIG_SCHEMA[section].items()}
    return _SECTION_TYPES[section](**values)


def load_config_file(config_path: Optional[Path] = None) -> dict[str, Any]:
    """Load every section from an INI file.

    Args:
        config_path: Path to config file. If None or missing, schema defaults are used.

    Returns:
        Mapping of section name to its section dataclass.

    Raises:
        ConfigError: If validation fails
    """
    parser = ConfigParser()

    if config_path and config_path.exists():
        parser.read(config_path)

    return {
        section: _SECTION_TYPES[section](**_load_section(parser, section, schema))
        for section, schema in CONFIG_SCHEMA.items()
    }


@dataclass(frozen=True)
class Config:
    """Complete application configuration."""

    data_dir: Path = None  # type: ignore[assignment]  # Set in __post_init__ if None
    active_provider: str = "ollama"
    active_model: str = "llama2"
    embedding_model: str = ""
    fallback_provider: Optional[str] = None
    fallback_model: Optional[str] = None
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    google_api_key: Optional[str] = None
    ollama_endpoint: str = "http://localhost:11434"

    chunking: ChunkingConfig = None  # type: ignore[assignment]
    search: SearchConfig = None  # type: ignore[assignment]
    context: ContextConfig = None  # type: ignore[assignment]
    duplicates: DuplicatesConfig = None  # type: ignore[assignment]
    jobs: JobsConfig = None  # type: ignore[assignment]
    llm: LLMConfig = None  # type: ignore[assignment]

    def __post_init__(self):
        """Initialize section configs with defaults if not provided."""
        if self.data_dir is None:
            object.__setattr__(self, "data_dir", Path.home() / ".notewise")
        for section in CONFIG_SCHEMA:
            if getattr(self, section) is None:
                object.__setattr__(self, section, _section_defaults(section))

    @property
    def db_path(self) -> Path:
        """Path to the SQLite database."""
        return self.data_dir / "notewise.db"

    @property
    def config_path(self) -> Path:
        """Path to the optional INI config file."""
        return self.data_dir / "config.ini"

    @property
    def llm_log_path(self) -> Path:
        """Path to LLM query log file."""
        return self.data_dir / "logs" / "llm-queries.jsonl"

    @property
    def embeddings_enabled(self) -> bool:
        """Whether an embedding model is configured at all."""
        return bool(self.embedding_model)

    def api_key_for(self, provider: Optional[str]) -> Optional[str]:
        """API key for a given provider."""
        provider_keys = {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "google": self.google_api_key,
        }
        return provider_keys.get(provider or "")

    def endpoint_for(self, provider: Optional[str]) -> Optional[str]:
        """Endpoint for a given provider (mainly for Ollama)."""
        if provider == "ollama":
            return self.ollama_endpoint
        return None

    @property
    def llm_api_key(self) -> Optional[str]:
        """API key for the active LLM provider."""
        return self.api_key_for(self.active_provider)

    @property
    def llm_endpoint(self) -> Optional[str]:
        """Endpoint for the active LLM provider."""
        return self.endpoint_for(self.active_provider)


PROVIDER_DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-haiku-20241022",
    "google": "gemini-1.5-flash",
    "ollama": "llama2",
}


def _detect_provider_from_keys() -> tuple[str, str]:
    """Auto-detect provider from available API keys.

    Returns:
        Tuple of (provider, model) based on available keys.
        Falls back to ollama if no keys are found.
    """
    if os.getenv("OPENAI_API_KEY"):
        return ("openai", PROVIDER_DEFAULT_MODELS["openai"])
    if os.getenv("ANTHROPIC_API_KEY"):
        return ("anthropic", PROVIDER_DEFAULT_MODELS["anthropic"])
    if os.getenv("GOOGLE_API_KEY"):
        return ("google", PROVIDER_DEFAULT_MODELS["google"])
    return ("ollama", PROVIDER_DEFAULT_MODELS["ollama"])


@lru_cache(maxsize=1)
def load_settings() -> Config:
    """Load settings from environment variables and config file.

    Settings are cached for the lifetime of the application.
    Use load_settings.cache_clear() to reload settings.

    Returns:
        Config object populated from environment variables and config file.
    """
    data_dir_str = os.getenv("NOTEWISE_DATA_DIR")
    data_dir = Path(data_dir_str) if data_dir_str else Path.home() / ".notewise"

    config_file = data_dir / "config.ini"
    try:
        config_exists = config_file.exists()
    except PermissionError:
        config_exists = False
    sections = load_config_file(config_file if config_exists else None)

    active_provider = os.getenv("ACTIVE_PROVIDER")
    active_model = os.getenv("ACTIVE_MODEL")

    if not active_provider:
        detected_provider, detected_model = _detect_provider_from_keys()
        active_provider = detected_provider
        if not active_model:
            active_model = detected_model
    elif not active_model:
        active_model = PROVIDER_DEFAULT_MODELS.get(active_provider, "llama2")

    fallback_provider = os.getenv("FALLBACK_PROVIDER") or None
    fallback_model = os.getenv("FALLBACK_MODEL") or None
    if fallback_provider and not fallback_model:
        fallback_model = PROVIDER_DEFAULT_MODELS.get(fallback_provider)

    return Config(
        data_dir=data_dir,
        active_provider=active_provider,
        active_model=active_model,
        embedding_model=os.getenv("EMBEDDING_MODEL", ""),
        fallback_provider=fallback_provider,
        fallback_model=fallback_model,
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
        google_api_key=os.getenv("GOOGLE_API_KEY"),
        ollama_endpoint=os.getenv("OLLAMA_ENDPOINT", "http://localhost:11434"),
        **sections,
    )


def settings_or_defaults() -> Config:
    """Return loaded settings, or a default Config when settings are unavailable.

    Lets services built outside the app (tests, scripts) run on schema defaults.
    """
    try:
        return load_settings()
    except (ValueError, OSError, ConfigError):
        return Config()
