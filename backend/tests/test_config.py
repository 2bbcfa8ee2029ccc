# backend/tests/test_config.py
"""Configuration tests.

Tests verify behavior (types, ranges, loading) not specific values.
"""

from pathlib import Path

import pytest

from notewise.config import (
    CONFIG_SCHEMA,
    Config,
    ConfigError,
    load_config_file,
    load_settings,
    settings_or_defaults,
)


def write_config(directory: Path, content: str) -> Path:
    """Write a config.ini file to the directory and return the path."""
    directory.mkdir(parents=True, exist_ok=True)
    config_path = directory / "config.ini"
    config_path.write_text(content)
    return config_path


# =============================================================================
# Type Validation Tests
# =============================================================================


def test_all_settings_have_correct_types():
    """Every setting matches its declared type from schema."""
    config = Config()

    for section_name, keys in CONFIG_SCHEMA.items():
        section = getattr(config, section_name)
        for key, (expected_type, *_) in keys.items():
            value = getattr(section, key)
            assert isinstance(value, expected_type), (
                f"{section_name}.{key}: expected {expected_type.__name__}, "
                f"got {type(value).__name__}"
            )


def test_defaults_are_within_declared_ranges():
    """Schema defaults respect their own min/max bounds."""
    for section_name, keys in CONFIG_SCHEMA.items():
        for key, (_, default, min_val, max_val, _) in keys.items():
            if min_val is not None:
                assert default >= min_val, f"{section_name}.{key} below minimum"
            if max_val is not None:
                assert default <= max_val, f"{section_name}.{key} above maximum"


def test_context_and_completion_shares_fit_the_turn():
    """Context and answer budgets together never exceed the token ceiling."""
    config = Config()
    assert config.context.context_ratio + config.llm.completion_ratio <= 1.0


# =============================================================================
# File Loading Tests
# =============================================================================


def test_config_file_overrides_defaults(tmp_path: Path):
    """Values in config.ini replace schema defaults."""
    path = write_config(tmp_path, "[search]\nresult_limit = 42\n\n[duplicates]\nreport_threshold = 0.9\n")

    sections = load_config_file(path)

    assert sections["search"].result_limit == 42
    assert sections["duplicates"].report_threshold == 0.9
    assert sections["chunking"].max_chunk_tokens == CONFIG_SCHEMA["chunking"]["max_chunk_tokens"][1]


def test_out_of_range_value_raises(tmp_path: Path):
    """A value outside the declared range is rejected."""
    path = write_config(tmp_path, "[duplicates]\nreport_threshold = 1.5\n")

    with pytest.raises(ConfigError, match="maximum"):
        load_config_file(path)


def test_wrong_type_raises(tmp_path: Path):
    """A value that cannot be coerced is rejected."""
    path = write_config(tmp_path, "[jobs]\nworker_count = many\n")

    with pytest.raises(ConfigError, match="expected int"):
        load_config_file(path)


def test_missing_file_uses_defaults(tmp_path: Path):
    sections = load_config_file(tmp_path / "absent.ini")

    assert sections["search"].candidate_limit == CONFIG_SCHEMA["search"]["candidate_limit"][1]


def test_load_settings_reads_data_dir_config(tmp_path: Path, monkeypatch):
    """load_settings picks up config.ini from NOTEWISE_DATA_DIR."""
    data_dir = tmp_path / "custom"
    write_config(data_dir, "[chunking]\noverlap_words = 12\n")
    monkeypatch.setenv("NOTEWISE_DATA_DIR", str(data_dir))
    load_settings.cache_clear()

    settings = load_settings()

    assert settings.data_dir == data_dir
    assert settings.chunking.overlap_words == 12
    assert settings.db_path == data_dir / "notewise.db"


def test_settings_or_defaults_survives_invalid_config(tmp_path: Path, monkeypatch):
    """An invalid config file falls back to defaults instead of failing callers."""
    data_dir = tmp_path / "broken"
    write_config(data_dir, "[search]\nresult_limit = 0\n")
    monkeypatch.setenv("NOTEWISE_DATA_DIR", str(data_dir))
    load_settings.cache_clear()

    settings = settings_or_defaults()

    assert settings.search.result_limit == CONFIG_SCHEMA["search"]["result_limit"][1]


# =============================================================================
# Provider Tests
# =============================================================================


def test_provider_defaults_to_ollama_without_keys():
    settings = load_settings()

    assert settings.active_provider == "ollama"
    assert settings.llm_endpoint == settings.ollama_endpoint
    assert not settings.embeddings_enabled


def test_provider_detected_from_api_key(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    load_settings.cache_clear()

    settings = load_settings()

    assert settings.active_provider == "openai"
    assert settings.llm_api_key == "sk-test"
    assert settings.llm_endpoint is None


def test_fallback_model_defaults_per_provider(monkeypatch):
    monkeypatch.setenv("FALLBACK_PROVIDER", "anthropic")
    load_settings.cache_clear()

    settings = load_settings()

    assert settings.fallback_provider == "anthropic"
    assert settings.fallback_model
    assert settings.api_key_for("anthropic") is None


def test_embedding_model_enables_embeddings(monkeypatch):
    monkeypatch.setenv("EMBEDDING_MODEL", "text-embedding-3-small")
    load_settings.cache_clear()

    assert load_settings().embeddings_enabled
