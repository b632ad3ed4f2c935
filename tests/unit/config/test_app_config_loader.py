"""Tests for config loading with JSON/YAML support and environment overrides."""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import ValidationError
import pytest
import yaml

import spriteforge.core.config.loader as config_loader
from spriteforge.core.art.models import AssetType, ProviderMode
from spriteforge.core.config.models import AppConfig, ArtServiceConfig


@pytest.fixture
def sample_config_data():
    """Sample configuration data for testing."""
    return {
        "art": {
            "provider": "replicate",
            "cache_dir": "data/generated",
            "max_concurrent_generations": 5,
            "replicate": {"api_key": "r8_from_file"},
        },
        "logging": {"level": "DEBUG"},
    }


def test_detect_format():
    """Format is detected from the file extension."""
    assert config_loader.detect_format("spriteforge.json") == "json"
    assert config_loader.detect_format("spriteforge.yaml") == "yaml"
    assert config_loader.detect_format(Path("spriteforge.yml")) == "yaml"


def test_detect_format_invalid():
    """Unknown extensions are rejected."""
    with pytest.raises(ValueError, match="Unsupported config format"):
        config_loader.detect_format("spriteforge.toml")


def test_load_config_json(tmp_path, sample_config_data):
    """JSON files load as raw dicts."""
    config_file = tmp_path / "spriteforge.json"
    config_file.write_text(json.dumps(sample_config_data), encoding="utf-8")

    assert config_loader.load_config(config_file) == sample_config_data


def test_load_config_yaml(tmp_path, sample_config_data):
    """YAML files load as raw dicts."""
    config_file = tmp_path / "spriteforge.yaml"
    config_file.write_text(yaml.safe_dump(sample_config_data), encoding="utf-8")

    assert config_loader.load_config(config_file) == sample_config_data


def test_load_config_empty_yaml(tmp_path):
    """An empty YAML file is an empty config."""
    config_file = tmp_path / "spriteforge.yaml"
    config_file.write_text("", encoding="utf-8")

    assert config_loader.load_config(config_file) == {}


def test_load_config_missing_file(tmp_path):
    """Missing files raise FileNotFoundError."""
    with pytest.raises(FileNotFoundError):
        config_loader.load_config(tmp_path / "missing.yaml")


@pytest.mark.parametrize(
    ("filename", "content"),
    [("bad.json", "{not json"), ("bad.yaml", "art: [unclosed"), ("list.yaml", "- a\n- b\n")],
)
def test_load_config_invalid_content(tmp_path, filename, content):
    """Malformed files and non-mapping roots raise ValueError."""
    config_file = tmp_path / filename
    config_file.write_text(content, encoding="utf-8")

    with pytest.raises(ValueError):
        config_loader.load_config(config_file)


def test_load_app_config_defaults_without_file(tmp_path, monkeypatch):
    """Without a config file every setting takes its default."""
    monkeypatch.chdir(tmp_path)

    config = config_loader.load_app_config(environ={})

    assert config == AppConfig()
    assert config.art.provider == ProviderMode.HYBRID
    assert config.art.cache_ttl_seconds == 30 * 86_400
    assert config.art.generation_timeout_seconds == 30
    assert config.art.placeholder_for(AssetType.SCENE) == "/placeholders/scene.png"


def test_load_app_config_uses_default_file(tmp_path, monkeypatch, sample_config_data):
    """spriteforge.yaml in the working directory is picked up automatically."""
    monkeypatch.chdir(tmp_path)
    (tmp_path / "spriteforge.yaml").write_text(yaml.safe_dump(sample_config_data), encoding="utf-8")

    config = config_loader.load_app_config(environ={})

    assert config.art.provider == ProviderMode.REPLICATE
    assert config.art.max_concurrent_generations == 5
    assert config.logging.level == "DEBUG"


def test_load_app_config_explicit_missing_path(tmp_path):
    """An explicit path must exist."""
    with pytest.raises(FileNotFoundError):
        config_loader.load_app_config(tmp_path / "nope.yaml", environ={})


def test_env_overrides_settings(tmp_path, sample_config_data):
    """Environment variables override file settings."""
    config_file = tmp_path / "spriteforge.json"
    config_file.write_text(json.dumps(sample_config_data), encoding="utf-8")

    config = config_loader.load_app_config(
        config_file,
        environ={
            "ART_PROVIDER": "DALLE",
            "ART_CACHE_DIR": "/srv/art",
            "ART_CACHE_TTL_DAYS": "7",
            "MAX_CONCURRENT_GENERATIONS": "8",
            "GENERATION_TIMEOUT_MS": "45000",
        },
    )

    assert config.art.provider == ProviderMode.DALLE
    assert config.art.cache_dir == "/srv/art"
    assert config.art.cache_ttl_days == 7
    assert config.art.max_concurrent_generations == 8
    assert config.art.generation_timeout_ms == 45000


def test_env_credentials_fill_only_missing_keys(tmp_path, sample_config_data):
    """Credential env vars never replace a key set in the file."""
    config_file = tmp_path / "spriteforge.json"
    config_file.write_text(json.dumps(sample_config_data), encoding="utf-8")

    config = config_loader.load_app_config(
        config_file,
        environ={
            "REPLICATE_API_TOKEN": "r8_from_env",
            "OPENAI_API_KEY": "sk-from-env",
            "GEMINI_API_KEY": "gemini-from-env",
        },
    )

    assert config.art.replicate.api_key == "r8_from_file"
    assert config.art.dalle.api_key == "sk-from-env"
    assert config.art.gemini.api_key == "gemini-from-env"


def test_invalid_env_value_fails_validation(tmp_path, monkeypatch):
    """Env values get the same validation as file values."""
    monkeypatch.chdir(tmp_path)

    with pytest.raises(ValidationError):
        config_loader.load_app_config(environ={"MAX_CONCURRENT_GENERATIONS": "0"})


def test_api_keys_hidden_from_repr():
    """Credentials never show up in reprs (and so in logs)."""
    config = ArtServiceConfig.model_validate({"dalle": {"api_key": "sk-secret-value"}})

    assert "sk-secret-value" not in repr(config)
