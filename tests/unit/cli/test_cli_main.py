"""Tests for the spriteforge command-line interface."""

from __future__ import annotations

from io import StringIO

import pytest
from rich.console import Console
import yaml

import spriteforge.cli.main as cli
from spriteforge.core.art.models import ProviderName
from spriteforge.core.art.service import create_art_service


@pytest.fixture
def output(monkeypatch) -> StringIO:
    """Capture rich console output at a width that never wraps."""
    buf = StringIO()
    monkeypatch.setattr(cli, "console", Console(file=buf, width=200, color_system=None))
    return buf


@pytest.fixture
def provider(make_provider):
    return make_provider(ProviderName.GEMINI)


@pytest.fixture
def config_file(tmp_path, cache_dir):
    path = tmp_path / "spriteforge.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "art": {"provider": "gemini", "cache_dir": str(cache_dir), "retry_backoff_ms": 0},
                "logging": {"level": "WARNING"},
            }
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture(autouse=True)
def wire_fakes(monkeypatch, provider):
    """Back every CLI-built service with the fake provider and skip logging setup."""
    monkeypatch.setattr(
        cli,
        "create_art_service",
        lambda art: create_art_service(art, providers={ProviderName.GEMINI: provider}),
    )
    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: None)
    for var in ("ART_PROVIDER", "ART_CACHE_DIR", "ART_CACHE_TTL_DAYS", "MAX_CONCURRENT_GENERATIONS"):
        monkeypatch.delenv(var, raising=False)


def _run(config_file, *args: str) -> int:
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["--config", str(config_file), *args])
    return exc_info.value.code


def test_parser_generate_defaults():
    """generate defaults to normal priority and waiting for the result."""
    args = cli.build_arg_parser().parse_args(["generate", "--type", "monster", "--description", "troll"])

    assert args.cmd == "generate"
    assert args.priority == "normal"
    assert args.size is None
    assert args.no_wait is False
    assert args.config is None


def test_parser_rejects_unknown_type():
    """Asset types are restricted to the known set."""
    with pytest.raises(SystemExit):
        cli.build_arg_parser().parse_args(["generate", "--type", "vehicle", "--description", "cart"])


def test_generate_then_cached(config_file, output, provider):
    """A second identical generate is served from the cache."""
    args = ("generate", "--type", "character", "--description", "grizzled dwarf blacksmith")

    assert _run(config_file, *args) == 0
    assert "Generated with gemini" in output.getvalue()

    assert _run(config_file, *args) == 0
    assert "Cached:" in output.getvalue()
    assert provider.calls == 1


def test_generate_no_wait_reports_job(config_file, output):
    """--no-wait queues the job and reports its result."""
    code = _run(config_file, "generate", "--type", "effect", "--description", "fireball", "--no-wait")

    text = output.getvalue()
    assert code == 0
    assert "Queued job" in text
    assert "/placeholders/effect.png" in text
    assert "Generated: /generated/effects/" in text


def test_generate_invalid_size(config_file, output, provider):
    """Validation errors exit non-zero without calling a provider."""
    code = _run(
        config_file, "generate", "--type", "character", "--description", "elf", "--size", "999x999"
    )

    assert code == 1
    assert "ERROR" in output.getvalue()
    assert provider.calls == 0


def test_generate_failure(config_file, output, provider):
    """Provider failures exit non-zero."""
    provider.failures = 99

    code = _run(config_file, "generate", "--type", "character", "--description", "elf")

    assert code == 1
    assert "simulated failure" in output.getvalue()


def test_stats_search_and_cleanup(config_file, output):
    """Read-only commands report on what is cached."""
    _run(config_file, "generate", "--type", "monster", "--description", "red dragon")

    assert _run(config_file, "stats") == 0
    assert "Total entries: 1" in output.getvalue()

    assert _run(config_file, "search", "dragon") == 0
    assert "red dragon" in output.getvalue()

    assert _run(config_file, "search", "unicorn", "--type", "character") == 0
    assert "No matching assets" in output.getvalue()

    assert _run(config_file, "cleanup") == 0
    assert "Removed 0 expired assets" in output.getvalue()


def test_missing_config_file(tmp_path, output):
    """An explicit config path that does not exist exits with an error."""
    assert _run(tmp_path / "missing.yaml", "stats") == 1
    assert "Could not load config" in output.getvalue()
