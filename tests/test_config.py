from __future__ import annotations

import os
from pathlib import Path

import pytest

from booklens.config import (
    DEFAULT_API_URL,
    DEFAULT_MODEL,
    BookLensConfig,
    ChunkingConfig,
    GatewayConfig,
    StoreConfig,
    load_config,
)


def test_defaults_without_environment() -> None:
    config = BookLensConfig()

    assert config.gateway.api_url == DEFAULT_API_URL
    assert config.gateway.model == DEFAULT_MODEL
    assert config.gateway.timeout is None
    assert config.gateway.stream_timeout == 120.0
    assert (config.chunking.max_tokens, config.chunking.min_tokens) == (1000, 100)
    assert config.store.max_workers == 2
    assert config.store.persist is True


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("OLLAMA_API_URL", "http://gpu-box:11434/api/generate")
    monkeypatch.setenv("OLLAMA_MODEL", "llama3")
    monkeypatch.setenv("BOOKLENS_TIMEOUT", "90")
    monkeypatch.setenv("BOOKLENS_MAX_TOKENS", "800")
    monkeypatch.setenv("BOOKLENS_MIN_TOKENS", "50")
    monkeypatch.setenv("BOOKLENS_CACHE_DIR", str(tmp_path))
    monkeypatch.setenv("BOOKLENS_PERSIST", "no")

    config = BookLensConfig()

    assert config.gateway.api_url == "http://gpu-box:11434/api/generate"
    assert config.gateway.model == "llama3"
    assert config.gateway.timeout == 90.0
    assert (config.chunking.max_tokens, config.chunking.min_tokens) == (800, 50)
    assert config.store.cache_path == tmp_path
    assert config.store.persist is False


def test_gateway_kwargs_skip_empty_overrides() -> None:
    gateway = GatewayConfig(api_url="http://a/api/generate", model="m", timeout=None, stream_timeout=30.0)

    kwargs = gateway.gateway_kwargs(model="other", timeout=None)

    assert kwargs == {"api_url": "http://a/api/generate", "model": "other", "timeout": None, "stream_timeout": 30.0}


def test_with_overrides_keeps_unset_values(tmp_path: Path) -> None:
    base = BookLensConfig(store=StoreConfig(cache_dir=tmp_path / "base"))

    updated = base.with_overrides(model="mistral", max_tokens=400, min_tokens=None, cache_dir=tmp_path / "new")

    assert updated.gateway.model == "mistral"
    assert updated.gateway.api_url == base.gateway.api_url
    assert updated.chunking.max_tokens == 400
    assert updated.chunking.min_tokens == base.chunking.min_tokens
    assert updated.store.cache_dir == tmp_path / "new"
    assert base.gateway.model == DEFAULT_MODEL


@pytest.mark.parametrize("max_tokens, min_tokens", [(0, 0), (100, -1), (100, 200)])
def test_chunking_config_validation(max_tokens: int, min_tokens: int) -> None:
    with pytest.raises(ValueError):
        ChunkingConfig(max_tokens=max_tokens, min_tokens=min_tokens)


def test_load_config_reads_env_file(tmp_path: Path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("OLLAMA_MODEL=from-dotenv\n", encoding="utf-8")

    try:
        config = load_config(env_file)
    finally:
        os.environ.pop("OLLAMA_MODEL", None)

    assert config.gateway.model == "from-dotenv"


def test_zero_min_tokens_from_environment_disables_merging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BOOKLENS_MIN_TOKENS", "0")

    assert ChunkingConfig().min_tokens == 0


def test_zero_max_tokens_from_environment_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BOOKLENS_MAX_TOKENS", "0")

    with pytest.raises(ValueError):
        ChunkingConfig()
