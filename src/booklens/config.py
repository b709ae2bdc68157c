"""Dataclass-driven configuration for the booklens analysis pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

from dotenv import load_dotenv

from .paths import DEFAULT_CACHE_ROOT, resolve_cache_path

__all__ = [
    "DEFAULT_API_URL",
    "DEFAULT_MODEL",
    "GatewayConfig",
    "ChunkingConfig",
    "StoreConfig",
    "BookLensConfig",
    "load_config",
]

DEFAULT_API_URL = "http://localhost:11434/api/generate"
DEFAULT_MODEL = "deepseek-r1:7b"
DEFAULT_STREAM_TIMEOUT = 120.0


def _env_float(name: str, default: float | None = None) -> float | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class GatewayConfig:
    """Connection settings for the local generation backend."""

    api_url: str = field(default_factory=lambda: os.getenv("OLLAMA_API_URL", DEFAULT_API_URL))
    model: str = field(default_factory=lambda: os.getenv("OLLAMA_MODEL", DEFAULT_MODEL))
    # Single-shot analysis calls are unbounded unless explicitly configured.
    timeout: float | None = field(default_factory=lambda: _env_float("BOOKLENS_TIMEOUT"))
    stream_timeout: float = field(
        default_factory=lambda: _env_float("BOOKLENS_STREAM_TIMEOUT", DEFAULT_STREAM_TIMEOUT) or DEFAULT_STREAM_TIMEOUT
    )

    def gateway_kwargs(self, **overrides: object) -> dict[str, object]:
        kwargs: dict[str, object] = {
            "api_url": self.api_url,
            "model": self.model,
            "timeout": self.timeout,
            "stream_timeout": self.stream_timeout,
        }
        for key, value in overrides.items():
            if value is not None:
                kwargs[key] = value
        return kwargs


@dataclass(slots=True)
class ChunkingConfig:
    """Token budget used when splitting documents into chunks."""

    max_tokens: int = field(default_factory=lambda: _env_int("BOOKLENS_MAX_TOKENS", 1000))
    min_tokens: int = field(default_factory=lambda: _env_int("BOOKLENS_MIN_TOKENS", 100))

    def __post_init__(self) -> None:
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        if self.min_tokens < 0:
            raise ValueError("min_tokens must not be negative")
        if self.min_tokens > self.max_tokens:
            raise ValueError("min_tokens must not exceed max_tokens")


@dataclass(slots=True)
class StoreConfig:
    """Settings for the analysis state store and its on-disk cache."""

    cache_dir: Path = field(default_factory=lambda: Path(os.getenv("BOOKLENS_CACHE_DIR", str(DEFAULT_CACHE_ROOT))))
    max_workers: int = field(default_factory=lambda: _env_int("BOOKLENS_MAX_WORKERS", 2) or 2)
    persist: bool = field(default_factory=lambda: _env_bool("BOOKLENS_PERSIST", True))

    @property
    def cache_path(self) -> Path:
        return resolve_cache_path(self.cache_dir, create=False)


@dataclass(slots=True)
class BookLensConfig:
    """Primary configuration entry point for the analysis pipeline."""

    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    def with_overrides(
        self,
        *,
        api_url: str | None = None,
        model: str | None = None,
        cache_dir: Path | str | None = None,
        max_tokens: int | None = None,
        min_tokens: int | None = None,
    ) -> "BookLensConfig":
        gateway = replace(
            self.gateway,
            api_url=api_url or self.gateway.api_url,
            model=model or self.gateway.model,
        )
        chunking = ChunkingConfig(
            max_tokens=max_tokens if max_tokens is not None else self.chunking.max_tokens,
            min_tokens=min_tokens if min_tokens is not None else self.chunking.min_tokens,
        )
        store = replace(self.store, cache_dir=Path(cache_dir) if cache_dir is not None else self.store.cache_dir)
        return replace(self, gateway=gateway, chunking=chunking, store=store)


def load_config(env_file: Path | str | None = None) -> BookLensConfig:
    """Load ``.env`` (if present) and build the configuration from the environment."""

    load_dotenv(dotenv_path=env_file)
    return BookLensConfig()
