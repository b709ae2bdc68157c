"""Model gateway abstraction over the local generation backend (Ollama)."""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Sequence, Tuple

import requests

from ..config import DEFAULT_API_URL, DEFAULT_MODEL, DEFAULT_STREAM_TIMEOUT
from .streaming import FrameBuffer, ReasoningFilter, strip_reasoning
from .usage import UsageTracker

__all__ = [
    "GatewayError",
    "GatewaySettings",
    "ModelGateway",
    "OllamaGateway",
    "build_gateway",
]

logger = logging.getLogger(__name__)

DEFAULT_API_URL_ENVS: Tuple[str, ...] = ("OLLAMA_API_URL",)
DEFAULT_MODEL_ENVS: Tuple[str, ...] = ("OLLAMA_MODEL",)
DEFAULT_TIMEOUT_ENV = "BOOKLENS_TIMEOUT"
DEFAULT_STREAM_TIMEOUT_ENV = "BOOKLENS_STREAM_TIMEOUT"


class GatewayError(RuntimeError):
    """Raised when the generation backend cannot produce a response."""


@dataclass(slots=True)
class GatewaySettings:
    """Settings bundle for a generation backend."""

    api_url: str = DEFAULT_API_URL
    model: str = DEFAULT_MODEL
    timeout: float | None = None
    stream_timeout: float = DEFAULT_STREAM_TIMEOUT

    def payload(self, prompt: str, *, stream: bool) -> Dict[str, Any]:
        return {"model": self.model, "prompt": prompt, "stream": stream}


class ModelGateway(ABC):
    """Interface the analysis components use to talk to a language model."""

    def __init__(self, *, usage_tracker: Optional[UsageTracker] = None) -> None:
        self._usage_tracker = usage_tracker or UsageTracker()

    @property
    def usage_tracker(self) -> UsageTracker:
        return self._usage_tracker

    @abstractmethod
    def generate(self, prompt: str) -> str:
        """Return the complete response with reasoning spans removed."""

    @abstractmethod
    def stream(self, prompt: str) -> Iterator[str]:
        """Yield response fragments as they arrive, never inside a reasoning span."""


class OllamaGateway(ModelGateway):
    """Talks to Ollama's ``/api/generate`` endpoint over HTTP."""

    def __init__(
        self,
        settings: GatewaySettings,
        *,
        session: Optional[requests.Session] = None,
        usage_tracker: Optional[UsageTracker] = None,
    ) -> None:
        super().__init__(usage_tracker=usage_tracker)
        self.settings = settings
        self._session = session or requests.Session()

    @property
    def model(self) -> str:
        return self.settings.model

    def generate(self, prompt: str) -> str:
        try:
            response = self._session.post(
                self.settings.api_url,
                json=self.settings.payload(prompt, stream=False),
                timeout=self.settings.timeout,
            )
        except requests.Timeout as exc:
            raise GatewayError(f"Request to '{self.settings.api_url}' timed out") from exc
        except requests.RequestException as exc:
            raise GatewayError(f"Connection to '{self.settings.api_url}' failed: {exc}") from exc

        if response.status_code != 200:
            raise GatewayError(f"HTTP {response.status_code}: {response.text[:500]}")

        try:
            data = response.json()
        except ValueError as exc:
            raise GatewayError(f"Backend returned a non-JSON body for model '{self.model}'") from exc
        if not isinstance(data, dict) or not isinstance(data.get("response"), str):
            raise GatewayError(f"Backend response for model '{self.model}' has no text")

        self._record_usage(data, streamed=False)
        return strip_reasoning(data["response"]).strip()

    def stream(self, prompt: str) -> Iterator[str]:
        try:
            response = self._session.post(
                self.settings.api_url,
                json=self.settings.payload(prompt, stream=True),
                stream=True,
                timeout=self.settings.stream_timeout,
            )
        except requests.Timeout as exc:
            raise GatewayError(f"Streaming request to '{self.settings.api_url}' timed out") from exc
        except requests.RequestException as exc:
            raise GatewayError(f"Connection to '{self.settings.api_url}' failed: {exc}") from exc

        # Closing the response (also on generator close) aborts the backend request.
        try:
            if response.status_code != 200:
                raise GatewayError(f"HTTP {response.status_code}: {response.text[:500]}")

            frames = FrameBuffer()
            reasoning = ReasoningFilter()
            try:
                for raw in response.iter_content(chunk_size=None):
                    for frame in frames.feed(raw):
                        text = reasoning.feed(str(frame.get("response") or ""))
                        if text:
                            yield text
                        if frame.get("done"):
                            self._record_usage(frame, streamed=True)
                            tail = reasoning.flush()
                            if tail:
                                yield tail
                            return
            except requests.RequestException as exc:
                raise GatewayError(f"Stream from '{self.settings.api_url}' was interrupted: {exc}") from exc

            for frame in frames.flush():
                text = reasoning.feed(str(frame.get("response") or ""))
                if text:
                    yield text
            tail = reasoning.flush()
            if tail:
                yield tail
            logger.warning("Stream for model '%s' ended without a completion frame", self.model)
        finally:
            response.close()

    def _record_usage(self, data: Dict[str, Any], *, streamed: bool) -> None:
        prompt_tokens = _as_int(data.get("prompt_eval_count"))
        completion_tokens = _as_int(data.get("eval_count"))
        self._usage_tracker.add_record(
            model=str(data.get("model") or self.model),
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            streamed=streamed,
            metadata={"total_duration": data.get("total_duration")},
        )


def build_gateway(
    *,
    api_url: str | None = None,
    model: str | None = None,
    timeout: float | None = None,
    stream_timeout: float | None = None,
    session: Optional[requests.Session] = None,
    api_url_envs: Sequence[str] | None = None,
    model_envs: Sequence[str] | None = None,
) -> OllamaGateway:
    """Factory resolving explicit arguments over environment over defaults."""

    resolved_url = api_url or _resolve_from_env(api_url_envs or DEFAULT_API_URL_ENVS) or DEFAULT_API_URL
    resolved_model = model or _resolve_from_env(model_envs or DEFAULT_MODEL_ENVS) or DEFAULT_MODEL
    resolved_timeout = _coerce_float(timeout, os.getenv(DEFAULT_TIMEOUT_ENV), default=None)
    resolved_stream_timeout = _coerce_float(
        stream_timeout,
        os.getenv(DEFAULT_STREAM_TIMEOUT_ENV),
        default=DEFAULT_STREAM_TIMEOUT,
    )

    settings = GatewaySettings(
        api_url=resolved_url,
        model=resolved_model,
        timeout=resolved_timeout,
        stream_timeout=resolved_stream_timeout or DEFAULT_STREAM_TIMEOUT,
    )
    return OllamaGateway(settings, session=session)


def _resolve_from_env(envs: Sequence[str]) -> str | None:
    for env_name in envs:
        value = os.getenv(env_name)
        if value:
            return value
    return None


def _coerce_float(explicit: float | None, env_value: str | None, *, default: float | None) -> float | None:
    if explicit is not None:
        return explicit
    if env_value is None:
        return default
    try:
        return float(env_value)
    except ValueError:
        return default


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
