"""Shared fixtures for the test suite."""
from __future__ import annotations

import json
from typing import Any, Callable, Iterable, Iterator, Sequence

import pytest

from booklens.llm import GatewaySettings, ModelGateway, OllamaGateway
from booklens.schema import Chunk, ChunkAnalysis

ENV_VARS = {
    "OLLAMA_API_URL",
    "OLLAMA_MODEL",
    "BOOKLENS_TIMEOUT",
    "BOOKLENS_STREAM_TIMEOUT",
    "BOOKLENS_MAX_TOKENS",
    "BOOKLENS_MIN_TOKENS",
    "BOOKLENS_CACHE_DIR",
    "BOOKLENS_MAX_WORKERS",
    "BOOKLENS_PERSIST",
}


@pytest.fixture(autouse=True)
def _clear_booklens_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure backend-related environment variables do not leak between tests."""

    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class ScriptedGateway(ModelGateway):
    """Gateway double answering prompts from a script of replies.

    ``replies`` are consumed in order by :meth:`generate`; once exhausted the
    ``default`` reply is used. ``streams`` are consumed by :meth:`stream`, each
    entry being a list of fragments (an exception inside the list is raised at
    that point of the stream).
    """

    def __init__(
        self,
        replies: Sequence[Any] = (),
        *,
        default: Any = "",
        streams: Sequence[Sequence[str | Exception]] = (),
    ) -> None:
        super().__init__()
        self.replies = list(replies)
        self.default = default
        self.streams = [list(stream) for stream in streams]
        self.prompts: list[str] = []
        self.stream_prompts: list[str] = []
        self.closed_streams = 0

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply

    def stream(self, prompt: str) -> Iterator[str]:
        self.stream_prompts.append(prompt)
        fragments = self.streams.pop(0) if self.streams else []
        try:
            for fragment in fragments:
                if isinstance(fragment, Exception):
                    raise fragment
                yield fragment
        finally:
            self.closed_streams += 1


@pytest.fixture
def scripted_gateway() -> Callable[..., ScriptedGateway]:
    return ScriptedGateway


class FakeResponse:
    def __init__(
        self,
        *,
        status_code: int = 200,
        body: Any = None,
        text: str | None = None,
        chunks: Iterable[bytes] = (),
    ) -> None:
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else (json.dumps(body) if body is not None else "")
        self._chunks = list(chunks)
        self.closed = False

    def json(self) -> Any:
        if self._body is None:
            return json.loads(self.text)
        return self._body

    def iter_content(self, chunk_size: int | None = None) -> Iterator[bytes]:
        yield from self._chunks

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Stand-in for ``requests.Session`` returning queued responses."""

    def __init__(self, responses: Sequence[FakeResponse | Exception] = ()) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def ndjson(*frames: dict[str, Any]) -> bytes:
    return b"".join(json.dumps(frame).encode("utf-8") + b"\n" for frame in frames)


@pytest.fixture
def fake_session() -> Callable[..., FakeSession]:
    return FakeSession


@pytest.fixture
def ollama_gateway() -> Callable[[FakeSession], OllamaGateway]:
    def _factory(session: FakeSession) -> OllamaGateway:
        settings = GatewaySettings(api_url="http://ollama.test/api/generate", model="test-model")
        return OllamaGateway(settings, session=session)  # type: ignore[arg-type]

    return _factory


def analysis_json(**fields: Any) -> str:
    """Model-style reply wrapping a JSON analysis in a fenced block."""

    return "Here is the analysis:\n```json\n" + json.dumps(fields) + "\n```"


def make_chunk(
    position: int,
    *,
    page: int | None = None,
    text: str = "Some text.",
    analysis: ChunkAnalysis | dict[str, Any] | None = None,
) -> Chunk:
    if isinstance(analysis, dict):
        analysis = ChunkAnalysis.model_validate({"chunk_id": f"chunk-{position}", **analysis})
    return Chunk(
        id=f"chunk-{position}",
        text=text,
        page_start=page,
        page_end=page,
        position=position,
        token_count=len(text) // 4,
        analysis=analysis,
    )
