"""Strategies for turning raw model output into a :class:`ChunkAnalysis`.

The primary strategy looks for a JSON object in the response. When that
fails, a heuristic strategy reads the category headers the prompt asks for
and pulls bullet items out of each section. Strategies share one interface so
the analyzer only ever sees "parsed" or :class:`ResponseParseError`.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional, Sequence

from pydantic import ValidationError

from ..schema import ChunkAnalysis

__all__ = [
    "ResponseParseError",
    "ResponseParser",
    "JsonResponseParser",
    "HeuristicResponseParser",
    "ChainedResponseParser",
    "default_parser",
    "extract_json_object",
]

logger = logging.getLogger(__name__)


class ResponseParseError(ValueError):
    """Raised when a parsing strategy cannot interpret a model response."""


_FENCED_JSON = re.compile(r"```json[ \t]*\n(.*?)\n?[ \t]*```", re.DOTALL | re.IGNORECASE)
_FENCED_ANY = re.compile(r"```[^\n`]*\n(.*?)\n?[ \t]*```", re.DOTALL)


def _balanced_object(text: str) -> Optional[str]:
    """Return the first top-level ``{...}`` span, respecting JSON strings."""

    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    return None


def _json_candidates(text: str) -> Iterator[str]:
    for pattern in (_FENCED_JSON, _FENCED_ANY):
        match = pattern.search(text)
        if match:
            yield match.group(1)
    balanced = _balanced_object(text)
    if balanced:
        yield balanced
    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        yield text[first : last + 1]


def extract_json_object(text: str) -> Dict[str, Any]:
    """Locate and decode the JSON object embedded in a model response.

    Candidates are tried in order: a fenced ``json`` block, any fenced block,
    the first balanced brace span, then everything between the first ``{`` and
    the last ``}``.
    """

    for candidate in _json_candidates(text or ""):
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict):
            return payload
    raise ResponseParseError("No JSON object found in model response")


class ResponseParser(ABC):
    """One way of interpreting a raw model response."""

    name: str = "parser"

    @abstractmethod
    def parse(self, text: str) -> ChunkAnalysis:
        """Return the analysis or raise :class:`ResponseParseError`."""


class JsonResponseParser(ResponseParser):
    name = "json"

    def parse(self, text: str) -> ChunkAnalysis:
        payload = extract_json_object(text)
        try:
            return ChunkAnalysis.model_validate(payload)
        except ValidationError as exc:
            raise ResponseParseError(f"JSON payload does not match the analysis shape: {exc}") from exc


SECTION_HEADERS: Sequence[str] = (
    "CHARACTERS",
    "EVENTS",
    "THEMES",
    "STYLE",
    "KEY QUOTES",
    "PLOT DEVELOPMENT",
    "SETTINGS",
)

_HEADER = re.compile(
    r"^[ \t]*(?:\d+[.)][ \t]*)?[#*_ \t]*(" + "|".join(re.escape(h) for h in SECTION_HEADERS) + r")[*_ \t]*(?::|$)",
    re.IGNORECASE | re.MULTILINE,
)
_BULLET = re.compile(r"^[ \t]*(?:[-*•]|\d+[.)])[ \t]+(.+?)[ \t]*$", re.MULTILINE)
_CAPITALISED_RUN = re.compile(r"^([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)")
_ENCLOSED = re.compile(r'"([^"]+)"|\[([^\]]+)\]|\(([^)]+)\)')
_KEY_VALUE = re.compile(r"^([^:]+):\s*(.+)$")
_QUOTED = re.compile(r'"([^"]+)"|“([^”]+)”')
_TONE = re.compile(r"tone:?\s*([^.\n]+)", re.IGNORECASE)
_VOICE = (
    re.compile(r"voice:?\s*([^.\n]+)", re.IGNORECASE),
    re.compile(r"narrative:?\s*([^.\n]+)", re.IGNORECASE),
    re.compile(r"pov:?\s*([^.\n]+)", re.IGNORECASE),
)
_DEVICE_WORDS = ("device", "imagery", "metaphor", "simile")


def _split_sections(text: str) -> Dict[str, str]:
    matches = list(_HEADER.finditer(text))
    sections: Dict[str, str] = {}
    for index, match in enumerate(matches):
        key = match.group(1).upper()
        end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
        sections.setdefault(key, text[match.end() : end].strip())
    return sections


def _bullets(section: str) -> List[str]:
    return [match.group(1) for match in _BULLET.finditer(section)]


def _name_from_line(line: str) -> str:
    match = _CAPITALISED_RUN.match(line)
    if match:
        return match.group(1)
    enclosed = _ENCLOSED.search(line)
    if enclosed:
        return next(group for group in enclosed.groups() if group)
    return " ".join(line.split()[:3])


def _first_match(patterns: Sequence[re.Pattern[str]], text: str) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(1).strip()
    return None


class HeuristicResponseParser(ResponseParser):
    """Section-and-bullet extraction for responses that are not JSON."""

    name = "heuristic"

    def parse(self, text: str) -> ChunkAnalysis:
        sections = _split_sections(text or "")
        if not sections:
            raise ResponseParseError("No analysis sections found in model response")

        payload: Dict[str, Any] = {}

        if "CHARACTERS" in sections:
            payload["characters"] = [
                {"name": _name_from_line(line), "description": line} for line in _bullets(sections["CHARACTERS"])
            ]
        if "EVENTS" in sections:
            payload["events"] = [{"description": line} for line in _bullets(sections["EVENTS"])]
        if "THEMES" in sections:
            themes = []
            for line in _bullets(sections["THEMES"]):
                pair = _KEY_VALUE.match(line)
                if pair:
                    themes.append({"name": pair.group(1).strip(), "description": pair.group(2).strip()})
                else:
                    themes.append({"name": line})
            payload["themes"] = themes
        if "STYLE" in sections:
            payload["style"] = self._style(sections["STYLE"])
        if "KEY QUOTES" in sections:
            payload["key_quotes"] = [
                {"quote": next(group for group in match.groups() if group)}
                for match in _QUOTED.finditer(sections["KEY QUOTES"])
            ]
        if "PLOT DEVELOPMENT" in sections:
            payload["plot_development"] = sections["PLOT DEVELOPMENT"]
        if "SETTINGS" in sections:
            payload["settings"] = [{"location": line} for line in _bullets(sections["SETTINGS"])]

        return ChunkAnalysis.model_validate(payload)

    @staticmethod
    def _style(section: str) -> Dict[str, Any]:
        devices = [
            re.sub(r"^[ \t]*[-*•][ \t]*", "", line).strip()
            for line in section.splitlines()
            if any(word in line.lower() for word in _DEVICE_WORDS)
        ]
        return {
            "tone": _first_match((_TONE,), section),
            "narrative_voice": _first_match(_VOICE, section),
            "literary_devices": devices,
        }


class ChainedResponseParser(ResponseParser):
    """Try each strategy in order; fall back to an empty analysis if none succeeds."""

    name = "chained"

    def __init__(self, strategies: Sequence[ResponseParser]) -> None:
        if not strategies:
            raise ValueError("At least one parsing strategy is required")
        self.strategies = tuple(strategies)

    def parse(self, text: str) -> ChunkAnalysis:
        for strategy in self.strategies:
            try:
                return strategy.parse(text)
            except ResponseParseError as exc:
                logger.debug("Parser '%s' rejected response: %s", strategy.name, exc)
        logger.warning("No parsing strategy could interpret the model response; using empty analysis")
        return ChunkAnalysis()


def default_parser() -> ChainedResponseParser:
    return ChainedResponseParser([JsonResponseParser(), HeuristicResponseParser()])
