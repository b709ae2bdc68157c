"""Helpers for cleaning model output and decoding streamed backend frames."""

from __future__ import annotations

import codecs
import json
import logging
import re
from typing import Any, Dict, List

__all__ = [
    "REASONING_OPEN",
    "REASONING_CLOSE",
    "FrameBuffer",
    "ReasoningFilter",
    "strip_reasoning",
]

logger = logging.getLogger(__name__)

REASONING_OPEN = "<think>"
REASONING_CLOSE = "</think>"

_REASONING_SPAN = re.compile(
    re.escape(REASONING_OPEN) + r".*?" + re.escape(REASONING_CLOSE),
    re.DOTALL,
)


def strip_reasoning(text: str) -> str:
    """Remove every ``<think>...</think>`` span, including multi-line ones."""

    if not text:
        return text
    return _REASONING_SPAN.sub("", text)


class FrameBuffer:
    """Reassemble newline-delimited JSON frames from arbitrary transport chunks.

    Bytes are decoded incrementally so multi-byte characters split across
    chunks survive. Only newline-terminated lines are parsed; a trailing
    partial line waits for the next call to :meth:`feed`. Lines that are not
    valid JSON objects are logged and dropped.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    @property
    def pending(self) -> str:
        return self._pending

    def feed(self, data: bytes | str) -> List[Dict[str, Any]]:
        if isinstance(data, bytes):
            data = self._decoder.decode(data)
        self._pending += data
        *lines, self._pending = self._pending.split("\n")
        return self._parse_lines(lines)

    def flush(self) -> List[Dict[str, Any]]:
        """Parse whatever remains once the transport has closed."""

        remainder = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return self._parse_lines([remainder])

    @staticmethod
    def _parse_lines(lines: List[str]) -> List[Dict[str, Any]]:
        frames: List[Dict[str, Any]] = []
        for line in lines:
            candidate = line.strip()
            if not candidate:
                continue
            try:
                frame = json.loads(candidate)
            except json.JSONDecodeError:
                logger.debug("Skipping malformed stream line: %r", candidate[:200])
                continue
            if isinstance(frame, dict):
                frames.append(frame)
            else:
                logger.debug("Skipping non-object stream frame: %r", candidate[:200])
        return frames


def _marker_prefix_length(text: str, marker: str) -> int:
    """Length of the longest suffix of ``text`` that is a proper prefix of ``marker``."""

    for size in range(min(len(text), len(marker) - 1), 0, -1):
        if text.endswith(marker[:size]):
            return size
    return 0


class ReasoningFilter:
    """Suppress reasoning spans from a stream of text fragments.

    Markers may be split across fragments, so a fragment tail that could be
    the start of a marker is held back until the next fragment decides it.
    """

    def __init__(self, open_marker: str = REASONING_OPEN, close_marker: str = REASONING_CLOSE) -> None:
        self.open_marker = open_marker
        self.close_marker = close_marker
        self._inside = False
        self._held = ""

    @property
    def inside_reasoning(self) -> bool:
        return self._inside

    def feed(self, fragment: str) -> str:
        text = self._held + fragment
        self._held = ""
        forwarded: List[str] = []

        while text:
            if self._inside:
                index = text.find(self.close_marker)
                if index == -1:
                    keep = _marker_prefix_length(text, self.close_marker)
                    self._held = text[len(text) - keep :] if keep else ""
                    break
                text = text[index + len(self.close_marker) :]
                self._inside = False
                continue

            index = text.find(self.open_marker)
            if index == -1:
                keep = _marker_prefix_length(text, self.open_marker)
                if keep:
                    forwarded.append(text[:-keep])
                    self._held = text[-keep:]
                else:
                    forwarded.append(text)
                break
            forwarded.append(text[:index])
            text = text[index + len(self.open_marker) :]
            self._inside = True

        return "".join(forwarded)

    def flush(self) -> str:
        """Release held text at end of stream; nothing inside a reasoning span escapes."""

        held, self._held = self._held, ""
        if self._inside:
            return ""
        return held
