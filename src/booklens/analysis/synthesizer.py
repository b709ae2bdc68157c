"""LangGraph workflow that folds chunk analyses into one whole-book analysis."""

from __future__ import annotations

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, TypedDict, TypeVar

from langchain_core.prompts import PromptTemplate
from langgraph.graph import END, START, StateGraph
from pydantic import ValidationError

from ..llm import ModelGateway
from ..logs import log_llm_response
from ..schema import (
    BookInfo,
    CharacterRecord,
    Chunk,
    ChunkAnalysis,
    GlobalAnalysis,
    KeyQuote,
    NarrativeStructure,
    SettingRecord,
    StyleSummary,
    ThemeRecord,
    TimelineEvent,
)
from .parsing import ResponseParseError, extract_json_object

__all__ = [
    "MAJOR_EVENT_MARKERS",
    "PLOT_SUMMARY_UNAVAILABLE",
    "STRUCTURE_UNDETERMINED",
    "SynthesisError",
    "Synthesizer",
    "normalize_name",
    "sample_evenly",
    "select_key_quotes",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAJOR_EVENT_MARKERS: Tuple[str, ...] = ("significant", "major", "important", "crucial")
MAJOR_EVENT_TARGET = 5
BACKFILL_FRACTIONS: Tuple[float, ...] = (0.0, 0.25, 0.5, 0.75, 1.0)
MAX_SUMMARY_EVENTS = 50
MAX_STRUCTURE_DEVELOPMENTS = 40
MAX_KEY_QUOTES = 10
QUOTE_SECTIONS = 5
QUOTES_PER_SECTION = 2
MAX_LITERARY_DEVICES = 10
MAX_NOTABLE = 10

PLOT_SUMMARY_UNAVAILABLE = "Failed to generate plot summary. Please review the timeline of events."
PLOT_SUMMARY_NO_EVENTS = "No plot events were identified in the analyzed text."
STRUCTURE_UNDETERMINED = "undetermined"

PLOT_SUMMARY_TEMPLATE = """You are a literary analysis assistant tasked with creating a concise yet comprehensive plot summary.

Based on the chronological list of events below, create a coherent 2-3 paragraph plot summary that captures the narrative arc of the entire book. Focus on the major plot developments while maintaining narrative flow.

EVENTS:
{events}

YOUR RESPONSE SHOULD:
1. Be approximately 2-3 paragraphs (200-400 words total)
2. Focus on the main narrative throughline
3. Include major conflicts, turning points, and resolution
4. Be written in present tense
5. Not include any direct quotes
6. Not discuss themes or characters separately from plot events

Respond with ONLY the plot summary paragraph, no additional explanations or introductions."""

STRUCTURE_TEMPLATE = """You are a literary analysis assistant tasked with determining the narrative structure.

Based on the following plot developments across the book, identify:
1. The type of narrative structure (e.g., linear, non-linear, frame story, epistolary, etc.)
2. The story arc or dramatic structure (e.g., exposition, rising action, climax, falling action, resolution)
3. Major structural segments or divisions in the narrative

PLOT DEVELOPMENTS:
{developments}

FORMAT YOUR RESPONSE AS A VALID JSON OBJECT with the following structure:
{{
  "type": "Type of narrative structure (linear, non-linear, etc.)",
  "arc": "Description of the story arc/dramatic structure",
  "segments": [
    {{
      "name": "Segment name (e.g., Exposition, Act 1, etc.)",
      "description": "Brief description of what happens in this segment",
      "approximate_location": "Beginning/early middle/middle/late middle/end of the book"
    }}
  ]
}}

Return ONLY the valid JSON object with no additional text."""


class SynthesisError(RuntimeError):
    """Raised when synthesis aborts; carries whatever was aggregated before the failure."""

    def __init__(self, message: str, partial: Optional[GlobalAnalysis] = None) -> None:
        super().__init__(message)
        self.partial = partial


_PUNCTUATION = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    """Merge key for entity names: lowercase, no punctuation, single spaces."""

    lowered = _PUNCTUATION.sub("", name.lower())
    return _WHITESPACE.sub(" ", lowered).strip()


def sample_evenly(items: Sequence[T], count: int) -> List[T]:
    """Down-sample ``items`` to ``count`` entries, always keeping the first and last."""

    if len(items) <= count:
        return list(items)
    if count <= 0:
        return []
    if count == 1:
        return [items[0]]
    step = len(items) / count
    sampled = [items[0]]
    sampled.extend(items[math.floor(index * step)] for index in range(1, count - 1))
    sampled.append(items[-1])
    return sampled


def _merge_text(existing: str, new: str, separator: str) -> str:
    if not new or new == existing or new in existing:
        return existing
    if not existing:
        return new
    return f"{existing}{separator}{new}"


@dataclass(slots=True)
class _Entity:
    name: str
    description: str = ""
    role: str = ""
    count: int = 1
    pages: List[int] = field(default_factory=list)

    def add_page(self, page: Optional[int]) -> None:
        if page is not None and page not in self.pages:
            self.pages.append(page)


def _aggregate(
    chunks: Sequence[Chunk],
    mentions: Callable[[ChunkAnalysis], Iterable[Tuple[str, str, str]]],
) -> List[_Entity]:
    merged: Dict[str, _Entity] = {}
    for chunk in chunks:
        if chunk.analysis is None:
            continue
        for name, description, role in mentions(chunk.analysis):
            key = normalize_name(name)
            if not key:
                continue
            entity = merged.get(key)
            if entity is None:
                entity = merged[key] = _Entity(name=name, description=description, role=role)
            else:
                entity.description = _merge_text(entity.description, description, ". ")
                entity.role = _merge_text(entity.role, role, "; ")
                entity.count += 1
            entity.add_page(chunk.page_start)
    return sorted(merged.values(), key=lambda entity: entity.count, reverse=True)


def _collect_events(chunks: Sequence[Chunk]) -> List[TimelineEvent]:
    events: List[TimelineEvent] = []
    for chunk in chunks:
        if chunk.analysis is None:
            continue
        for event in chunk.analysis.events:
            if not event.description:
                continue
            events.append(
                TimelineEvent(
                    description=event.description,
                    importance=event.importance,
                    page=chunk.page_start,
                    position=chunk.position,
                )
            )
    return sorted(events, key=lambda event: event.position)


def _select_major_events(events: Sequence[TimelineEvent]) -> List[TimelineEvent]:
    chosen = [
        index
        for index, event in enumerate(events)
        if any(marker in event.importance.lower() for marker in MAJOR_EVENT_MARKERS)
    ]
    if len(chosen) < MAJOR_EVENT_TARGET and events:
        for fraction in BACKFILL_FRACTIONS:
            index = math.floor(fraction * (len(events) - 1))
            if index not in chosen:
                chosen.append(index)
    return [events[index] for index in sorted(chosen)]


def select_key_quotes(quotes: Sequence[KeyQuote]) -> List[KeyQuote]:
    """Keep at most ten quotes spread across page-ordered sections of the book."""

    if len(quotes) <= MAX_KEY_QUOTES:
        return list(quotes)
    ordered = sorted(quotes, key=lambda quote: (quote.page is None, quote.page or 0, quote.position))
    section_size = math.ceil(len(ordered) / QUOTE_SECTIONS)
    selected: List[KeyQuote] = []
    for section in range(QUOTE_SECTIONS):
        start = section * section_size
        selected.extend(ordered[start : start + section_size][:QUOTES_PER_SECTION])
    return selected


class SynthesisWorkflowState(TypedDict, total=False):
    chunks: Sequence[Chunk]
    book_info: Optional[BookInfo]
    analysis: GlobalAnalysis


class Synthesizer:
    """Aggregates annotated chunks into a :class:`GlobalAnalysis`.

    Steps run in a fixed order. Any failure in the model-backed plot-summary
    and structure steps degrades to placeholder content; an error in an
    aggregation step aborts the run with :class:`SynthesisError` carrying the
    partial analysis.
    """

    def __init__(self, gateway: ModelGateway) -> None:
        self._gateway = gateway
        self._summary_prompt = PromptTemplate.from_template(PLOT_SUMMARY_TEMPLATE)
        self._structure_prompt = PromptTemplate.from_template(STRUCTURE_TEMPLATE)
        self._graph = self._build_graph()

    def _build_graph(self):
        graph = StateGraph(SynthesisWorkflowState)
        steps = [
            ("aggregate_characters", self._node_aggregate_characters),
            ("aggregate_themes", self._node_aggregate_themes),
            ("aggregate_settings", self._node_aggregate_settings),
            ("build_timeline", self._node_build_timeline),
            ("summarize_plot", self._node_summarize_plot),
            ("synthesize_style", self._node_synthesize_style),
            ("select_key_quotes", self._node_select_key_quotes),
            ("classify_structure", self._node_classify_structure),
        ]
        previous = START
        for name, node in steps:
            graph.add_node(name, node)
            graph.add_edge(previous, name)
            previous = name
        graph.add_edge(previous, END)
        return graph.compile()

    def synthesize(self, chunks: Sequence[Chunk], book_info: Optional[BookInfo] = None) -> GlobalAnalysis:
        ordered = sorted(chunks, key=lambda chunk: chunk.position)
        initial_state: SynthesisWorkflowState = {
            "chunks": ordered,
            "book_info": book_info,
            "analysis": GlobalAnalysis(title=book_info.title if book_info else None),
        }

        latest = initial_state
        try:
            for snapshot in self._graph.stream(initial_state, stream_mode="values"):
                latest = snapshot
        except Exception as exc:
            logger.exception("Synthesis aborted")
            raise SynthesisError(f"Synthesis failed: {exc}", partial=latest.get("analysis")) from exc

        return latest["analysis"]

    # LangGraph node implementations -------------------------------------------------

    @staticmethod
    def _updated(state: SynthesisWorkflowState, **changes: Any) -> SynthesisWorkflowState:
        updated = dict(state)
        updated["analysis"] = state["analysis"].model_copy(update=changes)
        return updated  # type: ignore[return-value]

    def _node_aggregate_characters(self, state: SynthesisWorkflowState) -> SynthesisWorkflowState:
        entities = _aggregate(
            state["chunks"],
            lambda analysis: ((c.name, c.description, c.role) for c in analysis.characters),
        )
        characters = [
            CharacterRecord(
                name=entity.name,
                description=entity.description,
                role=entity.role,
                appearances=entity.count,
                pages=entity.pages,
            )
            for entity in entities
        ]
        cutoff = max(3, math.ceil(len(characters) * 0.2))
        return self._updated(
            state,
            characters=characters,
            main_characters=characters[:cutoff],
            supporting_characters=characters[cutoff:],
        )

    def _node_aggregate_themes(self, state: SynthesisWorkflowState) -> SynthesisWorkflowState:
        entities = _aggregate(
            state["chunks"],
            lambda analysis: ((t.name, t.description, "") for t in analysis.themes),
        )
        themes = [
            ThemeRecord(
                name=entity.name,
                description=entity.description,
                occurrences=entity.count,
                pages=entity.pages,
            )
            for entity in entities
        ]
        return self._updated(state, themes=themes)

    def _node_aggregate_settings(self, state: SynthesisWorkflowState) -> SynthesisWorkflowState:
        entities = _aggregate(
            state["chunks"],
            lambda analysis: ((s.location, s.description, "") for s in analysis.settings),
        )
        settings = [
            SettingRecord(
                location=entity.name,
                description=entity.description,
                occurrences=entity.count,
                pages=entity.pages,
            )
            for entity in entities
        ]
        return self._updated(state, settings=settings)

    def _node_build_timeline(self, state: SynthesisWorkflowState) -> SynthesisWorkflowState:
        timeline = _collect_events(state["chunks"])
        return self._updated(state, timeline=timeline, major_events=_select_major_events(timeline))

    def _node_summarize_plot(self, state: SynthesisWorkflowState) -> SynthesisWorkflowState:
        timeline = state["analysis"].timeline
        if not timeline:
            return self._updated(state, plot_summary=PLOT_SUMMARY_NO_EVENTS)

        lines = [
            f"- {event.description}" + (f" (Page {event.page})" if event.page is not None else "")
            for event in timeline
        ]
        try:
            prompt = self._summary_prompt.format(events="\n".join(sample_evenly(lines, MAX_SUMMARY_EVENTS)))
            response = self._gateway.generate(prompt)
        except Exception as exc:
            logger.error("Error generating plot summary: %s", exc)
            return self._updated(state, plot_summary=PLOT_SUMMARY_UNAVAILABLE)

        log_llm_response(logger, "Plot Summary", response)
        return self._updated(state, plot_summary=response.strip() or PLOT_SUMMARY_UNAVAILABLE)

    def _node_synthesize_style(self, state: SynthesisWorkflowState) -> SynthesisWorkflowState:
        tones: Counter[str] = Counter()
        voices: Counter[str] = Counter()
        devices: Counter[str] = Counter()
        notable: List[str] = []
        for chunk in state["chunks"]:
            if chunk.analysis is None:
                continue
            style = chunk.analysis.style
            if style.tone:
                tones[style.tone.lower().strip()] += 1
            if style.narrative_voice:
                voices[style.narrative_voice.lower().strip()] += 1
            for device in style.literary_devices:
                devices[device.lower().strip()] += 1
            for remark in style.notable:
                if remark not in notable:
                    notable.append(remark)

        summary = StyleSummary(
            tone=_most_common(tones),
            voice=_most_common(voices),
            literary_devices=[device for device, _ in devices.most_common(MAX_LITERARY_DEVICES)],
            notable=notable[:MAX_NOTABLE],
        )
        return self._updated(state, style=summary)

    def _node_select_key_quotes(self, state: SynthesisWorkflowState) -> SynthesisWorkflowState:
        quotes = [
            KeyQuote(
                quote=quote.quote,
                explanation=quote.explanation,
                page=chunk.page_start,
                chunk_id=chunk.id,
                position=chunk.position,
            )
            for chunk in state["chunks"]
            if chunk.analysis is not None
            for quote in chunk.analysis.key_quotes
            if quote.quote
        ]
        return self._updated(state, key_quotes=select_key_quotes(quotes))

    def _node_classify_structure(self, state: SynthesisWorkflowState) -> SynthesisWorkflowState:
        lines = list(_development_lines(state["chunks"]))
        if not lines:
            return self._updated(state, structure=NarrativeStructure(type=STRUCTURE_UNDETERMINED))

        try:
            prompt = self._structure_prompt.format(
                developments="\n".join(sample_evenly(lines, MAX_STRUCTURE_DEVELOPMENTS))
            )
            response = self._gateway.generate(prompt)
        except Exception as exc:
            logger.error("Error determining narrative structure: %s", exc)
            return self._updated(state, structure=NarrativeStructure(type=STRUCTURE_UNDETERMINED))

        log_llm_response(logger, "Narrative Structure", response)
        try:
            structure = NarrativeStructure.model_validate(extract_json_object(response))
        except (ResponseParseError, ValidationError):
            logger.warning("Failed to parse narrative structure JSON, keeping raw response")
            structure = NarrativeStructure(type=STRUCTURE_UNDETERMINED, arc=response.strip() or None)
        if not structure.type:
            structure = structure.model_copy(update={"type": STRUCTURE_UNDETERMINED})
        return self._updated(state, structure=structure)


def _most_common(counter: Counter[str]) -> Optional[str]:
    ranked = counter.most_common(1)
    return ranked[0][0] if ranked else None


def _development_lines(chunks: Sequence[Chunk]) -> Iterator[str]:
    for chunk in chunks:
        if chunk.analysis is None or not chunk.analysis.plot_development:
            continue
        line = f"- {chunk.analysis.plot_development}"
        if chunk.page_start is not None:
            page_end = chunk.page_end if chunk.page_end is not None else chunk.page_start
            line += f" (Pages {chunk.page_start}-{page_end})"
        yield line
