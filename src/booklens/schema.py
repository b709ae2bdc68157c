"""Structured schema definitions for chunk and whole-book analysis.

Model output is loosely shaped: fields go missing, come back as ``null``, use
either camelCase or snake_case, or collapse a record into a bare string. Every
model here accepts those variants and fills the full shape with empty
defaults, so code downstream of the parse boundary never checks for absence.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

__all__ = [
    "FrozenBaseModel",
    "TocEntry",
    "BookInfo",
    "CharacterMention",
    "EventMention",
    "ThemeMention",
    "StyleNotes",
    "QuoteMention",
    "SettingMention",
    "ChunkAnalysis",
    "Chunk",
    "CharacterRecord",
    "ThemeRecord",
    "SettingRecord",
    "TimelineEvent",
    "StyleSummary",
    "StructureSegment",
    "NarrativeStructure",
    "KeyQuote",
    "GlobalAnalysis",
    "to_payload",
]


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (list, tuple)):
        return "; ".join(text for text in (_as_text(item) for item in value) if text)
    return str(value).strip()


def _as_optional_text(value: Any) -> Optional[str]:
    return _as_text(value) or None


class FrozenBaseModel(BaseModel):
    model_config = ConfigDict(
        extra="ignore",
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class _Mention(FrozenBaseModel):
    """A record whose text fields tolerate ``null`` and bare-string input."""

    primary_field: ClassVar[str] = "name"

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data: Any) -> Any:
        if isinstance(data, str):
            data = {cls.primary_field: data}
        if not isinstance(data, dict):
            return data
        cleaned = dict(data)
        for name, info in cls.model_fields.items():
            if info.annotation is not str:
                continue
            for key in {name, info.alias or name}:
                if key in cleaned:
                    cleaned[key] = _as_text(cleaned[key])
        return cleaned


class TocEntry(FrozenBaseModel):
    title: str
    page: int


class BookInfo(FrozenBaseModel):
    """Basic metadata about the book being analysed."""

    id: str
    title: str
    author: str = "Unknown"
    path: Optional[str] = None
    page_count: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    table_of_contents: Optional[List[TocEntry]] = None


class CharacterMention(_Mention):
    name: str = ""
    description: str = ""
    role: str = ""


class EventMention(_Mention):
    primary_field: ClassVar[str] = "description"

    description: str = ""
    importance: str = ""


class ThemeMention(_Mention):
    name: str = ""
    description: str = ""


class QuoteMention(_Mention):
    primary_field: ClassVar[str] = "quote"

    quote: str = ""
    explanation: str = ""


class SettingMention(_Mention):
    primary_field: ClassVar[str] = "location"

    location: str = ""
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _accept_name_key(cls, data: Any) -> Any:
        # Models sometimes label places with "name" instead of "location".
        if isinstance(data, dict) and not data.get("location") and data.get("name"):
            return {**data, "location": _as_text(data["name"])}
        return data


class StyleNotes(FrozenBaseModel):
    """Per-chunk stylistic observations."""

    tone: Optional[str] = None
    narrative_voice: Optional[str] = None
    literary_devices: List[str] = Field(default_factory=list)
    notable: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _from_bare_value(cls, data: Any) -> Any:
        if data is None:
            return {}
        if isinstance(data, str):
            return {"tone": data}
        return data

    @field_validator("tone", "narrative_voice", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        return _as_optional_text(value)

    @field_validator("literary_devices", "notable", mode="before")
    @classmethod
    def _text_list(cls, value: Any) -> List[str]:
        return [text for text in (_as_text(item) for item in _as_list(value)) if text]


class ChunkAnalysis(FrozenBaseModel):
    """Structured extraction result for a single chunk."""

    chunk_id: str = ""
    characters: List[CharacterMention] = Field(default_factory=list)
    events: List[EventMention] = Field(default_factory=list)
    themes: List[ThemeMention] = Field(default_factory=list)
    style: StyleNotes = Field(default_factory=StyleNotes)
    key_quotes: List[QuoteMention] = Field(default_factory=list)
    plot_development: str = ""
    settings: List[SettingMention] = Field(default_factory=list)
    timestamp: Optional[datetime] = None
    raw_model_output: str = ""

    @field_validator("characters", "events", "themes", "key_quotes", "settings", mode="before")
    @classmethod
    def _records(cls, value: Any) -> List[Any]:
        return [item for item in _as_list(value) if item]

    @field_validator("chunk_id", "plot_development", "raw_model_output", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("style", mode="before")
    @classmethod
    def _style(cls, value: Any) -> Any:
        return {} if value is None else value


class Chunk(FrozenBaseModel):
    """A token-bounded span of document text with page metadata."""

    id: str
    text: str
    page_start: Optional[int] = None
    page_end: Optional[int] = None
    position: int = 0
    token_count: int = 0
    start_offset: int = 0
    end_offset: int = 0
    analysis: Optional[ChunkAnalysis] = None

    def with_analysis(self, analysis: Optional[ChunkAnalysis]) -> "Chunk":
        return self.model_copy(update={"analysis": analysis})


class CharacterRecord(FrozenBaseModel):
    name: str
    description: str = ""
    role: str = ""
    appearances: int = 1
    pages: List[int] = Field(default_factory=list)


class ThemeRecord(FrozenBaseModel):
    name: str
    description: str = ""
    occurrences: int = 1
    pages: List[int] = Field(default_factory=list)


class SettingRecord(FrozenBaseModel):
    location: str
    description: str = ""
    occurrences: int = 1
    pages: List[int] = Field(default_factory=list)


class TimelineEvent(FrozenBaseModel):
    description: str
    importance: str = ""
    page: Optional[int] = None
    position: int = 0


class StyleSummary(FrozenBaseModel):
    tone: Optional[str] = None
    voice: Optional[str] = None
    literary_devices: List[str] = Field(default_factory=list)
    notable: List[str] = Field(default_factory=list)


class StructureSegment(_Mention):
    name: str = ""
    description: str = ""
    approximate_location: str = ""


class NarrativeStructure(FrozenBaseModel):
    type: Optional[str] = None
    arc: Optional[str] = None
    segments: List[StructureSegment] = Field(default_factory=list)

    @field_validator("type", "arc", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        return _as_optional_text(value)

    @field_validator("segments", mode="before")
    @classmethod
    def _segments(cls, value: Any) -> List[Any]:
        return [item for item in _as_list(value) if item]


class KeyQuote(FrozenBaseModel):
    quote: str
    explanation: str = ""
    page: Optional[int] = None
    chunk_id: str = ""
    position: int = 0


class GlobalAnalysis(FrozenBaseModel):
    """Whole-book analysis aggregated from every analysed chunk."""

    title: Optional[str] = None
    characters: List[CharacterRecord] = Field(default_factory=list)
    main_characters: List[CharacterRecord] = Field(default_factory=list)
    supporting_characters: List[CharacterRecord] = Field(default_factory=list)
    themes: List[ThemeRecord] = Field(default_factory=list)
    settings: List[SettingRecord] = Field(default_factory=list)
    timeline: List[TimelineEvent] = Field(default_factory=list)
    major_events: List[TimelineEvent] = Field(default_factory=list)
    plot_summary: Optional[str] = None
    style: StyleSummary = Field(default_factory=StyleSummary)
    structure: NarrativeStructure = Field(default_factory=NarrativeStructure)
    key_quotes: List[KeyQuote] = Field(default_factory=list)


def to_payload(model: BaseModel) -> Dict[str, Any]:
    """Serialise a model into its JSON-ready camelCase shape."""

    return model.model_dump(mode="json", by_alias=True)
