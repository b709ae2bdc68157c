"""Per-chunk literary extraction driven by the model gateway."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from langchain_core.prompts import PromptTemplate

from ..llm import ModelGateway
from ..logs import log_llm_response
from ..schema import Chunk, ChunkAnalysis
from .parsing import ResponseParser, default_parser

__all__ = [
    "AnalysisProgress",
    "AnalysisPromptBuilder",
    "ChunkAnalyzer",
    "ProgressCallback",
    "attach_analyses",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AnalysisProgress:
    current: int
    total: int
    last_chunk_id: Optional[str] = None
    succeeded: bool = True

    @property
    def percentage(self) -> int:
        if self.total <= 0:
            return 0
        return int(self.current / self.total * 100 + 0.5)


ProgressCallback = Callable[[AnalysisProgress], None]


CHUNK_ANALYSIS_TEMPLATE = """You are a literary analysis assistant that extracts key information from text segments.
Analyze the following text segment (Pages: {page_start}-{page_end}) and extract the following elements:

1. CHARACTERS: Identify characters mentioned by name, with brief descriptions and roles
2. EVENTS: List key plot events occurring in this segment
3. THEMES: Identify major and minor themes expressed
4. STYLE: Note tone, literary devices, narrative voice, or unique stylistic elements
5. KEY QUOTES: Identify up to 3 significant quotes in this segment with brief explanations of their importance
6. PLOT DEVELOPMENT: Briefly describe how this segment advances the overall narrative
7. SETTINGS: Identify locations or settings described

TEXT SEGMENT:
----------------
{text}
----------------

FORMAT YOUR RESPONSE AS A VALID JSON OBJECT with the following structure:
{{
  "characters": [
    {{"name": "Character Name", "description": "Brief description", "role": "Role in story"}}
  ],
  "events": [
    {{"description": "Event description", "importance": "Why this matters"}}
  ],
  "themes": [
    {{"name": "Theme name", "description": "How this theme is expressed"}}
  ],
  "style": {{
    "tone": "Overall tone of this segment",
    "literaryDevices": ["device1", "device2"],
    "narrativeVoice": "POV/narrative approach",
    "notable": ["other notable style elements"]
  }},
  "keyQuotes": [
    {{"quote": "The exact quote", "explanation": "Why this quote matters"}}
  ],
  "plotDevelopment": "How this segment advances the narrative",
  "settings": [
    {{"location": "Setting name", "description": "Setting description"}}
  ]
}}

IMPORTANT:
- Return ONLY valid JSON that can be parsed. Don't include extra text or explanations outside the JSON.
- Do not include any thinking, reasoning process, or preamble text.
- If you can't find information for a category, use empty arrays or null values.
- Be specific and concise in your analysis.
- Only include elements explicitly mentioned or strongly implied in the text segment."""


class AnalysisPromptBuilder:
    """Assemble the structured-extraction prompt for a chunk."""

    def __init__(self, template: str = CHUNK_ANALYSIS_TEMPLATE) -> None:
        self._template = PromptTemplate.from_template(template)

    def build(self, chunk: Chunk) -> str:
        if not chunk.text.strip():
            raise ValueError(f"Chunk '{chunk.id}' is empty; unable to build prompt.")
        return self._template.format(
            page_start=chunk.page_start if chunk.page_start is not None else "unknown",
            page_end=chunk.page_end if chunk.page_end is not None else "unknown",
            text=chunk.text,
        )


class ChunkAnalyzer:
    """Runs the extraction prompt for each chunk and parses the response."""

    def __init__(
        self,
        gateway: ModelGateway,
        *,
        parser: Optional[ResponseParser] = None,
        prompt_builder: Optional[AnalysisPromptBuilder] = None,
    ) -> None:
        self._gateway = gateway
        self._parser = parser or default_parser()
        self._prompt_builder = prompt_builder or AnalysisPromptBuilder()

    def analyze(self, chunk: Chunk) -> ChunkAnalysis:
        prompt = self._prompt_builder.build(chunk)
        raw_output = self._gateway.generate(prompt)
        log_llm_response(logger, f"Chunk Analysis: {chunk.id}", raw_output)

        analysis = self._parser.parse(raw_output)
        return analysis.model_copy(
            update={
                "chunk_id": chunk.id,
                "raw_model_output": raw_output,
                "timestamp": datetime.now(timezone.utc),
            }
        )

    def analyze_all(
        self,
        chunks: Sequence[Chunk],
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[ChunkAnalysis]:
        """Analyse chunks strictly in order, skipping the ones that fail.

        The result may be shorter than ``chunks``; each analysis carries the id
        of the chunk it belongs to. Errors raised by ``on_progress`` are not
        contained and stop the batch.
        """

        analyses: List[ChunkAnalysis] = []
        total = len(chunks)
        for index, chunk in enumerate(chunks, start=1):
            succeeded = True
            try:
                analyses.append(self.analyze(chunk))
            except Exception as exc:
                succeeded = False
                logger.error("Error analyzing chunk %s: %s", chunk.id, exc)

            if on_progress is not None:
                on_progress(
                    AnalysisProgress(
                        current=index,
                        total=total,
                        last_chunk_id=chunk.id,
                        succeeded=succeeded,
                    )
                )

        logger.info("Analyzed %s of %s chunks", len(analyses), total)
        return analyses


def attach_analyses(chunks: Sequence[Chunk], analyses: Sequence[ChunkAnalysis]) -> List[Chunk]:
    """Return copies of ``chunks`` carrying the analysis whose ``chunk_id`` matches."""

    by_id = {analysis.chunk_id: analysis for analysis in analyses}
    return [chunk.with_analysis(by_id.get(chunk.id)) for chunk in chunks]
