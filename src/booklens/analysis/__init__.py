"""Chunk analysis, whole-book synthesis and the analysis state store."""

from .cache import AnalysisCache, CachedAnalysis
from .chunk_analyzer import AnalysisProgress, AnalysisPromptBuilder, ChunkAnalyzer, attach_analyses
from .parsing import (
    ChainedResponseParser,
    HeuristicResponseParser,
    JsonResponseParser,
    ResponseParseError,
    ResponseParser,
    default_parser,
    extract_json_object,
)
from .state import NOT_FOUND, AnalysisCancelledError, AnalysisStatus, BookAnalysisState, BookAnalysisStore
from .synthesizer import (
    PLOT_SUMMARY_UNAVAILABLE,
    STRUCTURE_UNDETERMINED,
    SynthesisError,
    Synthesizer,
    normalize_name,
    sample_evenly,
    select_key_quotes,
)

__all__ = [
    "NOT_FOUND",
    "PLOT_SUMMARY_UNAVAILABLE",
    "STRUCTURE_UNDETERMINED",
    "AnalysisCache",
    "AnalysisCancelledError",
    "AnalysisProgress",
    "AnalysisPromptBuilder",
    "AnalysisStatus",
    "BookAnalysisState",
    "BookAnalysisStore",
    "CachedAnalysis",
    "ChainedResponseParser",
    "ChunkAnalyzer",
    "HeuristicResponseParser",
    "JsonResponseParser",
    "ResponseParseError",
    "ResponseParser",
    "SynthesisError",
    "Synthesizer",
    "attach_analyses",
    "default_parser",
    "extract_json_object",
    "normalize_name",
    "sample_evenly",
    "select_key_quotes",
]
