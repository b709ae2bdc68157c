"""booklens: chunked literary analysis backed by a local language model."""

from .analysis import (
    AnalysisCache,
    AnalysisStatus,
    BookAnalysisState,
    BookAnalysisStore,
    ChunkAnalyzer,
    SynthesisError,
    Synthesizer,
)
from .config import BookLensConfig, load_config
from .io import DocumentUnavailableError, LoadedDocument, load_document
from .llm import GatewayError, ModelGateway, OllamaGateway, build_gateway, strip_reasoning
from .schema import BookInfo, Chunk, ChunkAnalysis, GlobalAnalysis
from .services import DocumentQA, StyleRewriter
from .text import chunk_text

__all__ = [
    "AnalysisCache",
    "AnalysisStatus",
    "BookAnalysisState",
    "BookAnalysisStore",
    "BookInfo",
    "BookLensConfig",
    "Chunk",
    "ChunkAnalysis",
    "ChunkAnalyzer",
    "DocumentQA",
    "DocumentUnavailableError",
    "GatewayError",
    "GlobalAnalysis",
    "LoadedDocument",
    "ModelGateway",
    "OllamaGateway",
    "StyleRewriter",
    "SynthesisError",
    "Synthesizer",
    "build_gateway",
    "chunk_text",
    "load_config",
    "load_document",
    "strip_reasoning",
]
