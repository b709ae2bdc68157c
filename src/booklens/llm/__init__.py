"""Model gateway, stream decoding and usage tracking."""

from .gateway import (
    GatewayError,
    GatewaySettings,
    ModelGateway,
    OllamaGateway,
    build_gateway,
)
from .streaming import FrameBuffer, ReasoningFilter, strip_reasoning
from .usage import UsageRecord, UsageTracker

__all__ = [
    "FrameBuffer",
    "GatewayError",
    "GatewaySettings",
    "ModelGateway",
    "OllamaGateway",
    "ReasoningFilter",
    "UsageRecord",
    "UsageTracker",
    "build_gateway",
    "strip_reasoning",
]
