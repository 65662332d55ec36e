"""AI classification package."""

from reconciler.agents.ai_classifier import (
    AIClassifier,
    AIMatcher,
    extract_json_object,
)
from reconciler.agents.gateway import (
    AICreditsExhaustedError,
    AIGatewayError,
    AINotConfiguredError,
    AIRateLimitError,
    AIResponseError,
    DisabledGateway,
    GeminiGateway,
    LLMGateway,
    LLMResponse,
)

__all__ = [
    "AIClassifier",
    "AIMatcher",
    "extract_json_object",
    # Gateways
    "DisabledGateway",
    "GeminiGateway",
    "LLMGateway",
    "LLMResponse",
    # Errors
    "AICreditsExhaustedError",
    "AIGatewayError",
    "AINotConfiguredError",
    "AIRateLimitError",
    "AIResponseError",
]
