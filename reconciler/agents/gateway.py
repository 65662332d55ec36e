"""
Language-Model Gateway

The AI classifier never talks to a model SDK directly. It goes through
an LLMGateway chosen at startup from configuration (AI_BACKEND):

- GeminiGateway: Google Generative AI
- DisabledGateway: always reports "not configured"

The gateway's only job is transport: send a system prompt and a user
prompt, return raw text. Prompt building and output validation belong
to the classifier.

ERROR MAPPING:
    missing API key          -> AINotConfiguredError
    quota / rate limit (429) -> AIRateLimitError
    billing / credits (402)  -> AICreditsExhaustedError
    blocked / empty output   -> AIResponseError
    anything else            -> AIGatewayError
"""

from abc import ABC, abstractmethod
from typing import Optional

import google.generativeai as genai
import structlog
from google.api_core import exceptions as google_exceptions
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from reconciler.config import GeminiSettings, get_settings
from reconciler.models.transaction import ClassificationErrorCode

logger = structlog.get_logger(__name__)


class AIGatewayError(Exception):
    """Base exception for language-model failures."""
    error_code = ClassificationErrorCode.AI_UNAVAILABLE


class AINotConfiguredError(AIGatewayError):
    """No credentials for the language model. Never degraded silently."""
    error_code = ClassificationErrorCode.AI_NOT_CONFIGURED


class AIRateLimitError(AIGatewayError):
    """Too many requests; retry later."""
    error_code = ClassificationErrorCode.AI_RATE_LIMITED


class AICreditsExhaustedError(AIGatewayError):
    """The account ran out of credits or billing is disabled."""
    error_code = ClassificationErrorCode.AI_CREDITS_EXHAUSTED


class AIResponseError(AIGatewayError):
    """The model answered, but with nothing usable."""
    pass


class LLMResponse(BaseModel):
    """Raw model output."""

    text: str
    model: Optional[str] = None
    token_usage: Optional[int] = None


class LLMGateway(ABC):
    """Transport to a language model."""

    name: str = "llm"

    @abstractmethod
    async def invoke(self, system_prompt: str, user_prompt: str) -> LLMResponse:
        """
        Run one completion.

        Raises:
            AIGatewayError (or a subclass) on any failure
        """
        pass


_BILLING_MARKERS = ("billing", "credit", "payment", "prepay")

# Errors worth a second attempt; everything else fails fast
_TRANSIENT_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.InternalServerError,
    google_exceptions.DeadlineExceeded,
)


def _mentions_billing(error: Exception) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in _BILLING_MARKERS)


class GeminiGateway(LLMGateway):
    """
    Gateway backed by Google Generative AI.

    The system prompt changes with every request (it lists the caller's
    categories), so a GenerativeModel is built per call with it as the
    system instruction. Building the model object makes no network call.
    """

    name = "gemini"

    def __init__(self, settings: Optional[GeminiSettings] = None):
        self._settings = settings or get_settings().gemini
        self._configured = False

    def _build_model(self, system_prompt: str) -> genai.GenerativeModel:
        if not self._settings.is_configured:
            raise AINotConfiguredError(
                "GEMINI_API_KEY is not set; AI classification is unavailable"
            )
        if not self._configured:
            genai.configure(api_key=self._settings.api_key)
            self._configured = True

        return genai.GenerativeModel(
            model_name=self._settings.model_name,
            system_instruction=system_prompt,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            },
        )

    @retry(
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _generate(self, model: genai.GenerativeModel, user_prompt: str):
        return await model.generate_content_async(user_prompt)

    async def invoke(self, system_prompt: str, user_prompt: str) -> LLMResponse:
        model = self._build_model(system_prompt)

        try:
            response = await self._generate(model, user_prompt)
        except google_exceptions.ResourceExhausted as e:
            if _mentions_billing(e):
                raise AICreditsExhaustedError(str(e)) from e
            raise AIRateLimitError(str(e)) from e
        except google_exceptions.PermissionDenied as e:
            if _mentions_billing(e):
                raise AICreditsExhaustedError(str(e)) from e
            raise AIGatewayError(f"Gemini refused the request: {e}") from e
        except google_exceptions.GoogleAPIError as e:
            raise AIGatewayError(f"Gemini request failed: {e}") from e

        try:
            text = response.text
        except ValueError as e:
            # Raised by the SDK when the candidate was blocked or empty
            raise AIResponseError(f"Gemini returned no text: {e}") from e

        usage = getattr(response, "usage_metadata", None)
        return LLMResponse(
            text=text,
            model=self._settings.model_name,
            token_usage=getattr(usage, "total_token_count", None),
        )


class DisabledGateway(LLMGateway):
    """Selected with AI_BACKEND=disabled."""

    name = "disabled"

    async def invoke(self, system_prompt: str, user_prompt: str) -> LLMResponse:
        raise AINotConfiguredError("AI classification is disabled (AI_BACKEND=disabled)")
