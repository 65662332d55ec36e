"""
AI Classifier Adapter

The last resort of the classification chain, used only when neither a
rule nor a learned pattern applies.

CRITICAL BOUNDARIES:
- CAN: pick one of the caller's existing categories and cost centers
- CANNOT: invent taxonomy (unknown ids are discarded)
- CANNOT: flag transfers (is_transfer is always false; transfers are
  detected deterministically by the transfer pass)
- CANNOT: reach the trust level of a rule or a mature pattern
  (confidence is capped, and AI results are never auto-validated)

The LLM is a SUGGESTER, not a DECIDER.

FAILURE POLICY:
Every failure except missing configuration degrades to the empty
result, so a flaky model never aborts an import. Missing configuration
raises AINotConfiguredError so the operator finds out.
"""

import asyncio
import json
from decimal import Decimal
from typing import Any, Optional, Sequence
from uuid import UUID

import structlog

from reconciler.agents.gateway import (
    AICreditsExhaustedError,
    AIGatewayError,
    AINotConfiguredError,
    AIRateLimitError,
    LLMGateway,
)
from reconciler.config import ClassifierSettings, get_settings
from reconciler.matching.base import ClassificationMatcher
from reconciler.matching.normalizer import normalize
from reconciler.models.transaction import (
    Category,
    ClassificationErrorCode,
    ClassificationRequest,
    ClassificationResult,
    ClassificationSource,
    CostCenter,
    TransactionType,
)
from reconciler.services.storage import TaxonomyStorageInterface

logger = structlog.get_logger(__name__)

UNCLASSIFIED_REASONING = "could not classify"
RATE_LIMITED_REASONING = "AI rate limit reached; try again in a few minutes"
CREDITS_EXHAUSTED_REASONING = (
    "AI credits exhausted; add credits to the AI account to resume suggestions"
)

SYSTEM_PROMPT = """You are a financial assistant that classifies bank transactions.

IMPORTANT RULES:
1. You MUST return valid JSON
2. Do NOT create categories or cost centers - use only the IDs listed below
3. If no category fits, return category_id as null
4. is_transfer MUST always be false; transfers are detected elsewhere

AVAILABLE CATEGORIES ({transaction_type}):
{categories}

AVAILABLE COST CENTERS:
{cost_centers}

Respond with ONLY a JSON object in this exact format:
{{"category_id": "uuid or null", "category_name": "name or null", "cost_center_id": "uuid or null", "cost_center_name": "name or null", "confidence": 0.0, "is_transfer": false, "reasoning": "brief explanation"}}"""


def extract_json_object(text: str) -> Optional[dict]:
    """
    Pull the JSON object out of a model answer.

    Models like to wrap JSON in prose or code fences, so everything
    between the first "{" and the last "}" is parsed.
    """
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        return None
    try:
        data = json.loads(text[start:end])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _is_blank(value: Any) -> bool:
    """Models spell "no value" in several ways."""
    return value is None or (isinstance(value, str) and value.strip().lower() in ("", "null", "none"))


def _as_uuid(value: Any) -> Optional[UUID]:
    if _is_blank(value):
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _as_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence != confidence:  # NaN
        return 0.0
    return min(max(confidence, 0.0), 1.0)


class AIClassifier:
    """
    Builds the constrained prompt, calls the gateway, and validates
    whatever comes back against the caller's taxonomy.
    """

    def __init__(
        self,
        gateway: LLMGateway,
        settings: Optional[ClassifierSettings] = None,
    ):
        self._gateway = gateway
        self._settings = settings or get_settings().classifier

    @property
    def model_name(self) -> str:
        return self._gateway.name

    def build_prompts(
        self,
        description: str,
        amount: Decimal,
        transaction_type: TransactionType,
        candidate_categories: Sequence[Category],
        candidate_cost_centers: Sequence[CostCenter],
    ) -> tuple[str, str]:
        """System and user prompts for one transaction."""
        category_list = "\n".join(
            f"- {c.name} (ID: {c.id})" for c in candidate_categories
        ) or "No categories registered"
        cost_center_list = "\n".join(
            f"- {cc.name} (ID: {cc.id})" for cc in candidate_cost_centers
        ) or "No cost centers registered"

        system_prompt = SYSTEM_PROMPT.format(
            transaction_type=transaction_type.value,
            categories=category_list,
            cost_centers=cost_center_list,
        )
        user_prompt = (
            "Classify this transaction:\n"
            f'Description: "{description}"\n'
            f'Normalized description: "{normalize(description)}"\n'
            f"Amount: {Decimal(amount):.2f}\n"
            f"Type: {transaction_type.value}"
        )
        return system_prompt, user_prompt

    async def classify(
        self,
        description: str,
        amount: Decimal,
        transaction_type: TransactionType,
        candidate_categories: Sequence[Category],
        candidate_cost_centers: Sequence[CostCenter],
    ) -> ClassificationResult:
        """
        Ask the model for a category.

        Returns a validated result, or the empty result on failure.

        Raises:
            AINotConfiguredError: No credentials for the model
        """
        normalized = normalize(description)
        system_prompt, user_prompt = self.build_prompts(
            description,
            amount,
            transaction_type,
            candidate_categories,
            candidate_cost_centers,
        )

        try:
            response = await asyncio.wait_for(
                self._gateway.invoke(system_prompt, user_prompt),
                timeout=self._settings.ai_timeout_seconds,
            )
        except AINotConfiguredError:
            raise
        except AIRateLimitError as e:
            logger.warning("ai_rate_limited", gateway=self._gateway.name, error=str(e))
            return ClassificationResult.empty(
                reasoning=RATE_LIMITED_REASONING,
                error_code=ClassificationErrorCode.AI_RATE_LIMITED,
                normalized_description=normalized,
            )
        except AICreditsExhaustedError as e:
            logger.error("ai_credits_exhausted", gateway=self._gateway.name, error=str(e))
            return ClassificationResult.empty(
                reasoning=CREDITS_EXHAUSTED_REASONING,
                error_code=ClassificationErrorCode.AI_CREDITS_EXHAUSTED,
                normalized_description=normalized,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "ai_timeout",
                gateway=self._gateway.name,
                timeout_seconds=self._settings.ai_timeout_seconds,
            )
            return self._unavailable(normalized)
        except AIGatewayError as e:
            logger.warning("ai_gateway_error", gateway=self._gateway.name, error=str(e))
            return self._unavailable(normalized)
        except Exception as e:
            # Transport errors of the SDK that aren't mapped by the gateway
            logger.warning(
                "ai_call_failed",
                gateway=self._gateway.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return self._unavailable(normalized)

        data = extract_json_object(response.text)
        if data is None:
            logger.warning("ai_unparseable_response", response_preview=response.text[:200])
            return self._unavailable(normalized)

        result = self._validate(
            data,
            candidate_categories,
            candidate_cost_centers,
            normalized,
        )
        logger.info(
            "ai_classified",
            category_id=str(result.category_id) if result.category_id else None,
            confidence=result.confidence,
            token_usage=response.token_usage,
        )
        return result

    def _unavailable(self, normalized: str) -> ClassificationResult:
        return ClassificationResult.empty(
            reasoning=UNCLASSIFIED_REASONING,
            error_code=ClassificationErrorCode.AI_UNAVAILABLE,
            normalized_description=normalized,
        )

    def _validate(
        self,
        data: dict,
        candidate_categories: Sequence[Category],
        candidate_cost_centers: Sequence[CostCenter],
        normalized: str,
    ) -> ClassificationResult:
        """Drop unknown ids, penalize invented categories, cap confidence."""
        categories = {c.id: c for c in candidate_categories}
        cost_centers = {cc.id: cc for cc in candidate_cost_centers}
        confidence = _as_confidence(data.get("confidence"))

        category = None
        if not _is_blank(data.get("category_id")):
            category = categories.get(_as_uuid(data["category_id"]))
            if category is None:
                logger.warning("ai_unknown_category", category_id=str(data["category_id"]))
                confidence = max(0.0, confidence - self._settings.ai_invalid_category_penalty)

        cost_center = None
        if not _is_blank(data.get("cost_center_id")):
            cost_center = cost_centers.get(_as_uuid(data["cost_center_id"]))
            if cost_center is None:
                logger.warning("ai_unknown_cost_center", cost_center_id=str(data["cost_center_id"]))

        reasoning = data.get("reasoning")
        return ClassificationResult(
            category_id=category.id if category else None,
            category_name=category.name if category else None,
            cost_center_id=cost_center.id if cost_center else None,
            cost_center_name=cost_center.name if cost_center else None,
            confidence=min(confidence, self._settings.ai_confidence_cap),
            is_transfer=False,
            reasoning=reasoning if isinstance(reasoning, str) and reasoning else "Classified by AI",
            source=ClassificationSource.AI,
            normalized_description=normalized,
        )


class AIMatcher(ClassificationMatcher):
    """
    Third source: the AI classifier over the organization's taxonomy.

    Always answers (possibly with an empty result), so it must be the
    last matcher in the chain.
    """

    source = ClassificationSource.AI

    def __init__(
        self,
        classifier: AIClassifier,
        taxonomy_storage: TaxonomyStorageInterface,
    ):
        self._classifier = classifier
        self._taxonomy = taxonomy_storage

    @property
    def model_name(self) -> str:
        return self._classifier.model_name

    async def attempt(
        self,
        request: ClassificationRequest,
    ) -> Optional[ClassificationResult]:
        categories = await self._taxonomy.list_categories(
            request.organization_id,
            transaction_type=request.type,
        )
        cost_centers = await self._taxonomy.list_cost_centers(request.organization_id)
        return await self._classifier.classify(
            request.description or "",
            request.amount,
            request.type,
            categories,
            cost_centers,
        )
