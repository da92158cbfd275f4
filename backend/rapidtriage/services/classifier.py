"""
RapidTriage - Triage Classifier

Assigns a severity code and confidence to a Situation.

Architecture:
    - Classifier: Protocol the coordinator depends on
    - RuleBasedClassifier: keyword-tier scoring (default, no model call)
    - ModelClassifier: structured call against a generative model

Rule-based algorithm:
    Each tier's score is matches / tier-keyword-count, using a
    case-insensitive substring test on the description. Tiers are checked
    in fixed priority order RED -> YELLOW -> GREEN and the first tier whose
    score reaches the threshold wins. Priority breaks ties, not score
    magnitude. With no winner, the configured fallback code is returned at
    0.3 confidence, or UNKNOWN at 0.0 without a fallback.

Safety Notes:
    - Classification is DECISION SUPPORT for dispatchers, not diagnosis
    - Keyword tiers are deliberately conservative; tune thresholds with care
"""

from __future__ import annotations

import json
import logging
from abc import abstractmethod
from typing import Dict, List, Optional, Protocol, Sequence, Tuple, TYPE_CHECKING, runtime_checkable

from rapidtriage.core.exceptions import ClassificationError, ContextDeadlineExceededError, ModelError
from rapidtriage.core.types import Situation, TriageCode
from rapidtriage.services.ai.base import Model, parse_json_content, wrap_report

if TYPE_CHECKING:
    from rapidtriage.config import Settings
    from rapidtriage.services.ai.registry import ModelProvider

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.3


# =============================================================================
# Protocol (Interface)
# =============================================================================

@runtime_checkable
class Classifier(Protocol):
    """Two-value contract: (code, confidence). Failures raise ClassificationError."""

    @property
    @abstractmethod
    def classifier_id(self) -> str:
        ...

    @abstractmethod
    async def classify(self, situation: Situation) -> Tuple[TriageCode, float]:
        ...


# =============================================================================
# Rule-Based Implementation
# =============================================================================

RED_KEYWORDS: Tuple[str, ...] = (
    "not breathing", "heart attack", "stroke", "unconscious", "severe bleeding",
    "choking", "drowning", "seizure", "anaphylaxis", "overdose",
)

YELLOW_KEYWORDS: Tuple[str, ...] = (
    "broken bone", "deep cut", "burn", "concussion", "severe pain",
    "high fever", "difficulty breathing", "chest pain", "allergic reaction",
)

GREEN_KEYWORDS: Tuple[str, ...] = (
    "minor cut", "sprain", "mild fever", "rash", "cold symptoms",
    "ear pain", "sore throat", "minor burn", "minor headache",
)


class RuleBasedClassifier:
    """
    Keyword-tier classifier.

    Attributes:
        threshold: Minimum tier score for a tier to win
        fallback_code: Code returned when no tier wins (None -> UNKNOWN/0.0)
    """

    def __init__(
        self,
        threshold: float = 0.5,
        fallback_code: Optional[TriageCode] = None,
        tiers: Optional[Dict[TriageCode, Sequence[str]]] = None,
    ):
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must be within [0, 1], got {threshold}")

        self.threshold = threshold
        self.fallback_code = fallback_code

        tiers = tiers or {
            TriageCode.RED: RED_KEYWORDS,
            TriageCode.YELLOW: YELLOW_KEYWORDS,
            TriageCode.GREEN: GREEN_KEYWORDS,
        }
        # Priority order is fixed regardless of the mapping's insertion order
        self._tiers: List[Tuple[TriageCode, Tuple[str, ...]]] = [
            (code, tuple(kw.lower() for kw in tiers[code]))
            for code in (TriageCode.RED, TriageCode.YELLOW, TriageCode.GREEN)
            if tiers.get(code)
        ]

    @property
    def classifier_id(self) -> str:
        return f"rules-v1(threshold={self.threshold})"

    def score(self, description: str, keywords: Sequence[str]) -> float:
        """Fraction of ``keywords`` present in ``description``."""
        if not keywords:
            return 0.0
        text = description.lower()
        matches = sum(1 for kw in keywords if kw in text)
        return matches / len(keywords)

    async def classify(self, situation: Situation) -> Tuple[TriageCode, float]:
        for code, keywords in self._tiers:
            tier_score = self.score(situation.description, keywords)
            if tier_score >= self.threshold:
                logger.debug("Tier %s won with score %.2f", code.value, tier_score)
                return code, tier_score

        if self.fallback_code is not None:
            logger.debug("No tier cleared %.2f, using fallback %s", self.threshold, self.fallback_code.value)
            return self.fallback_code, FALLBACK_CONFIDENCE

        return TriageCode.UNKNOWN, 0.0


# =============================================================================
# Model-Backed Implementation
# =============================================================================

CLASSIFY_SCHEMA = json.dumps({
    "type": "object",
    "properties": {
        "triage_code": {"type": "string", "enum": ["RED", "YELLOW", "GREEN", "UNKNOWN"]},
        "confidence": {"type": "number"},
    },
    "required": ["triage_code", "confidence"],
})

CLASSIFY_PROMPT = """Assign a triage code to this emergency.
RED: life-threatening, YELLOW: urgent but stable, GREEN: non-urgent.

Emergency:
"""


class ModelClassifier:
    """Drop-in classifier that asks a generative model for the code."""

    def __init__(self, model: Model):
        self._model = model

    @property
    def classifier_id(self) -> str:
        return f"model({self._model.name})"

    async def classify(self, situation: Situation) -> Tuple[TriageCode, float]:
        try:
            response = await self._model.process_structured(
                CLASSIFY_PROMPT + wrap_report(situation.description),
                CLASSIFY_SCHEMA,
            )
            data = parse_json_content(response.content)
        except ContextDeadlineExceededError:
            raise
        except ModelError as e:
            raise ClassificationError(
                f"model classification failed: {e.message}",
                details={"cause": e.code},
            ) from e

        if not isinstance(data, dict):
            raise ClassificationError("model classification returned a non-object")

        try:
            confidence = float(data.get("confidence", 0.0))
        except (TypeError, ValueError) as e:
            raise ClassificationError("model classification returned a non-numeric confidence") from e

        return TriageCode.from_exact(data.get("triage_code")), max(0.0, min(1.0, confidence))


# =============================================================================
# Factory Function
# =============================================================================

def create_classifier(
    settings: "Settings",
    provider: Optional["ModelProvider"] = None,
) -> Classifier:
    """
    Select a classifier from ``classifier_backend``: "rules" | "model".

    The model backend needs a provider; without one it falls back to rules.
    """
    backend = settings.classifier_backend.lower()

    if backend == "model":
        if provider is None:
            logger.error("classifier_backend='model' requires a model provider, using rules")
        else:
            logger.info("Using ModelClassifier (%s)", provider.default_model().name)
            return ModelClassifier(provider.default_model())

    fallback = None
    if settings.classifier_fallback_code:
        fallback = TriageCode.from_exact(settings.classifier_fallback_code.upper())
        if fallback == TriageCode.UNKNOWN:
            fallback = None

    logger.info(
        "Using RuleBasedClassifier (threshold=%.2f, fallback=%s)",
        settings.classifier_threshold,
        fallback.value if fallback else "none",
    )
    return RuleBasedClassifier(threshold=settings.classifier_threshold, fallback_code=fallback)
