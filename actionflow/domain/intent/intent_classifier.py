from typing import Dict, Any, List, Optional
import math

import structlog

from actionflow.domain.models.action_state import (
    ActionDefinition, IntentAnalysis, IntentType, PendingAction
)
from actionflow.domain.action.action_ranker import ActionRanker
from actionflow.domain.errors import AIErrorKind, ExtractionParseError, HallucinatedFieldError
from actionflow.domain.extraction.json_response import parse_json_object
from actionflow.domain.intent.prompt_builder import build_intent_request
from actionflow.infrastructure.ai.text_generation import TextGenerator, generate_with_timeout
from actionflow.infrastructure.config.settings import Settings

logger = structlog.get_logger(__name__)

CONFIRM_PHRASES = {
    "yes", "ok", "okay", "confirm", "sure", "yep", "yeah", "yup",
    "proceed", "go ahead", "create", "do it", "make it",
}
REJECT_PHRASES = {"no", "nope", "cancel", "stop", "abort", "nevermind", "never mind", "reject"}
GREETING_PHRASES = {
    "hi", "hello", "hey", "greetings",
    "good morning", "good afternoon", "good evening",
}


def normalize_message(message: str) -> str:
    return message.strip().lower().rstrip(".!?,; ").strip()


class IntentClassifier:
    """Classifies a message relative to the session's pending action"""

    def __init__(self, generator: TextGenerator, settings: Settings, ranker: Optional[ActionRanker] = None):
        self.generator = generator
        self.settings = settings
        self.ranker = ranker or ActionRanker()

    async def classify(
        self,
        message: str,
        pending_action: Optional[PendingAction] = None,
        candidates: Optional[List[ActionDefinition]] = None
    ) -> IntentAnalysis:
        """Classify a message, never raising"""

        fast = self.fast_path(message)
        if fast is not None:
            return fast

        relevant = []
        if pending_action is None:
            relevant = self.ranker.top_relevant(message, candidates or [], self.settings.max_candidate_actions)

        request = build_intent_request(message, pending_action, relevant, self.settings.intent_model)
        result = await generate_with_timeout(self.generator, request, self.settings.classify_timeout)

        if not result.success:
            kind = result.error_kind or AIErrorKind.UNKNOWN
            logger.warning("Intent classification failed", error=result.error, error_kind=kind.value)
            return self._fallback(ai_error=self.settings.error_message(kind))

        try:
            analysis = self._to_analysis(parse_json_object(result.content))
        except ExtractionParseError as e:
            logger.warning("Unparseable classification", error=str(e))
            return self._fallback()

        analysis.extracted_data = self.validate_extracted_data(analysis.extracted_data, pending_action)
        return analysis

    def fast_path(self, message: str) -> Optional[IntentAnalysis]:
        """Exact-match phrases that skip the collaborator"""

        text = normalize_message(message)
        for phrases, intent in (
            (CONFIRM_PHRASES, IntentType.CONFIRM),
            (REJECT_PHRASES, IntentType.REJECT),
            (GREETING_PHRASES, IntentType.GREETING),
        ):
            if text in phrases:
                return IntentAnalysis(intent=intent, confidence=1.0, fast_path=True)
        return None

    def validate_extracted_data(
        self,
        extracted: Dict[str, Any],
        pending_action: Optional[PendingAction]
    ) -> Dict[str, Any]:
        """Keep only keys for outstanding fields

        With a single outstanding field, an unknown key is remapped onto it.
        With several, unknown keys are dropped. A bare key matching the
        suffix of a prefixed missing field (name for customer_name) is kept
        for the store to re-key.
        """

        if pending_action is None or not pending_action.missing_fields:
            return extracted

        missing = pending_action.missing_fields
        validated: Dict[str, Any] = {}
        for key, value in extracted.items():
            try:
                self._ensure_outstanding(key, missing)
                validated[key] = value
            except HallucinatedFieldError as e:
                if len(missing) == 1:
                    e.remapped_to = missing[0]
                    validated.setdefault(missing[0], value)
                logger.warning("Extracted field not outstanding", field=e.field, remapped_to=e.remapped_to)
        return validated

    def _ensure_outstanding(self, key: str, missing: List[str]):
        if key in missing or any(field.endswith(f"_{key}") for field in missing):
            return
        raise HallucinatedFieldError(key)

    def _to_analysis(self, raw: Dict[str, Any]) -> IntentAnalysis:
        try:
            intent = IntentType(str(raw.get("intent", "")).strip().lower())
        except ValueError:
            logger.warning("Unknown intent from classifier", intent=raw.get("intent"))
            return self._fallback()

        try:
            confidence = min(max(float(raw.get("confidence", 0.0)), 0.0), 1.0)
        except (TypeError, ValueError):
            confidence = 0.0
        if not math.isfinite(confidence):
            confidence = 0.0

        extracted = raw.get("extracted_data")
        return IntentAnalysis(
            intent=intent,
            confidence=confidence,
            extracted_data=extracted if isinstance(extracted, dict) else {},
            context_enhancement=str(raw.get("context_enhancement") or ""),
            suggested_action_id=str(raw["suggested_action_id"]) if raw.get("suggested_action_id") else None,
            modification_target=str(raw["modification_target"]) if raw.get("modification_target") else None,
        )

    def _fallback(self, ai_error: Optional[str] = None) -> IntentAnalysis:
        return IntentAnalysis(intent=IntentType.QUESTION, confidence=0.0, ai_error=ai_error)
