from typing import Dict, Any, List, Optional
import json
import re

import jsonschema
import structlog

from actionflow.domain.models.action_state import (
    ActionDefinition, FieldType, IntentType, PendingAction
)
from actionflow.domain.errors import ExtractionParseError
from actionflow.domain.extraction.field_satisfaction import (
    deep_merge, has_value, item_prefixes, relationship_base, smart_merge
)
from actionflow.domain.extraction.json_response import parse_json_object
from actionflow.domain.extraction.prompt_builder import build_extraction_request, build_function_call_request
from actionflow.domain.context.memory.runtime_memory import RuntimeMemory
from actionflow.domain.extraction.relationship_resolver import RelationshipResolver, DEFERRED_KEY
from actionflow.infrastructure.ai.text_generation import TextGenerator, generate_with_timeout
from actionflow.infrastructure.config.settings import Settings

logger = structlog.get_logger(__name__)

_NUMBER = r"\$?\s*(-?\d[\d,]*(?:\.\d+)?)"
_NUMBERED_KEY = re.compile(r"^([a-z]+)_(\d+)_(\w+)$")


async def action_scoped_turns(
    memory: RuntimeMemory,
    session_id: str,
    pending_action: Optional[PendingAction],
    intent: Optional[IntentType]
) -> List[Dict[str, Any]]:
    """History visible to extraction

    Only a modify turn on a pending action sees earlier turns, and only the
    ones since that action started.
    """

    if pending_action is None or intent != IntentType.MODIFY:
        return []
    return await memory.get_turns_since(session_id, pending_action.action_start_index)


def extract_numeric_fields(message: str, definition: ActionDefinition) -> Dict[str, Any]:
    """Regex extraction of number fields named in the message"""

    numeric = [f for f in definition.fields if f.type in (FieldType.NUMBER, FieldType.INTEGER)]
    if not numeric:
        return {}

    text = message.lower()
    extracted: Dict[str, Any] = {}
    for field in numeric:
        label = re.escape(field.name.replace("_", " "))
        match = (
            re.search(rf"{label}\s*(?:is|of|:|=|to)?\s*{_NUMBER}", text)
            or re.search(rf"{_NUMBER}\s*{label}", text)
        )
        if match:
            extracted[field.name] = _to_number(match.group(1), field.type)

    if not extracted and len(numeric) == 1:
        numbers = re.findall(_NUMBER, text)
        if len(numbers) == 1:
            extracted[numeric[0].name] = _to_number(numbers[0], numeric[0].type)

    return extracted


def _to_number(raw: str, field_type: FieldType):
    value = float(raw.replace(",", ""))
    if field_type == FieldType.INTEGER and value.is_integer():
        return int(value)
    return value


class ParameterExtractor:
    """Fills an action's fields from a message"""

    def __init__(self, generator: TextGenerator, settings: Settings, resolver: Optional[RelationshipResolver] = None):
        self.generator = generator
        self.settings = settings
        self.resolver = resolver

    async def extract(
        self,
        message: str,
        recent_turns: List[Dict[str, Any]],
        definition: ActionDefinition,
        user_id: Optional[str] = None,
        existing_params: Optional[Dict[str, Any]] = None,
        seed: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Extract, normalize and resolve parameters for one action

        Values in seed (typically the classifier's extracted data) are used
        where the extraction itself found nothing for a key.
        """

        if not definition.fields:
            return {}

        raw = None
        if definition.function_schema:
            raw = await self._extract_structured(message, recent_turns, definition)
        if raw is None:
            raw = await self._extract_from_prompt(message, recent_turns, definition, existing_params)
        if raw is None:
            raw = extract_numeric_fields(message, definition)
            logger.info("Using regex extraction", action_id=definition.id, fields=list(raw))

        if seed:
            raw = deep_merge(seed, raw)
        return await self.finalize(definition, raw, user_id)

    async def finalize(self, definition: ActionDefinition, raw: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
        """Clean, fold flat item data and resolve relationships"""

        params = smart_merge(definition, self.clean(raw, definition))
        if self.resolver is not None:
            params = await self.resolver.resolve(definition, params, user_id)
        return params

    async def _extract_structured(
        self,
        message: str,
        recent_turns: List[Dict[str, Any]],
        definition: ActionDefinition
    ) -> Optional[Dict[str, Any]]:
        request = build_function_call_request(message, recent_turns, definition, self.settings.extraction_model)
        result = await generate_with_timeout(self.generator, request, self.settings.extract_timeout)
        if not result.success or not result.function_call:
            logger.info("Structured extraction unavailable", action_id=definition.id, error=result.error)
            return None

        try:
            arguments = result.function_call.get("arguments") or "{}"
            args = json.loads(arguments) if isinstance(arguments, str) else dict(arguments)
            jsonschema.validate(args, definition.function_schema.get("parameters", {}))
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            logger.warning("Function call arguments not JSON", action_id=definition.id, error=str(e))
            return None
        except jsonschema.ValidationError as e:
            logger.warning("Function call arguments failed schema", action_id=definition.id, error=e.message)
            return None

        return args if isinstance(args, dict) else None

    async def _extract_from_prompt(
        self,
        message: str,
        recent_turns: List[Dict[str, Any]],
        definition: ActionDefinition,
        existing_params: Optional[Dict[str, Any]]
    ) -> Optional[Dict[str, Any]]:
        request = build_extraction_request(
            message, recent_turns, definition, existing_params, self.settings.extraction_model
        )
        result = await generate_with_timeout(self.generator, request, self.settings.extract_timeout)
        if not result.success:
            logger.warning("Prompt extraction failed", action_id=definition.id, error=result.error)
            return None

        try:
            return parse_json_object(result.content)
        except ExtractionParseError as e:
            logger.warning("Unparseable extraction", action_id=definition.id, error=str(e))
            return None

    def clean(self, raw: Dict[str, Any], definition: ActionDefinition) -> Dict[str, Any]:
        """Drop empty values and keys the action cannot use"""

        allowed = set()
        prefixes = set()
        numbered_prefixes = set()
        for field in definition.fields:
            allowed.add(field.name)
            allowed.update(field.alternative_fields)
            if field.is_array:
                allowed.update(sub.name for sub in field.item_schema)
                numbered_prefixes.update(item_prefixes(field))
            if field.is_relationship:
                prefixes.add(f"{relationship_base(field)}_")
                allowed.add(relationship_base(field))

        cleaned: Dict[str, Any] = {}
        for key, value in raw.items():
            if not has_value(value):
                continue
            numbered = _NUMBERED_KEY.match(key)
            if (
                key in allowed
                or key == DEFERRED_KEY
                or any(key.startswith(p) for p in prefixes)
                or (numbered and numbered.group(1) in numbered_prefixes)
            ):
                cleaned[key] = self._coerce_field(key, value, definition)
            else:
                logger.debug("Dropping unknown extracted key", action_id=definition.id, key=key)
        return cleaned

    def _coerce_field(self, key: str, value: Any, definition: ActionDefinition) -> Any:
        field = definition.get_field(key)
        if field is not None and field.is_array and isinstance(value, list):
            return [
                {k: self._coerce(v, field.item_field(k).type) if field.item_field(k) else v for k, v in item.items()}
                if isinstance(item, dict) else item
                for item in value
            ]
        if field is not None:
            return self._coerce(value, field.type)

        numbered = _NUMBERED_KEY.match(key)
        for array in (f for f in definition.fields if f.is_array):
            if numbered and numbered.group(1) in item_prefixes(array):
                sub = array.item_field(numbered.group(3))
            else:
                sub = array.item_field(key)
            if sub is not None:
                return self._coerce(value, sub.type)
        return value

    def _coerce(self, value: Any, field_type: FieldType) -> Any:
        if field_type in (FieldType.NUMBER, FieldType.INTEGER) and isinstance(value, str):
            match = re.search(r"-?\d+(?:\.\d+)?", value.replace(",", ""))
            return _to_number(match.group(0), field_type) if match else value
        if field_type == FieldType.BOOLEAN and isinstance(value, str):
            return value.strip().lower() in ("true", "yes", "1", "y")
        return value
