import json
from typing import List, Dict, Any, Optional

from actionflow.domain.models.action_state import ActionDefinition, FieldSchema
from actionflow.infrastructure.ai.text_generation import GenerationRequest

EXTRACTION_SYSTEM_PROMPT = (
    "Extract ONLY values explicitly stated by the user. "
    "Never guess or invent values. Respond with a JSON object and nothing else."
)


def describe_field(field: FieldSchema, indent: str = "") -> List[str]:
    marker = "required" if field.required else "optional"
    line = f"{indent}- {field.name} ({field.type.value}, {marker})"
    if field.description:
        line += f": {field.description}"
    if field.options:
        line += f" [options: {', '.join(field.options)}]"
    lines = [line]
    for sub in field.item_schema:
        lines += describe_field(sub, indent + "  ")
    return lines


def _history_lines(recent_turns: List[Dict[str, Any]]) -> List[str]:
    if not recent_turns:
        return []
    lines = ["Recent conversation:"]
    for turn in recent_turns:
        lines.append(f"{turn.get('role', 'user')}: {turn.get('content', '')}")
    return lines + [""]


def build_extraction_request(
    message: str,
    recent_turns: List[Dict[str, Any]],
    definition: ActionDefinition,
    existing_params: Optional[Dict[str, Any]] = None,
    model_id: Optional[str] = None
) -> GenerationRequest:
    """Free-text JSON extraction request"""

    lines = _history_lines(recent_turns)
    lines += [f"Action: {definition.label}", "Fields:"]
    for field in definition.fields:
        lines += describe_field(field)
    if existing_params:
        lines += ["", f"Already known: {json.dumps(existing_params, default=str)}"]
    lines += [
        "",
        f'Message: "{message}"',
        "",
        "Return a JSON object keyed by field name. Use a list of objects for array fields. "
        "Omit fields the user did not mention.",
    ]

    return GenerationRequest(
        prompt="\n".join(lines),
        system_prompt=EXTRACTION_SYSTEM_PROMPT,
        model_id=model_id,
        max_tokens=1000,
        temperature=0.0,
        purpose="extraction"
    )


def build_function_call_request(
    message: str,
    recent_turns: List[Dict[str, Any]],
    definition: ActionDefinition,
    model_id: Optional[str] = None
) -> GenerationRequest:
    """Structured extraction request carrying the entity's function schema"""

    lines = _history_lines(recent_turns)
    lines += [f'Extract the {definition.label} details from: "{message}"']

    return GenerationRequest(
        prompt="\n".join(lines),
        system_prompt=EXTRACTION_SYSTEM_PROMPT,
        model_id=model_id,
        max_tokens=1000,
        temperature=0.0,
        function_schema=definition.function_schema,
        purpose="function_call"
    )
