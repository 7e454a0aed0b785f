import json
from typing import List, Optional

from actionflow.domain.models.action_state import ActionDefinition, PendingAction, IntentType
from actionflow.infrastructure.ai.text_generation import GenerationRequest

INTENT_SYSTEM_PROMPT = (
    "You classify chat messages for an assistant that performs actions. "
    "Respond with a single JSON object and nothing else."
)


def build_intent_request(
    message: str,
    pending_action: Optional[PendingAction],
    candidates: List[ActionDefinition],
    model_id: Optional[str] = None
) -> GenerationRequest:
    """Classification request for one message"""

    intents = ", ".join(intent.value for intent in IntentType)
    lines = [f'User message: "{message}"', ""]

    if pending_action is not None:
        lines += [
            "There is an action in progress:",
            f"- Action: {pending_action.label}",
            f"- Current parameters: {json.dumps(pending_action.params, default=str)}",
            f"- Missing fields: {', '.join(pending_action.missing_fields) or 'none'}",
            "",
            "Only extract values for the missing fields listed above.",
        ]
    elif candidates:
        lines.append("Available actions:")
        for action in candidates:
            lines.append(f"- {action.id}: {action.label}. {action.description}".rstrip())
    else:
        lines.append("No actions are available.")

    lines += [
        "",
        f"Intent must be one of: {intents}.",
        "Return JSON with keys: intent, confidence (0-1), extracted_data (object), "
        "context_enhancement (string), suggested_action_id (string or null), "
        "modification_target (string or null).",
    ]

    return GenerationRequest(
        prompt="\n".join(lines),
        system_prompt=INTENT_SYSTEM_PROMPT,
        model_id=model_id,
        max_tokens=500,
        temperature=0.1,
        purpose="intent"
    )
