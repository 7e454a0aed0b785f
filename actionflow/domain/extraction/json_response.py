import json
import re
from typing import Dict, Any

from actionflow.domain.errors import ExtractionParseError

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


def parse_json_object(content: str) -> Dict[str, Any]:
    """Parse a JSON object from collaborator output, tolerating markdown fences

    Raises:
        ExtractionParseError: If no JSON object can be recovered
    """

    if not content or not content.strip():
        raise ExtractionParseError("Empty response")

    text = content.strip()
    fenced = _FENCED_JSON.search(text)
    if fenced:
        text = fenced.group(1)
    elif not text.startswith("{"):
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise ExtractionParseError("No JSON object in response")
        text = text[start:end + 1]

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise ExtractionParseError(f"Malformed JSON: {e.msg}") from e

    if not isinstance(parsed, dict):
        raise ExtractionParseError("Response is not a JSON object")
    return parsed
