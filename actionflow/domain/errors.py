"""
Action Flow - Error Classes

Failures raised inside the conversational action flow. Each one is caught at
the boundary nearest its origin and converted into a recoverable result:
- AIServiceError: text-generation collaborator failures
- ExtractionParseError: malformed collaborator JSON
- HallucinatedFieldError: extracted key outside the outstanding fields
- MissingRequiredFieldError: action cannot run yet
- RemoteExecutionError: peer node call failed
- LocalExecutionError: local executor failed
"""

from enum import Enum
from typing import List, Optional, Dict


class AIErrorKind(str, Enum):
    """Categories of text-generation failures"""
    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMIT = "rate_limit"
    INVALID_API_KEY = "invalid_api_key"
    TIMEOUT = "timeout"
    MODEL_NOT_FOUND = "model_not_found"
    NETWORK_ERROR = "network_error"
    UNKNOWN = "unknown"


class ActionFlowError(Exception):
    """Base class for action flow errors."""
    pass


class AIServiceError(ActionFlowError):
    """Raised when the text-generation collaborator fails."""

    def __init__(self, message: str, kind: AIErrorKind = AIErrorKind.UNKNOWN):
        super().__init__(message)
        self.kind = kind


class ExtractionParseError(ActionFlowError):
    """Raised when collaborator output is not the JSON we asked for."""
    pass


class HallucinatedFieldError(ActionFlowError):
    """Raised when extracted data names a field that is not outstanding."""

    def __init__(self, field: str, remapped_to: Optional[str] = None):
        super().__init__(f"Unexpected field '{field}'")
        self.field = field
        self.remapped_to = remapped_to


class MissingRequiredFieldError(ActionFlowError):
    """Raised when an action is executed before its required fields are filled."""

    def __init__(self, missing_fields: List[str]):
        super().__init__(f"Missing required fields: {', '.join(missing_fields)}")
        self.missing_fields = list(missing_fields)


class RemoteExecutionError(ActionFlowError):
    """Raised when a peer node call fails."""

    def __init__(self, message: str, node_slug: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.node_slug = node_slug
        self.status_code = status_code


class LocalExecutionError(ActionFlowError):
    """Raised when a local executor fails."""

    def __init__(self, message: str, executor_id: str):
        super().__init__(message)
        self.executor_id = executor_id


class UnknownExecutorError(LocalExecutionError):
    """Raised when no handler is registered for an executor id."""

    def __init__(self, executor_id: str):
        super().__init__(f"No executor registered for '{executor_id}'", executor_id)


class NodeNotFoundError(ActionFlowError):
    """Raised when a node slug does not match an active node."""

    def __init__(self, node_slug: str):
        super().__init__(f"Node '{node_slug}' not found or inactive")
        self.node_slug = node_slug


_ERROR_PATTERNS = [
    (AIErrorKind.QUOTA_EXCEEDED, ("quota", "insufficient_quota", "billing")),
    (AIErrorKind.RATE_LIMIT, ("rate limit", "rate_limit", "too many requests", "429")),
    (AIErrorKind.INVALID_API_KEY, ("api key", "api_key", "unauthorized", "authentication", "401")),
    (AIErrorKind.TIMEOUT, ("timed out", "timeout")),
    (AIErrorKind.MODEL_NOT_FOUND, ("model_not_found", "model not found", "does not exist")),
    (AIErrorKind.NETWORK_ERROR, ("connection", "network", "unreachable", "resolve host")),
]


def classify_ai_error(error: Optional[str]) -> AIErrorKind:
    """Map a raw collaborator error message to an error kind"""

    if not error:
        return AIErrorKind.UNKNOWN

    text = error.lower()
    for kind, needles in _ERROR_PATTERNS:
        if any(needle in text for needle in needles):
            return kind
    return AIErrorKind.UNKNOWN


def user_message_for(kind: AIErrorKind, messages: Dict[str, str], fallback: str) -> str:
    """Look up the user-facing message for an AI error kind"""

    return messages.get(kind.value, fallback)
