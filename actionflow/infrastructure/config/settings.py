"""
Runtime configuration loaded from environment variables.
"""

import os
from typing import Dict, Optional
from pydantic import BaseModel, Field

from actionflow.domain.errors import AIErrorKind, user_message_for


DEFAULT_ERROR_MESSAGES: Dict[str, str] = {
    "quota_exceeded": "AI service quota has been exceeded. Please contact support or try again later.",
    "rate_limit": "Too many requests. Please wait a moment and try again.",
    "invalid_api_key": "AI service configuration error. Please contact support.",
    "network_error": "Unable to connect to AI service. Please check your connection and try again.",
    "timeout": "AI service request timed out. Please try again.",
    "model_not_found": "The requested AI model is not available. Please try a different model.",
}


class Settings(BaseModel):
    """Action flow settings"""
    node_slug: str = Field(default="master", description="Slug of this node in the federation")
    node_name: str = Field(default="Master Node")
    pending_action_ttl: int = Field(default=86400, description="Seconds a pending action survives")
    session_pin_ttl: int = Field(default=3600, description="Seconds a session stays pinned to a node")
    intent_model: str = Field(default="gpt-4o-mini")
    extraction_model: str = Field(default="gpt-4o-mini")
    classify_timeout: float = Field(default=15.0)
    extract_timeout: float = Field(default=30.0)
    search_timeout: float = Field(default=5.0)
    remote_timeout: float = Field(default=30.0)
    discovery_timeout: float = Field(default=5.0)
    discovery_ttl: int = Field(default=300, description="Seconds between action discovery refreshes")
    intent_match_threshold: float = Field(default=0.8)
    semantic_match_threshold: float = Field(default=0.7)
    max_candidate_actions: int = Field(default=10)
    node_token: Optional[str] = Field(None, description="Bearer token expected on inbound node calls")
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    error_messages: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_ERROR_MESSAGES))
    fallback_error_message: str = Field(default="AI service is temporarily unavailable.")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ACTIONFLOW_* environment variables"""

        return cls(
            node_slug=os.getenv("ACTIONFLOW_NODE_SLUG", "master"),
            node_name=os.getenv("ACTIONFLOW_NODE_NAME", "Master Node"),
            pending_action_ttl=int(os.getenv("ACTIONFLOW_PENDING_ACTION_TTL", "86400")),
            session_pin_ttl=int(os.getenv("ACTIONFLOW_SESSION_PIN_TTL", "3600")),
            intent_model=os.getenv("ACTIONFLOW_INTENT_MODEL", "gpt-4o-mini"),
            extraction_model=os.getenv("ACTIONFLOW_EXTRACTION_MODEL", "gpt-4o-mini"),
            classify_timeout=float(os.getenv("ACTIONFLOW_CLASSIFY_TIMEOUT", "15")),
            extract_timeout=float(os.getenv("ACTIONFLOW_EXTRACT_TIMEOUT", "30")),
            search_timeout=float(os.getenv("ACTIONFLOW_SEARCH_TIMEOUT", "5")),
            remote_timeout=float(os.getenv("ACTIONFLOW_REMOTE_TIMEOUT", "30")),
            discovery_timeout=float(os.getenv("ACTIONFLOW_DISCOVERY_TIMEOUT", "5")),
            discovery_ttl=int(os.getenv("ACTIONFLOW_DISCOVERY_TTL", "300")),
            intent_match_threshold=float(os.getenv("ACTIONFLOW_INTENT_MATCH_THRESHOLD", "0.8")),
            semantic_match_threshold=float(os.getenv("ACTIONFLOW_SEMANTIC_MATCH_THRESHOLD", "0.7")),
            node_token=os.getenv("ACTIONFLOW_NODE_TOKEN"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )

    def error_message(self, kind: AIErrorKind) -> str:
        """User-facing text for a text-generation failure"""

        return user_message_for(kind, self.error_messages, self.fallback_error_message)
