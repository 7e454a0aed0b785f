from abc import ABC, abstractmethod
from typing import Dict, Any, Optional
import asyncio
import json
import time

import structlog
from pydantic import BaseModel, Field
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from actionflow.domain.errors import AIErrorKind, AIServiceError, classify_ai_error
from actionflow.infrastructure.observability.logging import metrics

logger = structlog.get_logger(__name__)


class GenerationRequest(BaseModel):
    """Structured request to the text-generation collaborator"""
    prompt: str
    system_prompt: Optional[str] = None
    model_id: Optional[str] = None
    max_tokens: int = Field(default=1000)
    temperature: float = Field(default=0.3)
    function_schema: Optional[Dict[str, Any]] = None
    purpose: str = Field(default="general", description="Used for metrics tags only")


class GenerationResult(BaseModel):
    """Collaborator response"""
    content: str = Field(default="")
    function_call: Optional[Dict[str, Any]] = Field(None, description="name plus JSON-encoded arguments")
    success: bool = Field(default=True)
    error: Optional[str] = None
    error_kind: Optional[AIErrorKind] = None
    tokens_used: int = Field(default=0)


class TextGenerator(ABC):
    """Text-generation collaborator"""

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResult:
        pass


class LangChainTextGenerator(TextGenerator):
    """Adapter over a LangChain chat model"""

    def __init__(self, chat_model: BaseChatModel):
        self.chat_model = chat_model

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        messages = []
        if request.system_prompt:
            messages.append(SystemMessage(content=request.system_prompt))
        messages.append(HumanMessage(content=request.prompt))

        runnable = self.chat_model
        if request.function_schema:
            runnable = self.chat_model.bind_tools([{"type": "function", "function": request.function_schema}])

        try:
            response = await runnable.ainvoke(
                messages,
                max_tokens=request.max_tokens,
                temperature=request.temperature
            )
        except Exception as e:
            kind = classify_ai_error(str(e))
            logger.warning("Text generation failed", error=str(e), error_kind=kind.value)
            return GenerationResult(success=False, error=str(e), error_kind=kind)

        function_call = None
        tool_calls = getattr(response, "tool_calls", None) or []
        if tool_calls:
            call = tool_calls[0]
            function_call = {"name": call["name"], "arguments": json.dumps(call.get("args", {}))}

        usage = getattr(response, "usage_metadata", None) or {}
        content = response.content if isinstance(response.content, str) else json.dumps(response.content)
        return GenerationResult(
            content=content,
            function_call=function_call,
            tokens_used=usage.get("total_tokens", 0)
        )


async def generate_with_timeout(generator: TextGenerator, request: GenerationRequest, timeout: float) -> GenerationResult:
    """Single bounded call; a timeout or raised error becomes a failed result"""

    start = time.monotonic()
    try:
        result = await asyncio.wait_for(generator.generate(request), timeout=timeout)
    except asyncio.TimeoutError:
        result = GenerationResult(success=False, error=f"Request timed out after {timeout}s", error_kind=AIErrorKind.TIMEOUT)
    except AIServiceError as e:
        result = GenerationResult(success=False, error=str(e), error_kind=e.kind)
    except Exception as e:
        result = GenerationResult(success=False, error=str(e), error_kind=classify_ai_error(str(e)))

    if not result.success and result.error_kind is None:
        result.error_kind = classify_ai_error(result.error)

    metrics.record_latency("text_generation", (time.monotonic() - start) * 1000, {"purpose": request.purpose})
    return result
