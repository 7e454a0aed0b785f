import asyncio
import json

from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage

from actionflow.domain.errors import AIErrorKind, AIServiceError, classify_ai_error
from actionflow.infrastructure.ai.text_generation import (
    GenerationRequest, LangChainTextGenerator, TextGenerator, generate_with_timeout
)


class ToolCallingFakeChatModel(GenericFakeChatModel):
    def bind_tools(self, tools, **kwargs):
        return self


class FailingFakeChatModel(GenericFakeChatModel):
    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        raise RuntimeError("429 Too Many Requests")


class SlowGenerator(TextGenerator):
    async def generate(self, request):
        await asyncio.sleep(1)


def test_plain_generation():
    model = GenericFakeChatModel(messages=iter([AIMessage(content='{"intent": "greeting"}')]))
    generator = LangChainTextGenerator(model)

    result = asyncio.run(generator.generate(GenerationRequest(prompt="hi", system_prompt="classify")))

    assert result.success
    assert result.content == '{"intent": "greeting"}'
    assert result.function_call is None


def test_tool_call_becomes_function_call():
    message = AIMessage(content="", tool_calls=[
        {"name": "create_expense", "args": {"amount": 42}, "id": "call_1"}
    ])
    generator = LangChainTextGenerator(ToolCallingFakeChatModel(messages=iter([message])))
    request = GenerationRequest(
        prompt="42 for a taxi",
        function_schema={"name": "create_expense", "parameters": {"type": "object", "properties": {}}}
    )

    result = asyncio.run(generator.generate(request))

    assert result.function_call["name"] == "create_expense"
    assert json.loads(result.function_call["arguments"]) == {"amount": 42}


def test_model_errors_are_classified():
    generator = LangChainTextGenerator(FailingFakeChatModel(messages=iter([])))

    result = asyncio.run(generator.generate(GenerationRequest(prompt="hi")))

    assert not result.success
    assert result.error_kind == AIErrorKind.RATE_LIMIT


def test_timeout_becomes_failed_result():
    result = asyncio.run(generate_with_timeout(SlowGenerator(), GenerationRequest(prompt="hi"), 0.01))

    assert not result.success
    assert result.error_kind == AIErrorKind.TIMEOUT


def test_classify_ai_error_patterns():
    assert classify_ai_error("You exceeded your current quota") == AIErrorKind.QUOTA_EXCEEDED
    assert classify_ai_error("Incorrect API key provided") == AIErrorKind.INVALID_API_KEY
    assert classify_ai_error("The model `gpt-9` does not exist") == AIErrorKind.MODEL_NOT_FOUND
    assert classify_ai_error("Connection refused") == AIErrorKind.NETWORK_ERROR
    assert classify_ai_error("something odd") == AIErrorKind.UNKNOWN
    assert classify_ai_error(None) == AIErrorKind.UNKNOWN


class KeyRejectingGenerator(TextGenerator):
    async def generate(self, request):
        raise AIServiceError("provider rejected credentials", AIErrorKind.INVALID_API_KEY)


def test_service_error_kind_is_kept():
    result = asyncio.run(generate_with_timeout(KeyRejectingGenerator(), GenerationRequest(prompt="hi"), 1))

    assert not result.success
    assert result.error_kind == AIErrorKind.INVALID_API_KEY
