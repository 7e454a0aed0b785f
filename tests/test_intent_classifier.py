import asyncio

from actionflow.domain.errors import AIErrorKind
from actionflow.domain.intent.intent_classifier import IntentClassifier
from actionflow.domain.models.action_state import IntentType, PendingAction
from actionflow.infrastructure.ai.text_generation import GenerationResult

from conftest import FakeTextGenerator


def pending(missing):
    return PendingAction(
        id="p1", action_id="create_invoice", label="Create Invoice",
        executor="model.dynamic", missing_fields=missing
    )


def test_fast_path_skips_generator(settings):
    generator = FakeTextGenerator()
    classifier = IntentClassifier(generator, settings)

    async def run():
        return [await classifier.classify(text) for text in ("Yes!", "never mind", "Hello")]

    confirm, reject, greeting = asyncio.run(run())

    assert confirm.intent == IntentType.CONFIRM and confirm.fast_path
    assert reject.intent == IntentType.REJECT
    assert greeting.intent == IntentType.GREETING
    assert confirm.confidence == 1.0
    assert generator.requests == []


def test_parses_fenced_json(settings):
    generator = FakeTextGenerator({"intent": [
        '```json\n{"intent": "new_request", "confidence": 0.92, "suggested_action_id": "create_invoice"}\n```'
    ]})
    classifier = IntentClassifier(generator, settings)

    analysis = asyncio.run(classifier.classify("I need to bill someone"))

    assert analysis.intent == IntentType.NEW_REQUEST
    assert analysis.confidence == 0.92
    assert analysis.suggested_action_id == "create_invoice"
    assert not analysis.fast_path


def test_unparseable_output_falls_back_to_question(settings):
    generator = FakeTextGenerator({"intent": ["not json at all"]})
    classifier = IntentClassifier(generator, settings)

    analysis = asyncio.run(classifier.classify("what can you do"))

    assert analysis.intent == IntentType.QUESTION
    assert analysis.confidence == 0.0
    assert analysis.ai_error is None


def test_generator_failure_carries_user_message(settings):
    generator = FakeTextGenerator({"intent": [
        GenerationResult(success=False, error="Rate limit reached", error_kind=AIErrorKind.RATE_LIMIT)
    ]})
    classifier = IntentClassifier(generator, settings)

    analysis = asyncio.run(classifier.classify("make an invoice for Bob"))

    assert analysis.intent == IntentType.QUESTION
    assert analysis.ai_error == settings.error_messages["rate_limit"]


def test_unknown_intent_and_out_of_range_confidence(settings):
    generator = FakeTextGenerator({"intent": [
        {"intent": "dance", "confidence": 0.9},
        {"intent": "Question", "confidence": 7},
    ]})
    classifier = IntentClassifier(generator, settings)

    async def run():
        return await classifier.classify("first"), await classifier.classify("second")

    unknown, clamped = asyncio.run(run())

    assert unknown.intent == IntentType.QUESTION and unknown.confidence == 0.0
    assert clamped.intent == IntentType.QUESTION and clamped.confidence == 1.0


def test_hallucinated_field_remapped_onto_single_missing_field(settings):
    generator = FakeTextGenerator({"intent": [
        {"intent": "provide_data", "confidence": 0.9, "extracted_data": {"client": "John"}}
    ]})
    classifier = IntentClassifier(generator, settings)

    analysis = asyncio.run(classifier.classify("it's for John", pending(["customer_id"])))

    assert analysis.extracted_data == {"customer_id": "John"}


def test_hallucinated_fields_dropped_with_several_missing(settings):
    generator = FakeTextGenerator({"intent": [
        {"intent": "provide_data", "confidence": 0.9,
         "extracted_data": {"client": "John", "items": [{"product": "widget"}], "name": "John"}}
    ]})
    classifier = IntentClassifier(generator, settings)

    analysis = asyncio.run(classifier.classify("John, one widget", pending(["customer_name", "items"])))

    assert analysis.extracted_data == {"items": [{"product": "widget"}], "name": "John"}


def test_candidates_only_offered_without_pending_action(settings, container):
    generator = FakeTextGenerator()
    classifier = IntentClassifier(generator, settings)

    async def run():
        await container.catalog.discover()
        await classifier.classify("create an invoice", candidates=container.catalog.all())
        await classifier.classify("create an invoice", pending(["items"]), container.catalog.all())

    asyncio.run(run())

    first, second = generator.requests
    assert "create_invoice" in first.prompt
    assert "Available actions" not in second.prompt
    assert "Missing fields: items" in second.prompt


def test_non_finite_confidence_treated_as_zero(settings):
    generator = FakeTextGenerator({"intent": [
        GenerationResult(success=True, content='{"intent": "question", "confidence": NaN}'),
        GenerationResult(success=True, content='{"intent": "new_request", "confidence": Infinity}'),
    ]})
    classifier = IntentClassifier(generator, settings)

    async def run():
        return await classifier.classify("what is this"), await classifier.classify("make an invoice")

    question, request = asyncio.run(run())

    assert question.intent == IntentType.QUESTION
    assert question.confidence == 0.0
    assert request.intent == IntentType.NEW_REQUEST
    assert request.confidence == 1.0
