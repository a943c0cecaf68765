"""Tests for the grounded-answer gate and completion parsing."""

import json

import pytest
import pytest_asyncio

from app.core.errors import GenerationProviderError
from app.services.answer_service import (
    DECLINE_TEXT,
    FALLBACK_TEXT,
    GroundedAnswerService,
    LLMQueryRewriter,
    MalformedAnswer,
    ParsedAnswer,
    QueryRewriter,
    parse_generation_response,
)
from app.services.search_service import SearchService

REFUND_TEXT = (
    "Our refund window is 30 days from the date of purchase. "
    "Contact support to start a refund."
)


@pytest.fixture()
def answers(embedder, chunk_store, generator):
    search = SearchService(embedder, chunk_store)
    return GroundedAnswerService(search, generator, default_max_chunks=3, default_min_similarity=0.2)


@pytest_asyncio.fixture
async def refund_policy(ingestion, queue):
    doc_id = await ingestion.submit_text_document("t1", "Refund Policy", None, REFUND_TEXT)
    await queue.drain()
    return doc_id


class TestAnswerWithContext:
    @pytest.mark.asyncio
    async def test_declines_without_calling_generation(self, answers, generator, refund_policy) -> None:
        result = await answers.answer_with_context("t1", "How do I bake sourdough bread?")

        assert generator.calls == []
        assert result.reply == DECLINE_TEXT
        assert result.grounded is False
        assert result.sources == []
        assert result.confidence_signals.next_action == "Wait for human agent"
        assert result.confidence_signals.intent == "out_of_scope"
        assert result.confidence_signals.conversion_percentage == 50

    @pytest.mark.asyncio
    async def test_declines_for_tenant_without_documents(self, answers, generator, refund_policy) -> None:
        result = await answers.answer_with_context("t2", "What is the refund window?")
        assert result.reply == DECLINE_TEXT
        assert generator.calls == []

    @pytest.mark.asyncio
    async def test_answers_from_retrieved_context(self, answers, generator, refund_policy) -> None:
        generator.response = json.dumps({
            "suggested_reply": "You can request a refund within 30 days of purchase.",
            "interest_level": "High",
            "conversion_percentage": "85",
            "objection": "",
            "next_action": "Share the refund form",
            "sentiment": "positive",
            "intent": "refund_request",
            "keywords": ["refund", "30 days"],
        })

        result = await answers.answer_with_context("t1", "What is the refund window?")

        assert result.grounded is True
        assert result.reply == "You can request a refund within 30 days of purchase."
        assert result.confidence_signals.conversion_percentage == 85
        assert result.confidence_signals.objection is None
        assert result.confidence_signals.keywords == ["refund", "30 days"]
        assert [s.document_id for s in result.sources] == [refund_policy]
        assert result.sources[0].document_title == "Refund Policy"

        [(system_prompt, user_prompt, json_output)] = generator.calls
        assert DECLINE_TEXT in system_prompt
        assert "Source: Refund Policy" in user_prompt
        assert 'Customer message: "What is the refund window?"' in user_prompt
        assert json_output is True

    @pytest.mark.asyncio
    async def test_model_decline_is_not_grounded(self, answers, generator, refund_policy) -> None:
        generator.response = json.dumps({"suggested_reply": DECLINE_TEXT})

        result = await answers.answer_with_context("t1", "What is the refund window for gift cards?")

        assert result.reply == DECLINE_TEXT
        assert result.grounded is False
        assert result.sources

    @pytest.mark.asyncio
    async def test_missing_reply_falls_back_to_decline(self, answers, generator, refund_policy) -> None:
        generator.response = json.dumps({"interest_level": "Low"})

        result = await answers.answer_with_context("t1", "What is the refund window?")

        assert result.reply == DECLINE_TEXT
        assert result.grounded is False
        assert result.confidence_signals.interest_level == "Low"

    @pytest.mark.asyncio
    async def test_non_json_completion_uses_fallback(self, answers, generator, refund_policy) -> None:
        generator.response = "Sure! Refunds are 30 days."

        result = await answers.answer_with_context("t1", "What is the refund window?")

        assert result.reply == FALLBACK_TEXT
        assert result.confidence_signals.next_action == "Continue the conversation"
        assert result.grounded is False
        assert result.sources

    @pytest.mark.asyncio
    async def test_provider_error_uses_fallback(self, answers, generator, refund_policy) -> None:
        generator.error = GenerationProviderError("Generation request timed out after 45s")

        result = await answers.answer_with_context("t1", "What is the refund window?")

        assert result.reply == FALLBACK_TEXT
        assert result.grounded is False

    @pytest.mark.asyncio
    async def test_retrieval_failure_uses_fallback(self, answers, generator, embedder, refund_policy) -> None:
        embedder.fail_on = "refund"

        result = await answers.answer_with_context("t1", "What is the refund window?")

        assert result.reply == FALLBACK_TEXT
        assert result.sources == []
        assert generator.calls == []

    @pytest.mark.asyncio
    async def test_rewritten_query_drives_retrieval(self, embedder, chunk_store, generator, refund_policy) -> None:
        class FixedRewriter(QueryRewriter):
            async def rewrite(self, query: str) -> str:
                return "refund window"

        generator.response = json.dumps({"suggested_reply": "30 days."})
        service = GroundedAnswerService(
            SearchService(embedder, chunk_store), generator,
            query_rewriter=FixedRewriter(), default_min_similarity=0.2,
        )

        result = await service.answer_with_context("t1", "hw long 4 refnd??")

        assert result.grounded is True
        assert "refund window" in embedder.calls
        assert 'Customer message: "hw long 4 refnd??"' in generator.calls[0][1]

    @pytest.mark.asyncio
    async def test_llm_rewriter_is_skipped_for_tenant_without_documents(
        self, embedder, chunk_store, generator, refund_policy
    ) -> None:
        service = GroundedAnswerService(
            SearchService(embedder, chunk_store), generator,
            query_rewriter=LLMQueryRewriter(generator), default_min_similarity=0.2,
        )

        result = await service.answer_with_context("t2", "wat is teh refnd window")

        assert result.reply == DECLINE_TEXT
        assert result.grounded is False
        assert generator.calls == []
        assert embedder.calls[-1] != "wat is teh refnd window"

    @pytest.mark.asyncio
    async def test_llm_rewriter_runs_when_tenant_has_documents(
        self, embedder, chunk_store, generator, refund_policy
    ) -> None:
        generator.response = "refund window"
        service = GroundedAnswerService(
            SearchService(embedder, chunk_store), generator,
            query_rewriter=LLMQueryRewriter(generator), default_min_similarity=0.2,
        )

        await service.answer_with_context("t1", "wat is teh refnd window")

        assert generator.calls[0][2] is False
        assert "refund window" in embedder.calls


class TestLLMQueryRewriter:
    @pytest.mark.asyncio
    async def test_uses_rewritten_text(self, generator) -> None:
        generator.response = "  password reset for account \n"
        rewriter = LLMQueryRewriter(generator)

        assert await rewriter.rewrite("pw reset acct") == "password reset for account"
        assert generator.calls[0][2] is False

    @pytest.mark.asyncio
    async def test_blank_output_keeps_original(self, generator) -> None:
        generator.response = "   "
        assert await LLMQueryRewriter(generator).rewrite("pw reset") == "pw reset"

    @pytest.mark.asyncio
    async def test_provider_error_keeps_original(self, generator) -> None:
        generator.error = GenerationProviderError("down")
        assert await LLMQueryRewriter(generator).rewrite("pw reset") == "pw reset"


class TestParseGenerationResponse:
    def test_empty_object_gets_defaults(self) -> None:
        outcome = parse_generation_response("{}")

        assert isinstance(outcome, ParsedAnswer)
        assert outcome.suggested_reply == DECLINE_TEXT
        assert outcome.interest_level == "Medium"
        assert outcome.conversion_percentage == 50
        assert outcome.sentiment == "neutral"
        assert outcome.keywords == []
        assert outcome.objection is None
        assert outcome.next_action == ""

    @pytest.mark.parametrize(
        "value,expected",
        [(150, 100), (-5, 0), ("42", 42), ("73.6", 74), ("abc", 50), (None, 50), (True, 50), ([1], 50)],
    )
    def test_conversion_percentage(self, value, expected) -> None:
        outcome = parse_generation_response(json.dumps({"conversion_percentage": value}))
        assert outcome.conversion_percentage == expected

    def test_fields_are_normalized_independently(self) -> None:
        outcome = parse_generation_response(json.dumps({
            "suggested_reply": "  Yes.  ",
            "interest_level": "high",
            "sentiment": "POSITIVE",
            "keywords": "refund",
            "intent": 7,
            "next_action": ["call"],
            "unexpected": "ignored",
        }))

        assert outcome.suggested_reply == "Yes."
        assert outcome.interest_level == "High"
        assert outcome.sentiment == "positive"
        assert outcome.keywords == ["refund"]
        assert outcome.intent is None
        assert outcome.next_action == ""

    def test_unknown_labels_fall_back(self) -> None:
        outcome = parse_generation_response(json.dumps({"interest_level": "Very high", "sentiment": "angry"}))
        assert outcome.interest_level == "Medium"
        assert outcome.sentiment == "neutral"

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '"just a string"', "", None])
    def test_malformed(self, raw) -> None:
        outcome = parse_generation_response(raw)
        assert isinstance(outcome, MalformedAnswer)
        assert outcome.kind == "malformed"
