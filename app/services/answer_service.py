import json
from abc import ABC, abstractmethod
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from app.core.errors import GenerationProviderError
from app.services.chunk_store import ScoredChunk
from app.services.search_service import SearchService
from app.utils.logger import get_logger
from app.utils.metrics import answer_requests_total

logger = get_logger("services.answer")

DECLINE_TEXT = (
    "I don't have specific information about that topic. "
    "A support agent will be with you shortly to help."
)
FALLBACK_TEXT = "Thank you for your message. How can I help you further?"

INTEREST_LEVELS = ("Low", "Medium", "High")
SENTIMENTS = ("positive", "negative", "neutral")

SYSTEM_PROMPT = f"""You are a customer support assistant with STRICT limitations. You can ONLY answer questions using the EXACT information provided in the knowledge base content below.

CRITICAL RULES - YOU MUST FOLLOW THESE:
1. ONLY use information that is EXPLICITLY stated in the provided knowledge base content
2. If the customer's question is NOT DIRECTLY answered by the knowledge base content, you MUST set suggested_reply to: '{DECLINE_TEXT}'
3. NEVER use your general knowledge or training data to answer questions
4. NEVER make assumptions or inferences beyond what is explicitly written in the knowledge base
5. If the question is about a completely different topic than what's in the knowledge base, always decline to answer
6. Be honest - if you're not sure if the KB answers the question, decline to answer"""

USER_PROMPT_TEMPLATE = """Analyze this customer message and respond ONLY if the knowledge base below contains a DIRECT answer.

{context}

Customer message: "{message}"

IMPORTANT: First check if the knowledge base content above DIRECTLY answers this question. If NOT, set suggested_reply to the decline message.

Return ONLY valid JSON:
{{
  "suggested_reply": "<answer from KB OR decline message if KB doesn't cover this topic>",
  "interest_level": "Low | Medium | High",
  "conversion_percentage": <number 0-100>,
  "objection": "<any objection detected or empty string>",
  "next_action": "<recommended action>",
  "sentiment": "positive | negative | neutral",
  "intent": "<customer intent>",
  "keywords": ["<relevant keywords>"]
}}"""

REWRITE_PROMPT = """You are a query rewriting assistant. Your job is to rewrite a customer support query to optimize it for semantic search against a knowledge base.

Rules:
- Fix any typos or grammatical errors
- Expand abbreviations (e.g., 'pw' -> 'password', 'acct' -> 'account')
- Remove filler words and conversational fluff
- Keep the core intent and key terms
- Output ONLY the rewritten query, nothing else
- If the query is already clear and well-formed, return it as-is"""


class ConfidenceSignals(BaseModel):
    """
    Sales/support signals extracted alongside the reply.

    Every field tolerates bad model output: anything that does not validate
    is replaced by its default instead of failing the whole answer.
    """

    interest_level: str = "Medium"
    conversion_percentage: int = 50
    objection: Optional[str] = None
    next_action: str = ""
    sentiment: str = "neutral"
    intent: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)

    @field_validator("interest_level", mode="before")
    @classmethod
    def _interest_level(cls, value: Any) -> str:
        if isinstance(value, str):
            for level in INTEREST_LEVELS:
                if value.strip().lower() == level.lower():
                    return level
        return "Medium"

    @field_validator("conversion_percentage", mode="before")
    @classmethod
    def _conversion_percentage(cls, value: Any) -> int:
        if isinstance(value, bool):
            return 50
        if isinstance(value, str):
            try:
                value = float(value.strip().rstrip("%"))
            except ValueError:
                return 50
        if isinstance(value, (int, float)):
            if value != value:  # NaN
                return 50
            return max(0, min(100, int(round(value))))
        return 50

    @field_validator("objection", "intent", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    @field_validator("next_action", mode="before")
    @classmethod
    def _next_action(cls, value: Any) -> str:
        return value.strip() if isinstance(value, str) else ""

    @field_validator("sentiment", mode="before")
    @classmethod
    def _sentiment(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip().lower() in SENTIMENTS:
            return value.strip().lower()
        return "neutral"

    @field_validator("keywords", mode="before")
    @classmethod
    def _keywords(cls, value: Any) -> List[str]:
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple)):
            return []
        return [k.strip() for k in value if isinstance(k, str) and k.strip()]


class ParsedAnswer(ConfidenceSignals):
    kind: Literal["parsed"] = "parsed"
    suggested_reply: str = DECLINE_TEXT

    @field_validator("suggested_reply", mode="before")
    @classmethod
    def _suggested_reply(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip():
            return value.strip()
        return DECLINE_TEXT

    def signals(self) -> ConfidenceSignals:
        return ConfidenceSignals.model_validate(self.model_dump(exclude={"kind", "suggested_reply"}))


class MalformedAnswer(BaseModel):
    kind: Literal["malformed"] = "malformed"
    raw: str
    reason: str


GenerationOutcome = Annotated[Union[ParsedAnswer, MalformedAnswer], Field(discriminator="kind")]
_outcome_adapter = TypeAdapter(GenerationOutcome)


def parse_generation_response(content: Optional[str]) -> Union[ParsedAnswer, MalformedAnswer]:
    """Decode a JSON completion into a ParsedAnswer, or a MalformedAnswer if it is not a JSON object."""
    raw = content or ""
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        return _outcome_adapter.validate_python({"kind": "malformed", "raw": raw, "reason": f"Invalid JSON: {e}"})

    if not isinstance(data, dict):
        return _outcome_adapter.validate_python(
            {"kind": "malformed", "raw": raw, "reason": "Completion is not a JSON object"}
        )

    fields = {k: v for k, v in data.items() if k in ParsedAnswer.model_fields and k != "kind"}
    return _outcome_adapter.validate_python({**fields, "kind": "parsed"})


class AnswerSource(BaseModel):
    document_id: str
    document_title: str
    chunk_id: str
    content: str
    similarity: float


class GroundedAnswer(BaseModel):
    reply: str
    confidence_signals: ConfidenceSignals
    grounded: bool
    sources: List[AnswerSource] = Field(default_factory=list)


class QueryRewriter(ABC):
    # True when rewrite() makes a generation call
    calls_provider: bool = False

    @abstractmethod
    async def rewrite(self, query: str) -> str:
        ...


class IdentityQueryRewriter(QueryRewriter):
    async def rewrite(self, query: str) -> str:
        return query


class LLMQueryRewriter(QueryRewriter):
    """Asks the generation provider to fix typos and expand abbreviations before retrieval."""

    calls_provider = True

    def __init__(self, generation_service):
        self.generation_service = generation_service

    async def rewrite(self, query: str) -> str:
        try:
            rewritten = await self.generation_service.generate(
                REWRITE_PROMPT, f"User query: {query}\n\nRewritten query:", json_output=False
            )
        except GenerationProviderError as e:
            logger.warning(f"Query rewrite failed, using original query: {e}")
            return query

        rewritten = (rewritten or "").strip()
        return rewritten or query


def build_context(hits: List[ScoredChunk]) -> str:
    lines = ["KNOWLEDGE BASE (You MUST only use this information to answer):"]
    for hit in hits:
        lines.append("---")
        lines.append(f"Source: {hit.document_title}")
        lines.append(hit.chunk.content)
    lines.append("---")
    return "\n".join(lines)


def _sources(hits: List[ScoredChunk]) -> List[AnswerSource]:
    return [
        AnswerSource(
            document_id=hit.chunk.document_id,
            document_title=hit.document_title,
            chunk_id=hit.chunk.id,
            content=hit.chunk.content,
            similarity=hit.score,
        )
        for hit in hits
    ]


def decline_answer() -> GroundedAnswer:
    return GroundedAnswer(
        reply=DECLINE_TEXT,
        confidence_signals=ConfidenceSignals(
            interest_level="Medium",
            conversion_percentage=50,
            next_action="Wait for human agent",
            sentiment="neutral",
            intent="out_of_scope",
        ),
        grounded=False,
    )


def fallback_answer(sources: Optional[List[AnswerSource]] = None) -> GroundedAnswer:
    return GroundedAnswer(
        reply=FALLBACK_TEXT,
        confidence_signals=ConfidenceSignals(
            interest_level="Medium",
            conversion_percentage=50,
            next_action="Continue the conversation",
            sentiment="neutral",
        ),
        grounded=False,
        sources=sources or [],
    )


class GroundedAnswerService:
    """
    Answers a customer message from the tenant's knowledge base only.

    When retrieval finds nothing above the threshold the fixed decline reply is
    returned without calling the generation provider. Provider and parsing
    problems degrade to a generic reply; this service never raises.
    """

    def __init__(
        self,
        search_service: SearchService,
        generation_service,
        query_rewriter: Optional[QueryRewriter] = None,
        default_max_chunks: int = 3,
        default_min_similarity: float = 0.7,
    ):
        self.search_service = search_service
        self.generation_service = generation_service
        self.query_rewriter = query_rewriter or IdentityQueryRewriter()
        self.default_max_chunks = default_max_chunks
        self.default_min_similarity = default_min_similarity

    async def answer_with_context(
        self,
        tenant_id: str,
        message: str,
        max_chunks: Optional[int] = None,
        min_similarity: Optional[float] = None,
    ) -> GroundedAnswer:
        max_chunks = self.default_max_chunks if max_chunks is None else max_chunks
        min_similarity = self.default_min_similarity if min_similarity is None else min_similarity

        try:
            if self.query_rewriter.calls_provider and not await self.search_service.has_indexed_content(tenant_id):
                # Nothing to ground on; decline without touching the provider
                hits = []
            else:
                query = await self.query_rewriter.rewrite(message)
                hits = await self.search_service.search(tenant_id, query, max_chunks, min_similarity)
        except Exception as e:
            logger.exception(f"Knowledge retrieval failed for tenant {tenant_id}: {e}")
            answer_requests_total.labels(outcome="fallback").inc()
            return fallback_answer()

        if not hits:
            logger.info(f"No knowledge above {min_similarity} for tenant {tenant_id}; declining")
            answer_requests_total.labels(outcome="declined").inc()
            return decline_answer()

        sources = _sources(hits)
        user_prompt = USER_PROMPT_TEMPLATE.format(context=build_context(hits), message=message)

        try:
            completion = await self.generation_service.generate(SYSTEM_PROMPT, user_prompt, json_output=True)
        except GenerationProviderError as e:
            logger.error(f"Answer generation failed for tenant {tenant_id}: {e.message}")
            answer_requests_total.labels(outcome="fallback").inc()
            return fallback_answer(sources)

        outcome = parse_generation_response(completion)
        if isinstance(outcome, MalformedAnswer):
            logger.warning(f"Discarding malformed completion: {outcome.reason}")
            answer_requests_total.labels(outcome="malformed").inc()
            return fallback_answer(sources)

        grounded = outcome.suggested_reply != DECLINE_TEXT
        answer_requests_total.labels(outcome="answered" if grounded else "declined").inc()
        return GroundedAnswer(
            reply=outcome.suggested_reply,
            confidence_signals=outcome.signals(),
            grounded=grounded,
            sources=sources,
        )
