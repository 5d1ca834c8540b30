import json
import logging
import time
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, Iterator, List, Optional

import anyio

from services import ai_log
from services.config import Config
from services.context import build_context, data_used
from services.conversation import get_conversation_store, history_as_chat
from services.data_retriever import DataRetriever
from services.groq_client import get_groq_client
from services.query_analyzer import QueryAnalyzer
from services.response_parser import parse_response
from services.utility import timed_step
from services.vision import describe_image

_logger = logging.getLogger("rag")

DEFAULT_CONFIDENCE = 0.7
PREVIOUS_RECOMMENDATIONS_KEPT = 5

APOLOGY = {
    "en": "Sorry, I am unable to provide an answer at the moment. Please try again later.",
    "hi": "क्षमा करें, मैं अभी उत्तर देने में असमर्थ हूँ। कृपया बाद में पुनः प्रयास करें।",
}

SYSTEM_PROMPT = """You are an expert agricultural advisor for Indian farmers. Provide detailed answers with actionable insights.
Use the data provided in the context, and if lacking, suggest reasonable actions based on common agricultural knowledge.
Never invent sensor or weather numbers that are not in the context.

Structure the answer like this:
🌱 Advice: the main answer in a few short paragraphs
⚡ Immediate Actions: bullet list of what to do today
📅 Next Steps: bullet list for the coming weeks
🗓️ Long-term: bullet list for the next seasons
❓ Follow-up Questions: two or three questions the farmer may ask next
🔗 Related Topics: short list of related topics"""

LANGUAGE_INSTRUCTION = {
    "en": "Answer in simple English.",
    "hi": "Answer in simple Hindi (Devanagari script). Keep the section markers exactly as shown.",
}


@dataclass
class RagAnswer:
    answer: str
    confidence: float
    status: str = "success"
    sources: List[str] = field(default_factory=list)
    data_used: Dict[str, bool] = field(default_factory=dict)
    recommendations: Optional[Dict[str, List[str]]] = None
    follow_up_questions: Optional[List[str]] = None
    related_topics: Optional[List[str]] = None
    related_questions: List[str] = field(default_factory=list)
    model: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def apology(language: str) -> str:
    return APOLOGY.get(language, APOLOGY["en"])


def _structured(text: str) -> Dict[str, Any]:
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


class RagResponder:
    def __init__(self, llm=None):
        self._llm = llm

    @property
    def llm(self):
        return self._llm or get_groq_client()

    def build_messages(self, query, context, history=None, language="en") -> List[Dict[str, Any]]:
        system = f"{SYSTEM_PROMPT}\n\n{LANGUAGE_INSTRUCTION.get(language, LANGUAGE_INSTRUCTION['en'])}"
        user = (
            f"\nContext:\n{json.dumps(context, indent=2, ensure_ascii=False, default=str)}"
            f"\n\nQuestion: {query}\n\nAnswer:"
        )
        return [
            {"role": "system", "content": system},
            *(history or []),
            {"role": "user", "content": user},
        ]

    def respond(self, query, context, history=None, language="en") -> RagAnswer:
        try:
            text = self.llm.chat(
                self.build_messages(query, context, history, language),
                temperature=0.5,
                max_tokens=1500,
            )
        except Exception as exc:
            _logger.error("Response generation failed: %s", exc)
            return RagAnswer(answer=apology(language), confidence=0.0, status="error")

        return self.to_answer(text, context)

    def to_answer(self, text: str, context: Dict[str, Any]) -> RagAnswer:
        structured = _structured(text)
        parsed = parse_response(text)

        raw_confidence = structured.get("confidence")
        try:
            confidence = DEFAULT_CONFIDENCE if raw_confidence is None else float(raw_confidence)
        except (TypeError, ValueError):
            confidence = DEFAULT_CONFIDENCE

        recommendations = structured.get("recommendations")
        if not isinstance(recommendations, dict):
            recommendations = parsed.recommendations

        return RagAnswer(
            answer=text,
            confidence=confidence,
            sources=list(structured.get("sources") or context.get("sources") or []),
            data_used=data_used(context),
            recommendations=recommendations,
            follow_up_questions=parsed.follow_up_questions,
            related_topics=parsed.related_topics,
            related_questions=list(structured.get("related_questions") or parsed.follow_up_questions or []),
            model=Config.groq_model,
        )

    def stream(self, query, context, history=None, language="en") -> Iterator[str]:
        return self.llm.stream(
            self.build_messages(query, context, history, language),
            temperature=0.5,
            max_tokens=1500,
        )


@dataclass
class PreparedQuery:
    query: str
    language: str
    conversation_id: str
    context: Dict[str, Any]
    history: List[Dict[str, str]]
    analysis: Any
    timings: Dict[str, float]
    had_image: bool
    started: float


class RagService:
    """
    analyze -> retrieve -> merge -> respond, with the turn written to the
    conversation store and the query written to ai_log.
    """

    def __init__(self, analyzer=None, retriever=None, responder=None, store=None, log_fn=None, vision_fn=None):
        self.analyzer = analyzer or QueryAnalyzer()
        self.retriever = retriever or DataRetriever()
        self.responder = responder or RagResponder()
        self.store = store or get_conversation_store()
        self.log_fn = log_fn or ai_log.log_query
        self.vision_fn = vision_fn or describe_image

    async def prepare(self, query, location=None, conversation_id=None, language="en", auth_id=None, image=None) -> PreparedQuery:
        started = time.perf_counter()
        timings: Dict[str, float] = {}

        with timed_step("history_retrieval", timings):
            session = await self.store.get_or_create(conversation_id, auth_id, context={"language": language})
            history = history_as_chat(session.messages)

        image_tags = None
        if image:
            image_bytes, mime_type = image
            with timed_step("image_analysis", timings):
                try:
                    image_tags = (await anyio.to_thread.run_sync(self.vision_fn, image_bytes, mime_type))["tags"]
                except Exception as exc:
                    _logger.warning("Image analysis failed: %s", exc)

        with timed_step("query_analysis", timings):
            analysis = await anyio.to_thread.run_sync(self.analyzer.analyze, query, location)

        with timed_step("data_retrieval", timings):
            results = await self.retriever.retrieve(analysis, query, language)
        for result in results:
            timings[f"{result.source}_fetch_ms"] = round(result.elapsed_ms, 2)

        context = build_context(analysis, results, extra={
            "user_query": query,
            "language": language,
            "image_tags": image_tags,
            "farm_context": session.context or None,
        })

        return PreparedQuery(
            query=query,
            language=language,
            conversation_id=session.id,
            context=context,
            history=history,
            analysis=analysis,
            timings=timings,
            had_image=bool(image),
            started=started,
        )

    async def answer_question(self, query, location=None, conversation_id=None, language="en", auth_id=None, image=None) -> Dict[str, Any]:
        prepared = await self.prepare(query, location, conversation_id, language, auth_id, image)

        with timed_step("llm_inference", prepared.timings):
            answer = await anyio.to_thread.run_sync(
                self.responder.respond, query, prepared.context, prepared.history, language
            )

        return await self.finish(prepared, answer)

    async def finish(self, prepared: PreparedQuery, answer: RagAnswer) -> Dict[str, Any]:
        message_count = await self._record_turn(prepared, answer)

        response_time_ms = round((time.perf_counter() - prepared.started) * 1000.0, 2)
        prepared.timings["total_ms"] = response_time_ms

        await anyio.to_thread.run_sync(lambda: self.log_fn(
            query=prepared.query,
            response=answer.answer,
            sources=answer.sources,
            status=answer.status,
            language=prepared.language,
            confidence=answer.confidence,
            model_used=answer.model,
            response_time_ms=response_time_ms,
            conversation_id=prepared.conversation_id,
        ))

        knowledge = prepared.context.get("knowledge") or []
        return {
            **answer.to_dict(),
            "conversation_id": prepared.conversation_id,
            "message_count": message_count,
            "had_image": prepared.had_image,
            "query_analysis": prepared.analysis.to_dict(),
            "context_used": {
                **answer.data_used,
                "sensor_available": bool(prepared.context.get("sensor_data")),
                "location": prepared.context.get("location"),
            },
            "rag_info": {"success": bool(knowledge), "rag_chunks_count": len(knowledge)},
            "detected_language": prepared.language,
            "response_time_ms": response_time_ms,
            "timing_analysis": prepared.timings,
        }

    async def _record_turn(self, prepared: PreparedQuery, answer: RagAnswer) -> int:
        conversation_id = prepared.conversation_id
        await self.store.append_message(conversation_id, "user", prepared.query, {
            "query_type": prepared.analysis.query_type,
            "had_image": prepared.had_image,
        })
        await self.store.append_message(conversation_id, "assistant", answer.answer, {
            "confidence": answer.confidence,
            "sources": answer.sources,
            "status": answer.status,
        })

        session = await self.store.get(conversation_id)
        if session is None:
            return 0

        previous = list(session.context.get("previous_recommendations") or [])
        if answer.recommendations:
            previous.extend(answer.recommendations.get("immediate") or [])
        await self.store.update_context(
            conversation_id,
            crop_type=prepared.analysis.parameters.get("crop_name"),
            language=prepared.language,
            farm_location=prepared.context.get("location"),
            previous_recommendations=previous[-PREVIOUS_RECOMMENDATIONS_KEPT:] or None,
        )
        return len(session.messages)

    def stream_answer(self, prepared: PreparedQuery) -> Iterator[str]:
        """
        Sync generator for a worker thread: yields answer text as it arrives,
        then records the turn through the event loop.
        """
        chunks = []
        try:
            for delta in self.responder.stream(prepared.query, prepared.context, prepared.history, prepared.language):
                chunks.append(delta)
                yield delta
            answer = self.responder.to_answer("".join(chunks), prepared.context)
        except Exception as exc:
            _logger.error("Streaming response failed: %s", exc)
            text = apology(prepared.language)
            yield text
            answer = RagAnswer(answer=text, confidence=0.0, status="error")

        anyio.from_thread.run(self.finish, prepared, answer)


_rag_service = None


def get_rag_service() -> RagService:
    global _rag_service
    if _rag_service is None:
        _rag_service = RagService()
    return _rag_service
