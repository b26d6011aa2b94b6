"""
Prompt builders for the memory assistant.

Every public coroutine on MemoryAssistant resolves to a usable value: provider
errors, malformed completions and datastore failures all degrade to the
feature's fallback text or shape. Successful results are cached per subject
(and per day for daily-scoped features); fallbacks are never cached.
"""
import asyncio
import hashlib
import json
import logging
import os
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from openai import AsyncOpenAI

from ai_cache import ResponseCache, make_cache_key
from ai_retry import DEFAULT_DELAY_SECONDS, DEFAULT_RETRIES, with_retry
from keyword_match import match_memories_by_keyword
from models import (
    AnswerResponse,
    BehavioralSignal,
    HealthRiskAssessment,
    MemoryIntelligence,
    MoodInsight,
    normalize_memory_type,
)

logger = logging.getLogger(__name__)

# Checked in order: server runtime first, then the bundled-client names
AI_API_KEY_ENV_VARS = (
    "OPENAI_API_KEY",
    "GROQ_API_KEY",
    "EXPO_PUBLIC_GROQ_API_KEY",
    "GEMINI_API_KEY",
)
DEFAULT_MODEL = "gpt-4o-mini"

ANSWER_MEMORY_LIMIT = 50
ANSWER_PROMPT_MEMORIES = 15
ANSWER_MATCHES_RETURNED = 3
RECAP_MEMORY_LIMIT = 30
RECAP_MIN_MEMORIES = 3

NO_MEMORIES_ANSWER = (
    "I don't have any memories stored yet. Try adding some memories first, "
    "and then I can help you remember!"
)
CANT_HELP_ANSWER = (
    "I don't have any memories that match your question yet. "
    "Try adding a memory about this topic."
)
FOLLOW_UP_FALLBACK = "That sounds lovely! Can you tell me more about it?"
NO_MEMORIES_TODAY = "No memories recorded today."
SUMMARY_UNAVAILABLE = "Today's summary isn't ready just yet. Please check back a little later."
RECAP_STARTING = "We're just starting to collect your beautiful stories. Keep sharing!"
RECAP_UNAVAILABLE = "It's been a week full of precious memories and connections."

COMMON_OBJECT_KEYWORDS = ["keys", "wallet", "glasses", "phone", "medication", "medicine", "pill"]

_CODE_FENCE = re.compile(r"```(?:json)?\s*|```")
_DAY_FORMAT = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def resolve_api_key(env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    env = os.environ if env is None else env
    for name in AI_API_KEY_ENV_VARS:
        value = (env.get(name) or "").strip()
        if value:
            return value
    return None


def parse_json_object(raw: str) -> dict:
    """Parse a completion that should hold one JSON object, tolerating ```json fences"""
    text = _CODE_FENCE.sub("", raw or "").strip()
    parsed = json.loads(text)
    if not isinstance(parsed, dict):
        raise ValueError("Expected a JSON object from the model")
    return parsed


def default_mood() -> MoodInsight:
    return MoodInsight()


def default_health_risk() -> HealthRiskAssessment:
    return HealthRiskAssessment()


def naive_memory_intelligence(raw_text: str, memory_type: Optional[str] = None) -> MemoryIntelligence:
    lowered = (raw_text or "").lower()
    return MemoryIntelligence(
        type=normalize_memory_type(memory_type),
        tags=[keyword for keyword in COMMON_OBJECT_KEYWORDS if keyword in lowered],
        emotional_tone="neutral",
        confidence_score=0.5,
        structured={}
    )


def summary_from_count(count: int) -> str:
    if count <= 0:
        return NO_MEMORIES_TODAY
    noun = "memory" if count == 1 else "memories"
    return f"You shared {count} {noun} today. Every story helps us remember together."


def recap_from_count(count: int) -> str:
    noun = "memory" if count == 1 else "memories"
    return f"You've shared {count} {noun} recently. Keep the stories coming!"


def keyword_answer(matched: List[dict]) -> AnswerResponse:
    if not matched:
        return AnswerResponse(answer=CANT_HELP_ANSWER, matched_memories=[])
    top = matched[0]
    return AnswerResponse(
        answer=f"Last time you mentioned this was: {top.get('raw_text', '')}",
        matched_memories=[top]
    )


def _describe_memory(memory: dict) -> str:
    tags = ", ".join(memory.get("tags") or [])
    line = f"[{memory.get('type', 'other')}] {memory.get('raw_text', '')}"
    if memory.get("emotional_tone"):
        line += f" (tone: {memory['emotional_tone']})"
    if tags:
        line += f" (tags: {tags})"
    return line


class MemoryAssistant:
    """LLM-backed helpers for the elder, caregiver and clinician dashboards."""

    def __init__(
        self,
        store,
        api_key: Optional[str] = None,
        cache: Optional[ResponseCache] = None,
        client: Optional[Any] = None,
        model: str = DEFAULT_MODEL,
        base_url: Optional[str] = None,
        retries: int = DEFAULT_RETRIES,
        retry_delay: float = DEFAULT_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        now: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self.api_key = api_key
        self.cache = cache if cache is not None else ResponseCache()
        self.model = model
        self.base_url = base_url
        self.retries = retries
        self.retry_delay = retry_delay
        self._client = client
        self._sleep = sleep
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._inflight: Dict[str, asyncio.Future] = {}

    @property
    def ai_enabled(self) -> bool:
        return bool(self.api_key)

    def _get_client(self):
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    def _since_iso(self, days: int) -> str:
        return (self._now() - timedelta(days=days)).isoformat()

    def _today(self) -> str:
        return self._now().date().isoformat()

    def resolve_day(self, day: Optional[str] = None) -> str:
        """YYYY-MM-DD as given, or today (UTC) when missing or malformed"""
        if day and _DAY_FORMAT.match(day):
            return day
        return self._today()

    # ==================== PROVIDER CALLS ====================

    async def _complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: float = 0.5,
        max_tokens: int = 300,
        json_mode: bool = False
    ) -> str:
        client = self._get_client()
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        request = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        completion = await with_retry(
            lambda: client.chat.completions.create(**request),
            retries=self.retries,
            delay=self.retry_delay,
            sleep=self._sleep
        )
        content = (completion.choices[0].message.content or "").strip()
        if not content:
            raise ValueError("Empty completion from AI provider")
        return content

    async def _complete_json(self, prompt: str, system: Optional[str] = None, **kwargs) -> dict:
        raw = await self._complete(prompt, system=system, json_mode=True, **kwargs)
        return parse_json_object(raw)

    async def _cached(
        self,
        feature: str,
        key: str,
        producer: Callable[[], Awaitable[Tuple[Any, bool]]],
        fallback: Callable[[], Any]
    ) -> Any:
        """
        Serve key from the cache, join an identical in-flight request, or run
        producer. producer returns (value, cacheable); any exception it raises
        is logged and replaced by fallback().
        """
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"AI cache hit: {key}")
            return cached

        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            try:
                value, cacheable = await producer()
                if cacheable:
                    self.cache.set(key, value)
            except Exception as e:
                logger.warning(f"AI {feature} failed for {key}: {e}")
                value = fallback()
            if not future.done():
                future.set_result(value)
            return value
        finally:
            self._inflight.pop(key, None)
            if not future.done():
                future.cancel()

    # ==================== MOOD ====================

    async def infer_mood(self, elder_id: str) -> MoodInsight:
        """Infer the elder's mood from the last 7 days of memories and behavioral signals."""
        if not self.ai_enabled:
            return default_mood()
        return await self._cached(
            "mood",
            make_cache_key("mood", elder_id),
            lambda: self._infer_mood(elder_id),
            default_mood
        )

    async def _infer_mood(self, elder_id: str) -> Tuple[MoodInsight, bool]:
        since = self._since_iso(7)
        memories = await self.store.recent_memories(elder_id, limit=ANSWER_MEMORY_LIMIT, since_iso=since)
        signals = await self.store.behavioral_signals(elder_id, since)
        if not memories and not signals:
            return MoodInsight(explanation="Not enough recent activity to analyze"), False

        memory_lines = "\n".join(f"- {_describe_memory(m)}" for m in memories[:20]) or "- none"
        signal_lines = "\n".join(
            f"- {s.get('signal_type', 'unknown')} ({s.get('severity', 'low')}): {s.get('description', '')}"
            for s in signals[:20]
        ) or "- none"
        prompt = f"""Analyze the emotional state of an elderly person from their last 7 days of activity.

Recent memories:
{memory_lines}

Behavioral signals:
{signal_lines}

Return ONLY a JSON object:
{{
  "mood": "one word such as happy, calm, stable, anxious, sad, confused",
  "sentiment_score": number from -1 (very negative) to 1 (very positive),
  "explanation": "one or two sentences for the caregiver",
  "recommendations": ["2-3 short, practical caregiver actions"],
  "trend": "improving|stable|declining"
}}"""
        data = await self._complete_json(
            prompt,
            system="You are a compassionate geriatric care assistant. Never diagnose.",
            temperature=0.3,
            max_tokens=400
        )
        return MoodInsight.model_validate(data), True

    # ==================== HEALTH RISK ====================

    async def assess_health_risk(self, elder_id: str) -> HealthRiskAssessment:
        """Score near-term health risk (0-100) from recent health metrics and alerts."""
        if not self.ai_enabled:
            return default_health_risk()
        return await self._cached(
            "health_risk",
            make_cache_key("health_risk", elder_id),
            lambda: self._assess_health_risk(elder_id),
            default_health_risk
        )

    async def _assess_health_risk(self, elder_id: str) -> Tuple[HealthRiskAssessment, bool]:
        since = self._since_iso(30)
        metrics = await self.store.health_metrics(elder_id, since)
        alerts = await self.store.alerts(elder_id, since)
        if not metrics and not alerts:
            return default_health_risk(), False

        metric_lines = "\n".join(
            f"- {m.get('recorded_at', '')}: {m.get('metric_type', 'metric')} = {m.get('value')} {m.get('unit', '')}".rstrip()
            for m in metrics[:30]
        ) or "- none"
        alert_lines = "\n".join(
            f"- {a.get('created_at', '')}: [{a.get('severity', 'medium')}] {a.get('message') or a.get('description', '')}"
            for a in alerts[:20]
        ) or "- none"
        prompt = f"""Review recent health data for an elderly person and estimate near-term health risks.

Health metrics (last 30 days):
{metric_lines}

Alerts (last 30 days):
{alert_lines}

Return ONLY a JSON object:
{{
  "risk_score": integer 0-100,
  "risks": [{{"type": "fall|cardiac|infection|dehydration|cognitive|other", "probability": 0.0-1.0, "description": "short"}}],
  "preventive_measures": ["short, practical steps for caregivers"]
}}"""
        data = await self._complete_json(
            prompt,
            system="You are a clinical decision-support assistant. Be conservative and do not diagnose.",
            temperature=0.2,
            max_tokens=500
        )
        return HealthRiskAssessment.model_validate(data), True

    # ==================== FOLLOW-UP QUESTION ====================

    async def adaptive_question(self, memory: dict) -> str:
        """One warm follow-up question that invites the elder to say more about a memory."""
        raw_text = (memory.get("raw_text") or "").strip()
        if not self.ai_enabled or not raw_text:
            return FOLLOW_UP_FALLBACK
        subject = memory.get("id") or hashlib.sha1(raw_text.encode("utf-8")).hexdigest()[:16]
        return await self._cached(
            "follow_up",
            make_cache_key("follow_up", subject),
            lambda: self._adaptive_question(raw_text),
            lambda: FOLLOW_UP_FALLBACK
        )

    async def _adaptive_question(self, raw_text: str) -> Tuple[str, bool]:
        prompt = f"""An elderly person just shared this memory:
"{raw_text}"

Ask ONE short, gentle follow-up question (a single sentence) that helps them recall more detail.
Return only the question."""
        content = await self._complete(prompt, temperature=0.7, max_tokens=60)
        question = content.splitlines()[0].strip().strip('"').strip()
        if not question:
            raise ValueError("Empty follow-up question")
        return question, True

    # ==================== SUMMARIES ====================

    async def daily_summary(self, elder_id: str, day: Optional[str] = None) -> Tuple[str, int]:
        """Summarize one day's memories. Returns (summary, memories_count)."""
        day = self.resolve_day(day)
        return await self._cached(
            "daily_summary",
            make_cache_key("daily_summary", elder_id, day),
            lambda: self._daily_summary(elder_id, day),
            lambda: (SUMMARY_UNAVAILABLE, 0)
        )

    async def _daily_summary(self, elder_id: str, day: str) -> Tuple[Tuple[str, int], bool]:
        memories = await self.store.memories_between(
            elder_id, f"{day}T00:00:00+00:00", f"{day}T23:59:59.999999+00:00"
        )
        count = len(memories)
        if count == 0 or not self.ai_enabled:
            return (summary_from_count(count), count), False

        memory_list = "\n".join(f"{i + 1}. {_describe_memory(m)}" for i, m in enumerate(memories))
        prompt = f"""You are a memory assistant creating a daily summary for an elderly person.

Memories from today:
{memory_list}

Write a warm, simple 2-3 sentence summary of their day. Highlight the meaningful moments.
Return only the summary text."""
        try:
            summary = await self._complete(prompt, temperature=0.5, max_tokens=200)
        except Exception as e:
            logger.warning(f"AI daily summary failed for {elder_id} on {day}: {e}")
            return (summary_from_count(count), count), False
        return (summary, count), True

    async def weekly_recap(self, elder_id: str) -> str:
        return await self._cached(
            "weekly_recap",
            make_cache_key("weekly_recap", elder_id, self._today()),
            lambda: self._weekly_recap(elder_id),
            lambda: RECAP_UNAVAILABLE
        )

    async def _weekly_recap(self, elder_id: str) -> Tuple[str, bool]:
        memories = await self.store.recent_memories(elder_id, limit=RECAP_MEMORY_LIMIT)
        if len(memories) < RECAP_MIN_MEMORIES:
            return RECAP_STARTING, False
        if not self.ai_enabled:
            return recap_from_count(len(memories)), False

        feed = "\n".join(m.get("raw_text", "") for m in memories)
        prompt = f"""Create a "Weekly Life Recap" for an elderly person based on these memories:
{feed}

Tone: warm, celebratory, dignified. Address them as "you".
Length: 2-3 short sentences. Focus on positive highlights and emotional connection."""
        try:
            recap = await self._complete(prompt, temperature=0.5, max_tokens=150)
        except Exception as e:
            logger.warning(f"AI weekly recap failed for {elder_id}: {e}")
            return recap_from_count(len(memories)), False
        return recap, True

    # ==================== QUESTION ANSWERING ====================

    async def answer_question(self, question: str, elder_id: str) -> AnswerResponse:
        """Answer a free-form question from the elder's own memories."""
        try:
            memories = await self.store.recent_memories(elder_id, limit=ANSWER_MEMORY_LIMIT)
        except Exception as e:
            logger.warning(f"Could not load memories for {elder_id}: {e}")
            memories = []

        await self.track_question_activity(question, elder_id)

        if not memories:
            return AnswerResponse(answer=NO_MEMORIES_ANSWER, matched_memories=[])

        matched = match_memories_by_keyword(question, memories)
        if not self.ai_enabled:
            return keyword_answer(matched)

        # Only the answer text is cached; evidence is re-matched on every call
        normalized = " ".join(question.lower().split())
        answer = await self._cached(
            "answer",
            make_cache_key("answer", elder_id, normalized),
            lambda: self._answer_with_llm(question, memories),
            lambda: None
        )
        if answer is None:
            return keyword_answer(matched)
        return AnswerResponse(answer=answer, matched_memories=matched[:ANSWER_MATCHES_RETURNED])

    async def _answer_with_llm(
        self,
        question: str,
        memories: List[dict]
    ) -> Tuple[str, bool]:
        memory_context = "\n".join(
            f"Memory {i + 1} [{m.get('type', 'other')}]: {m.get('raw_text', '')}"
            for i, m in enumerate(memories[:ANSWER_PROMPT_MEMORIES])
        )
        prompt = f"""You are a warm, dignified memory assistant for an elderly person. Answer their question using ONLY the memories provided below.

Question: "{question}"

Memories:
{memory_context}

Guidelines:
- If the memories contain the answer, share it warmly and use names if available.
- If not, say something like "I don't remember us talking about that yet, but I'd love to hear the story!"
- Keep it to 1-2 short, simple sentences."""
        answer = await self._complete(prompt, temperature=0.5, max_tokens=200)
        return answer, True

    async def track_question_activity(self, question: str, elder_id: str) -> Optional[dict]:
        """Record a repeated_question signal when the elder keeps asking the same thing"""
        try:
            recent = await self.store.recent_questions(elder_id, limit=5)
            if len(recent) < 3:
                return None
            prefix = question.lower()[:10]
            similar = [q for q in recent if prefix in (q.get("question_text") or "").lower()]
            if len(similar) < 2:
                return None
            signal = BehavioralSignal(
                elder_id=elder_id,
                signal_type="repeated_question",
                severity="low",
                description=f'Elder asked a similar question multiple times recently: "{question}"',
                metadata={"question": question},
                created_at=self._now()
            ).model_dump()
            signal["created_at"] = signal["created_at"].isoformat()
            await self.store.insert_signal(signal)
            return signal
        except Exception as e:
            logger.warning(f"Question activity tracking failed for {elder_id}: {e}")
            return None

    # ==================== MEMORY INTELLIGENCE ====================

    async def extract_memory_intelligence(
        self,
        raw_text: str,
        memory_type: Optional[str] = None
    ) -> MemoryIntelligence:
        """Classify a new memory and pull tags, tone and structured details out of it."""
        if not self.ai_enabled or not (raw_text or "").strip():
            return naive_memory_intelligence(raw_text, memory_type)
        digest = hashlib.sha1(raw_text.encode("utf-8")).hexdigest()
        return await self._cached(
            "intelligence",
            make_cache_key("intelligence", digest),
            lambda: self._extract_memory_intelligence(raw_text),
            lambda: naive_memory_intelligence(raw_text, memory_type)
        )

    async def _extract_memory_intelligence(self, raw_text: str) -> Tuple[MemoryIntelligence, bool]:
        prompt = f"""Analyze this memory text from an elderly person:
"{raw_text}"

Return ONLY a JSON object:
{{
  "type": "story|person|event|medication|routine|preference|other",
  "emotional_tone": "happy|nostalgic|confused|sad|neutral",
  "confidence_score": 0.0 to 1.0 (how clear is the memory),
  "tags": ["3-5 keywords"],
  "structured": {{"people": [], "locations": [], "time": "if mentioned", "key_details": []}}
}}"""
        data = await self._complete_json(prompt, temperature=0.3, max_tokens=400)
        return MemoryIntelligence.model_validate(data), True
