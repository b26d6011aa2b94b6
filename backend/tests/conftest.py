"""Shared fakes for the assistant test suite: clock, datastore and chat client."""
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import List, Optional

import pytest

from ai_assist import MemoryAssistant
from ai_cache import ResponseCache


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StatusError(Exception):
    def __init__(self, status_code: int, message: str = "provider error"):
        super().__init__(message)
        self.status_code = status_code


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def completion(content: str):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class FakeCompletions:
    """Replays scripted replies; an Exception in the script is raised instead."""

    def __init__(self, replies: Optional[list] = None):
        self.replies = list(replies or [])
        self.calls: List[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0) if len(self.replies) > 1 else (self.replies[0] if self.replies else "")
        if isinstance(reply, Exception):
            raise reply
        return completion(reply)


class FakeChatClient:
    def __init__(self, replies: Optional[list] = None):
        self.completions = FakeCompletions(replies)
        self.chat = SimpleNamespace(completions=self.completions)

    @property
    def calls(self) -> List[dict]:
        return self.completions.calls


class FakeStore:
    """In-memory stand-in for MemoryStore."""

    def __init__(self, memories=None, signals=None, metrics=None, alerts=None, questions=None):
        self.memories = list(memories or [])
        self.signals = list(signals or [])
        self.metrics = list(metrics or [])
        self.alert_docs = list(alerts or [])
        self.questions = list(questions or [])
        self.summaries = {}
        self.fail_reads = False
        self.reads = 0

    def _read(self):
        self.reads += 1
        if self.fail_reads:
            raise RuntimeError("datastore unavailable")

    async def recent_memories(self, elder_id, limit=50, since_iso=None):
        self._read()
        docs = [m for m in self.memories if m["elder_id"] == elder_id]
        if since_iso:
            docs = [m for m in docs if m["created_at"] >= since_iso]
        return sorted(docs, key=lambda m: m["created_at"], reverse=True)[:limit]

    async def memories_between(self, elder_id, start_iso, end_iso):
        self._read()
        docs = [
            m for m in self.memories
            if m["elder_id"] == elder_id and start_iso <= m["created_at"] <= end_iso
        ]
        return sorted(docs, key=lambda m: m["created_at"])

    async def get_memory(self, memory_id):
        self._read()
        return next((m for m in self.memories if m.get("id") == memory_id), None)

    async def insert_memory(self, doc):
        self.memories.append(doc)

    async def recent_questions(self, elder_id, limit=5):
        self._read()
        docs = [q for q in self.questions if q["elder_id"] == elder_id]
        return sorted(docs, key=lambda q: q["created_at"], reverse=True)[:limit]

    async def insert_question(self, doc):
        self.questions.append(doc)

    async def behavioral_signals(self, elder_id, since_iso, limit=50):
        self._read()
        return [s for s in self.signals if s["elder_id"] == elder_id][:limit]

    async def insert_signal(self, doc):
        self.signals.append(doc)

    async def health_metrics(self, elder_id, since_iso, limit=50):
        self._read()
        return [m for m in self.metrics if m["elder_id"] == elder_id][:limit]

    async def alerts(self, elder_id, since_iso, limit=20):
        self._read()
        return [a for a in self.alert_docs if a["elder_id"] == elder_id][:limit]

    async def upsert_daily_summary(self, elder_id, day, summary_text):
        self.summaries[(elder_id, day)] = summary_text


FIXED_NOW = datetime(2026, 10, 19, 15, 30, tzinfo=timezone.utc)


def make_memory(memory_id, raw_text, tags=None, created_at="2026-10-19T09:00:00+00:00",
                elder_id="elder_1", memory_type="story"):
    return {
        "id": memory_id,
        "elder_id": elder_id,
        "type": memory_type,
        "raw_text": raw_text,
        "tags": tags or [],
        "created_at": created_at,
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def lake_memories():
    return [
        make_memory("memory_lake", "Went to the lake with grandson Tommy", ["family"]),
        make_memory("memory_meds", "Took medication at noon", ["health"],
                    created_at="2026-10-19T12:00:00+00:00"),
    ]


@pytest.fixture
def make_assistant(recording_sleep):
    def _make(store, replies=None, api_key="test-key", cache=None):
        chat = FakeChatClient(replies)
        assistant = MemoryAssistant(
            store,
            api_key=api_key,
            cache=cache if cache is not None else ResponseCache(),
            client=chat,
            sleep=recording_sleep,
            now=lambda: FIXED_NOW
        )
        return assistant, chat
    return _make
