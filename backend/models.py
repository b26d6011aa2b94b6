import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MEMORY_TYPES = {"story", "person", "event", "medication", "routine", "preference", "other"}
EMOTIONAL_TONES = {"happy", "nostalgic", "confused", "sad", "neutral"}
MOOD_TRENDS = {"improving", "stable", "declining"}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def clamp(value: Any, low: float, high: float, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return max(low, min(high, number))


def normalize_memory_type(value: Optional[str], fallback: str = "other") -> str:
    normalized = (value or "").strip().lower()
    return normalized if normalized in MEMORY_TYPES else fallback


def as_string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if item is not None and str(item).strip()]


# ==================== STORED RECORDS ====================

class Memory(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: f"memory_{uuid.uuid4().hex[:12]}")
    elder_id: str
    type: str = "other"
    raw_text: str
    tags: List[str] = []
    emotional_tone: Optional[str] = None
    confidence_score: Optional[float] = None
    structured_json: Dict[str, Any] = {}
    image_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class MemoryCreate(BaseModel):
    elder_id: str
    raw_text: str
    type: Optional[str] = None
    tags: List[str] = []
    image_url: Optional[str] = None


class Question(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: f"question_{uuid.uuid4().hex[:12]}")
    elder_id: str
    question_text: str
    answer_text: Optional[str] = None
    matched_memory_ids: List[str] = []
    created_at: datetime = Field(default_factory=utc_now)
    answered_at: Optional[datetime] = None


class QuestionCreate(BaseModel):
    elder_id: str
    question: str


class BehavioralSignal(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: f"signal_{uuid.uuid4().hex[:12]}")
    elder_id: str
    signal_type: str
    severity: str = "low"
    description: str
    metadata: Dict[str, Any] = {}
    created_at: datetime = Field(default_factory=utc_now)


class DailySummaryRequest(BaseModel):
    elder_id: str
    date: Optional[str] = None


# ==================== ASSISTANT RESPONSES ====================

class MoodInsight(BaseModel):
    model_config = ConfigDict(extra="ignore")
    mood: str = "stable"
    sentiment_score: float = 0.0
    explanation: str = "Analysis unavailable"
    recommendations: List[str] = []
    trend: str = "stable"

    @field_validator("mood", mode="before")
    @classmethod
    def _mood_text(cls, value):
        text = str(value or "").strip().lower()
        return text or "stable"

    @field_validator("sentiment_score", mode="before")
    @classmethod
    def _clamp_sentiment(cls, value):
        return clamp(value, -1.0, 1.0, 0.0)

    @field_validator("recommendations", mode="before")
    @classmethod
    def _recommendations(cls, value):
        return as_string_list(value)

    @field_validator("trend", mode="before")
    @classmethod
    def _trend(cls, value):
        text = str(value or "").strip().lower()
        return text if text in MOOD_TRENDS else "stable"


class RiskItem(BaseModel):
    model_config = ConfigDict(extra="ignore")
    type: str
    probability: float = 0.0
    description: str = ""

    @field_validator("probability", mode="before")
    @classmethod
    def _clamp_probability(cls, value):
        number = clamp(value, 0.0, 100.0, 0.0)
        # Providers answer in either 0-1 or 0-100
        return number / 100.0 if number > 1.0 else number


class HealthRiskAssessment(BaseModel):
    model_config = ConfigDict(extra="ignore")
    risk_score: int = 0
    risks: List[RiskItem] = []
    preventive_measures: List[str] = []

    @field_validator("risk_score", mode="before")
    @classmethod
    def _clamp_risk(cls, value):
        return int(round(clamp(value, 0.0, 100.0, 0.0)))

    @field_validator("risks", mode="before")
    @classmethod
    def _risks(cls, value):
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict) and item.get("type")]

    @field_validator("preventive_measures", mode="before")
    @classmethod
    def _measures(cls, value):
        return as_string_list(value)


class MemoryIntelligence(BaseModel):
    model_config = ConfigDict(extra="ignore")
    type: str = "other"
    tags: List[str] = []
    emotional_tone: str = "neutral"
    confidence_score: float = 0.5
    structured: Dict[str, Any] = {}

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, value):
        return normalize_memory_type(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _tags(cls, value):
        return [tag.lower() for tag in as_string_list(value)]

    @field_validator("emotional_tone", mode="before")
    @classmethod
    def _tone(cls, value):
        text = str(value or "").strip().lower()
        return text if text in EMOTIONAL_TONES else "neutral"

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _confidence(cls, value):
        return clamp(value, 0.0, 1.0, 0.5)

    @field_validator("structured", mode="before")
    @classmethod
    def _structured(cls, value):
        return value if isinstance(value, dict) else {}


class AnswerResponse(BaseModel):
    answer: str
    matched_memories: List[Dict[str, Any]] = []
