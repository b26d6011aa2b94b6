from fastapi import FastAPI, APIRouter, HTTPException, Depends
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
import os
import logging
from pathlib import Path
from typing import List, Optional
from datetime import datetime, timezone

from ai_assist import DEFAULT_MODEL, MemoryAssistant, resolve_api_key
from ai_cache import ResponseCache
from datastore import MemoryStore
from models import (
    DailySummaryRequest,
    Memory,
    MemoryCreate,
    Question,
    QuestionCreate,
    normalize_memory_type,
)

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# MongoDB connection
mongo_url = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
client = AsyncIOMotorClient(mongo_url)
db = client[os.environ.get('DB_NAME', 'memory_friend')]

store = MemoryStore(db)

# AI assistant (no key means every feature answers with its fallback)
assistant = MemoryAssistant(
    store,
    api_key=resolve_api_key(),
    cache=ResponseCache(
        ttl_seconds=float(os.environ.get("AI_CACHE_TTL_SECONDS", "300")),
        max_entries=int(os.environ.get("AI_CACHE_MAX_ENTRIES", "100"))
    ),
    model=os.environ.get("AI_MODEL", DEFAULT_MODEL),
    base_url=os.environ.get("AI_BASE_URL") or None,
    retries=int(os.environ.get("AI_MAX_RETRIES", "2")),
    retry_delay=float(os.environ.get("AI_RETRY_DELAY_SECONDS", "1.0"))
)

# Create the main app without a prefix
app = FastAPI()

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")


def get_store() -> MemoryStore:
    return store


def get_assistant() -> MemoryAssistant:
    return assistant


def serialize_timestamps(doc: dict) -> dict:
    for field in ("created_at", "updated_at", "answered_at"):
        if isinstance(doc.get(field), datetime):
            doc[field] = doc[field].isoformat()
    return doc


def require_text(value: Optional[str], field: str) -> str:
    text = (value or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail=f"Missing required field: {field}")
    return text

# ==================== MEMORIES ====================

@api_router.post("/memories", response_model=dict)
async def create_memory(
    payload: MemoryCreate,
    store: MemoryStore = Depends(get_store),
    assistant: MemoryAssistant = Depends(get_assistant)
):
    """Store a memory, enriched with AI-extracted type, tone and tags"""
    elder_id = require_text(payload.elder_id, "elder_id")
    raw_text = require_text(payload.raw_text, "raw_text")

    intelligence = await assistant.extract_memory_intelligence(raw_text, payload.type)
    tags = []
    for tag in list(payload.tags) + intelligence.tags:
        tag = tag.strip().lower()
        if tag and tag not in tags:
            tags.append(tag)

    memory = Memory(
        elder_id=elder_id,
        raw_text=raw_text,
        type=normalize_memory_type(payload.type, intelligence.type) if payload.type else intelligence.type,
        tags=tags,
        emotional_tone=intelligence.emotional_tone,
        confidence_score=intelligence.confidence_score,
        structured_json=intelligence.structured,
        image_url=payload.image_url
    )
    doc = serialize_timestamps(memory.model_dump())
    try:
        await store.insert_memory(doc)
    except Exception as e:
        logger.error(f"Failed to store memory for {elder_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to store memory")
    return doc

@api_router.get("/memories", response_model=List[dict])
async def get_memories(
    elder_id: str,
    limit: int = 50,
    store: MemoryStore = Depends(get_store)
):
    safe_limit = max(1, min(limit, 200))
    return await store.recent_memories(elder_id, limit=safe_limit)

@api_router.get("/memories/{memory_id}/follow-up", response_model=dict)
async def get_memory_follow_up(
    memory_id: str,
    store: MemoryStore = Depends(get_store),
    assistant: MemoryAssistant = Depends(get_assistant)
):
    memory = await store.get_memory(memory_id)
    if not memory:
        raise HTTPException(status_code=404, detail="Memory not found")
    question = await assistant.adaptive_question(memory)
    return {"memory_id": memory_id, "question": question}

# ==================== QUESTIONS ====================

@api_router.post("/questions", response_model=dict)
async def ask_question(
    payload: QuestionCreate,
    store: MemoryStore = Depends(get_store),
    assistant: MemoryAssistant = Depends(get_assistant)
):
    """Answer an elder's question from their memories and keep it in the question log"""
    elder_id = require_text(payload.elder_id, "elder_id")
    question_text = require_text(payload.question, "question")

    result = await assistant.answer_question(question_text, elder_id)

    question = Question(
        elder_id=elder_id,
        question_text=question_text,
        answer_text=result.answer,
        matched_memory_ids=[m["id"] for m in result.matched_memories if m.get("id")],
        answered_at=datetime.now(timezone.utc)
    )
    try:
        await store.insert_question(serialize_timestamps(question.model_dump()))
    except Exception as e:
        logger.warning(f"Failed to log question for {elder_id}: {e}")

    return {"answer": result.answer, "matched_memories": result.matched_memories}

@api_router.get("/questions", response_model=List[dict])
async def get_questions(
    elder_id: str,
    limit: int = 20,
    store: MemoryStore = Depends(get_store)
):
    safe_limit = max(1, min(limit, 100))
    return await store.recent_questions(elder_id, limit=safe_limit)

# ==================== SUMMARIES & INSIGHTS ====================

@api_router.post("/summaries/daily", response_model=dict)
async def create_daily_summary(
    payload: DailySummaryRequest,
    store: MemoryStore = Depends(get_store),
    assistant: MemoryAssistant = Depends(get_assistant)
):
    elder_id = require_text(payload.elder_id, "elder_id")
    day = assistant.resolve_day(payload.date)
    summary, count = await assistant.daily_summary(elder_id, day)
    if count:
        try:
            await store.upsert_daily_summary(elder_id, day, summary)
        except Exception as e:
            logger.warning(f"Failed to save daily summary for {elder_id} on {day}: {e}")
    return {"summary": summary, "memories_count": count, "date": day}

@api_router.get("/insights/{elder_id}/mood", response_model=dict)
async def get_mood_insight(elder_id: str, assistant: MemoryAssistant = Depends(get_assistant)):
    insight = await assistant.infer_mood(elder_id)
    return insight.model_dump()

@api_router.get("/insights/{elder_id}/health-risk", response_model=dict)
async def get_health_risk(elder_id: str, assistant: MemoryAssistant = Depends(get_assistant)):
    assessment = await assistant.assess_health_risk(elder_id)
    return assessment.model_dump()

@api_router.get("/insights/{elder_id}/weekly-recap", response_model=dict)
async def get_weekly_recap(elder_id: str, assistant: MemoryAssistant = Depends(get_assistant)):
    recap = await assistant.weekly_recap(elder_id)
    return {"elder_id": elder_id, "recap": recap}

# ==================== HEALTH ====================

@api_router.get("/")
async def root():
    return {"message": "MemoryFriend API"}

@api_router.get("/health")
async def health(assistant: MemoryAssistant = Depends(get_assistant)):
    return {"ok": True, "ai_enabled": assistant.ai_enabled}

# Include the router in the main app
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()
