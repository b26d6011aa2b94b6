"""
MongoDB access for the assistant layer.

Timestamps are stored as ISO-8601 strings, so range filters compare strings.
"""
from datetime import datetime, timezone
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

NO_ID = {"_id": 0}


class MemoryStore:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    # ---- memories ----

    async def recent_memories(
        self,
        elder_id: str,
        limit: int = 50,
        since_iso: Optional[str] = None
    ) -> List[dict]:
        query = {"elder_id": elder_id}
        if since_iso:
            query["created_at"] = {"$gte": since_iso}
        return await self.db.memories.find(query, NO_ID).sort("created_at", -1).to_list(limit)

    async def memories_between(self, elder_id: str, start_iso: str, end_iso: str) -> List[dict]:
        return await self.db.memories.find(
            {"elder_id": elder_id, "created_at": {"$gte": start_iso, "$lte": end_iso}},
            NO_ID
        ).sort("created_at", 1).to_list(500)

    async def get_memory(self, memory_id: str) -> Optional[dict]:
        return await self.db.memories.find_one({"id": memory_id}, NO_ID)

    async def insert_memory(self, doc: dict) -> None:
        await self.db.memories.insert_one(doc)
        doc.pop("_id", None)

    # ---- questions ----

    async def recent_questions(self, elder_id: str, limit: int = 5) -> List[dict]:
        return await self.db.questions.find(
            {"elder_id": elder_id}, NO_ID
        ).sort("created_at", -1).to_list(limit)

    async def insert_question(self, doc: dict) -> None:
        await self.db.questions.insert_one(doc)
        doc.pop("_id", None)

    # ---- signals, health metrics, alerts ----

    async def behavioral_signals(self, elder_id: str, since_iso: str, limit: int = 50) -> List[dict]:
        return await self.db.behavioral_signals.find(
            {"elder_id": elder_id, "created_at": {"$gte": since_iso}}, NO_ID
        ).sort("created_at", -1).to_list(limit)

    async def insert_signal(self, doc: dict) -> None:
        await self.db.behavioral_signals.insert_one(doc)
        doc.pop("_id", None)

    async def health_metrics(self, elder_id: str, since_iso: str, limit: int = 50) -> List[dict]:
        return await self.db.health_metrics.find(
            {"elder_id": elder_id, "recorded_at": {"$gte": since_iso}}, NO_ID
        ).sort("recorded_at", -1).to_list(limit)

    async def alerts(self, elder_id: str, since_iso: str, limit: int = 20) -> List[dict]:
        return await self.db.alerts.find(
            {"elder_id": elder_id, "created_at": {"$gte": since_iso}}, NO_ID
        ).sort("created_at", -1).to_list(limit)

    # ---- summaries ----

    async def upsert_daily_summary(self, elder_id: str, day: str, summary_text: str) -> None:
        await self.db.daily_summaries.update_one(
            {"elder_id": elder_id, "date": day},
            {
                "$set": {
                    "summary_text": summary_text,
                    "updated_at": datetime.now(timezone.utc).isoformat()
                },
                "$setOnInsert": {"created_at": datetime.now(timezone.utc).isoformat()}
            },
            upsert=True
        )
