# hirehub/db/mongo.py
import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from hirehub.core.config import settings

logger = logging.getLogger(__name__)

CONVERSATIONS_COLLECTION = "conversations"
PARTICIPANTS_COLLECTION = "conversation_participants"
MESSAGES_COLLECTION = "messages"
EVALUATIONS_COLLECTION = "resume_evaluations"
COUNTERS_COLLECTION = "counters"

_mongo_client: Optional[AsyncIOMotorClient] = None


def get_mongo_client() -> AsyncIOMotorClient:
    """
    Returns a cached Motor client.
    """
    global _mongo_client
    if _mongo_client is None:
        _mongo_client = AsyncIOMotorClient(settings.MONGODB_URI)
    return _mongo_client


def get_db() -> AsyncIOMotorDatabase:
    return get_mongo_client()[settings.MONGODB_DB]


async def ensure_indexes(db: Optional[AsyncIOMotorDatabase] = None) -> None:
    db = db if db is not None else get_db()
    # at most one direct conversation per unordered user pair
    await db[CONVERSATIONS_COLLECTION].create_index(
        "direct_key", unique=True, partialFilterExpression={"direct_key": {"$type": "string"}}
    )
    await db[PARTICIPANTS_COLLECTION].create_index(
        [("conversation_id", ASCENDING), ("user_id", ASCENDING)], unique=True
    )
    await db[PARTICIPANTS_COLLECTION].create_index("user_id")
    await db[MESSAGES_COLLECTION].create_index([("conversation_id", ASCENDING), ("seq", DESCENDING)])
    await db[EVALUATIONS_COLLECTION].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    logger.info("Mongo indexes ensured on %s", db.name)


def close_db() -> None:
    global _mongo_client
    if _mongo_client is not None:
        _mongo_client.close()
        _mongo_client = None
