# foodday/core/db.py
from functools import lru_cache

from motor.motor_asyncio import AsyncIOMotorClient

from foodday.core.config import settings

@lru_cache
def get_client() -> AsyncIOMotorClient:
    # tz_aware keeps datetimes comparable with the in-memory store
    return AsyncIOMotorClient(settings.mongo_uri, uuidRepresentation="standard", tz_aware=True)

def get_db():
    return get_client()[settings.mongo_db]
