import logging
import asyncio
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
import certifi
from core.config import settings

logger = logging.getLogger(__name__)

_mongo_client: Optional[AsyncIOMotorClient] = None
_mongo_db: Optional[AsyncIOMotorDatabase] = None

# Collections whose documents expire through a TTL index on `expires_at`
TTL_COLLECTIONS = ("rate_limits", "verify_rate_limits", "otp_records", "consumed_otp_tokens")


def get_mongo_db() -> Optional[AsyncIOMotorDatabase]:
    global _mongo_client, _mongo_db
    if not settings.USE_MONGO:
        return None
    if _mongo_db is not None:
        return _mongo_db
    if not settings.MONGO_URI:
        logger.warning("USE_MONGO=true but MONGO_URI is not set")
        return None
    client_kwargs = {
        "serverSelectionTimeoutMS": 30000,
        "connectTimeoutMS": 20000,
        "socketTimeoutMS": 20000,
    }
    # Atlas / SRV endpoints need TLS with an explicit CA bundle
    if "mongodb.net" in settings.MONGO_URI or settings.MONGO_URI.startswith("mongodb+srv://"):
        client_kwargs.update({
            "tls": True,
            "tlsCAFile": certifi.where(),
            "retryWrites": True,
        })
    _mongo_client = AsyncIOMotorClient(settings.MONGO_URI, **client_kwargs)
    _mongo_db = _mongo_client[settings.MONGO_DB]
    return _mongo_db


async def init_mongo_indexes(db: Optional[AsyncIOMotorDatabase] = None, attempts: int = 5) -> bool:
    db = db if db is not None else get_mongo_db()
    if db is None:
        return False
    # Retry ping and index creation to allow primary election / networking delays
    for attempt in range(1, attempts + 1):
        try:
            await db.command({"ping": 1})
            for name in TTL_COLLECTIONS:
                await db[name].create_index("expires_at", expireAfterSeconds=0, name=f"ttl_{name}")
            await db.otp_records.create_index("identifier", name="i_otp_identifier")
            return True
        except Exception as e:
            wait_s = min(2 ** attempt, 15)
            logger.warning(f"Mongo not ready (attempt {attempt}): {e}; retrying in {wait_s}s")
            await asyncio.sleep(wait_s)
    logger.error("Mongo index initialization failed after retries")
    return False


def close_mongo_client() -> None:
    global _mongo_client, _mongo_db
    if _mongo_client is not None:
        _mongo_client.close()
    _mongo_client = None
    _mongo_db = None
