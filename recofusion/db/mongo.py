# recofusion/db/mongo.py
import logging

import certifi
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from recofusion.core.config import get_settings

logger = logging.getLogger(__name__)

_client: AsyncIOMotorClient | None = None
_db: AsyncIOMotorDatabase | None = None


def get_client() -> AsyncIOMotorClient:
    assert _client is not None, "Mongo client not initialized"
    return _client


def get_db() -> AsyncIOMotorDatabase:
    assert _db is not None, "Mongo DB not initialized"
    return _db


async def connect():
    """
    Create the Motor client with an explicit CA bundle.
    A failed startup ping is not fatal: the client stays lazy and the first
    real query retries the connection.
    """
    global _client, _db
    settings = get_settings()

    tls_opts = {}
    if settings.MONGO_URI.startswith("mongodb+srv://"):
        # Atlas: SRV implies TLS; containers often lack a CA store
        tls_opts = {"tls": True, "tlsCAFile": certifi.where()}

    _client = AsyncIOMotorClient(
        settings.MONGO_URI,
        uuidRepresentation="standard",
        serverSelectionTimeoutMS=6000,
        connectTimeoutMS=6000,
        **tls_opts,
    )
    _db = _client[settings.MONGO_DB]
    try:
        await _client.admin.command("ping")
        logger.info("Mongo connected (ping ok)")
    except Exception as e:
        logger.warning(f"Mongo ping at startup failed, will connect lazily: {e}")


async def disconnect():
    global _client, _db
    if _client:
        _client.close()
    _client = None
    _db = None
