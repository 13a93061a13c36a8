"""
Database connection - MongoDB async (Motor).

The client is created on first use so importing the package never needs a
running database.
"""

from motor.motor_asyncio import AsyncIOMotorClient

from papergrader.config import MONGO_URL, DB_NAME

_client = None


def get_client() -> AsyncIOMotorClient:
    global _client
    if _client is None:
        _client = AsyncIOMotorClient(MONGO_URL)
    return _client


def get_db():
    """Return the application database handle."""
    return get_client()[DB_NAME]
