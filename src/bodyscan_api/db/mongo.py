"""MongoDB connection handling for the scan service (Motor async driver)."""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


class MongoDB:
    """
    Process-wide Motor client.

    Opened in the app lifespan and closed on shutdown. Pipeline code never
    touches this class; it is handed a database (wrapped in a UnitOfWork)
    through dependency injection.
    """

    client: AsyncIOMotorClient | None = None
    db_name: str = "bodyscan_db"

    @classmethod
    def connect(cls, uri: str, db_name: str = "bodyscan_db", timeout_ms: int = 5000) -> None:
        """
        Open the client. Connection happens lazily on first operation.

        Args:
            uri: MongoDB connection URI
            db_name: Default database for `get_database`
            timeout_ms: Server selection timeout, so an unreachable cluster
                surfaces as a retryable error instead of hanging a stage
        """
        # tz_aware keeps stored timestamps comparable with utc_now()
        cls.client = AsyncIOMotorClient(
            uri,
            tz_aware=True,
            serverSelectionTimeoutMS=timeout_ms,
        )
        cls.db_name = db_name

    @classmethod
    def close(cls) -> None:
        if cls.client is not None:
            cls.client.close()
            cls.client = None

    @classmethod
    def get_database(cls, name: str | None = None) -> AsyncIOMotorDatabase:
        """
        Database handle for the scan collections.

        Raises:
            RuntimeError: If `connect` has not been called
        """
        if cls.client is None:
            raise RuntimeError("MongoDB not connected. Call MongoDB.connect() first.")
        return cls.client[name or cls.db_name]

    @classmethod
    async def ping(cls) -> bool:
        """Round-trip to the server for the health endpoint."""
        if cls.client is None:
            return False
        try:
            await cls.client.admin.command("ping")
        except PyMongoError as e:
            logger.warning(f"MongoDB ping failed: {e}")
            return False
        return True
