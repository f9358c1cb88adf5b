"""Read-only repository for day logs and user profiles."""

import logging

from motor.motor_asyncio import AsyncIOMotorCollection

from bodyscan_api.db.stores import DayContextStore
from bodyscan_api.models.scan import DayLog, UserProfile

logger = logging.getLogger(__name__)


def day_log_id(user_id: str, date: str) -> str:
    """Day logs are keyed by user and day."""
    return f"{user_id}_{date}"


class DayContextRepository(DayContextStore):
    """
    Lookups of the user's same-day nutrition/workout log and profile.

    Both collections are owned by the wider app; the pipeline never writes
    to them.
    """

    def __init__(
        self,
        day_logs: AsyncIOMotorCollection,
        users: AsyncIOMotorCollection,
    ):
        """
        Args:
            day_logs: `day_logs` collection
            users: `users` collection
        """
        self.day_logs = day_logs
        self.users = users

    async def get_day_log(self, user_id: str, date: str) -> DayLog | None:
        """
        Get day log for a specific date.

        Returns:
            DayLog or None when nothing was logged that day
        """
        doc = await self.day_logs.find_one({"_id": day_log_id(user_id, date)})
        if not doc:
            return None
        doc = dict(doc)
        doc.pop("_id", None)
        doc.setdefault("user_id", user_id)
        doc.setdefault("date", date)
        return DayLog.model_validate(doc)

    async def get_user_profile(self, user_id: str) -> UserProfile | None:
        """
        Get a user's fitness profile and privacy settings.

        Returns:
            UserProfile or None if the user has no profile document
        """
        doc = await self.users.find_one({"_id": user_id})
        if not doc:
            return None
        doc = dict(doc)
        doc.pop("_id", None)
        doc["user_id"] = user_id
        return UserProfile.model_validate(doc)
