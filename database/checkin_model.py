"""
Event check-ins. One active check-in per (event, user).
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from .activity_feed import ActivityFeed
from .base import BaseModelStore, new_id, utcnow
from .counters import CounterMaintainer
from .errors import DuplicateError, NotFoundError

logger = logging.getLogger(__name__)


class CheckInModel(BaseModelStore):
    collection_name = "checkIns"

    def __init__(self, db: Database, counters: Optional[CounterMaintainer] = None,
                 activities: Optional[ActivityFeed] = None):
        super().__init__(db)
        self.counters = counters or CounterMaintainer(db)
        self.activities = activities or ActivityFeed(db)

    def check_in(self, event_id: str, user_id: str) -> str:
        event = self.db.events.find_one({"_id": event_id}, {"venueId": 1, "name": 1})
        if event is None:
            raise NotFoundError("Event not found")

        check_in_id = new_id()
        try:
            self.collection.insert_one({
                "_id": check_in_id,
                "eventId": event_id,
                "userId": user_id,
                "timestamp": utcnow(),
                "status": "active",
            })
        except DuplicateKeyError:
            raise DuplicateError("Already checked in to this event")

        # Check-ins count towards the event's attendance figure
        self.counters.increment("events", event_id, "attendeeCount")
        if event.get("venueId"):
            self.counters.increment("venues", event["venueId"], "checkInCount")
        self.counters.increment("users", user_id, "stats.checkIns")

        self.activities.record_user_activity(user_id, "check-in", eventId=event_id)
        logger.info(f"User {user_id} checked in to event {event_id}")
        return check_in_id

    def is_checked_in(self, event_id: str, user_id: str) -> bool:
        return self.collection.count_documents(
            {"eventId": event_id, "userId": user_id, "status": "active"}, limit=1
        ) > 0

    def get_check_in_count(self, event_id: str) -> int:
        return self.collection.count_documents({"eventId": event_id, "status": "active"})

    def get_checked_in_friends(self, event_id: str, user_id: str) -> List[Dict[str, Any]]:
        friend_ids = self.activities.accepted_friend_ids(user_id)
        if not friend_ids:
            return []
        checked_in = [
            c["userId"]
            for c in self.collection.find({"eventId": event_id, "userId": {"$in": friend_ids}, "status": "active"})
        ]
        return self._profiles(checked_in)
