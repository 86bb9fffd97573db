"""
Activity records and notifications.

Venue activities feed the venue dashboard (event created/updated/deleted,
RSVPs). User activities feed the social feed (check-ins, RSVPs, new
friendships). Notifications are per-user inbox items.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING
from pymongo.database import Database

from .base import new_id, serialize_doc, serialize_docs, utcnow
from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

FEED_TYPES = ("my", "friends", "public")


class ActivityFeed:
    def __init__(self, db: Database, default_limit: int = 20):
        self.db = db
        self.default_limit = default_limit

    def record_venue_activity(self, venue_id: str, activity_type: str, message: str,
                              entity_id: Optional[str] = None, entity_type: Optional[str] = None,
                              user_id: Optional[str] = None) -> str:
        activity = {
            "_id": new_id(),
            "venueId": venue_id,
            "type": activity_type,
            "message": message,
            "timestamp": utcnow(),
            "entityId": entity_id,
            "entityType": entity_type,
        }
        if user_id:
            activity["userId"] = user_id
        self.db.activities.insert_one(activity)
        logger.debug(f"Venue activity '{activity_type}' recorded for venue {venue_id}")
        return activity["_id"]

    def record_user_activity(self, user_id: str, activity_type: str, visibility: str = "public",
                             **related: Any) -> str:
        """``related`` carries ids such as eventId or friendId."""
        activity = {
            "_id": new_id(),
            "userId": user_id,
            "type": activity_type,
            "visibility": visibility,
            "timestamp": utcnow(),
            **related,
        }
        self.db.activities.insert_one(activity)
        return activity["_id"]

    def get_venue_activities(self, venue_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        cursor = (self.db.activities.find({"venueId": venue_id})
                  .sort("timestamp", DESCENDING).limit(limit or self.default_limit))
        return serialize_docs(cursor)

    def accepted_friend_ids(self, user_id: str) -> List[str]:
        friend_ids = []
        for friendship in self.db.friendships.find({"participants": user_id, "status": "accepted"}):
            friend_ids.extend(p for p in friendship.get("participants", []) if p != user_id)
        return friend_ids

    def get_feed(self, user_id: str, feed_type: str = "friends", limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Newest-first activities for a user's feed.

        ``my``: the user's own activities. ``friends``: public activities of
        accepted friends and the user. ``public``: every public activity.
        Each item is joined with its user profile and related event/friend.
        """
        if feed_type not in FEED_TYPES:
            raise ValidationError(f"Unknown feed type '{feed_type}'")

        if feed_type == "my":
            query: Dict[str, Any] = {"userId": user_id}
        elif feed_type == "friends":
            query = {"userId": {"$in": self.accepted_friend_ids(user_id) + [user_id]},
                     "visibility": "public"}
        else:
            query = {"visibility": "public"}

        activities = serialize_docs(
            self.db.activities.find(query).sort("timestamp", DESCENDING).limit(limit or self.default_limit)
        )
        return [self._hydrate(activity) for activity in activities]

    def _hydrate(self, activity: Dict[str, Any]) -> Dict[str, Any]:
        activity["user"] = serialize_doc(self.db.users.find_one({"_id": activity.get("userId")}))
        related = None
        if activity.get("eventId"):
            event = serialize_doc(self.db.events.find_one({"_id": activity["eventId"]}))
            if event:
                related = {"event": event}
        elif activity.get("friendId"):
            friend = serialize_doc(self.db.users.find_one({"_id": activity["friendId"]}))
            if friend:
                related = {"friend": friend}
        activity["related"] = related
        return activity


class Notifications:
    def __init__(self, db: Database):
        self.db = db

    def create_notification(self, user_id: str, notification_type: str, title: str, message: str,
                            source_id: Optional[str] = None, source_type: Optional[str] = None) -> str:
        notification = {
            "_id": new_id(),
            "userId": user_id,
            "type": notification_type,
            "title": title,
            "message": message,
            "sourceId": source_id,
            "sourceType": source_type,
            "read": False,
            "createdAt": utcnow(),
            "expiresAt": None,
        }
        self.db.notifications.insert_one(notification)
        return notification["_id"]

    def get_notifications(self, user_id: str, unread_only: bool = False, limit: int = 50) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"userId": user_id}
        if unread_only:
            query["read"] = False
        return serialize_docs(self.db.notifications.find(query).sort("createdAt", DESCENDING).limit(limit))

    def mark_notification_read(self, notification_id: str, user_id: str) -> None:
        result = self.db.notifications.update_one(
            {"_id": notification_id, "userId": user_id}, {"$set": {"read": True}}
        )
        if not result.matched_count:
            raise NotFoundError("Notification not found")
