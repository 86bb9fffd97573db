"""
User model: profiles, friendships, venue follows and the mood board.

Friendships live in one ``friendships`` collection. ``userId`` is the
sender, ``friendId`` the recipient and ``participants`` holds both, so
either side can be found with a single query.
"""
import logging
import re
from typing import Any, Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from helpers.geo import to_geopoint
from helpers.schemas import UserLocation, UserProfileCreate, UserProfileUpdate

from .activity_feed import ActivityFeed, Notifications
from .base import BaseModelStore, new_id, serialize_doc, serialize_docs, utcnow, validate_payload
from .counters import CounterMaintainer
from .errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)


def default_stats() -> Dict[str, int]:
    return {"eventsAttended": 0, "checkIns": 0, "reviews": 0, "followers": 0, "following": 0}


class UserModel(BaseModelStore):
    collection_name = "users"

    def __init__(self, db: Database, counters: Optional[CounterMaintainer] = None,
                 notifications: Optional[Notifications] = None,
                 activities: Optional[ActivityFeed] = None):
        super().__init__(db)
        self.counters = counters or CounterMaintainer(db)
        self.notifications = notifications or Notifications(db)
        self.activities = activities or ActivityFeed(db)

    # --- Profiles ---

    def create_user_profile(self, user_id: str, user_data: Any = None) -> str:
        """
        Write a fresh profile for ``user_id``, merging the payload over the defaults.

        An existing profile is replaced, stats included.
        """
        if not user_id:
            raise ValidationError("User ID is required")
        payload = validate_payload(UserProfileCreate, user_data if user_data is not None else {})
        now = utcnow()
        profile = {
            "_id": user_id,
            **payload.model_dump(),
            "location": {"geopoint": None, "address": ""},
            "stats": default_stats(),
            "venueId": None,
            "createdAt": now,
            "lastActive": now,
        }
        self.collection.replace_one({"_id": user_id}, profile, upsert=True)
        logger.info(f"Created profile for user {user_id}")
        return user_id

    def get_user_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self._get(user_id)

    def update_user_profile(self, user_id: str, user_data: Any) -> None:
        payload = validate_payload(UserProfileUpdate, user_data)
        update = {**payload.model_dump(exclude_none=True), "lastActive": utcnow()}
        if not self.collection.update_one({"_id": user_id}, {"$set": update}).matched_count:
            raise NotFoundError("User not found")

    def update_user_location(self, user_id: str, location: Any) -> None:
        payload = validate_payload(UserLocation, location)
        geopoint = None
        if payload.latitude is not None and payload.longitude is not None:
            geopoint = to_geopoint(payload.latitude, payload.longitude)
        update = {"location": {"address": payload.address, "geopoint": geopoint}, "lastActive": utcnow()}
        if not self.collection.update_one({"_id": user_id}, {"$set": update}).matched_count:
            raise NotFoundError("User not found")

    def user_exists(self, user_id: str) -> bool:
        return self.collection.count_documents({"_id": user_id}, limit=1) > 0

    def search_users(self, query: str, max_limit: int = 10) -> List[Dict[str, Any]]:
        """Case-insensitive substring match on displayName."""
        if not query or not query.strip():
            return []
        pattern = {"$regex": re.escape(query.strip()), "$options": "i"}
        return serialize_docs(self.collection.find({"displayName": pattern}).limit(max_limit))

    # --- Friendships ---

    def send_friend_request(self, user_id: str, friend_id: str) -> str:
        if user_id == friend_id:
            raise ValidationError("Cannot send a friend request to yourself")
        if not self.user_exists(friend_id):
            raise NotFoundError("User not found")

        pair = [user_id, friend_id]
        existing = self.db.friendships.find_one({"userId": {"$in": pair}, "friendId": {"$in": pair}})
        if existing:
            logger.info(f"Friendship between {user_id} and {friend_id} already exists ({existing.get('status')})")
            return existing["_id"]

        now = utcnow()
        friendship_id = new_id()
        self.db.friendships.insert_one({
            "_id": friendship_id,
            "userId": user_id,
            "friendId": friend_id,
            "participants": pair,
            "status": "pending",
            "initiatedBy": user_id,
            "createdAt": now,
            "updatedAt": now,
            "lastInteraction": now,
        })
        self.notifications.create_notification(
            friend_id, "friend_request", "New Friend Request", "You have a new friend request.",
            source_id=user_id, source_type="user",
        )
        logger.info(f"Friend request {friendship_id} sent from {user_id} to {friend_id}")
        return friendship_id

    def respond_to_friend_request(self, friendship_id: str, user_id: str, accept: bool) -> None:
        friendship = self.db.friendships.find_one({"_id": friendship_id})
        if friendship is None:
            raise NotFoundError("Friend request not found")
        if friendship.get("friendId") != user_id:
            raise PermissionDeniedError("Not authorized to respond to this friend request")
        if friendship.get("status") != "pending":
            raise ConflictError(f"Friend request already {friendship.get('status')}")

        status = "accepted" if accept else "declined"
        now = utcnow()
        self.db.friendships.update_one(
            {"_id": friendship_id}, {"$set": {"status": status, "updatedAt": now, "lastInteraction": now}}
        )

        sender_id = friendship["userId"]
        self.notifications.create_notification(
            sender_id, "friend_request_response",
            "Friend Request Accepted" if accept else "Friend Request Declined",
            f"Your friend request was {status}.",
            source_id=user_id, source_type="user",
        )

        if accept:
            self.counters.increment("users", user_id, "stats.following")
            self.counters.increment("users", sender_id, "stats.followers")
            self.activities.record_user_activity(user_id, "friend-connection", friendId=sender_id)
        logger.info(f"Friend request {friendship_id} {status} by {user_id}")

    def get_user_friends(self, user_id: str) -> List[Dict[str, Any]]:
        friend_ids = []
        for friendship in self.db.friendships.find({"userId": user_id, "status": "accepted"}):
            friend_ids.append(friendship["friendId"])
        for friendship in self.db.friendships.find({"friendId": user_id, "status": "accepted"}):
            friend_ids.append(friendship["userId"])
        return self._profiles(friend_ids)

    def _requests_with_profiles(self, query: Dict[str, Any], profile_field: str, key: str) -> List[Dict[str, Any]]:
        requests = serialize_docs(self.db.friendships.find(query))
        for request in requests:
            request[key] = self.get_user_profile(request[profile_field])
        return requests

    def get_pending_friend_requests(self, user_id: str) -> List[Dict[str, Any]]:
        """Requests awaiting ``user_id``'s answer, each with a ``sender`` profile."""
        return self._requests_with_profiles({"friendId": user_id, "status": "pending"}, "userId", "sender")

    def get_sent_friend_requests(self, user_id: str) -> List[Dict[str, Any]]:
        return self._requests_with_profiles({"userId": user_id, "status": "pending"}, "friendId", "receiver")

    # --- Follows ---

    def _follow_query(self, user_id: str, venue_id: str) -> Dict[str, Any]:
        return {"followerId": user_id, "followeeId": venue_id, "followeeType": "venue"}

    def follow_venue(self, user_id: str, venue_id: str) -> str:
        query = self._follow_query(user_id, venue_id)
        existing = self.db.followers.find_one(query)
        if existing:
            return existing["_id"]

        follow_id = new_id()
        try:
            self.db.followers.insert_one({
                **query,
                "_id": follow_id,
                "createdAt": utcnow(),
                "notificationsEnabled": True,
            })
        except DuplicateKeyError:
            return self.db.followers.find_one(query)["_id"]

        self.counters.increment("users", user_id, "stats.following")
        self.counters.increment("venues", venue_id, "followers")
        logger.info(f"User {user_id} followed venue {venue_id}")
        return follow_id

    def unfollow_venue(self, user_id: str, venue_id: str) -> None:
        removed = self.db.followers.delete_many(self._follow_query(user_id, venue_id)).deleted_count
        if not removed:
            return
        self.counters.decrement("users", user_id, "stats.following")
        self.counters.decrement("venues", venue_id, "followers")
        logger.info(f"User {user_id} unfollowed venue {venue_id}")

    def _followed(self, user_id: str, followee_type: str, collection: str) -> List[Dict[str, Any]]:
        followee_ids = [
            f["followeeId"]
            for f in self.db.followers.find({"followerId": user_id, "followeeType": followee_type})
        ]
        if not followee_ids:
            return []
        found = {d["_id"]: d for d in self.db[collection].find({"_id": {"$in": followee_ids}})}
        return [serialize_doc(found[fid]) for fid in followee_ids if fid in found]

    def get_user_followed_venues(self, user_id: str) -> List[Dict[str, Any]]:
        return self._followed(user_id, "venue", "venues")

    def get_user_followed_categories(self, user_id: str) -> List[Dict[str, Any]]:
        return self._followed(user_id, "category", "categories")

    # --- Mood board ---

    def get_user_mood_board(self, user_id: str) -> Dict[str, Any]:
        board = self.db.moodBoard.find_one({"_id": user_id})
        if board is None:
            return {"savedEvents": [], "collections": []}

        board = serialize_doc(board)
        saved = board.get("savedEvents") or []
        event_ids = [s.get("eventId") for s in saved]
        events = {e["_id"]: e for e in self.db.events.find({"_id": {"$in": event_ids}})}
        board["savedEvents"] = [
            {**s, "event": serialize_doc(events[s["eventId"]])} if s.get("eventId") in events else s
            for s in saved
        ]
        board.setdefault("collections", [])
        return board

    def save_event_to_mood_board(self, user_id: str, event_id: str, note: str = "") -> bool:
        """Returns False when the event was already on the board."""
        if self.db.events.count_documents({"_id": event_id}, limit=1) == 0:
            raise NotFoundError("Event not found")
        if self.db.moodBoard.count_documents({"_id": user_id, "savedEvents.eventId": event_id}, limit=1):
            return False
        self.db.moodBoard.update_one(
            {"_id": user_id},
            {
                "$push": {"savedEvents": {"eventId": event_id, "note": note, "savedAt": utcnow()}},
                "$setOnInsert": {"collections": []},
            },
            upsert=True,
        )
        return True

    def remove_event_from_mood_board(self, user_id: str, event_id: str) -> None:
        self.db.moodBoard.update_one({"_id": user_id}, {"$pull": {"savedEvents": {"eventId": event_id}}})
