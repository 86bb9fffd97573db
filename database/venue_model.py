"""
Venue model: CRUD, nearby/search/featured listings, reviews and followers.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import settings
from helpers.geo import with_geopoint
from helpers.schemas import ReviewCreate, VenueCreate, VenueUpdate
from helpers.text import any_contains_text, contains_text, slugify

from .activity_feed import Notifications
from .base import BaseModelStore, new_id, serialize_docs, utcnow, validate_payload
from .counters import CounterMaintainer, empty_ratings
from .errors import ConflictError, DuplicateError, HappenError, NotFoundError, PermissionDeniedError, ValidationError
from .event_model import random_image_name
from .nearby import filter_nearby, parse_center
from .storage import BlobStorage

logger = logging.getLogger(__name__)

REVIEW_SORTS = {"recent": "createdAt", "helpful": "helpful"}

# Fields copied from an update payload only when provided
UPDATABLE_FIELDS = ("name", "description", "categories", "contact", "hoursOfOperation", "amenities", "settings",
                    "coverImage", "status")


class VenueModel(BaseModelStore):
    collection_name = "venues"

    def __init__(self, db: Database, storage: Optional[BlobStorage] = None,
                 counters: Optional[CounterMaintainer] = None,
                 notifications: Optional[Notifications] = None):
        super().__init__(db)
        self.storage = storage
        self.counters = counters or CounterMaintainer(db)
        self.notifications = notifications or Notifications(db)
        self.query_settings = settings.queries

    def _adjust_category_counts(self, categories: Sequence[str], delta: int) -> None:
        # Only existing category documents are counted; unknown names are ignored
        for category_name in categories:
            self.counters.adjust_matching("categories", {"name": category_name}, "venueCount", delta)

    # --- CRUD ---

    def create_venue(self, venue_data: Any, user_id: str) -> str:
        if not user_id:
            raise ValidationError("User ID is required to create a venue")
        payload = validate_payload(VenueCreate, venue_data)
        data = payload.model_dump(exclude_none=True)

        now = utcnow()
        venue_id = new_id()
        new_venue = {
            **data,
            "_id": venue_id,
            "slug": slugify(payload.name),
            "ownerId": user_id,
            "location": with_geopoint(data.get("location")),
            "createdAt": now,
            "updatedAt": now,
            "eventCount": 0,
            "checkInCount": 0,
            "followers": 0,
            "ratings": empty_ratings(),
            "verified": False,
            "featured": False,
        }
        self.collection.insert_one(new_venue)
        logger.info(f"Created venue {venue_id} '{payload.name}' for user {user_id}")

        self._adjust_category_counts(payload.categories, 1)

        owner = self.db.users.find_one({"_id": user_id}, {"isVenueAccount": 1})
        if owner and owner.get("isVenueAccount"):
            self.db.users.update_one({"_id": user_id}, {"$set": {"venueId": venue_id}})
            logger.info(f"Linked venue {venue_id} to venue account {user_id}")

        return venue_id

    def get_venue(self, venue_id: str) -> Optional[Dict[str, Any]]:
        return self._get(venue_id)

    def get_venue_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        return self._get_by_slug(slug)

    def check_owner(self, venue_id: str, user_id: str) -> Dict[str, Any]:
        venue = self._get_or_raise(venue_id, "Venue")
        if not venue.get("ownerId") or venue["ownerId"] != user_id:
            raise PermissionDeniedError("Only the venue owner can modify this venue")
        return venue

    @staticmethod
    def _resolve_owner(payload: VenueUpdate, current_owner: Optional[str]) -> Optional[str]:
        if payload.userId == current_owner or payload.ownerId == current_owner:
            return current_owner
        if payload.userId:
            logger.info(f"Transferring venue ownership to {payload.userId}")
            return payload.userId
        if payload.ownerId:
            logger.info(f"Setting explicit venue owner {payload.ownerId}")
            return payload.ownerId
        return current_owner

    def update_venue(self, venue_id: str, venue_data: Any, user_id: Optional[str] = None) -> None:
        """
        Apply a partial venue update. With ``user_id`` the caller must be the
        current owner, which is also what allows handing the venue to someone
        else through ``userId`` or ``ownerId``.
        """
        payload = validate_payload(VenueUpdate, venue_data)
        if user_id is None:
            current = self._get_or_raise(venue_id, "Venue")
        else:
            current = self.check_owner(venue_id, user_id)

        if not payload.userId and not current.get("ownerId"):
            raise ValidationError("Venue has no owner defined")

        update: Dict[str, Any] = {"ownerId": self._resolve_owner(payload, current.get("ownerId"))}
        provided = payload.model_dump(exclude_none=True)
        for field in UPDATABLE_FIELDS:
            if field in provided:
                update[field] = provided[field]
        if "location" in provided:
            update["location"] = with_geopoint(provided["location"], current.get("location"))

        renamed = payload.name is not None and payload.name != current.get("name")
        update["slug"] = slugify(payload.name) if renamed else current.get("slug")
        update["updatedAt"] = utcnow()

        self.collection.update_one({"_id": venue_id}, {"$set": update})
        logger.info(f"Updated venue {venue_id}")

        if payload.categories is not None and payload.categories != current.get("categories"):
            old_categories = set(current.get("categories") or [])
            new_categories = set(payload.categories)
            self._adjust_category_counts(sorted(old_categories - new_categories), -1)
            self._adjust_category_counts(sorted(new_categories - old_categories), 1)

        if renamed:
            result = self.db.events.update_many({"venueId": venue_id}, {"$set": {"venueName": payload.name}})
            logger.info(f"Renamed venue on {result.modified_count} event(s)")

    def delete_venue(self, venue_id: str, user_id: Optional[str] = None) -> None:
        venue = self._get_or_raise(venue_id, "Venue") if user_id is None else self.check_owner(venue_id, user_id)

        if self.db.events.count_documents({"venueId": venue_id}, limit=1):
            raise ConflictError("Cannot delete venue with associated events")

        self.collection.delete_one({"_id": venue_id})
        self._adjust_category_counts(venue.get("categories") or [], -1)

        reviews = self.db.reviews.delete_many({"targetId": venue_id, "targetType": "venue"}).deleted_count
        followers = self.db.followers.delete_many({"followeeId": venue_id, "followeeType": "venue"}).deleted_count
        self.db.users.update_many({"venueId": venue_id}, {"$set": {"venueId": None, "isVenueAccount": False}})
        logger.info(f"Deleted venue {venue_id} with {reviews} review(s) and {followers} follower(s)")

        if self.storage is not None:
            try:
                self.storage.delete_prefix(f"venues/{venue_id}/")
            except (HappenError, PyMongoError) as e:
                logger.error(f"Error deleting venue images for {venue_id}: {e}")

    # --- Listings ---

    def get_nearby_venues(self, location: Optional[Dict[str, Any]], distance: float = 10, max_limit: int = 10,
                          categories: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        center = parse_center(location)
        candidates = serialize_docs(
            self.collection.find({"status": "active"}).limit(self.query_settings.nearby_venues_batch)
        )
        return filter_nearby(candidates, center, distance, max_limit, categories=categories)

    def get_featured_venues(self, max_limit: int = 6) -> List[Dict[str, Any]]:
        return serialize_docs(self.collection.find({"featured": True, "status": "active"}).limit(max_limit))

    def search_venues(self, query: str, max_limit: int = 20) -> List[Dict[str, Any]]:
        if not query or not query.strip():
            return []
        needle = query.strip()
        candidates = serialize_docs(
            self.collection.find({"status": "active"}).limit(self.query_settings.search_batch)
        )
        matches = [
            venue for venue in candidates
            if contains_text(needle, venue.get("name"), venue.get("description"),
                             (venue.get("location") or {}).get("address"))
            or any_contains_text(needle, venue.get("categories"))
        ]
        return matches[:max_limit]

    def get_venues_by_category(self, category: str, max_limit: int = 20) -> List[Dict[str, Any]]:
        return serialize_docs(self.collection.find({"categories": category, "status": "active"}).limit(max_limit))

    # --- Reviews ---

    def submit_venue_review(self, venue_id: str, user_id: str, review_data: Any) -> str:
        review = validate_payload(ReviewCreate, review_data if review_data is not None else {})
        venue = self._get_or_raise(venue_id, "Venue")
        user = self.db.users.find_one({"_id": user_id})
        if user is None:
            raise NotFoundError("User not found")

        review_filter = {"userId": user_id, "targetId": venue_id, "targetType": "venue"}
        if self.db.reviews.count_documents(review_filter, limit=1):
            raise DuplicateError("You have already reviewed this venue")

        now = utcnow()
        review_id = new_id()
        try:
            self.db.reviews.insert_one({
                **review_filter,
                "_id": review_id,
                "userName": user.get("displayName", ""),
                "userPhotoURL": user.get("photoURL", ""),
                "targetName": venue.get("name", ""),
                "rating": review.rating,
                "title": review.title,
                "content": review.content,
                "photos": review.photos,
                "helpful": 0,
                "createdAt": now,
                "updatedAt": now,
                "status": "published",
            })
        except DuplicateKeyError:
            raise DuplicateError("You have already reviewed this venue")

        self.counters.fold_rating("venues", venue_id, review.rating)
        self.counters.increment("users", user_id, "stats.reviews")

        if venue.get("ownerId"):
            self.notifications.create_notification(
                venue["ownerId"], "venue_review", "New Review",
                f"{user.get('displayName') or 'Someone'} left a review on your venue",
                source_id=review_id, source_type="review",
            )
        logger.info(f"Review {review_id} ({review.rating}/5) submitted for venue {venue_id}")
        return review_id

    def get_venue_reviews(self, venue_id: str, max_limit: int = 10, sort: str = "recent") -> List[Dict[str, Any]]:
        if sort not in REVIEW_SORTS:
            raise ValidationError(f"Unknown review sort '{sort}'")
        cursor = (self.db.reviews.find({"targetId": venue_id, "targetType": "venue", "status": "published"})
                  .sort(REVIEW_SORTS[sort], DESCENDING).limit(max_limit))
        return serialize_docs(cursor)

    # --- Followers ---

    def get_venue_followers_count(self, venue_id: str) -> int:
        return self.db.followers.count_documents({"followeeId": venue_id, "followeeType": "venue"})

    def is_following_venue(self, user_id: str, venue_id: str) -> bool:
        return self.db.followers.count_documents(
            {"followerId": user_id, "followeeId": venue_id, "followeeType": "venue"}, limit=1
        ) > 0

    # --- Images ---

    def upload_venue_image(self, data: bytes, filename: str, venue_id: str,
                           content_type: Optional[str] = None) -> str:
        if self.storage is None:
            raise RuntimeError("No blob storage configured")
        path = f"venues/{venue_id}/{random_image_name(filename)}"
        return self.storage.upload(path, data, content_type)
