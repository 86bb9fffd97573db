"""
Denormalized counter maintenance.

Parent documents cache aggregates of their children: event RSVP counts,
venue ratings and follower counts, category venue counts, user stats. A
child write is followed by a counter update here; the two are separate
writes and a failure of the second is not compensated.

Two strategies:

- atomic (default): ``$inc`` on the server, so concurrent writers never lose
  an update. Decrements never go below zero.
- read-modify-write: read the current value, compute, ``$set``. Two writers
  that both read ``N`` before either writes leave ``N + 1``. Kept for
  stores/collections where callers rely on the old behaviour and to
  reproduce that limitation.
"""
import logging
from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

RATING_VALUES = (1, 2, 3, 4, 5)
RSVP_COUNTER_FIELDS = {"going": "attendeeCount", "interested": "interestedCount"}


def empty_ratings() -> Dict[str, Any]:
    return {
        "average": 0,
        "count": 0,
        "total": 0,
        "distribution": {str(r): 0 for r in RATING_VALUES},
    }


def get_path(doc: Optional[Dict[str, Any]], dotted: str, default: Any = None) -> Any:
    """Read a dotted field path from a document."""
    current: Any = doc
    for part in dotted.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


class CounterMaintainer:
    def __init__(self, db: Database, atomic: bool = True):
        self.db = db
        self.atomic = atomic

    # --- Generic counters ---

    def increment(self, collection: str, doc_id: str, field: str, delta: int = 1) -> bool:
        """Adjust ``field`` on one document. Returns False when the document does not exist."""
        return self.adjust_matching(collection, {"_id": doc_id}, field, delta)

    def decrement(self, collection: str, doc_id: str, field: str) -> bool:
        return self.increment(collection, doc_id, field, -1)

    def adjust_matching(self, collection: str, query: Dict[str, Any], field: str, delta: int) -> bool:
        """Adjust ``field`` on the first document matching ``query``."""
        if delta == 0:
            return self.db[collection].count_documents(query, limit=1) > 0
        try:
            if self.atomic:
                return self._adjust_atomic(collection, query, field, delta)
            return self._adjust_read_modify_write(collection, query, field, delta)
        except PyMongoError as e:
            logger.error(f"Counter update failed for {collection} {query} {field} ({delta:+d}): {e}")
            raise

    def move(self, collection: str, doc_id: str, from_field: Optional[str], to_field: Optional[str]) -> None:
        """Move one unit between two counters (an RSVP changing type)."""
        if from_field == to_field:
            return
        if from_field:
            self.increment(collection, doc_id, from_field, -1)
        if to_field:
            self.increment(collection, doc_id, to_field, 1)

    def _adjust_atomic(self, collection: str, query: Dict[str, Any], field: str, delta: int) -> bool:
        coll = self.db[collection]
        if delta > 0:
            return coll.update_one(query, {"$inc": {field: delta}}).matched_count > 0

        result = coll.update_one({**query, field: {"$gte": -delta}}, {"$inc": {field: delta}})
        if result.matched_count:
            return True
        # Below |delta| or missing: clamp to zero
        floor_query = {**query, "$or": [{field: {"$lt": -delta}}, {field: {"$exists": False}}]}
        if coll.update_one(floor_query, {"$set": {field: 0}}).matched_count:
            return True
        return coll.count_documents(query, limit=1) > 0

    def _read_current(self, collection: str, query: Dict[str, Any], field: str) -> Optional[Dict[str, Any]]:
        return self.db[collection].find_one(query, {field: 1})

    def _adjust_read_modify_write(self, collection: str, query: Dict[str, Any], field: str, delta: int) -> bool:
        doc = self._read_current(collection, query, field)
        if doc is None:
            return False
        current = get_path(doc, field) or 0
        self.db[collection].update_one({"_id": doc["_id"]}, {"$set": {field: max(0, current + delta)}})
        return True

    # --- Ratings ---

    def fold_rating(self, collection: str, doc_id: str, rating: int) -> Dict[str, Any]:
        """Add one rating to ``ratings.{count,total,average,distribution}``. Returns the new ratings."""
        if rating not in RATING_VALUES:
            raise ValidationError(f"Rating must be one of {RATING_VALUES}, got {rating!r}")
        if self.atomic:
            return self._fold_rating_atomic(collection, doc_id, rating)
        return self._fold_rating_read_modify_write(collection, doc_id, rating)

    def _fold_rating_atomic(self, collection: str, doc_id: str, rating: int) -> Dict[str, Any]:
        coll = self.db[collection]
        after = coll.find_one_and_update(
            {"_id": doc_id},
            {"$inc": {
                "ratings.count": 1,
                "ratings.total": rating,
                f"ratings.distribution.{rating}": 1,
            }},
            projection={"ratings": 1},
            return_document=ReturnDocument.AFTER,
        )
        if after is None:
            raise NotFoundError(f"{collection} document {doc_id} not found")
        ratings = after["ratings"]
        ratings["average"] = ratings["total"] / ratings["count"]
        # Only the writer that saw the latest count sets the average
        coll.update_one(
            {"_id": doc_id, "ratings.count": ratings["count"]},
            {"$set": {"ratings.average": ratings["average"]}},
        )
        return ratings

    def _fold_rating_read_modify_write(self, collection: str, doc_id: str, rating: int) -> Dict[str, Any]:
        doc = self.db[collection].find_one({"_id": doc_id}, {"ratings": 1})
        if doc is None:
            raise NotFoundError(f"{collection} document {doc_id} not found")
        ratings = doc.get("ratings") or empty_ratings()
        count = ratings.get("count", 0)
        distribution = dict(ratings.get("distribution") or {})
        distribution[str(rating)] = distribution.get(str(rating), 0) + 1
        new_ratings = {
            "count": count + 1,
            "total": ratings.get("total", ratings.get("average", 0) * count) + rating,
            "average": (ratings.get("average", 0) * count + rating) / (count + 1),
            "distribution": distribution,
        }
        self.db[collection].update_one({"_id": doc_id}, {"$set": {"ratings": new_ratings}})
        return new_ratings

    # --- Reconciliation ---

    def reconcile_event_counts(self, event_id: str) -> Dict[str, int]:
        """Recompute attendeeCount/interestedCount from the event's RSVP documents."""
        counts = {
            field: self.db.rsvps.count_documents({"eventId": event_id, "responseType": response})
            for response, field in RSVP_COUNTER_FIELDS.items()
        }
        result = self.db.events.update_one({"_id": event_id}, {"$set": counts})
        if not result.matched_count:
            raise NotFoundError("Event not found")
        logger.info(f"Reconciled event {event_id} counters: {counts}")
        return counts

    def reconcile_venue_ratings(self, venue_id: str) -> Dict[str, Any]:
        """Recompute a venue's ratings from its published reviews."""
        ratings = empty_ratings()
        for review in self.db.reviews.find(
            {"targetId": venue_id, "targetType": "venue", "status": "published"}, {"rating": 1}
        ):
            rating = review.get("rating")
            if rating not in RATING_VALUES:
                continue
            ratings["count"] += 1
            ratings["total"] += rating
            ratings["distribution"][str(rating)] += 1
        if ratings["count"]:
            ratings["average"] = ratings["total"] / ratings["count"]
        result = self.db.venues.update_one({"_id": venue_id}, {"$set": {"ratings": ratings}})
        if not result.matched_count:
            raise NotFoundError("Venue not found")
        logger.info(f"Reconciled venue {venue_id} ratings: count={ratings['count']} average={ratings['average']:.2f}")
        return ratings

    def reconcile_venue_followers(self, venue_id: str) -> int:
        followers = self.db.followers.count_documents({"followeeId": venue_id, "followeeType": "venue"})
        result = self.db.venues.update_one({"_id": venue_id}, {"$set": {"followers": followers}})
        if not result.matched_count:
            raise NotFoundError("Venue not found")
        return followers
