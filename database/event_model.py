"""
Event model: CRUD, listings, nearby/search and RSVPs.
"""
import logging
import secrets
import string
import time
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import settings
from helpers.dates import to_naive_utc
from helpers.geo import with_geopoint
from helpers.schemas import RESPONSE_TYPES, EventCreate, EventUpdate
from helpers.text import any_contains_text, contains_text, slugify

from .activity_feed import ActivityFeed
from .base import BaseModelStore, new_id, serialize_doc, serialize_docs, utcnow, validate_payload
from .counters import RSVP_COUNTER_FIELDS, CounterMaintainer
from .errors import HappenError, NotFoundError, PermissionDeniedError, ValidationError
from .nearby import filter_nearby, parse_center
from .storage import BlobStorage

logger = logging.getLogger(__name__)

VENUE_EVENT_STATUSES = ("all", "upcoming", "past", "draft")


def random_image_name(filename: str) -> str:
    """``<millis>_<6 random chars>.<ext>``; the uploaded file name is not kept."""
    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else "bin"
    alphabet = string.ascii_lowercase + string.digits
    random_part = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"{int(time.time() * 1000)}_{random_part}.{extension}"


class EventModel(BaseModelStore):
    collection_name = "events"

    def __init__(self, db: Database, storage: Optional[BlobStorage] = None,
                 counters: Optional[CounterMaintainer] = None,
                 activities: Optional[ActivityFeed] = None):
        super().__init__(db)
        self.storage = storage
        self.counters = counters or CounterMaintainer(db)
        self.activities = activities or ActivityFeed(db)
        self.query_settings = settings.queries

    def _venue_name(self, venue_id: str) -> Optional[str]:
        venue = self.db.venues.find_one({"_id": venue_id}, {"name": 1})
        return venue.get("name") if venue else None

    # --- CRUD ---

    def create_event(self, event_data: Any, user_id: str) -> str:
        payload = validate_payload(EventCreate, event_data)
        data = payload.model_dump(exclude_none=True)

        venue_name = data.get("venueName")
        if data.get("venueId") and not venue_name:
            venue_name = self._venue_name(data["venueId"])

        now = utcnow()
        event_id = new_id()
        new_event = {
            **data,
            "_id": event_id,
            "slug": slugify(payload.name),
            "creatorId": user_id,
            "venueName": venue_name,
            "location": with_geopoint(data.get("location")),
            "startDateTime": to_naive_utc(payload.startDateTime),
            "endDateTime": to_naive_utc(payload.endDateTime),
            "createdAt": now,
            "updatedAt": now,
            "attendeeCount": 0,
            "interestedCount": 0,
            "viewCount": 0,
        }
        self.collection.insert_one(self._drop_unset(new_event))
        logger.info(f"Created event {event_id} '{payload.name}' by user {user_id}")

        if payload.venueId:
            self.counters.increment("venues", payload.venueId, "eventCount")
            self.activities.record_venue_activity(
                payload.venueId, "event_created", f"New event created: {payload.name}",
                entity_id=event_id, entity_type="event", user_id=user_id,
            )
        return event_id

    def get_event(self, event_id: str) -> Optional[Dict[str, Any]]:
        return self._get(event_id)

    def get_event_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        return self._get_by_slug(slug)

    def check_editor(self, event_id: str, user_id: str) -> Dict[str, Any]:
        """The creator of an event and the owner of its venue may change it."""
        event = self._get_or_raise(event_id, "Event")
        if event.get("creatorId") and event["creatorId"] == user_id:
            return event
        if event.get("venueId"):
            venue = self.db.venues.find_one({"_id": event["venueId"]}, {"ownerId": 1})
            if venue and venue.get("ownerId") == user_id:
                return event
        raise PermissionDeniedError("Only the event creator or venue owner can modify this event")

    def update_event(self, event_id: str, event_data: Any, user_id: Optional[str] = None) -> None:
        payload = validate_payload(EventUpdate, event_data)
        if user_id is None:
            current = self._get_or_raise(event_id, "Event")
        else:
            current = self.check_editor(event_id, user_id)
        data = payload.model_dump(exclude_none=True)

        if "venueId" in data and data["venueId"] != current.get("venueId") and not data.get("venueName"):
            data["venueName"] = self._venue_name(data["venueId"])

        if "location" in data:
            data["location"] = with_geopoint(data["location"], current.get("location"))

        if payload.name and payload.name != current.get("name"):
            data["slug"] = slugify(payload.name)

        for field in ("startDateTime", "endDateTime"):
            if field in data:
                data[field] = to_naive_utc(data[field])

        start = data.get("startDateTime", current.get("startDateTime"))
        end = data.get("endDateTime", current.get("endDateTime"))
        if start and end and end < start:
            raise ValidationError("endDateTime must not be before startDateTime")

        data["updatedAt"] = utcnow()
        self.collection.update_one({"_id": event_id}, {"$set": data})
        logger.info(f"Updated event {event_id}")

        old_venue, new_venue = current.get("venueId"), data.get("venueId", current.get("venueId"))
        if old_venue != new_venue:
            if old_venue:
                self.counters.decrement("venues", old_venue, "eventCount")
            if new_venue:
                self.counters.increment("venues", new_venue, "eventCount")

        if current.get("venueId"):
            self.activities.record_venue_activity(
                current["venueId"], "event_updated", f"Event updated: {payload.name or current.get('name')}",
                entity_id=event_id, entity_type="event",
            )

    def delete_event(self, event_id: str, user_id: Optional[str] = None) -> None:
        event = self._get_or_raise(event_id, "Event") if user_id is None else self.check_editor(event_id, user_id)

        self.collection.delete_one({"_id": event_id})
        removed = self.db.rsvps.delete_many({"eventId": event_id}).deleted_count
        logger.info(f"Deleted event {event_id} and {removed} RSVP(s)")

        if event.get("coverImage") and self.storage is not None:
            try:
                self.storage.delete(event["coverImage"])
            except (HappenError, PyMongoError) as e:
                # The event is already gone; a stray blob is acceptable
                logger.error(f"Error deleting event cover image for {event_id}: {e}")

        if event.get("venueId"):
            self.counters.decrement("venues", event["venueId"], "eventCount")
            self.activities.record_venue_activity(
                event["venueId"], "event_deleted", f"Event deleted: {event.get('name')}",
                entity_id=event_id, entity_type="event",
            )

    def increment_view_count(self, event_id: str) -> None:
        if not self.counters.increment("events", event_id, "viewCount"):
            raise NotFoundError("Event not found")

    # --- Listings ---

    def _upcoming_query(self) -> Dict[str, Any]:
        return {"startDateTime": {"$gte": utcnow()}, "status": "scheduled"}

    def get_upcoming_events(self, max_limit: int = 12) -> List[Dict[str, Any]]:
        cursor = self.collection.find(self._upcoming_query()).sort("startDateTime", ASCENDING).limit(max_limit)
        return serialize_docs(cursor)

    def get_events_by_venue(self, venue_id: str, status: str = "all", max_limit: int = 12) -> List[Dict[str, Any]]:
        if status not in VENUE_EVENT_STATUSES:
            raise ValidationError(f"Unknown status filter '{status}'")
        now = utcnow()
        query: Dict[str, Any] = {"venueId": venue_id}
        sort_field, direction = "startDateTime", DESCENDING

        if status == "upcoming":
            query["startDateTime"] = {"$gte": now}
            direction = ASCENDING
        elif status == "past":
            query["startDateTime"] = {"$lt": now}
        elif status == "draft":
            query["status"] = "draft"
            sort_field = "updatedAt"

        cursor = self.collection.find(query).sort(sort_field, direction).limit(max_limit)
        return serialize_docs(cursor)

    def get_events_by_category(self, category: str, max_limit: int = 12) -> List[Dict[str, Any]]:
        query = {**self._upcoming_query(), "categories": category}
        cursor = self.collection.find(query).sort("startDateTime", ASCENDING).limit(max_limit)
        return serialize_docs(cursor)

    def get_nearby_events(self, location: Optional[Dict[str, Any]], distance: float = 10,
                          max_limit: int = 12) -> List[Dict[str, Any]]:
        center = parse_center(location)
        candidates = serialize_docs(
            self.collection.find(self._upcoming_query())
            .sort("startDateTime", ASCENDING)
            .limit(self.query_settings.nearby_events_batch)
        )
        return filter_nearby(candidates, center, distance, max_limit)

    def search_events(self, query: str, max_limit: int = 20) -> List[Dict[str, Any]]:
        """Substring match over name, description, venue, address and categories of upcoming events."""
        if not query or not query.strip():
            return []
        needle = query.strip()
        candidates = serialize_docs(
            self.collection.find(self._upcoming_query())
            .sort("startDateTime", ASCENDING)
            .limit(self.query_settings.search_batch)
        )
        matches = [
            event for event in candidates
            if contains_text(needle, event.get("name"), event.get("description"), event.get("venueName"),
                             (event.get("location") or {}).get("address"))
            or any_contains_text(needle, event.get("categories"))
        ]
        return matches[:max_limit]

    # --- RSVPs ---

    def create_event_rsvp(self, event_id: str, user_id: str, response_type: str) -> str:
        if response_type not in RESPONSE_TYPES:
            raise ValidationError(f"responseType must be one of {RESPONSE_TYPES}")
        event = self._get_or_raise(event_id, "Event")

        existing = self.db.rsvps.find_one({"userId": user_id, "eventId": event_id})
        now = utcnow()
        if existing:
            old_response = existing.get("responseType")
            if old_response != response_type:
                self.db.rsvps.update_one(
                    {"_id": existing["_id"]}, {"$set": {"responseType": response_type, "updatedAt": now}}
                )
                self.counters.move("events", event_id, RSVP_COUNTER_FIELDS.get(old_response),
                                   RSVP_COUNTER_FIELDS.get(response_type))
            rsvp_id = existing["_id"]
        else:
            rsvp_id = new_id()
            try:
                self.db.rsvps.insert_one({
                    "_id": rsvp_id,
                    "eventId": event_id,
                    "userId": user_id,
                    "responseType": response_type,
                    "createdAt": now,
                    "updatedAt": now,
                })
            except DuplicateKeyError:
                # A concurrent request created it first; treat this one as a change
                logger.warning(f"RSVP for event {event_id} by {user_id} created concurrently; retrying as update")
                return self.create_event_rsvp(event_id, user_id, response_type)
            if response_type in RSVP_COUNTER_FIELDS:
                self.counters.increment("events", event_id, RSVP_COUNTER_FIELDS[response_type])

        if response_type == "going":
            if event.get("venueId"):
                self.activities.record_venue_activity(
                    event["venueId"], "event_rsvp", f"New RSVP for event: {event.get('name')}",
                    entity_id=event_id, entity_type="event", user_id=user_id,
                )
            self.activities.record_user_activity(user_id, "event-rsvp", eventId=event_id)

        return rsvp_id

    def get_user_event_rsvp(self, event_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        return serialize_doc(self.db.rsvps.find_one({"eventId": event_id, "userId": user_id}))

    def get_event_attendees(self, event_id: str, max_limit: int = 20) -> List[Dict[str, Any]]:
        rsvps = self.db.rsvps.find({"eventId": event_id, "responseType": "going"}).limit(max_limit)
        return self._profiles([r["userId"] for r in rsvps])

    # --- Images ---

    def upload_event_image(self, data: bytes, filename: str, event_id: str,
                           content_type: Optional[str] = None) -> str:
        if self.storage is None:
            raise RuntimeError("No blob storage configured")
        path = f"events/{event_id}/{random_image_name(filename)}"
        return self.storage.upload(path, data, content_type)
