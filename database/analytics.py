"""
Venue analytics computed from a venue's event documents.

The aggregation helpers are plain functions over event dicts so they can be
fed from the database or from fixtures; ``VenueAnalytics`` fetches the
events and assembles the dashboard.
"""
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta
from pymongo.database import Database

from helpers.dates import to_naive_utc

from .activity_feed import ActivityFeed
from .base import serialize_docs, utcnow
from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# range -> (number of buckets, bucket unit)
DATE_RANGES = {
    "week": (7, "day"),
    "month": (30, "day"),
    "year": (12, "month"),
}


def _event_date(event: Dict[str, Any]) -> Optional[datetime]:
    value = event.get("startDateTime")
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = isoparse(value)
        except ValueError:
            logger.warning(f"Unparseable startDateTime on event {event.get('id')}: {value!r}")
            return None
    return to_naive_utc(value)


def _bucket_labels(points: int, unit: str, now: datetime, range_name: str) -> List[str]:
    labels = []
    for i in range(points - 1, -1, -1):
        if unit == "day":
            day = now - relativedelta(days=i)
            labels.append(day.strftime("%a") if range_name == "week" else day.strftime("%b %d"))
        else:
            labels.append((now - relativedelta(months=i)).strftime("%b"))
    return labels


def attendance_by_range(events: Iterable[Dict[str, Any]], range_name: str = "month",
                        now: Optional[datetime] = None) -> Dict[str, List[Any]]:
    """
    Sum ``attendeeCount`` into buckets ending at ``now``.

    ``week``: 7 daily buckets, ``month``: 30 daily buckets, ``year``: 12
    calendar-month buckets. Events in the future or before the first
    bucket are ignored.
    """
    if range_name not in DATE_RANGES:
        raise ValidationError(f"Unknown date range '{range_name}'")
    now = now or utcnow()
    points, unit = DATE_RANGES[range_name]
    data = [0] * points

    for event in events:
        attendees = event.get("attendeeCount") or 0
        event_date = _event_date(event)
        if not attendees or event_date is None:
            continue
        if unit == "day":
            offset = (now - event_date).days
        else:
            offset = (now.year - event_date.year) * 12 + (now.month - event_date.month)
        if 0 <= offset < points and event_date <= now:
            data[points - 1 - offset] += attendees

    return {"labels": _bucket_labels(points, unit, now, range_name), "data": data}


def attendance_by_category(events: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    totals: Dict[str, int] = defaultdict(int)
    for event in events:
        for category in event.get("categories") or []:
            totals[category] += event.get("attendeeCount") or 0
    return dict(totals)


def monthly_trends(events: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Per ``YYYY-MM``: total attendance, event count and rating average, oldest month first."""
    months: Dict[str, Dict[str, float]] = {}
    for event in events:
        event_date = _event_date(event)
        if event_date is None:
            continue
        bucket = months.setdefault(event_date.strftime("%Y-%m"),
                                   {"attendance": 0, "eventCount": 0, "ratingSum": 0.0, "ratingWeight": 0})
        bucket["attendance"] += event.get("attendeeCount") or 0
        bucket["eventCount"] += 1
        if event.get("rating"):
            weight = event.get("ratingCount") or 1
            bucket["ratingSum"] += event["rating"] * weight
            bucket["ratingWeight"] += weight

    return [
        {
            "month": month,
            "attendance": b["attendance"],
            "eventCount": b["eventCount"],
            "averageRating": b["ratingSum"] / b["ratingWeight"] if b["ratingWeight"] else 0,
        }
        for month, b in sorted(months.items())
    ]


def top_events(events: Iterable[Dict[str, Any]], n: int = 5) -> List[Dict[str, Any]]:
    return sorted(events, key=lambda e: e.get("attendeeCount") or 0, reverse=True)[:n]


class VenueAnalytics:
    def __init__(self, db: Database, activities: Optional[ActivityFeed] = None):
        self.db = db
        self.activities = activities or ActivityFeed(db)

    def venue_events(self, venue_id: str) -> List[Dict[str, Any]]:
        return serialize_docs(self.db.events.find({"venueId": venue_id}))

    def venue_dashboard(self, venue_id: str, range_name: str = "month",
                        now: Optional[datetime] = None) -> Dict[str, Any]:
        venue = self.db.venues.find_one({"_id": venue_id}, {"name": 1, "ratings": 1, "followers": 1,
                                                             "checkInCount": 1, "eventCount": 1})
        if venue is None:
            raise NotFoundError("Venue not found")

        events = self.venue_events(venue_id)
        logger.info(f"Building {range_name} dashboard for venue {venue_id} from {len(events)} event(s)")
        return {
            "venueId": venue_id,
            "name": venue.get("name"),
            "totals": {
                "events": len(events),
                "attendance": sum(e.get("attendeeCount") or 0 for e in events),
                "followers": venue.get("followers", 0),
                "checkIns": venue.get("checkInCount", 0),
                "averageRating": (venue.get("ratings") or {}).get("average", 0),
            },
            "attendance": attendance_by_range(events, range_name, now),
            "categories": attendance_by_category(events),
            "trends": monthly_trends(events),
            "topEvents": top_events(events),
            "recentActivity": self.activities.get_venue_activities(venue_id),
        }
