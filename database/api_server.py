"""
FastAPI server exposing the Happen data layer.

The acting user is taken from the ``X-User-Id`` header, which the upstream
auth proxy sets after verifying the session.
"""
import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError

from config import settings
from helpers.logging_setup import setup_logger
from helpers.sentry_setup import init_sentry
from helpers.schemas import (CommentCreate, EventCreate, EventUpdate, PostCreate, PostUpdate, ResponseType,
                             ReviewCreate, UserLocation, UserProfileCreate, UserProfileUpdate, VenueCreate,
                             VenueUpdate)

from .errors import (ConflictError, DuplicateError, HappenError, NotFoundError, PermissionDeniedError,
                     ValidationError)
from .services import HappenServices

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (NotFoundError, 404),
    (ValidationError, 422),
    (PermissionDeniedError, 403),
    (DuplicateError, 409),
    (ConflictError, 409),
)

# Initialize FastAPI app
app = FastAPI(
    title="Happen API",
    description="Events, venues and social features backed by MongoDB",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.api.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_services() -> HappenServices:
    return HappenServices.from_settings()


def current_user(x_user_id: Optional[str] = Header(None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id


@app.exception_handler(HappenError)
def happen_error_handler(request: Request, exc: HappenError):
    status_code = next((code for error_type, code in ERROR_STATUS if isinstance(exc, error_type)), 400)
    content: Dict[str, Any] = {"detail": str(exc)}
    if isinstance(exc, ValidationError) and exc.errors:
        content["errors"] = exc.errors
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


@app.exception_handler(PyMongoError)
def store_error_handler(request: Request, exc: PyMongoError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Database unavailable"})


def _found(doc: Optional[Dict[str, Any]], label: str) -> Dict[str, Any]:
    if doc is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return doc


# Request bodies that are not stored documents
class RsvpRequest(BaseModel):
    responseType: ResponseType


class FriendRequest(BaseModel):
    friendId: str = Field(..., min_length=1)


class FriendResponse(BaseModel):
    accept: bool


class MoodBoardEntry(BaseModel):
    eventId: str = Field(..., min_length=1)
    note: str = ""


@app.get("/", tags=["Health"])
def root(services: HappenServices = Depends(get_services)):
    """Health check endpoint"""
    try:
        services.db.command("ping")
        database = "connected"
    except PyMongoError:
        database = "disconnected"
    return {"status": "healthy", "service": "Happen API", "database": database}


# --- Events ---

@app.post("/api/events", status_code=201, tags=["Events"])
def create_event(payload: EventCreate, user_id: str = Depends(current_user),
                 services: HappenServices = Depends(get_services)):
    return {"id": services.events.create_event(payload, user_id)}


@app.get("/api/events/upcoming", tags=["Events"])
def upcoming_events(limit: int = Query(12, ge=1, le=100), services: HappenServices = Depends(get_services)):
    return services.events.get_upcoming_events(limit)


@app.get("/api/events/nearby", tags=["Events"])
def nearby_events(lat: float = Query(...), lng: float = Query(...), distance: float = Query(10, gt=0),
                  limit: int = Query(12, ge=1, le=100), services: HappenServices = Depends(get_services)):
    return services.events.get_nearby_events({"latitude": lat, "longitude": lng}, distance, limit)


@app.get("/api/events/search", tags=["Events"])
def search_events(q: str = Query(..., description="Search term"), limit: int = Query(20, ge=1, le=100),
                  services: HappenServices = Depends(get_services)):
    return services.events.search_events(q, limit)


@app.get("/api/events/category/{category}", tags=["Events"])
def events_by_category(category: str, limit: int = Query(12, ge=1, le=100),
                       services: HappenServices = Depends(get_services)):
    return services.events.get_events_by_category(category, limit)


@app.get("/api/events/slug/{slug}", tags=["Events"])
def event_by_slug(slug: str, services: HappenServices = Depends(get_services)):
    return _found(services.events.get_event_by_slug(slug), "Event")


@app.get("/api/events/{event_id}", tags=["Events"])
def get_event(event_id: str, services: HappenServices = Depends(get_services)):
    return _found(services.events.get_event(event_id), "Event")


@app.patch("/api/events/{event_id}", tags=["Events"])
def update_event(event_id: str, payload: EventUpdate, user_id: str = Depends(current_user),
                 services: HappenServices = Depends(get_services)):
    services.events.update_event(event_id, payload, user_id)
    return services.events.get_event(event_id)


@app.delete("/api/events/{event_id}", status_code=204, tags=["Events"])
def delete_event(event_id: str, user_id: str = Depends(current_user),
                 services: HappenServices = Depends(get_services)):
    services.events.delete_event(event_id, user_id)


@app.post("/api/events/{event_id}/view", status_code=204, tags=["Events"])
def record_event_view(event_id: str, services: HappenServices = Depends(get_services)):
    services.events.increment_view_count(event_id)


@app.post("/api/events/{event_id}/rsvp", tags=["Events"])
def rsvp_event(event_id: str, payload: RsvpRequest, user_id: str = Depends(current_user),
               services: HappenServices = Depends(get_services)):
    return {"id": services.events.create_event_rsvp(event_id, user_id, payload.responseType)}


@app.get("/api/events/{event_id}/rsvp", tags=["Events"])
def my_event_rsvp(event_id: str, user_id: str = Depends(current_user),
                  services: HappenServices = Depends(get_services)):
    return services.events.get_user_event_rsvp(event_id, user_id)


@app.get("/api/events/{event_id}/attendees", tags=["Events"])
def event_attendees(event_id: str, limit: int = Query(20, ge=1, le=100),
                    services: HappenServices = Depends(get_services)):
    return services.events.get_event_attendees(event_id, limit)


@app.post("/api/events/{event_id}/checkin", status_code=201, tags=["Check-ins"])
def check_in(event_id: str, user_id: str = Depends(current_user), services: HappenServices = Depends(get_services)):
    return {"id": services.checkins.check_in(event_id, user_id)}


@app.get("/api/events/{event_id}/checkins", tags=["Check-ins"])
def check_in_summary(event_id: str, user_id: str = Depends(current_user),
                     services: HappenServices = Depends(get_services)):
    return {
        "count": services.checkins.get_check_in_count(event_id),
        "checkedIn": services.checkins.is_checked_in(event_id, user_id),
        "friends": services.checkins.get_checked_in_friends(event_id, user_id),
    }


@app.post("/api/events/{event_id}/image", tags=["Events"])
def upload_event_image(event_id: str, file: UploadFile = File(...), user_id: str = Depends(current_user),
                       services: HappenServices = Depends(get_services)):
    services.events.check_editor(event_id, user_id)
    url = services.events.upload_event_image(file.file.read(), file.filename or "", event_id, file.content_type)
    services.events.update_event(event_id, {"coverImage": url}, user_id)
    return {"url": url}


@app.post("/api/events/{event_id}/reconcile", tags=["Maintenance"])
def reconcile_event(event_id: str, user_id: str = Depends(current_user),
                    services: HappenServices = Depends(get_services)):
    services.events.check_editor(event_id, user_id)
    return services.counters.reconcile_event_counts(event_id)


# --- Venues ---

@app.post("/api/venues", status_code=201, tags=["Venues"])
def create_venue(payload: VenueCreate, user_id: str = Depends(current_user),
                 services: HappenServices = Depends(get_services)):
    return {"id": services.venues.create_venue(payload, user_id)}


@app.get("/api/venues/featured", tags=["Venues"])
def featured_venues(limit: int = Query(6, ge=1, le=50), services: HappenServices = Depends(get_services)):
    return services.venues.get_featured_venues(limit)


@app.get("/api/venues/nearby", tags=["Venues"])
def nearby_venues(lat: float = Query(...), lng: float = Query(...), distance: float = Query(10, gt=0),
                  limit: int = Query(10, ge=1, le=100), category: Optional[List[str]] = Query(None),
                  services: HappenServices = Depends(get_services)):
    return services.venues.get_nearby_venues({"latitude": lat, "longitude": lng}, distance, limit, category)


@app.get("/api/venues/search", tags=["Venues"])
def search_venues(q: str = Query(...), limit: int = Query(20, ge=1, le=100),
                  services: HappenServices = Depends(get_services)):
    return services.venues.search_venues(q, limit)


@app.get("/api/venues/category/{category}", tags=["Venues"])
def venues_by_category(category: str, limit: int = Query(20, ge=1, le=100),
                       services: HappenServices = Depends(get_services)):
    return services.venues.get_venues_by_category(category, limit)


@app.get("/api/venues/slug/{slug}", tags=["Venues"])
def venue_by_slug(slug: str, services: HappenServices = Depends(get_services)):
    return _found(services.venues.get_venue_by_slug(slug), "Venue")


@app.get("/api/venues/{venue_id}", tags=["Venues"])
def get_venue(venue_id: str, services: HappenServices = Depends(get_services)):
    return _found(services.venues.get_venue(venue_id), "Venue")


@app.patch("/api/venues/{venue_id}", tags=["Venues"])
def update_venue(venue_id: str, payload: VenueUpdate, user_id: str = Depends(current_user),
                 services: HappenServices = Depends(get_services)):
    services.venues.update_venue(venue_id, payload, user_id)
    return services.venues.get_venue(venue_id)


@app.delete("/api/venues/{venue_id}", status_code=204, tags=["Venues"])
def delete_venue(venue_id: str, user_id: str = Depends(current_user),
                 services: HappenServices = Depends(get_services)):
    services.venues.delete_venue(venue_id, user_id)


@app.get("/api/venues/{venue_id}/events", tags=["Venues"])
def venue_events(venue_id: str, status: str = Query("all"), limit: int = Query(12, ge=1, le=100),
                 services: HappenServices = Depends(get_services)):
    return services.events.get_events_by_venue(venue_id, status, limit)


@app.post("/api/venues/{venue_id}/reviews", status_code=201, tags=["Venues"])
def submit_review(venue_id: str, payload: ReviewCreate, user_id: str = Depends(current_user),
                  services: HappenServices = Depends(get_services)):
    return {"id": services.venues.submit_venue_review(venue_id, user_id, payload)}


@app.get("/api/venues/{venue_id}/reviews", tags=["Venues"])
def venue_reviews(venue_id: str, sort: str = Query("recent"), limit: int = Query(10, ge=1, le=100),
                  services: HappenServices = Depends(get_services)):
    return services.venues.get_venue_reviews(venue_id, limit, sort)


@app.post("/api/venues/{venue_id}/follow", tags=["Venues"])
def follow_venue(venue_id: str, user_id: str = Depends(current_user),
                 services: HappenServices = Depends(get_services)):
    _found(services.venues.get_venue(venue_id), "Venue")
    return {"id": services.users.follow_venue(user_id, venue_id)}


@app.delete("/api/venues/{venue_id}/follow", status_code=204, tags=["Venues"])
def unfollow_venue(venue_id: str, user_id: str = Depends(current_user),
                   services: HappenServices = Depends(get_services)):
    services.users.unfollow_venue(user_id, venue_id)


@app.get("/api/venues/{venue_id}/followers", tags=["Venues"])
def venue_followers(venue_id: str, x_user_id: Optional[str] = Header(None),
                    services: HappenServices = Depends(get_services)):
    result: Dict[str, Any] = {"count": services.venues.get_venue_followers_count(venue_id)}
    if x_user_id:
        result["following"] = services.venues.is_following_venue(x_user_id, venue_id)
    return result


@app.get("/api/venues/{venue_id}/analytics", tags=["Analytics"])
def venue_analytics(venue_id: str, date_range: str = Query("month", alias="range"),
                    services: HappenServices = Depends(get_services)):
    return services.analytics.venue_dashboard(venue_id, date_range)


@app.get("/api/venues/{venue_id}/activities", tags=["Analytics"])
def venue_activities(venue_id: str, limit: int = Query(20, ge=1, le=100),
                     services: HappenServices = Depends(get_services)):
    return services.activities.get_venue_activities(venue_id, limit)


@app.post("/api/venues/{venue_id}/image", tags=["Venues"])
def upload_venue_image(venue_id: str, file: UploadFile = File(...), user_id: str = Depends(current_user),
                       services: HappenServices = Depends(get_services)):
    services.venues.check_owner(venue_id, user_id)
    url = services.venues.upload_venue_image(file.file.read(), file.filename or "", venue_id, file.content_type)
    services.venues.update_venue(venue_id, {"coverImage": url}, user_id)
    return {"url": url}


@app.post("/api/venues/{venue_id}/reconcile", tags=["Maintenance"])
def reconcile_venue(venue_id: str, user_id: str = Depends(current_user),
                    services: HappenServices = Depends(get_services)):
    services.venues.check_owner(venue_id, user_id)
    return {
        "ratings": services.counters.reconcile_venue_ratings(venue_id),
        "followers": services.counters.reconcile_venue_followers(venue_id),
    }


# --- Users ---

@app.put("/api/users/me", status_code=201, tags=["Users"])
def create_profile(payload: UserProfileCreate, user_id: str = Depends(current_user),
                   services: HappenServices = Depends(get_services)):
    services.users.create_user_profile(user_id, payload)
    return services.users.get_user_profile(user_id)


@app.patch("/api/users/me", tags=["Users"])
def update_profile(payload: UserProfileUpdate, user_id: str = Depends(current_user),
                   services: HappenServices = Depends(get_services)):
    services.users.update_user_profile(user_id, payload)
    return services.users.get_user_profile(user_id)


@app.put("/api/users/me/location", status_code=204, tags=["Users"])
def update_location(payload: UserLocation, user_id: str = Depends(current_user),
                    services: HappenServices = Depends(get_services)):
    services.users.update_user_location(user_id, payload)


@app.get("/api/users/search", tags=["Users"])
def search_users(q: str = Query(...), limit: int = Query(10, ge=1, le=50),
                 services: HappenServices = Depends(get_services)):
    return services.users.search_users(q, limit)


@app.get("/api/users/me/friends", tags=["Friends"])
def my_friends(user_id: str = Depends(current_user), services: HappenServices = Depends(get_services)):
    return services.users.get_user_friends(user_id)


@app.post("/api/users/me/friend-requests", status_code=201, tags=["Friends"])
def send_friend_request(payload: FriendRequest, user_id: str = Depends(current_user),
                        services: HappenServices = Depends(get_services)):
    return {"id": services.users.send_friend_request(user_id, payload.friendId)}


@app.get("/api/users/me/friend-requests", tags=["Friends"])
def pending_friend_requests(user_id: str = Depends(current_user), services: HappenServices = Depends(get_services)):
    return services.users.get_pending_friend_requests(user_id)


@app.get("/api/users/me/friend-requests/sent", tags=["Friends"])
def sent_friend_requests(user_id: str = Depends(current_user), services: HappenServices = Depends(get_services)):
    return services.users.get_sent_friend_requests(user_id)


@app.post("/api/friend-requests/{friendship_id}/respond", status_code=204, tags=["Friends"])
def respond_to_friend_request(friendship_id: str, payload: FriendResponse, user_id: str = Depends(current_user),
                              services: HappenServices = Depends(get_services)):
    services.users.respond_to_friend_request(friendship_id, user_id, payload.accept)


@app.get("/api/users/me/followed-venues", tags=["Users"])
def followed_venues(user_id: str = Depends(current_user), services: HappenServices = Depends(get_services)):
    return services.users.get_user_followed_venues(user_id)


@app.get("/api/users/me/followed-categories", tags=["Users"])
def followed_categories(user_id: str = Depends(current_user), services: HappenServices = Depends(get_services)):
    return services.users.get_user_followed_categories(user_id)


@app.get("/api/users/me/feed", tags=["Feed"])
def feed(feed_type: str = Query("friends", alias="type"), limit: Optional[int] = Query(None, ge=1, le=100),
         user_id: str = Depends(current_user), services: HappenServices = Depends(get_services)):
    return services.activities.get_feed(user_id, feed_type, limit)


@app.get("/api/users/me/notifications", tags=["Notifications"])
def notifications(unread_only: bool = Query(False), user_id: str = Depends(current_user),
                  services: HappenServices = Depends(get_services)):
    return services.notifications.get_notifications(user_id, unread_only)


@app.post("/api/users/me/notifications/{notification_id}/read", status_code=204, tags=["Notifications"])
def mark_notification_read(notification_id: str, user_id: str = Depends(current_user),
                           services: HappenServices = Depends(get_services)):
    services.notifications.mark_notification_read(notification_id, user_id)


@app.get("/api/users/me/mood-board", tags=["Mood board"])
def mood_board(user_id: str = Depends(current_user), services: HappenServices = Depends(get_services)):
    return services.users.get_user_mood_board(user_id)


@app.post("/api/users/me/mood-board", tags=["Mood board"])
def save_to_mood_board(payload: MoodBoardEntry, user_id: str = Depends(current_user),
                       services: HappenServices = Depends(get_services)):
    return {"added": services.users.save_event_to_mood_board(user_id, payload.eventId, payload.note)}


@app.delete("/api/users/me/mood-board/{event_id}", status_code=204, tags=["Mood board"])
def remove_from_mood_board(event_id: str, user_id: str = Depends(current_user),
                           services: HappenServices = Depends(get_services)):
    services.users.remove_event_from_mood_board(user_id, event_id)


@app.get("/api/users/{user_id}", tags=["Users"])
def get_user(user_id: str, services: HappenServices = Depends(get_services)):
    return _found(services.users.get_user_profile(user_id), "User")


# --- Blog ---

@app.post("/api/posts", status_code=201, tags=["Blog"])
def create_post(payload: PostCreate, user_id: str = Depends(current_user),
                services: HappenServices = Depends(get_services)):
    return {"id": services.blog.create_post(payload, user_id)}


@app.get("/api/posts", tags=["Blog"])
def recent_posts(limit: int = Query(10, ge=1, le=100), services: HappenServices = Depends(get_services)):
    return services.blog.get_recent_posts(limit)


@app.get("/api/posts/search", tags=["Blog"])
def search_posts(q: str = Query(...), limit: int = Query(20, ge=1, le=100),
                 services: HappenServices = Depends(get_services)):
    return services.blog.search_posts(q, limit)


@app.get("/api/posts/categories", tags=["Blog"])
def post_categories(services: HappenServices = Depends(get_services)):
    return services.blog.get_categories()


@app.get("/api/posts/category/{category_slug}", tags=["Blog"])
def posts_by_category(category_slug: str, limit: int = Query(20, ge=1, le=100),
                      services: HappenServices = Depends(get_services)):
    return services.blog.get_posts_by_category(category_slug, limit)


@app.get("/api/posts/{post_id}", tags=["Blog"])
def get_post(post_id: str, services: HappenServices = Depends(get_services)):
    return _found(services.blog.get_post(post_id), "Post")


@app.patch("/api/posts/{post_id}", tags=["Blog"])
def update_post(post_id: str, payload: PostUpdate, user_id: str = Depends(current_user),
                services: HappenServices = Depends(get_services)):
    services.blog.update_post(post_id, payload, user_id)
    return services.blog.get_post(post_id)


@app.delete("/api/posts/{post_id}", status_code=204, tags=["Blog"])
def delete_post(post_id: str, user_id: str = Depends(current_user), services: HappenServices = Depends(get_services)):
    services.blog.delete_post(post_id, user_id)


@app.post("/api/posts/{post_id}/comments", status_code=201, tags=["Blog"])
def add_comment(post_id: str, payload: CommentCreate, user_id: str = Depends(current_user),
                services: HappenServices = Depends(get_services)):
    return {"id": services.blog.add_comment(post_id, user_id, payload)}


@app.get("/api/posts/{post_id}/comments", tags=["Blog"])
def post_comments(post_id: str, services: HappenServices = Depends(get_services)):
    return services.blog.get_comments(post_id)


if __name__ == "__main__":
    setup_logger("database", "api_server")
    init_sentry()
    uvicorn.run(app, host=settings.api.host, port=settings.api.port)
