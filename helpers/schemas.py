"""
Write payload schemas for the Happen document collections.

Documents are stored camelCase. Every payload model rejects unknown fields
so malformed writes fail before anything reaches the database.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from helpers.dates import to_naive_utc

EVENT_STATUSES = ("scheduled", "draft", "cancelled")
VENUE_STATUSES = ("active", "inactive")
RESPONSE_TYPES = ("going", "interested", "not_going")
FRIENDSHIP_STATUSES = ("pending", "accepted", "declined")

EventStatus = Literal["scheduled", "draft", "cancelled"]
VenueStatus = Literal["active", "inactive"]
ResponseType = Literal["going", "interested", "not_going"]


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class Location(StrictModel):
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @field_validator('latitude')
    def latitude_must_be_valid(cls, v):
        if v is not None and not (-90 <= v <= 90):
            raise ValueError('Latitude must be between -90 and 90')
        return v

    @field_validator('longitude')
    def longitude_must_be_valid(cls, v):
        if v is not None and not (-180 <= v <= 180):
            raise ValueError('Longitude must be between -180 and 180')
        return v


class PriceRange(StrictModel):
    min: Optional[float] = Field(None, ge=0)
    max: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None

    @model_validator(mode='after')
    def check_bounds(self):
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError('priceRange.min must not exceed priceRange.max')
        return self


class EventCreate(StrictModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    startDateTime: datetime
    endDateTime: Optional[datetime] = None
    venueId: Optional[str] = None
    venueName: Optional[str] = None
    location: Optional[Location] = None
    categories: List[str] = Field(default_factory=list)
    priceRange: Optional[PriceRange] = None
    capacity: Optional[int] = Field(None, ge=0)
    coverImage: Optional[str] = None
    status: EventStatus = "scheduled"

    @model_validator(mode='after')
    def check_dates(self):
        if self.endDateTime is not None and to_naive_utc(self.endDateTime) < to_naive_utc(self.startDateTime):
            raise ValueError('endDateTime must not be before startDateTime')
        return self


class EventUpdate(StrictModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    startDateTime: Optional[datetime] = None
    endDateTime: Optional[datetime] = None
    venueId: Optional[str] = None
    venueName: Optional[str] = None
    location: Optional[Location] = None
    categories: Optional[List[str]] = None
    priceRange: Optional[PriceRange] = None
    capacity: Optional[int] = Field(None, ge=0)
    coverImage: Optional[str] = None
    status: Optional[EventStatus] = None


class VenueCreate(StrictModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    location: Optional[Location] = None
    categories: List[str] = Field(default_factory=list)
    contact: Optional[Dict[str, Any]] = None
    hoursOfOperation: Optional[Dict[str, Any]] = None
    amenities: List[str] = Field(default_factory=list)
    settings: Optional[Dict[str, Any]] = None
    coverImage: Optional[str] = None
    status: VenueStatus = "active"


class VenueUpdate(StrictModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    location: Optional[Location] = None
    categories: Optional[List[str]] = None
    contact: Optional[Dict[str, Any]] = None
    hoursOfOperation: Optional[Dict[str, Any]] = None
    amenities: Optional[List[str]] = None
    settings: Optional[Dict[str, Any]] = None
    coverImage: Optional[str] = None
    status: Optional[VenueStatus] = None
    # An owner other than the current one is an ownership transfer.
    userId: Optional[str] = None
    ownerId: Optional[str] = None


class ReviewCreate(StrictModel):
    rating: int = Field(5, ge=1, le=5)
    title: str = ""
    content: str = ""
    photos: List[str] = Field(default_factory=list)


class NotificationSettings(StrictModel):
    eventReminders: bool = True
    friendActivity: bool = True
    venueUpdates: bool = True
    recommendations: bool = True


class Preferences(StrictModel):
    categories: List[str] = Field(default_factory=list)
    maxDistance: float = Field(25, gt=0)
    priceRange: PriceRange = Field(default_factory=PriceRange)
    notificationSettings: NotificationSettings = Field(default_factory=NotificationSettings)


class UserProfileCreate(StrictModel):
    displayName: str = ""
    email: str = ""
    photoURL: str = ""
    bio: str = ""
    isVenueAccount: bool = False
    preferences: Preferences = Field(default_factory=Preferences)


class UserProfileUpdate(StrictModel):
    displayName: Optional[str] = None
    photoURL: Optional[str] = None
    bio: Optional[str] = None
    isVenueAccount: Optional[bool] = None
    preferences: Optional[Preferences] = None


class UserLocation(StrictModel):
    address: str = ""
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class PostCreate(StrictModel):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    excerpt: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    coverImage: Optional[str] = None
    published: bool = True


class PostUpdate(StrictModel):
    title: Optional[str] = Field(None, min_length=1)
    content: Optional[str] = Field(None, min_length=1)
    excerpt: Optional[str] = None
    categories: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    coverImage: Optional[str] = None
    published: Optional[bool] = None


class CommentCreate(StrictModel):
    content: str

    @field_validator('content')
    def content_must_not_be_blank(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Comment content must not be empty')
        return v
