"""
Wires the model classes around one database handle.
"""
import logging
from typing import Optional

from pymongo.database import Database

from config import settings

from .activity_feed import ActivityFeed, Notifications
from .analytics import VenueAnalytics
from .blog_model import BlogModel
from .checkin_model import CheckInModel
from .counters import CounterMaintainer
from .event_model import EventModel
from .mongodb_setup import MongoDBSetup, ensure_indexes
from .storage import BlobStorage
from .user_model import UserModel
from .venue_model import VenueModel

logger = logging.getLogger(__name__)


class HappenServices:
    def __init__(self, db: Database, storage: Optional[BlobStorage] = None, atomic_counters: bool = True,
                 setup: Optional[MongoDBSetup] = None):
        self.db = db
        self.setup = setup
        self.storage = storage
        self.counters = CounterMaintainer(db, atomic=atomic_counters)
        self.activities = ActivityFeed(db, default_limit=settings.queries.feed_limit)
        self.notifications = Notifications(db)

        self.events = EventModel(db, storage=storage, counters=self.counters, activities=self.activities)
        self.venues = VenueModel(db, storage=storage, counters=self.counters, notifications=self.notifications)
        self.users = UserModel(db, counters=self.counters, notifications=self.notifications,
                               activities=self.activities)
        self.checkins = CheckInModel(db, counters=self.counters, activities=self.activities)
        self.analytics = VenueAnalytics(db, activities=self.activities)
        self.blog = BlogModel(db, search_batch=settings.queries.search_batch)

    @classmethod
    def from_settings(cls) -> "HappenServices":
        """Connect with the configured URI, ensure indexes and build the services."""
        setup = MongoDBSetup()
        if not setup.connect():
            raise RuntimeError(f"Could not connect to MongoDB database '{setup.database_name}'")
        ensure_indexes(setup.db)
        storage = BlobStorage(setup.db, bucket=settings.storage.bucket)
        return cls(setup.db, storage=storage, setup=setup)

    def close(self) -> None:
        if self.setup is not None:
            self.setup.close()
