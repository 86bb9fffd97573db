"""
MongoDB connection and index setup for the Happen collections.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

import certifi
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import ConnectionFailure, OperationFailure, PyMongoError

from config import settings

logger = logging.getLogger(__name__)


# collection -> [(keys, create_index options)]
COLLECTION_INDEXES: Dict[str, List[Tuple[List[Tuple[str, int]], Dict[str, Any]]]] = {
    "events": [
        ([("slug", ASCENDING)], {}),
        ([("status", ASCENDING), ("startDateTime", ASCENDING)], {}),
        ([("venueId", ASCENDING), ("startDateTime", DESCENDING)], {}),
        ([("categories", ASCENDING), ("startDateTime", ASCENDING)], {}),
    ],
    "venues": [
        ([("slug", ASCENDING)], {}),
        ([("status", ASCENDING), ("featured", ASCENDING)], {}),
        ([("ownerId", ASCENDING)], {}),
        ([("categories", ASCENDING)], {}),
    ],
    "rsvps": [
        ([("eventId", ASCENDING), ("userId", ASCENDING)], {"unique": True}),
        ([("eventId", ASCENDING), ("responseType", ASCENDING)], {}),
    ],
    "reviews": [
        # One review per (user, target); closes the race left by the pre-check query
        ([("userId", ASCENDING), ("targetId", ASCENDING), ("targetType", ASCENDING)], {"unique": True}),
        ([("targetId", ASCENDING), ("createdAt", DESCENDING)], {}),
    ],
    "followers": [
        ([("followerId", ASCENDING), ("followeeId", ASCENDING), ("followeeType", ASCENDING)], {"unique": True}),
        ([("followeeId", ASCENDING), ("followeeType", ASCENDING)], {}),
    ],
    "friendships": [
        ([("userId", ASCENDING), ("status", ASCENDING)], {}),
        ([("friendId", ASCENDING), ("status", ASCENDING)], {}),
        ([("participants", ASCENDING), ("status", ASCENDING)], {}),
    ],
    "checkIns": [
        ([("eventId", ASCENDING), ("userId", ASCENDING)], {"unique": True}),
    ],
    "activities": [
        ([("userId", ASCENDING), ("timestamp", DESCENDING)], {}),
        ([("venueId", ASCENDING), ("timestamp", DESCENDING)], {}),
        ([("visibility", ASCENDING), ("timestamp", DESCENDING)], {}),
    ],
    "notifications": [
        ([("userId", ASCENDING), ("createdAt", DESCENDING)], {}),
    ],
    "categories": [
        ([("name", ASCENDING)], {"unique": True}),
    ],
    "posts": [
        ([("slug", ASCENDING)], {}),
        ([("published", ASCENDING), ("createdAt", DESCENDING)], {}),
        ([("categorySlugs", ASCENDING)], {}),
    ],
    "comments": [
        ([("postId", ASCENDING), ("createdAt", DESCENDING)], {}),
    ],
}


def ensure_indexes(db: Database) -> Dict[str, int]:
    """Create every index in COLLECTION_INDEXES. Returns index count per collection."""
    created = {}
    for collection_name, indexes in COLLECTION_INDEXES.items():
        names = [db[collection_name].create_index(keys, **options) for keys, options in indexes]
        created[collection_name] = len(names)
        logger.debug(f"Ensured {len(names)} indexes on '{collection_name}'")
    return created


class MongoDBSetup:
    """Owns the MongoClient for the process and prepares the database."""

    def __init__(self, connection_string: Optional[str] = None, database_name: Optional[str] = None):
        self.connection_string = connection_string or settings.mongodb.uri
        self.database_name = database_name or settings.mongodb.database
        self.client: Optional[MongoClient] = None
        self.db: Optional[Database] = None

    def connect(self) -> bool:
        """Connect and ping. Atlas (mongodb+srv) URIs use TLS with certifi's CA bundle."""
        try:
            timeout_ms = settings.mongodb.server_selection_timeout_ms
            if self.connection_string.startswith("mongodb+srv://"):
                self.client = MongoClient(self.connection_string, tls=True, tlsCAFile=certifi.where(),
                                          serverSelectionTimeoutMS=timeout_ms)
            else:
                self.client = MongoClient(self.connection_string, serverSelectionTimeoutMS=timeout_ms)
            self.client.admin.command('ping')
            self.db = self.client[self.database_name]
            logger.info(f"Connected to MongoDB database '{self.database_name}'")
            return True
        except (ConnectionFailure, OperationFailure) as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            self.client = None
            self.db = None
            return False

    def create_collections(self) -> Dict[str, int]:
        if self.db is None:
            raise RuntimeError("Not connected; call connect() first")
        return ensure_indexes(self.db)

    def verify_setup(self) -> Dict[str, Any]:
        if self.db is None:
            raise RuntimeError("Not connected; call connect() first")
        existing = set(self.db.list_collection_names())
        verification: Dict[str, Any] = {"database": self.database_name, "collections": {}, "indexes": {}}
        for name in COLLECTION_INDEXES:
            verification["collections"][name] = name in existing
            if name in existing:
                try:
                    verification["indexes"][name] = len(self.db[name].index_information())
                except PyMongoError as e:
                    logger.warning(f"Could not read indexes for '{name}': {e}")
                    verification["indexes"][name] = 0
        return verification

    def close(self):
        if self.client is not None:
            self.client.close()
            logger.info("MongoDB connection closed")
            self.client = None
            self.db = None
