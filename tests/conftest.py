# Shared pytest fixtures: a mongomock database with the production indexes,
# a mocked blob store and small factories for users, venues and events.

import sys
from datetime import timedelta
from pathlib import Path
from unittest import mock

import mongomock
import pytest

# Temporarily add project root to sys.path if the project is not installed as a package.
project_root = Path(__file__).resolve().parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from database.base import new_id, utcnow
from database.mongodb_setup import ensure_indexes
from database.services import HappenServices

TEST_DB_NAME = "happen_test"

# Ibiza town and a point roughly 5 km away
IBIZA = {"latitude": 38.9067, "longitude": 1.4206}
SANT_JORDI = {"latitude": 38.8790, "longitude": 1.3770}


@pytest.fixture
def db():
    client = mongomock.MongoClient()
    database = client[TEST_DB_NAME]
    ensure_indexes(database)
    yield database
    client.close()


@pytest.fixture
def storage():
    """Stands in for BlobStorage; uploads return the URL the real store would."""
    store = mock.MagicMock()
    store.upload.side_effect = lambda path, data, content_type=None: f"gridfs://happen_media/{path}"
    return store


@pytest.fixture
def services(db, storage):
    return HappenServices(db, storage=storage)


@pytest.fixture
def make_user(services):
    def _make(user_id=None, **profile):
        user_id = user_id or new_id()
        profile.setdefault("displayName", f"user-{user_id[-4:]}")
        services.users.create_user_profile(user_id, profile)
        return user_id
    return _make


@pytest.fixture
def make_venue(services, make_user):
    def _make(owner_id=None, **data):
        owner_id = owner_id or make_user()
        data.setdefault("name", "Pacha")
        data.setdefault("location", dict(IBIZA, address="Av. 8 d'Agost"))
        return services.venues.create_venue(data, owner_id)
    return _make


@pytest.fixture
def make_event(services, make_user):
    def _make(creator_id=None, days_ahead=3, **data):
        creator_id = creator_id or make_user()
        data.setdefault("name", "Sunset Session")
        data.setdefault("startDateTime", utcnow() + timedelta(days=days_ahead))
        data.setdefault("location", dict(IBIZA))
        return services.events.create_event(data, creator_id)
    return _make
