import threading
from unittest import mock

import pytest
from pymongo.errors import OperationFailure

from database.counters import CounterMaintainer, empty_ratings, get_path
from database.errors import NotFoundError, ValidationError


@pytest.fixture
def event(db):
    db.events.insert_one({"_id": "evt-1", "attendeeCount": 5, "interestedCount": 0})
    return "evt-1"


@pytest.fixture
def venue(db):
    db.venues.insert_one({"_id": "venue-1", "ratings": empty_ratings(), "followers": 3})
    return "venue-1"


class BarrierCounterMaintainer(CounterMaintainer):
    """Read-modify-write maintainer whose writers all read before any of them writes."""

    def __init__(self, db, barrier):
        super().__init__(db, atomic=False)
        self.barrier = barrier

    def _read_current(self, collection, query, field):
        doc = super()._read_current(collection, query, field)
        self.barrier.wait(timeout=5)
        return doc


def _run_concurrently(target, count=2):
    threads = [threading.Thread(target=target) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)


class TestIncrements:
    @pytest.mark.parametrize("atomic", [True, False])
    def test_increment_and_decrement(self, db, event, atomic):
        counters = CounterMaintainer(db, atomic=atomic)
        assert counters.increment("events", event, "attendeeCount") is True
        assert counters.decrement("events", event, "interestedCount") is True
        doc = db.events.find_one({"_id": event})
        assert doc["attendeeCount"] == 6
        assert doc["interestedCount"] == 0

    @pytest.mark.parametrize("atomic", [True, False])
    def test_decrement_floors_at_zero(self, db, atomic):
        db.venues.insert_one({"_id": "v", "followers": 0})
        counters = CounterMaintainer(db, atomic=atomic)
        counters.decrement("venues", "v", "followers")
        counters.increment("venues", "v", "followers", -3)
        assert db.venues.find_one({"_id": "v"})["followers"] == 0

    def test_decrement_missing_field_sets_zero(self, db):
        db.users.insert_one({"_id": "u", "stats": {}})
        CounterMaintainer(db).decrement("users", "u", "stats.following")
        assert db.users.find_one({"_id": "u"})["stats"]["following"] == 0

    def test_missing_document_returns_false(self, db):
        counters = CounterMaintainer(db)
        assert counters.increment("events", "missing", "viewCount") is False
        assert counters.decrement("events", "missing", "viewCount") is False

    def test_move_shifts_one_unit(self, db, event):
        CounterMaintainer(db).move("events", event, "attendeeCount", "interestedCount")
        doc = db.events.find_one({"_id": event})
        assert (doc["attendeeCount"], doc["interestedCount"]) == (4, 1)

    def test_move_to_uncounted_response(self, db, event):
        CounterMaintainer(db).move("events", event, "attendeeCount", None)
        assert db.events.find_one({"_id": event})["attendeeCount"] == 4

    def test_store_errors_are_logged_and_raised(self, db, event, caplog):
        counters = CounterMaintainer(db)
        with mock.patch.object(counters, "_adjust_atomic", side_effect=OperationFailure("boom")):
            with pytest.raises(OperationFailure):
                counters.increment("events", event, "attendeeCount")
        assert "Counter update failed" in caplog.text


class TestConcurrentWriters:
    def test_read_modify_write_loses_an_update(self, db, event):
        """Two writers that both read N leave N + 1: the known limitation of the legacy mode."""
        counters = BarrierCounterMaintainer(db, threading.Barrier(2))
        _run_concurrently(lambda: counters.increment("events", event, "attendeeCount"))
        assert db.events.find_one({"_id": event})["attendeeCount"] == 6

    def test_atomic_increments_are_all_kept(self, db, event):
        counters = CounterMaintainer(db)
        barrier = threading.Barrier(4)

        def bump():
            barrier.wait(timeout=5)
            counters.increment("events", event, "attendeeCount")

        _run_concurrently(bump, count=4)
        assert db.events.find_one({"_id": event})["attendeeCount"] == 9

    def test_atomic_mode_never_reads_before_writing(self, db, event):
        counters = CounterMaintainer(db)
        with mock.patch.object(counters, "_read_current", side_effect=AssertionError("read")):
            counters.increment("events", event, "attendeeCount")
            counters.decrement("events", event, "attendeeCount")
        assert db.events.find_one({"_id": event})["attendeeCount"] == 5


class TestRatings:
    @pytest.mark.parametrize("atomic", [True, False])
    def test_fold_rating(self, db, venue, atomic):
        counters = CounterMaintainer(db, atomic=atomic)
        counters.fold_rating("venues", venue, 5)
        ratings = counters.fold_rating("venues", venue, 2)
        assert ratings["count"] == 2
        assert ratings["average"] == pytest.approx(3.5)
        stored = db.venues.find_one({"_id": venue})["ratings"]
        assert stored["average"] == pytest.approx(3.5)
        assert stored["distribution"] == {"1": 0, "2": 1, "3": 0, "4": 0, "5": 1}

    @pytest.mark.parametrize("rating", [0, 6, 3.5, None])
    def test_fold_rating_rejects_out_of_range(self, db, venue, rating):
        with pytest.raises(ValidationError):
            CounterMaintainer(db).fold_rating("venues", venue, rating)

    def test_fold_rating_missing_venue(self, db):
        with pytest.raises(NotFoundError):
            CounterMaintainer(db).fold_rating("venues", "missing", 4)


class TestReconciliation:
    def test_reconcile_event_counts(self, db, event):
        db.rsvps.insert_many([
            {"_id": "r1", "eventId": event, "userId": "a", "responseType": "going"},
            {"_id": "r2", "eventId": event, "userId": "b", "responseType": "interested"},
            {"_id": "r3", "eventId": event, "userId": "c", "responseType": "not_going"},
        ])
        counts = CounterMaintainer(db).reconcile_event_counts(event)
        assert counts == {"attendeeCount": 1, "interestedCount": 1}
        assert db.events.find_one({"_id": event})["attendeeCount"] == 1

    def test_reconcile_venue_ratings(self, db, venue):
        db.reviews.insert_many([
            {"_id": "a", "userId": "u1", "targetId": venue, "targetType": "venue", "rating": 4, "status": "published"},
            {"_id": "b", "userId": "u2", "targetId": venue, "targetType": "venue", "rating": 2, "status": "published"},
            {"_id": "c", "userId": "u3", "targetId": venue, "targetType": "venue", "rating": 5, "status": "hidden"},
        ])
        ratings = CounterMaintainer(db).reconcile_venue_ratings(venue)
        assert ratings["count"] == 2
        assert ratings["average"] == pytest.approx(3)
        assert ratings["distribution"]["4"] == 1

    def test_reconcile_venue_followers(self, db, venue):
        db.followers.insert_one({"_id": "f", "followerId": "u", "followeeId": venue, "followeeType": "venue"})
        assert CounterMaintainer(db).reconcile_venue_followers(venue) == 1
        assert db.venues.find_one({"_id": venue})["followers"] == 1

    def test_reconcile_missing_event(self, db):
        with pytest.raises(NotFoundError):
            CounterMaintainer(db).reconcile_event_counts("missing")


def test_get_path():
    doc = {"stats": {"following": 2}}
    assert get_path(doc, "stats.following") == 2
    assert get_path(doc, "stats.followers", 0) == 0
    assert get_path(None, "stats") is None
