from unittest import mock

import pytest

from config import QuerySettings
from database.errors import ConflictError, DuplicateError, NotFoundError, PermissionDeniedError, ValidationError
from helpers.geo import to_geopoint

SANT_JORDI = {"latitude": 38.8790, "longitude": 1.3770}
PALMA = {"latitude": 39.5696, "longitude": 2.6502}
CENTER = {"latitude": 38.9067, "longitude": 1.4206}


def _venue(db, venue_id):
    return db.venues.find_one({"_id": venue_id})


@pytest.fixture
def categories(db):
    db.categories.insert_many([
        {"_id": "c1", "name": "club", "venueCount": 0},
        {"_id": "c2", "name": "bar", "venueCount": 0},
    ])


class TestCreateVenue:
    def test_create_venue_defaults(self, services, db, make_user, categories):
        owner = make_user()
        venue_id = services.venues.create_venue(
            {"name": "Café Mambo", "categories": ["bar"], "location": dict(CENTER, address="Sant Antoni")}, owner
        )
        venue = _venue(db, venue_id)
        assert venue["slug"] == "caf-mambo"
        assert venue["ownerId"] == owner
        assert venue["ratings"] == {"average": 0, "count": 0, "total": 0,
                                    "distribution": {"1": 0, "2": 0, "3": 0, "4": 0, "5": 0}}
        assert (venue["followers"], venue["eventCount"], venue["checkInCount"]) == (0, 0, 0)
        assert venue["location"]["geopoint"] == to_geopoint(38.9067, 1.4206)
        assert venue["status"] == "active"
        assert db.categories.find_one({"name": "bar"})["venueCount"] == 1

    def test_venue_account_is_linked(self, services, db, make_user):
        owner = make_user(isVenueAccount=True)
        venue_id = services.venues.create_venue({"name": "Amnesia"}, owner)
        assert db.users.find_one({"_id": owner})["venueId"] == venue_id

    def test_regular_account_is_not_linked(self, services, db, make_user):
        owner = make_user()
        services.venues.create_venue({"name": "Amnesia"}, owner)
        assert db.users.find_one({"_id": owner})["venueId"] is None

    def test_unknown_category_is_ignored(self, services, db, make_user):
        services.venues.create_venue({"name": "Sa Trinxa", "categories": ["beach"]}, make_user())
        assert db.categories.count_documents({}) == 0

    @pytest.mark.parametrize("payload", [{}, {"name": ""}, {"name": "X", "owner": "me"},
                                         {"name": "X", "location": {"latitude": 120, "longitude": 0}}])
    def test_invalid_payload(self, services, db, payload):
        with pytest.raises(ValidationError):
            services.venues.create_venue(payload, "user-1")
        assert db.venues.count_documents({}) == 0

    def test_user_required(self, services):
        with pytest.raises(ValidationError):
            services.venues.create_venue({"name": "X"}, "")


class TestUpdateVenue:
    def test_owner_update_and_rename_fans_out(self, services, db, make_user, make_venue, make_event):
        owner = make_user()
        venue_id = make_venue(owner_id=owner, name="Space")
        event_id = make_event(venueId=venue_id)

        services.venues.update_venue(venue_id, {"userId": owner, "name": "Space Ibiza"})

        venue = _venue(db, venue_id)
        assert venue["slug"] == "space-ibiza"
        assert venue["ownerId"] == owner
        assert db.events.find_one({"_id": event_id})["venueName"] == "Space Ibiza"

    def test_ownership_transfer(self, services, db, make_user, make_venue):
        venue_id = make_venue(owner_id=make_user())
        new_owner = make_user()
        services.venues.update_venue(venue_id, {"userId": new_owner})
        assert _venue(db, venue_id)["ownerId"] == new_owner

    def test_explicit_owner_id(self, services, db, make_user, make_venue):
        venue_id = make_venue(owner_id=make_user())
        services.venues.update_venue(venue_id, {"ownerId": "venue-admin"})
        assert _venue(db, venue_id)["ownerId"] == "venue-admin"

    def test_no_owner_anywhere_is_rejected(self, services, db, make_venue):
        venue_id = make_venue()
        db.venues.update_one({"_id": venue_id}, {"$set": {"ownerId": None}})
        with pytest.raises(ValidationError, match="no owner"):
            services.venues.update_venue(venue_id, {"description": "orphan"})

    def test_category_change_moves_counts(self, services, db, make_user, categories):
        owner = make_user()
        venue_id = services.venues.create_venue({"name": "Pikes", "categories": ["club"]}, owner)
        services.venues.update_venue(venue_id, {"userId": owner, "categories": ["bar"]})
        assert db.categories.find_one({"name": "club"})["venueCount"] == 0
        assert db.categories.find_one({"name": "bar"})["venueCount"] == 1

    def test_location_without_coordinates_keeps_geopoint(self, services, db, make_user, make_venue):
        owner = make_user()
        venue_id = make_venue(owner_id=owner)
        services.venues.update_venue(venue_id, {"userId": owner, "location": {"address": "Moved sign"}})
        location = _venue(db, venue_id)["location"]
        assert location["address"] == "Moved sign"
        assert location["geopoint"] == to_geopoint(38.9067, 1.4206)

    def test_update_missing_venue(self, services):
        with pytest.raises(NotFoundError):
            services.venues.update_venue("missing", {"userId": "u"})

    def test_owner_can_hand_over(self, services, db, make_user, make_venue):
        owner, new_owner = make_user(), make_user()
        venue_id = make_venue(owner_id=owner)
        services.venues.update_venue(venue_id, {"userId": new_owner}, owner)
        assert _venue(db, venue_id)["ownerId"] == new_owner

    def test_non_owner_cannot_take_over(self, services, db, make_user, make_venue):
        owner, intruder = make_user(), make_user()
        venue_id = make_venue(owner_id=owner)
        with pytest.raises(PermissionDeniedError):
            services.venues.update_venue(venue_id, {"userId": intruder, "name": "Mine now"}, intruder)
        venue = _venue(db, venue_id)
        assert (venue["ownerId"], venue["name"]) == (owner, "Pacha")

    def test_ownerless_venue_cannot_be_claimed(self, services, db, make_user, make_venue):
        venue_id = make_venue()
        db.venues.update_one({"_id": venue_id}, {"$set": {"ownerId": None}})
        claimant = make_user()
        with pytest.raises(PermissionDeniedError):
            services.venues.update_venue(venue_id, {"userId": claimant}, claimant)

    def test_cover_image_and_status(self, services, db, make_user, make_venue):
        owner = make_user()
        venue_id = make_venue(owner_id=owner)
        services.venues.update_venue(
            venue_id, {"coverImage": "gridfs://happen_media/venues/v/cover.jpg", "status": "inactive"}, owner
        )
        venue = _venue(db, venue_id)
        assert venue["coverImage"] == "gridfs://happen_media/venues/v/cover.jpg"
        assert venue["status"] == "inactive"
        with pytest.raises(ValidationError):
            services.venues.update_venue(venue_id, {"status": "closed"}, owner)


class TestDeleteVenue:
    def test_delete_with_events_is_a_conflict(self, services, db, make_venue, make_event):
        venue_id = make_venue()
        make_event(venueId=venue_id)
        with pytest.raises(ConflictError):
            services.venues.delete_venue(venue_id)
        assert _venue(db, venue_id) is not None

    def test_delete_cleans_up(self, services, db, storage, make_user, categories):
        owner = make_user(isVenueAccount=True)
        fan = make_user()
        venue_id = services.venues.create_venue({"name": "Lío", "categories": ["club"]}, owner)
        services.venues.submit_venue_review(venue_id, fan, {"rating": 4})
        services.users.follow_venue(fan, venue_id)

        services.venues.delete_venue(venue_id)

        assert _venue(db, venue_id) is None
        assert db.reviews.count_documents({"targetId": venue_id}) == 0
        assert db.followers.count_documents({"followeeId": venue_id}) == 0
        assert db.categories.find_one({"name": "club"})["venueCount"] == 0
        owner_doc = db.users.find_one({"_id": owner})
        assert owner_doc["venueId"] is None and owner_doc["isVenueAccount"] is False
        storage.delete_prefix.assert_called_once_with(f"venues/{venue_id}/")

    def test_delete_missing_venue(self, services):
        with pytest.raises(NotFoundError):
            services.venues.delete_venue("missing")

    def test_non_owner_cannot_delete(self, services, db, make_user, make_venue):
        venue_id = make_venue(owner_id=make_user())
        with pytest.raises(PermissionDeniedError):
            services.venues.delete_venue(venue_id, make_user())
        assert _venue(db, venue_id) is not None


class TestVenueListings:
    def test_nearby_venues_with_categories(self, services, make_venue):
        club = make_venue(name="Near club", categories=["club"], location=dict(CENTER))
        make_venue(name="Near bar", categories=["bar"], location=dict(SANT_JORDI))
        make_venue(name="Far club", categories=["club"], location=dict(PALMA))
        result = services.venues.get_nearby_venues(CENTER, distance=10, categories=["club"])
        assert [v["id"] for v in result] == [club]

    def test_nearby_venues_nearest_first(self, services, make_venue):
        far = make_venue(location=dict(SANT_JORDI))
        near = make_venue(location=dict(CENTER))
        result = services.venues.get_nearby_venues(CENTER, distance=10)
        assert [v["id"] for v in result] == [near, far]
        assert result[1]["distance"] == pytest.approx(4.9, abs=0.5)

    def test_nearby_venues_skips_inactive(self, services, db, make_venue):
        venue_id = make_venue()
        db.venues.update_one({"_id": venue_id}, {"$set": {"status": "inactive"}})
        assert services.venues.get_nearby_venues(CENTER) == []

    def test_nearby_venues_batch_ceiling(self, services, make_venue):
        make_venue(location=dict(PALMA))
        make_venue(location=dict(CENTER))
        services.venues.query_settings = QuerySettings(nearby_venues_batch=1)
        assert services.venues.get_nearby_venues(CENTER) == []

    def test_featured_venues(self, services, db, make_venue):
        featured = make_venue()
        make_venue()
        db.venues.update_one({"_id": featured}, {"$set": {"featured": True}})
        assert [v["id"] for v in services.venues.get_featured_venues()] == [featured]

    def test_search_venues(self, services, make_venue):
        by_name = make_venue(name="Ocean Beach")
        by_category = make_venue(name="Sa Capella", categories=["Restaurant"])
        assert [v["id"] for v in services.venues.search_venues("ocean")] == [by_name]
        assert [v["id"] for v in services.venues.search_venues("restaurant")] == [by_category]
        assert services.venues.search_venues("") == []

    def test_venues_by_category(self, services, make_venue):
        club = make_venue(categories=["club"])
        make_venue(categories=["bar"])
        assert [v["id"] for v in services.venues.get_venues_by_category("club")] == [club]

    def test_get_by_slug(self, services, make_venue):
        venue_id = make_venue(name="Blue Marlin")
        assert services.venues.get_venue_by_slug("blue-marlin")["id"] == venue_id


class TestReviews:
    def test_submit_review_folds_rating(self, services, db, make_user, make_venue):
        owner = make_user()
        venue_id = make_venue(owner_id=owner)
        services.venues.submit_venue_review(venue_id, make_user(displayName="Ana"), {"rating": 5, "title": "Wow"})
        reviewer = make_user()
        services.venues.submit_venue_review(venue_id, reviewer, {"rating": 2})

        ratings = _venue(db, venue_id)["ratings"]
        assert ratings["count"] == 2
        assert ratings["average"] == pytest.approx(3.5)
        assert ratings["distribution"]["5"] == 1 and ratings["distribution"]["2"] == 1
        assert db.users.find_one({"_id": reviewer})["stats"]["reviews"] == 1
        assert db.notifications.count_documents({"userId": owner, "type": "venue_review"}) == 2

    def test_review_defaults_to_five(self, services, db, make_user, make_venue):
        venue_id = make_venue()
        review_id = services.venues.submit_venue_review(venue_id, make_user(), None)
        assert db.reviews.find_one({"_id": review_id})["rating"] == 5

    def test_duplicate_review_is_rejected(self, services, db, make_user, make_venue):
        venue_id, user_id = make_venue(), make_user()
        services.venues.submit_venue_review(venue_id, user_id, {"rating": 4})
        with pytest.raises(DuplicateError):
            services.venues.submit_venue_review(venue_id, user_id, {"rating": 1})
        assert _venue(db, venue_id)["ratings"]["count"] == 1

    def test_unique_index_backs_the_precheck(self, services, db, make_user, make_venue):
        venue_id, user_id = make_venue(), make_user()
        services.venues.submit_venue_review(venue_id, user_id, {"rating": 4})
        # Simulate a concurrent writer that passed the pre-check
        with mock.patch("mongomock.collection.Collection.count_documents", return_value=0):
            with pytest.raises(DuplicateError):
                services.venues.submit_venue_review(venue_id, user_id, {"rating": 1})
        assert _venue(db, venue_id)["ratings"]["count"] == 1

    @pytest.mark.parametrize("rating", [0, 6])
    def test_rating_out_of_range(self, services, make_user, make_venue, rating):
        with pytest.raises(ValidationError):
            services.venues.submit_venue_review(make_venue(), make_user(), {"rating": rating})

    def test_review_missing_user_or_venue(self, services, make_user, make_venue):
        with pytest.raises(NotFoundError):
            services.venues.submit_venue_review("missing", make_user(), {"rating": 3})
        with pytest.raises(NotFoundError):
            services.venues.submit_venue_review(make_venue(), "ghost", {"rating": 3})

    def test_get_reviews_sorting(self, services, db, make_user, make_venue):
        venue_id = make_venue()
        first = services.venues.submit_venue_review(venue_id, make_user(), {"rating": 3})
        second = services.venues.submit_venue_review(venue_id, make_user(), {"rating": 4})
        db.reviews.update_one({"_id": first}, {"$set": {"helpful": 7}})
        assert services.venues.get_venue_reviews(venue_id, sort="helpful")[0]["id"] == first
        assert {r["id"] for r in services.venues.get_venue_reviews(venue_id)} == {first, second}
        with pytest.raises(ValidationError):
            services.venues.get_venue_reviews(venue_id, sort="random")


class TestFollowersAndImages:
    def test_followers_count_and_is_following(self, services, make_user, make_venue):
        venue_id, fan = make_venue(), make_user()
        assert services.venues.is_following_venue(fan, venue_id) is False
        services.users.follow_venue(fan, venue_id)
        assert services.venues.get_venue_followers_count(venue_id) == 1
        assert services.venues.is_following_venue(fan, venue_id) is True

    def test_upload_venue_image(self, services, storage):
        url = services.venues.upload_venue_image(b"jpeg", "terrace.jpeg", "venue-3", "image/jpeg")
        path = storage.upload.call_args[0][0]
        assert path.startswith("venues/venue-3/") and path.endswith(".jpeg")
        assert url.endswith(path)
