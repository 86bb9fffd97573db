from datetime import timedelta

import pytest

from database.blog_model import make_excerpt
from database.errors import NotFoundError, PermissionDeniedError, ValidationError


@pytest.fixture
def author(make_user):
    return make_user(displayName="Marta", email="marta@example.com", photoURL="https://img/marta.jpg")


@pytest.fixture
def make_post(services, author):
    def _make(user_id=None, **data):
        data.setdefault("title", "Best Beaches in Ibiza")
        data.setdefault("content", "Cala Comte at sunset is hard to beat.")
        return services.blog.create_post(data, user_id or author)
    return _make


def _age(db, post_id, days):
    post = db.posts.find_one({"_id": post_id})
    db.posts.update_one({"_id": post_id}, {"$set": {"createdAt": post["createdAt"] - timedelta(days=days)}})


class TestExcerpt:
    def test_short_content_is_kept(self):
        assert make_excerpt("  A  short\npost ") == "A short post"

    def test_long_content_cut_at_word(self):
        excerpt = make_excerpt("word " * 100, length=22)
        assert excerpt == "word word word word..."


class TestPosts:
    def test_create_post(self, services, author, make_post):
        post_id = make_post(categories=["Travel Tips", "Beaches"], tags=["sun"])
        post = services.blog.get_post(post_id)
        assert post["slug"] == "best-beaches-in-ibiza"
        assert post["categorySlugs"] == ["travel-tips", "beaches"]
        assert post["author"] == {"name": "Marta", "photoURL": "https://img/marta.jpg"}
        assert post["authorId"] == author
        assert post["excerpt"] == "Cala Comte at sunset is hard to beat."
        assert services.blog.get_post_by_slug("best-beaches-in-ibiza")["id"] == post_id

    def test_explicit_excerpt_is_kept(self, services, make_post):
        post_id = make_post(excerpt="Teaser")
        assert services.blog.get_post(post_id)["excerpt"] == "Teaser"

    def test_anonymous_author(self, services):
        post_id = services.blog.create_post({"title": "Hi", "content": "There"}, "no-profile")
        assert services.blog.get_post(post_id)["author"]["name"] == "Anonymous"

    @pytest.mark.parametrize("payload", [{"title": "", "content": "x"}, {"title": "x"}, {"title": "x", "content": "y", "views": 1}])
    def test_invalid_post(self, services, db, author, payload):
        with pytest.raises(ValidationError):
            services.blog.create_post(payload, author)
        assert db.posts.count_documents({}) == 0

    def test_update_reslugs_and_recategorizes(self, services, author, make_post):
        post_id = make_post(categories=["Beaches"])
        services.blog.update_post(post_id, {"title": "Hidden Coves", "categories": ["Secret Spots"]}, author)
        post = services.blog.get_post(post_id)
        assert post["slug"] == "hidden-coves"
        assert post["categorySlugs"] == ["secret-spots"]
        assert post["updatedAt"] >= post["createdAt"]

    def test_only_author_may_modify(self, services, make_user, make_post):
        post_id = make_post()
        intruder = make_user()
        with pytest.raises(PermissionDeniedError):
            services.blog.update_post(post_id, {"title": "Mine now"}, intruder)
        with pytest.raises(PermissionDeniedError):
            services.blog.delete_post(post_id, intruder)
        assert services.blog.get_post(post_id) is not None

    def test_delete_removes_comments(self, services, db, author, make_post):
        post_id = make_post()
        services.blog.add_comment(post_id, author, {"content": "First!"})
        services.blog.delete_post(post_id, author)
        assert services.blog.get_post(post_id) is None
        assert db.comments.count_documents({"postId": post_id}) == 0

    def test_missing_post(self, services, author):
        with pytest.raises(NotFoundError):
            services.blog.update_post("missing", {"title": "x"}, author)


class TestListings:
    def test_recent_posts_skip_unpublished(self, services, db, make_post):
        older = make_post(title="Older")
        newer = make_post(title="Newer")
        make_post(title="Draft", published=False)
        _age(db, older, 2)
        assert [p["id"] for p in services.blog.get_recent_posts()] == [newer, older]

    def test_posts_by_category(self, services, make_post):
        nightlife = make_post(categories=["Night Life"])
        make_post(categories=["Food"])
        assert [p["id"] for p in services.blog.get_posts_by_category("night-life")] == [nightlife]

    def test_search(self, services, make_post):
        by_title = make_post(title="Sunset Spots", content="Where to go.")
        by_tag = make_post(title="Other", content="Nothing here.", tags=["Sunsets"])
        make_post(title="Food", content="Paella.")
        assert {p["id"] for p in services.blog.search_posts("sunset")} == {by_title, by_tag}
        assert services.blog.search_posts("  ") == []

    def test_categories_counted_over_published_posts(self, services, make_post):
        make_post(categories=["Beaches", "Food"])
        make_post(categories=["Beaches"])
        make_post(categories=["Art"])
        make_post(categories=["Beaches"], published=False)
        assert services.blog.get_categories() == [
            {"name": "Beaches", "slug": "beaches", "count": 2},
            {"name": "Art", "slug": "art", "count": 1},
            {"name": "Food", "slug": "food", "count": 1},
        ]


class TestComments:
    def test_add_comment_denormalizes_author(self, services, author, make_post):
        post_id = make_post()
        services.blog.add_comment(post_id, author, {"content": "  Great list  "})
        (comment,) = services.blog.get_comments(post_id)
        assert comment["content"] == "Great list"
        assert comment["authorName"] == "Marta"
        assert comment["authorEmail"] == "marta@example.com"
        assert comment["authorProfileImage"] == "https://img/marta.jpg"

    def test_comments_newest_first(self, services, db, author, make_post):
        post_id = make_post()
        first = services.blog.add_comment(post_id, author, {"content": "one"})
        second = services.blog.add_comment(post_id, author, {"content": "two"})
        db.comments.update_one({"_id": first}, {"$set": {"createdAt": db.comments.find_one({"_id": second})["createdAt"] - timedelta(minutes=5)}})
        assert [c["id"] for c in services.blog.get_comments(post_id)] == [second, first]

    def test_blank_comment(self, services, author, make_post):
        with pytest.raises(ValidationError):
            services.blog.add_comment(make_post(), author, {"content": "   "})

    def test_comment_on_missing_post(self, services, author):
        with pytest.raises(NotFoundError):
            services.blog.add_comment("missing", author, {"content": "hello"})
