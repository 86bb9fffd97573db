"""
Blog posts and comments.
"""
import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING
from pymongo.database import Database

from helpers.schemas import CommentCreate, PostCreate, PostUpdate
from helpers.text import any_contains_text, contains_text, slugify

from .base import BaseModelStore, new_id, serialize_docs, utcnow, validate_payload
from .errors import NotFoundError, PermissionDeniedError

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 160


def make_excerpt(content: str, length: int = EXCERPT_LENGTH) -> str:
    text = " ".join(content.split())
    return text if len(text) <= length else text[:length].rsplit(" ", 1)[0] + "..."


class BlogModel(BaseModelStore):
    collection_name = "posts"

    def __init__(self, db: Database, search_batch: int = 100):
        super().__init__(db)
        self.search_batch = search_batch

    def _author(self, user_id: str) -> Dict[str, Any]:
        user = self.db.users.find_one({"_id": user_id}, {"displayName": 1, "photoURL": 1}) or {}
        return {"name": user.get("displayName") or "Anonymous", "photoURL": user.get("photoURL", "")}

    def _owned_post(self, post_id: str, user_id: str) -> Dict[str, Any]:
        post = self._get_or_raise(post_id, "Post")
        if post.get("authorId") != user_id:
            raise PermissionDeniedError("Only the author can modify this post")
        return post

    # --- Posts ---

    def create_post(self, post_data: Any, user_id: str) -> str:
        payload = validate_payload(PostCreate, post_data)
        now = utcnow()
        post_id = new_id()
        self.collection.insert_one({
            **payload.model_dump(),
            "_id": post_id,
            "slug": slugify(payload.title),
            "excerpt": payload.excerpt or make_excerpt(payload.content),
            "categorySlugs": [slugify(c) for c in payload.categories],
            "authorId": user_id,
            "author": self._author(user_id),
            "createdAt": now,
            "updatedAt": now,
        })
        logger.info(f"Created post {post_id} '{payload.title}' by {user_id}")
        return post_id

    def get_post(self, post_id: str) -> Optional[Dict[str, Any]]:
        return self._get(post_id)

    def get_post_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        return self._get_by_slug(slug)

    def update_post(self, post_id: str, post_data: Any, user_id: str) -> None:
        payload = validate_payload(PostUpdate, post_data)
        post = self._owned_post(post_id, user_id)
        update = payload.model_dump(exclude_none=True)
        if payload.title and payload.title != post.get("title"):
            update["slug"] = slugify(payload.title)
        if payload.categories is not None:
            update["categorySlugs"] = [slugify(c) for c in payload.categories]
        update["updatedAt"] = utcnow()
        self.collection.update_one({"_id": post_id}, {"$set": update})

    def delete_post(self, post_id: str, user_id: str) -> None:
        self._owned_post(post_id, user_id)
        self.collection.delete_one({"_id": post_id})
        removed = self.db.comments.delete_many({"postId": post_id}).deleted_count
        logger.info(f"Deleted post {post_id} and {removed} comment(s)")

    def get_recent_posts(self, max_limit: int = 10) -> List[Dict[str, Any]]:
        cursor = self.collection.find({"published": True}).sort("createdAt", DESCENDING).limit(max_limit)
        return serialize_docs(cursor)

    def get_posts_by_category(self, category_slug: str, max_limit: int = 20) -> List[Dict[str, Any]]:
        cursor = (self.collection.find({"published": True, "categorySlugs": category_slug})
                  .sort("createdAt", DESCENDING).limit(max_limit))
        return serialize_docs(cursor)

    def search_posts(self, query: str, max_limit: int = 20) -> List[Dict[str, Any]]:
        if not query or not query.strip():
            return []
        needle = query.strip()
        candidates = serialize_docs(
            self.collection.find({"published": True}).sort("createdAt", DESCENDING).limit(self.search_batch)
        )
        matches = [
            post for post in candidates
            if contains_text(needle, post.get("title"), post.get("content")) or any_contains_text(needle, post.get("tags"))
        ]
        return matches[:max_limit]

    def get_categories(self) -> List[Dict[str, Any]]:
        """Categories of published posts with post counts, most used first."""
        counts: Counter = Counter()
        for post in self.collection.find({"published": True}, {"categories": 1}):
            counts.update(set(post.get("categories") or []))
        return [
            {"name": name, "slug": slugify(name), "count": count}
            for name, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        ]

    # --- Comments ---

    def add_comment(self, post_id: str, user_id: str, comment_data: Any) -> str:
        payload = validate_payload(CommentCreate, comment_data)
        if self.collection.count_documents({"_id": post_id}, limit=1) == 0:
            raise NotFoundError("Post not found")
        user = self.db.users.find_one({"_id": user_id}) or {}
        comment_id = new_id()
        self.db.comments.insert_one({
            "_id": comment_id,
            "postId": post_id,
            "content": payload.content,
            "authorId": user_id,
            "authorName": user.get("displayName") or "Anonymous",
            "authorEmail": user.get("email", ""),
            "authorProfileImage": user.get("photoURL", ""),
            "createdAt": utcnow(),
        })
        return comment_id

    def get_comments(self, post_id: str, max_limit: int = 100) -> List[Dict[str, Any]]:
        cursor = self.db.comments.find({"postId": post_id}).sort("createdAt", DESCENDING).limit(max_limit)
        return serialize_docs(cursor)
