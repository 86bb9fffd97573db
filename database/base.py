"""
Common plumbing for the model classes: id generation, timestamps,
document serialization and payload validation.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

from bson import ObjectId
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pymongo.database import Database

from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def new_id() -> str:
    """Document ids are ObjectId hex strings, so user ids from the auth provider fit the same field."""
    return str(ObjectId())


def utcnow() -> datetime:
    # pymongo hands back naive UTC datetimes; keep writes and query bounds comparable
    return datetime.now(timezone.utc).replace(tzinfo=None)


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Expose the stored ``_id`` as ``id``."""
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def serialize_docs(docs: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [serialize_doc(d) for d in docs]


def validate_payload(model: Type[M], data: Any) -> M:
    """Parse a write payload, raising ValidationError before anything is written."""
    if isinstance(data, model):
        return data
    if data is None:
        raise ValidationError(f"{model.__name__} payload is required")
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {model.__name__}: {e.error_count()} error(s)",
                              errors=e.errors(include_url=False, include_context=False)) from e


class BaseModelStore:
    """Base for classes wrapping one primary collection."""

    collection_name: str = ""

    def __init__(self, db: Database):
        self.db = db

    @property
    def collection(self):
        return self.db[self.collection_name]

    def _get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        return serialize_doc(self.collection.find_one({"_id": doc_id}))

    def _get_or_raise(self, doc_id: str, label: Optional[str] = None) -> Dict[str, Any]:
        doc = self._get(doc_id)
        if doc is None:
            raise NotFoundError(f"{label or self.collection_name.rstrip('s').capitalize()} not found")
        return doc

    def _get_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        return serialize_doc(self.collection.find_one({"slug": slug}))

    def _profiles(self, user_ids: List[str]) -> List[Dict[str, Any]]:
        """User profiles for ``user_ids`` in the given order, skipping missing users."""
        if not user_ids:
            return []
        found = {d["_id"]: d for d in self.db.users.find({"_id": {"$in": list(user_ids)}})}
        return [serialize_doc(found[uid]) for uid in user_ids if uid in found]

    @staticmethod
    def _drop_unset(data: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in data.items() if v is not None}
