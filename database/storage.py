"""
Blob storage for uploaded images, backed by GridFS.

Blobs are addressed by a path such as ``events/<event_id>/<file>``; the URL
handed back to callers is ``gridfs://<bucket>/<path>``.
"""
import logging
import re
from typing import Optional

import gridfs
from gridfs.errors import NoFile
from pymongo.database import Database

from .errors import NotFoundError

logger = logging.getLogger(__name__)

URL_SCHEME = "gridfs://"


class BlobStorage:
    def __init__(self, db: Database, bucket: str = "happen_media"):
        self.bucket = bucket
        self.fs = gridfs.GridFS(db, collection=bucket)

    def url_for(self, path: str) -> str:
        return f"{URL_SCHEME}{self.bucket}/{path}"

    def path_from(self, url_or_path: str) -> str:
        """Accept a URL (query string ignored) or a bare path."""
        path = url_or_path.split("?")[0]
        prefix = f"{URL_SCHEME}{self.bucket}/"
        if path.startswith(prefix):
            path = path[len(prefix):]
        return path.lstrip("/")

    def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        file_id = self.fs.put(data, filename=path, contentType=content_type)
        logger.info(f"Stored blob '{path}' ({len(data)} bytes, id={file_id})")
        return self.url_for(path)

    def open(self, url_or_path: str) -> bytes:
        path = self.path_from(url_or_path)
        try:
            return self.fs.get_last_version(path).read()
        except NoFile:
            raise NotFoundError(f"Blob not found: {path}")

    def exists(self, url_or_path: str) -> bool:
        return self.fs.exists(filename=self.path_from(url_or_path))

    def delete(self, url_or_path: str) -> int:
        """Delete every stored version of a blob."""
        path = self.path_from(url_or_path)
        file_ids = [f._id for f in self.fs.find({"filename": path})]
        if not file_ids:
            raise NotFoundError(f"Blob not found: {path}")
        for file_id in file_ids:
            self.fs.delete(file_id)
        logger.info(f"Deleted blob '{path}'")
        return len(file_ids)

    def delete_prefix(self, prefix: str) -> int:
        """Delete all blobs under a path prefix such as ``venues/<id>/``."""
        pattern = "^" + re.escape(self.path_from(prefix))
        file_ids = [f._id for f in self.fs.find({"filename": {"$regex": pattern}})]
        for file_id in file_ids:
            self.fs.delete(file_id)
        logger.info(f"Deleted {len(file_ids)} blob(s) under '{prefix}'")
        return len(file_ids)
