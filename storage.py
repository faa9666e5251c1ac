"""
Blob storage for product images.

Files land in UPLOAD_DIR and are served by the API under /uploads.
"""

import logging
import os
from typing import Optional
from urllib.parse import urlparse
from uuid import uuid4

from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")
UPLOAD_ROUTE = "/uploads"


class BlobStoreError(Exception):
    pass


class LocalBlobStore:
    def __init__(self, root: str = UPLOAD_DIR, base_url: Optional[str] = PUBLIC_BASE_URL):
        self.root = root
        self.base_url = (base_url or "").rstrip("/")
        os.makedirs(self.root, exist_ok=True)

    def save(self, name: str, data: bytes) -> str:
        filename = f"{uuid4().hex[:12]}-{secure_filename(name) or 'upload'}"
        path = os.path.join(self.root, filename)
        try:
            with open(path, "wb") as fh:
                fh.write(data)
        except OSError as e:
            raise BlobStoreError(f"Could not store {name}: {e}") from e
        logger.info("Stored blob %s (%d bytes)", filename, len(data))
        return f"{self.base_url}{UPLOAD_ROUTE}/{filename}"

    def delete(self, url: str) -> None:
        path = self._path_for(url)
        if path is None or not os.path.isfile(path):
            raise BlobStoreError(f"No stored blob for {url}")
        try:
            os.remove(path)
        except OSError as e:
            raise BlobStoreError(f"Could not delete {url}: {e}") from e

    def _path_for(self, url: str) -> Optional[str]:
        route = urlparse(url).path
        if not route.startswith(UPLOAD_ROUTE + "/"):
            return None
        filename = route[len(UPLOAD_ROUTE) + 1:]
        # stored names never contain separators
        if not filename or filename != secure_filename(filename):
            return None
        return os.path.join(self.root, filename)
