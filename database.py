"""
Database helpers

Connection to MongoDB plus the small helpers every query service shares:
id conversion, timestamps, substring filters and page arithmetic.

Collections (lowercased class name of the matching model in schemas.py):
- "user", "category", "product", "order", "cartitem", "admin_session"
"""

import logging
import math
import os
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "shop_admin")

NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]

_client: Optional[MongoClient] = None
db: Optional[Database] = None

if DATABASE_URL:
    try:
        _client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000)
        db = _client[DATABASE_NAME]
    except PyMongoError as e:
        logger.error("Could not connect to MongoDB: %s", e)
        db = None


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(id_str: Optional[str]) -> Optional[ObjectId]:
    """Parse a hex id; None when the value is not a valid ObjectId."""
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        return None


def contains(term: str) -> Dict[str, str]:
    """Case-insensitive substring match, the term taken literally."""
    return {"$regex": re.escape(term), "$options": "i"}


def page_window(page: int, page_size: int) -> Tuple[int, int, int]:
    """Clamp page inputs and return (page, page_size, offset)."""
    page = max(int(page or 1), 1)
    page_size = max(int(page_size or 1), 1)
    return page, page_size, (page - 1) * page_size


def total_pages(total_count: int, page_size: int) -> int:
    return math.ceil(total_count / page_size) if page_size else 0


def as_text(value: Any) -> Optional[str]:
    """Stored scalar as a string; None stays None."""
    return None if value is None else str(value)


def as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def is_duplicate_key(exc: Exception) -> bool:
    return isinstance(exc, DuplicateKeyError) or getattr(exc, "code", None) == 11000


def create_document(database: Database, collection_name: str, data: Dict[str, Any]) -> str:
    """Insert a document stamped with created_at/updated_at, return its id."""
    stamp = now()
    doc = {**data, "created_at": stamp, "updated_at": stamp}
    inserted_id = database[collection_name].insert_one(doc).inserted_id
    return str(inserted_id)


def ensure_indexes(database: Database) -> None:
    """Constraints and sort indexes the query services rely on."""
    database["category"].create_index([("name", ASCENDING)], unique=True)
    database["category"].create_index([("created_at", DESCENDING)])
    database["product"].create_index([("category_id", ASCENDING)])
    database["product"].create_index([("created_at", DESCENDING)])
    database["product"].create_index([("name", ASCENDING)])
    database["order"].create_index([("user_id", ASCENDING)])
    database["order"].create_index([("product_id", ASCENDING)])
    database["order"].create_index([("created_at", DESCENDING)])
    database["cartitem"].create_index(
        [("user_id", ASCENDING), ("product_id", ASCENDING), ("selected_details", ASCENDING)],
        unique=True,
    )
    database["admin_session"].create_index([("token", ASCENDING)], unique=True)
