import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from pymongo import ASCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import as_text, contains, page_window, total_pages
from schemas import UserList, UserOut, UserPage

logger = logging.getLogger(__name__)


class UserService:
    """Read-only view of users; rows are created by the storefront, not here."""

    def __init__(self, db: Database):
        self.db = db

    def list_users(self) -> UserList:
        try:
            docs = list(self.db["user"].find({}))
            return UserList(users=self._with_counts(docs))
        except (PyMongoError, ValidationError) as e:
            logger.exception("Failed to fetch users")
            return UserList(ok=False, error=str(e))

    def list_users_paginated(self, page: int = 1, page_size: int = 10, search: Optional[str] = None) -> UserPage:
        page, page_size, offset = page_window(page, page_size)
        query: Dict[str, Any] = {}
        if search and search.strip():
            pattern = contains(search.strip())
            query = {"$or": [{"number": pattern}, {"address": pattern}]}
        try:
            total = self.db["user"].count_documents(query)
            docs = list(
                self.db["user"].find(query)
                .sort([("created_at", ASCENDING), ("_id", ASCENDING)])
                .skip(offset)
                .limit(page_size)
            )
            users = self._with_counts(docs)
        except (PyMongoError, ValidationError) as e:
            logger.exception("Failed to fetch users with pagination")
            return UserPage(ok=False, error=str(e))
        return UserPage(
            users=users,
            total_count=total,
            total_pages=total_pages(total, page_size),
            current_page=page,
        )

    def _with_counts(self, docs: List[Dict]) -> List[UserOut]:
        if not docs:
            return []
        ids = [d["_id"] for d in docs]
        counts = {
            row["_id"]: row["count"]
            for row in self.db["order"].aggregate([
                {"$match": {"user_id": {"$in": ids}}},
                {"$group": {"_id": "$user_id", "count": {"$sum": 1}}},
            ])
        }
        return [
            UserOut(
                id=str(d["_id"]),
                number=as_text(d.get("number")),
                address=as_text(d.get("address")),
                created_at=d.get("created_at"),
                updated_at=d.get("updated_at"),
                order_count=counts.get(d["_id"], 0),
            )
            for d in docs
        ]
