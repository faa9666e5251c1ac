import logging
from typing import Dict, List, Optional

from pydantic import ValidationError
from pymongo import ASCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import NEWEST_FIRST, as_text, contains, create_document, is_duplicate_key, now, to_object_id
from revalidate import CATEGORIES_PATH, RevalidationBus
from schemas import (
    ActionResult,
    Category,
    CategoryCreate,
    CategoryList,
    CategoryOption,
    CategoryOut,
    CategoryUpdate,
)

logger = logging.getLogger(__name__)

DUPLICATE_NAME = "Category name already exists"
HAS_PRODUCTS = "Cannot delete category with existing products"
NOT_FOUND = "Category not found"


class CategoryService:
    """Categories with live product counts.

    Name uniqueness is exact and case-sensitive. The unique index on
    ``category.name`` backs up the pre-insert check.
    """

    def __init__(self, db: Database, bus: Optional[RevalidationBus] = None):
        self.db = db
        self.bus = bus or RevalidationBus()

    # -------------------- Reads --------------------

    def list_categories(self) -> CategoryList:
        try:
            return CategoryList(categories=self._with_counts({}))
        except (PyMongoError, ValidationError) as e:
            logger.exception("Failed to fetch categories")
            return CategoryList(ok=False, error=str(e))

    def search_categories(self, term: Optional[str]) -> CategoryList:
        if not term or not term.strip():
            return self.list_categories()
        pattern = contains(term)
        query = {"$or": [{"name": pattern}, {"description": pattern}]}
        try:
            return CategoryList(categories=self._with_counts(query))
        except (PyMongoError, ValidationError) as e:
            logger.exception("Failed to search categories")
            return CategoryList(ok=False, error=str(e))

    def get_category(self, category_id: str) -> Optional[CategoryOut]:
        oid = to_object_id(category_id)
        if oid is None:
            return None
        try:
            doc = self.db["category"].find_one({"_id": oid})
            if not doc:
                return None
            count = self.db["product"].count_documents({"category_id": str(oid)})
            return _to_out(doc, count)
        except (PyMongoError, ValidationError):
            logger.exception("Failed to fetch category %s", category_id)
            return None

    def list_categories_for_select(self) -> List[CategoryOption]:
        try:
            docs = self.db["category"].find({}, {"name": 1, "description": 1}).sort("name", ASCENDING)
            return [
                CategoryOption(
                    id=str(d["_id"]),
                    name=as_text(d.get("name")) or "",
                    description=as_text(d.get("description")),
                )
                for d in docs
            ]
        except PyMongoError:
            logger.exception("Failed to fetch category options")
            return []

    # -------------------- Writes --------------------

    def create_category(self, payload: CategoryCreate) -> ActionResult:
        try:
            if self.db["category"].find_one({"name": payload.name}):
                return ActionResult.fail(DUPLICATE_NAME, "conflict")
            doc = Category(name=payload.name, description=payload.description or None)
            new_id = create_document(self.db, "category", doc.model_dump(exclude={"created_at", "updated_at"}))
        except PyMongoError as e:
            if is_duplicate_key(e):
                return ActionResult.fail(DUPLICATE_NAME, "conflict")
            logger.exception("Failed to create category")
            return ActionResult.fail("Failed to create category")
        logger.info("Created category %s (%s)", new_id, payload.name)
        self.bus.revalidate(CATEGORIES_PATH)
        return ActionResult.ok(id=new_id)

    def update_category(self, category_id: str, payload: CategoryUpdate) -> ActionResult:
        oid = to_object_id(category_id)
        if oid is None:
            return ActionResult.fail(NOT_FOUND, "not_found")
        try:
            existing = self.db["category"].find_one({"name": payload.name})
            if existing and existing["_id"] != oid:
                return ActionResult.fail(DUPLICATE_NAME, "conflict")
            result = self.db["category"].update_one(
                {"_id": oid},
                {"$set": {
                    "name": payload.name,
                    "description": payload.description or None,
                    "updated_at": now(),
                }},
            )
        except PyMongoError as e:
            if is_duplicate_key(e):
                return ActionResult.fail(DUPLICATE_NAME, "conflict")
            logger.exception("Failed to update category %s", category_id)
            return ActionResult.fail("Failed to update category")
        if result.matched_count == 0:
            return ActionResult.fail(NOT_FOUND, "not_found")
        self.bus.revalidate(CATEGORIES_PATH)
        return ActionResult.ok(id=category_id)

    def delete_category(self, category_id: str) -> ActionResult:
        oid = to_object_id(category_id)
        if oid is None:
            return ActionResult.fail(NOT_FOUND, "not_found")
        try:
            if self.db["product"].find_one({"category_id": str(oid)}, {"_id": 1}):
                return ActionResult.fail(HAS_PRODUCTS, "conflict")
            result = self.db["category"].delete_one({"_id": oid})
        except PyMongoError:
            logger.exception("Failed to delete category %s", category_id)
            return ActionResult.fail("Failed to delete category")
        if result.deleted_count == 0:
            return ActionResult.fail(NOT_FOUND, "not_found")
        logger.info("Deleted category %s", category_id)
        self.bus.revalidate(CATEGORIES_PATH)
        return ActionResult.ok(id=category_id)

    # -------------------- Helpers --------------------

    def _with_counts(self, query: Dict) -> List[CategoryOut]:
        docs = list(self.db["category"].find(query).sort(NEWEST_FIRST))
        if not docs:
            return []
        ids = [str(d["_id"]) for d in docs]
        counts = {
            row["_id"]: row["count"]
            for row in self.db["product"].aggregate([
                {"$match": {"category_id": {"$in": ids}}},
                {"$group": {"_id": "$category_id", "count": {"$sum": 1}}},
            ])
        }
        return [_to_out(d, counts.get(str(d["_id"]), 0)) for d in docs]


def _to_out(doc: Dict, product_count: int) -> CategoryOut:
    return CategoryOut(
        id=str(doc["_id"]),
        name=as_text(doc.get("name")) or "",
        description=as_text(doc.get("description")),
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
        product_count=int(product_count),
    )
