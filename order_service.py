import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from pymongo import ASCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import (
    NEWEST_FIRST,
    as_int,
    as_text,
    contains,
    create_document,
    now,
    page_window,
    to_object_id,
    total_pages,
)
from product_service import normalize_price
from revalidate import ORDERS_PATH, RevalidationBus
from schemas import (
    ActionResult,
    OrderCategory,
    OrderCreate,
    OrderOut,
    OrderPage,
    OrderProduct,
    OrderResult,
    OrderRow,
    OrderUpdate,
    OrderUser,
    ProductOption,
    UserOption,
)

logger = logging.getLogger(__name__)

DEFAULT_STATUS = "checking order"
NOT_FOUND = "Order not found"
BAD_PRICE = "Price must be a valid number"


class OrderService:
    """Orders joined to their user, product and the product's category.

    Rows whose user or product no longer exists are still listed, with a
    placeholder in place of the missing side.
    """

    def __init__(self, db: Database, bus: Optional[RevalidationBus] = None):
        self.db = db
        self.bus = bus or RevalidationBus()

    # -------------------- Reads --------------------

    def list_orders(
        self,
        page: int = 1,
        page_size: int = 10,
        search: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> OrderPage:
        page, page_size, offset = page_window(page, page_size)
        try:
            query = self._filter(search, user_id)
            total = self.db["order"].count_documents(query)
            docs = list(self.db["order"].find(query).sort(NEWEST_FIRST).skip(offset).limit(page_size))
            rows = self._join(docs)
        except (PyMongoError, ValidationError) as e:
            logger.exception("Failed to fetch orders")
            return OrderPage(ok=False, error=str(e))
        return OrderPage(
            orders=rows,
            total_count=total,
            total_pages=total_pages(total, page_size),
            current_page=page,
        )

    def get_order(self, order_id: str) -> Optional[OrderOut]:
        oid = to_object_id(order_id)
        if oid is None:
            return None
        try:
            doc = self.db["order"].find_one({"_id": oid})
            if not doc:
                return None
            return self._join([doc])[0]
        except (PyMongoError, ValidationError):
            logger.exception("Failed to fetch order %s", order_id)
            return None

    def list_users_for_select(self) -> List[UserOption]:
        try:
            docs = self.db["user"].find({}, {"number": 1}).sort([("created_at", ASCENDING), ("_id", ASCENDING)])
            return [UserOption(id=str(d["_id"]), number=as_text(d.get("number"))) for d in docs]
        except PyMongoError:
            logger.exception("Failed to fetch users")
            return []

    def list_products_for_select(self) -> List[ProductOption]:
        try:
            docs = self.db["product"].find({}, {"name": 1, "price": 1}).sort("name", ASCENDING)
            return [
                ProductOption(id=str(d["_id"]), name=as_text(d.get("name")) or "", price=as_text(d.get("price")) or "0")
                for d in docs
            ]
        except PyMongoError:
            logger.exception("Failed to fetch products")
            return []

    # -------------------- Writes --------------------

    def create_order(self, payload: OrderCreate) -> OrderResult:
        try:
            price = normalize_price(payload.price)
        except ValueError:
            return OrderResult(success=False, error=BAD_PRICE, code="validation")
        doc = {
            "user_id": payload.user_id,
            "product_id": payload.product_id,
            "quantity": payload.quantity,
            "price": price,
            "status": payload.status or DEFAULT_STATUS,
            "selected_details": payload.selected_details or {},
        }
        try:
            new_id = create_document(self.db, "order", doc)
            created = self.db["order"].find_one({"_id": to_object_id(new_id)})
        except PyMongoError:
            logger.exception("Failed to create order")
            return OrderResult(success=False, error="Failed to create order", code="error")
        logger.info("Created order %s for user %s", new_id, payload.user_id)
        self.bus.revalidate(ORDERS_PATH)
        return OrderResult(success=True, id=new_id, order=_to_row(created))

    def update_order(self, order_id: str, payload: OrderUpdate) -> OrderResult:
        oid = to_object_id(order_id)
        if oid is None:
            return OrderResult(success=False, error=NOT_FOUND, code="not_found")
        update: Dict[str, Any] = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
        if "price" in update:
            try:
                update["price"] = normalize_price(update["price"])
            except ValueError:
                return OrderResult(success=False, error=BAD_PRICE, code="validation")
        update["updated_at"] = now()
        try:
            updated = self.db["order"].find_one_and_update(
                {"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER
            )
        except PyMongoError:
            logger.exception("Failed to update order %s", order_id)
            return OrderResult(success=False, error="Failed to update order", code="error")
        if not updated:
            return OrderResult(success=False, error=NOT_FOUND, code="not_found")
        self.bus.revalidate(ORDERS_PATH)
        return OrderResult(success=True, id=order_id, order=_to_row(updated))

    def delete_order(self, order_id: str) -> ActionResult:
        oid = to_object_id(order_id)
        try:
            if oid is not None:
                self.db["order"].delete_one({"_id": oid})
        except PyMongoError:
            logger.exception("Failed to delete order %s", order_id)
            return ActionResult.fail("Failed to delete order")
        self.bus.revalidate(ORDERS_PATH)
        return ActionResult.ok(id=order_id)

    # -------------------- Helpers --------------------

    def _filter(self, search: Optional[str], user_id: Optional[str]) -> Dict[str, Any]:
        clauses: List[Dict[str, Any]] = []
        if user_id:
            clauses.append({"user_id": user_id})
        if search:
            pattern = contains(search)
            user_ids = [
                u["_id"] for u in self.db["user"].find(
                    {"$or": [{"number": pattern}, {"address": pattern}]}, {"_id": 1}
                )
            ]
            product_ids = [str(p["_id"]) for p in self.db["product"].find({"name": pattern}, {"_id": 1})]
            clauses.append({"$or": [
                {"status": pattern},
                {"user_id": {"$in": user_ids}},
                {"product_id": {"$in": product_ids}},
            ]})
        if not clauses:
            return {}
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}

    def _join(self, docs: List[Dict]) -> List[OrderOut]:
        user_ids = list({d.get("user_id") for d in docs if d.get("user_id")})
        users = {
            u["_id"]: u for u in self.db["user"].find({"_id": {"$in": user_ids}})
        } if user_ids else {}

        product_oids = {to_object_id(d.get("product_id")) for d in docs if d.get("product_id")}
        product_oids.discard(None)
        products = {
            str(p["_id"]): p for p in self.db["product"].find({"_id": {"$in": list(product_oids)}})
        } if product_oids else {}

        category_oids = {to_object_id(p.get("category_id")) for p in products.values() if p.get("category_id")}
        category_oids.discard(None)
        categories = {
            str(c["_id"]): c for c in self.db["category"].find({"_id": {"$in": list(category_oids)}}, {"name": 1})
        } if category_oids else {}

        rows = []
        for doc in docs:
            row = _to_row(doc)
            user = users.get(doc.get("user_id"))
            product = products.get(doc.get("product_id"))
            out = OrderOut(**row.model_dump())
            if user:
                out.user = OrderUser(
                    id=str(user["_id"]),
                    number=as_text(user.get("number")),
                    address=as_text(user.get("address")),
                )
            if product:
                category = categories.get(as_text(product.get("category_id")) or "")
                out.product = OrderProduct(
                    id=str(product["_id"]),
                    name=as_text(product.get("name")) or "Unknown Product",
                    price=as_text(product.get("price")) or "0",
                    category=(
                        OrderCategory(id=str(category["_id"]), name=as_text(category.get("name")) or "")
                        if category else None
                    ),
                )
            rows.append(out)
        return rows


def _to_row(doc: Dict) -> OrderRow:
    selected = doc.get("selected_details")
    return OrderRow(
        id=str(doc["_id"]),
        user_id=str(doc.get("user_id", "")),
        product_id=str(doc.get("product_id", "")),
        quantity=as_int(doc.get("quantity")),
        price=as_text(doc.get("price")) or "0",
        status=as_text(doc.get("status")) or DEFAULT_STATUS,
        selected_details=selected if isinstance(selected, dict) else {},
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )
