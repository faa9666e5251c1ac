import json
import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

from pydantic import TypeAdapter, ValidationError
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
from revalidate import PRODUCTS_PATH, RevalidationBus
from schemas import (
    MAX_PRODUCT_IMAGES,
    QUANTITY_TYPES,
    ActionResult,
    DetailField,
    Product,
    ProductForm,
    ProductOut,
    ProductPage,
    Upload,
)
from storage import BlobStoreError

logger = logging.getLogger(__name__)

REQUIRED = "Name and price are required"
BAD_PRICE = "Price must be a valid number"
NAME_TOO_LONG = "Name must be at most 255 characters"
NOT_FOUND = "Product not found"
CATEGORY_NOT_FOUND = "Category not found"

PRICE_STEP = Decimal("0.01")
PRICE_LIMIT = Decimal("100000000")

_detail_fields = TypeAdapter(List[DetailField])


class DetailFieldsDecodeError(ValueError):
    pass


def decode_detail_fields(raw: Optional[str]) -> List[Dict[str, Any]]:
    """Parse the JSON list of detail-field definitions sent with a product form.

    Empty input means no details. Anything that is not a JSON list of
    ``{type, label, required, options}`` objects raises
    DetailFieldsDecodeError.
    """
    if raw is None or not raw.strip():
        return []
    try:
        value = json.loads(raw)
    except ValueError as e:
        raise DetailFieldsDecodeError(f"Invalid details JSON: {e}") from e
    try:
        fields = _detail_fields.validate_python(value)
    except ValidationError as e:
        raise DetailFieldsDecodeError(f"Invalid detail fields: {e.error_count()} error(s)") from e
    return [f.model_dump(exclude_none=True) for f in fields]


def normalize_price(value: Any) -> str:
    """Decimal string with two places, within NUMERIC(10, 2)."""
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid price {value!r}") from e
    if not amount.is_finite() or abs(amount) >= PRICE_LIMIT:
        raise ValueError(f"Invalid price {value!r}")
    return str(amount.quantize(PRICE_STEP, rounding=ROUND_HALF_UP))


def _as_list(value: Any) -> List:
    return value if isinstance(value, list) else []


class ProductService:
    def __init__(self, db: Database, blobs, bus: Optional[RevalidationBus] = None):
        self.db = db
        self.blobs = blobs
        self.bus = bus or RevalidationBus()

    # -------------------- Reads --------------------

    def list_products(
        self,
        page: int = 1,
        page_size: int = 10,
        search: Optional[str] = None,
        category_id: Optional[str] = None,
    ) -> ProductPage:
        page, page_size, offset = page_window(page, page_size)
        query: Dict[str, Any] = {}
        if search:
            query["name"] = contains(search)
        if category_id:
            query["category_id"] = category_id
        try:
            total = self.db["product"].count_documents(query)
            docs = list(self.db["product"].find(query).sort(NEWEST_FIRST).skip(offset).limit(page_size))
            names = self._category_names(docs)
            rows = [_to_out(d, names) for d in docs]
        except (PyMongoError, ValidationError) as e:
            logger.exception("Failed to fetch products")
            return ProductPage(ok=False, error=str(e))
        return ProductPage(
            products=rows,
            total_count=total,
            total_pages=total_pages(total, page_size),
            current_page=page,
        )

    def get_product(self, product_id: str) -> Optional[ProductOut]:
        try:
            doc = self._find(product_id)
            if not doc:
                return None
            return _to_out(doc, self._category_names([doc]))
        except (PyMongoError, ValidationError):
            logger.exception("Failed to fetch product %s", product_id)
            return None

    # -------------------- Writes --------------------

    def create_product(self, form: ProductForm, uploads: Iterable[Upload] = ()) -> ActionResult:
        invalid = self._validate(form)
        if invalid:
            return invalid
        warnings: List[str] = []
        details = self._details(form.details, warnings)
        category_id = form.category_id or None
        try:
            if category_id and not self._category_exists(category_id):
                return ActionResult.fail(CATEGORY_NOT_FOUND, "not_found")
        except PyMongoError:
            logger.exception("Failed to create product")
            return ActionResult.fail("Failed to create product")

        uploaded: List[str] = []
        try:
            for upload in list(uploads)[:MAX_PRODUCT_IMAGES]:
                if upload.size > 0:
                    uploaded.append(self.blobs.save(upload.filename, upload.content))
            product = Product(
                name=form.name.strip(),
                description=form.description or None,
                price=normalize_price(form.price),
                quantity=form.quantity or 0,
                quantity_type=form.quantity_type or "limited",
                category_id=category_id,
                images=uploaded,
                info=form.info or "",
                details=details,
            )
            new_id = create_document(
                self.db, "product", product.model_dump(exclude={"created_at", "updated_at"})
            )
        except BlobStoreError:
            logger.exception("Failed to upload product image")
            self._discard(uploaded)
            return ActionResult.fail("Failed to upload image")
        except PyMongoError:
            logger.exception("Failed to create product")
            self._discard(uploaded)
            return ActionResult.fail("Failed to create product")

        logger.info("Created product %s with %d image(s)", new_id, len(uploaded))
        self.bus.revalidate(PRODUCTS_PATH)
        return ActionResult.ok(id=new_id, warnings=warnings)

    def update_product(self, product_id: str, form: ProductForm, uploads: Iterable[Upload] = ()) -> ActionResult:
        invalid = self._validate(form)
        if invalid:
            return invalid
        oid = to_object_id(product_id)
        if oid is None:
            return ActionResult.fail(NOT_FOUND, "not_found")
        warnings: List[str] = []
        details = self._details(form.details, warnings)
        category_id = form.category_id or None
        try:
            current = self.db["product"].find_one({"_id": oid})
            if not current:
                return ActionResult.fail(NOT_FOUND, "not_found")
            if category_id and not self._category_exists(category_id):
                return ActionResult.fail(CATEGORY_NOT_FOUND, "not_found")
        except PyMongoError:
            logger.exception("Failed to update product %s", product_id)
            return ActionResult.fail("Failed to update product")

        stored = _as_list(current.get("images"))
        kept, clean = self._kept_images(form.existing_images, stored, warnings)
        images = list(kept)
        uploaded: List[str] = []
        try:
            for upload in uploads:
                if upload.size > 0 and len(images) < MAX_PRODUCT_IMAGES:
                    url = self.blobs.save(upload.filename, upload.content)
                    uploaded.append(url)
                    images.append(url)
            self.db["product"].update_one(
                {"_id": oid},
                {"$set": {
                    "name": form.name.strip(),
                    "description": form.description or None,
                    "price": normalize_price(form.price),
                    "quantity": form.quantity or 0,
                    "quantity_type": form.quantity_type or "limited",
                    "category_id": category_id,
                    "images": images,
                    "info": form.info or "",
                    "details": details,
                    "updated_at": now(),
                }},
            )
        except BlobStoreError:
            logger.exception("Failed to upload product image")
            self._discard(uploaded)
            return ActionResult.fail("Failed to upload image")
        except PyMongoError:
            logger.exception("Failed to update product %s", product_id)
            self._discard(uploaded)
            return ActionResult.fail("Failed to update product")

        if clean:
            self._discard([url for url in stored if url not in images])
        self.bus.revalidate(PRODUCTS_PATH)
        return ActionResult.ok(id=product_id, warnings=warnings)

    def delete_product(self, product_id: str) -> ActionResult:
        try:
            doc = self._find(product_id)
        except PyMongoError:
            logger.exception("Failed to delete product %s", product_id)
            return ActionResult.fail("Failed to delete product")
        if not doc:
            return ActionResult.fail(NOT_FOUND, "not_found")

        self._discard(_as_list(doc.get("images")))
        try:
            self.db["product"].delete_one({"_id": doc["_id"]})
        except PyMongoError:
            logger.exception("Failed to delete product %s", product_id)
            return ActionResult.fail("Failed to delete product")
        logger.info("Deleted product %s", product_id)
        self.bus.revalidate(PRODUCTS_PATH)
        return ActionResult.ok(id=product_id)

    def delete_product_image(self, product_id: str, image_url: str) -> ActionResult:
        try:
            doc = self._find(product_id)
            if not doc:
                return ActionResult.fail(NOT_FOUND, "not_found")
            images = _as_list(doc.get("images"))
            remaining = [url for url in images if url != image_url]
            self.db["product"].update_one(
                {"_id": doc["_id"]},
                {"$set": {"images": remaining, "updated_at": now()}},
            )
        except PyMongoError:
            logger.exception("Failed to delete image of product %s", product_id)
            return ActionResult.fail("Failed to delete image")
        # only blobs this product owns are removed
        if len(remaining) != len(images):
            self._discard([image_url])
        self.bus.revalidate(PRODUCTS_PATH)
        return ActionResult.ok(id=product_id)

    # -------------------- Helpers --------------------

    def _find(self, product_id: str) -> Optional[Dict]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        return self.db["product"].find_one({"_id": oid})

    def _category_exists(self, category_id: str) -> bool:
        oid = to_object_id(category_id)
        return oid is not None and self.db["category"].find_one({"_id": oid}, {"_id": 1}) is not None

    def _category_names(self, docs: List[Dict]) -> Dict[str, str]:
        oids = {to_object_id(d.get("category_id")) for d in docs if d.get("category_id")}
        oids.discard(None)
        if not oids:
            return {}
        return {
            str(c["_id"]): c["name"]
            for c in self.db["category"].find({"_id": {"$in": list(oids)}}, {"name": 1})
        }

    def _validate(self, form: ProductForm) -> Optional[ActionResult]:
        name = (form.name or "").strip()
        price = (form.price or "").strip()
        if not name or not price:
            return ActionResult.fail(REQUIRED, "validation")
        if len(name) > 255:
            return ActionResult.fail(NAME_TOO_LONG, "validation")
        try:
            normalize_price(price)
        except ValueError:
            return ActionResult.fail(BAD_PRICE, "validation")
        return None

    def _details(self, raw: Optional[str], warnings: List[str]) -> List[Dict[str, Any]]:
        try:
            return decode_detail_fields(raw)
        except DetailFieldsDecodeError as e:
            logger.warning("Ignoring product details: %s", e)
            warnings.append(str(e))
            return []

    def _kept_images(self, raw: Optional[str], stored: List[str], warnings: List[str]):
        """Images the caller keeps, restricted to ones the product already has.

        Returns (kept, clean); clean is False when the list could not be
        decoded, in which case no stored blob is treated as dropped. A
        missing list keeps every stored image.
        """
        if raw is None or not raw.strip():
            return stored[:MAX_PRODUCT_IMAGES], True
        try:
            value = json.loads(raw)
        except ValueError as e:
            logger.warning("Invalid existing images JSON: %s", e)
            warnings.append(f"Invalid existing images JSON: {e}")
            return [], False
        if not isinstance(value, list):
            warnings.append("Existing images must be a JSON list")
            return [], False
        kept = []
        for url in value:
            if isinstance(url, str) and url in stored and url not in kept:
                kept.append(url)
        return kept[:MAX_PRODUCT_IMAGES], True

    def _discard(self, urls: Iterable[str]) -> None:
        for url in urls:
            try:
                self.blobs.delete(url)
            except Exception:
                logger.warning("Failed to delete image %s", url, exc_info=True)


def _to_out(doc: Dict, category_names: Dict[str, str]) -> ProductOut:
    category_id = as_text(doc.get("category_id"))
    quantity_type = doc.get("quantity_type")
    return ProductOut(
        id=str(doc["_id"]),
        name=as_text(doc.get("name")) or "",
        description=as_text(doc.get("description")),
        price=as_text(doc.get("price")) or "0",
        quantity=as_int(doc.get("quantity")),
        quantity_type=quantity_type if quantity_type in QUANTITY_TYPES else "limited",
        category_id=category_id,
        category_name=category_names.get(category_id) if category_id else None,
        images=[url for url in _as_list(doc.get("images")) if isinstance(url, str)],
        info=as_text(doc.get("info")) or "",
        details=[d for d in _as_list(doc.get("details")) if isinstance(d, dict)],
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )
