import logging
import os
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pymongo.database import Database
from pymongo.errors import PyMongoError

import auth
import database
from category_service import CategoryService
from order_service import OrderService
from product_service import ProductService
from revalidate import RevalidationBus
from schemas import (
    ORDER_STATUSES,
    ActionResult,
    AdminLogin,
    AdminUser,
    CartItem,
    Category,
    CategoryCreate,
    CategoryList,
    CategoryOption,
    CategoryOut,
    CategoryUpdate,
    Order,
    OrderCreate,
    OrderOut,
    OrderPage,
    OrderResult,
    OrderUpdate,
    Product,
    ProductForm,
    ProductOption,
    ProductOut,
    ProductPage,
    TokenResponse,
    Upload,
    User,
    UserList,
    UserOption,
    UserPage,
)
from storage import UPLOAD_DIR, UPLOAD_ROUTE, LocalBlobStore
from user_service import UserService

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is None:
        logger.warning("DATABASE_URL not set; running without a database")
    else:
        try:
            database.ensure_indexes(database.db)
        except PyMongoError:
            logger.exception("Could not create indexes")
    yield


app = FastAPI(title="Shop Admin API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount(UPLOAD_ROUTE, StaticFiles(directory=UPLOAD_DIR, check_dir=False), name="uploads")

revalidation_bus = RevalidationBus()

STATUS_BY_CODE = {"validation": 400, "conflict": 400, "not_found": 404, "error": 500}


# -------------------- Dependencies --------------------

def get_db() -> Database:
    if database.db is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return database.db


@lru_cache(maxsize=1)
def get_blob_store() -> LocalBlobStore:
    return LocalBlobStore()


def get_bus() -> RevalidationBus:
    return revalidation_bus


def category_service(db: Database = Depends(get_db), bus: RevalidationBus = Depends(get_bus)) -> CategoryService:
    return CategoryService(db, bus)


def product_service(
    db: Database = Depends(get_db),
    blobs=Depends(get_blob_store),
    bus: RevalidationBus = Depends(get_bus),
) -> ProductService:
    return ProductService(db, blobs, bus)


def order_service(db: Database = Depends(get_db), bus: RevalidationBus = Depends(get_bus)) -> OrderService:
    return OrderService(db, bus)


def user_service(db: Database = Depends(get_db)) -> UserService:
    return UserService(db)


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid authorization header")
    return authorization.split(" ", 1)[1]


def auth_dependency(
    authorization: Optional[str] = Header(None),
    db: Database = Depends(get_db),
) -> AdminUser:
    session = auth.get_session(db, bearer_token(authorization))
    if not session:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return AdminUser(username=session["username"])


def unwrap(result: ActionResult) -> ActionResult:
    if not result.success:
        raise HTTPException(status_code=STATUS_BY_CODE.get(result.code or "error", 500), detail=result.error)
    return result


def read_uploads(files: List[UploadFile]) -> List[Upload]:
    return [Upload(filename=f.filename or "upload", content=f.file.read()) for f in files]


def to_int(value: Optional[str]) -> int:
    try:
        return int(value) if value else 0
    except ValueError:
        return 0


# -------------------- Health & Test --------------------

@app.get("/")
def read_root():
    return {"message": "Shop Admin API is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if database.DATABASE_URL else "❌ Not Set",
        "database_name": database.DATABASE_NAME,
        "counts": {},
    }
    if database.db is None:
        return response
    try:
        for name in ("user", "category", "product", "order"):
            response["counts"][name] = database.db[name].estimated_document_count()
        response["database"] = "✅ Connected & Working"
    except PyMongoError as e:
        response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    return response


@app.get("/schema")
def get_schema():
    models = [User, Category, Product, Order, CartItem]
    return {m.__name__.lower(): m.model_json_schema() for m in models}


# -------------------- Auth --------------------

@app.post("/admin/login", response_model=TokenResponse)
def login(payload: AdminLogin, db: Database = Depends(get_db)):
    if not auth.validate_credentials(payload.username, payload.password):
        logger.info("Rejected admin login for %r", payload.username)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return TokenResponse(access_token=auth.create_session(db, payload.username))


@app.post("/admin/logout", response_model=dict)
def logout(authorization: Optional[str] = Header(None), db: Database = Depends(get_db)):
    auth.end_session(db, bearer_token(authorization))
    return {"ok": True}


@app.get("/me", response_model=AdminUser)
def me(user: AdminUser = Depends(auth_dependency)):
    return user


@app.get("/admin/revalidations", response_model=List[dict])
def recent_revalidations(user: AdminUser = Depends(auth_dependency), bus: RevalidationBus = Depends(get_bus)):
    return bus.recent()


# -------------------- Users --------------------

@app.get("/admin/users", response_model=UserList)
def list_users(user: AdminUser = Depends(auth_dependency), service: UserService = Depends(user_service)):
    return service.list_users()


@app.get("/admin/users/page", response_model=UserPage)
def list_users_page(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    search: Optional[str] = Query(None),
    user: AdminUser = Depends(auth_dependency),
    service: UserService = Depends(user_service),
):
    return service.list_users_paginated(page, page_size, search)


# -------------------- Categories --------------------

@app.get("/admin/categories", response_model=CategoryList)
def list_categories(
    q: Optional[str] = Query(None),
    user: AdminUser = Depends(auth_dependency),
    service: CategoryService = Depends(category_service),
):
    return service.search_categories(q) if q else service.list_categories()


@app.get("/admin/categories/options", response_model=List[CategoryOption])
def category_options(user: AdminUser = Depends(auth_dependency), service: CategoryService = Depends(category_service)):
    return service.list_categories_for_select()


@app.get("/admin/categories/{category_id}", response_model=CategoryOut)
def get_category(
    category_id: str,
    user: AdminUser = Depends(auth_dependency),
    service: CategoryService = Depends(category_service),
):
    category = service.get_category(category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


@app.post("/admin/categories", response_model=ActionResult)
def create_category(
    payload: CategoryCreate,
    user: AdminUser = Depends(auth_dependency),
    service: CategoryService = Depends(category_service),
):
    return unwrap(service.create_category(payload))


@app.put("/admin/categories/{category_id}", response_model=ActionResult)
def update_category(
    category_id: str,
    payload: CategoryUpdate,
    user: AdminUser = Depends(auth_dependency),
    service: CategoryService = Depends(category_service),
):
    return unwrap(service.update_category(category_id, payload))


@app.delete("/admin/categories/{category_id}", response_model=ActionResult)
def delete_category(
    category_id: str,
    user: AdminUser = Depends(auth_dependency),
    service: CategoryService = Depends(category_service),
):
    return unwrap(service.delete_category(category_id))


# -------------------- Products --------------------

def product_form(
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    quantity: Optional[str] = Form(None),
    quantity_type: Optional[Literal["limited", "unlimited"]] = Form(None),
    category_id: Optional[str] = Form(None),
    info: Optional[str] = Form(None),
    details: Optional[str] = Form(None),
    existing_images: Optional[str] = Form(None),
) -> ProductForm:
    return ProductForm(
        name=name,
        description=description,
        price=price,
        quantity=to_int(quantity),
        quantity_type=quantity_type,
        category_id=category_id,
        info=info,
        details=details,
        existing_images=existing_images,
    )


@app.get("/admin/products", response_model=ProductPage)
def list_products(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    search: Optional[str] = Query(None),
    category_id: Optional[str] = Query(None),
    user: AdminUser = Depends(auth_dependency),
    service: ProductService = Depends(product_service),
):
    return service.list_products(page, page_size, search, category_id)


@app.get("/admin/products/{product_id}", response_model=ProductOut)
def get_product(
    product_id: str,
    user: AdminUser = Depends(auth_dependency),
    service: ProductService = Depends(product_service),
):
    product = service.get_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.post("/admin/products", response_model=ActionResult)
def create_product(
    form: ProductForm = Depends(product_form),
    images: List[UploadFile] = File(default=[]),
    user: AdminUser = Depends(auth_dependency),
    service: ProductService = Depends(product_service),
):
    return unwrap(service.create_product(form, read_uploads(images)))


@app.put("/admin/products/{product_id}", response_model=ActionResult)
def update_product(
    product_id: str,
    form: ProductForm = Depends(product_form),
    images: List[UploadFile] = File(default=[]),
    user: AdminUser = Depends(auth_dependency),
    service: ProductService = Depends(product_service),
):
    return unwrap(service.update_product(product_id, form, read_uploads(images)))


@app.delete("/admin/products/{product_id}", response_model=ActionResult)
def delete_product(
    product_id: str,
    user: AdminUser = Depends(auth_dependency),
    service: ProductService = Depends(product_service),
):
    return unwrap(service.delete_product(product_id))


@app.delete("/admin/products/{product_id}/images", response_model=ActionResult)
def delete_product_image(
    product_id: str,
    url: str = Query(..., min_length=1),
    user: AdminUser = Depends(auth_dependency),
    service: ProductService = Depends(product_service),
):
    return unwrap(service.delete_product_image(product_id, url))


# -------------------- Orders --------------------

@app.get("/admin/orders", response_model=OrderPage)
def list_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    search: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    user: AdminUser = Depends(auth_dependency),
    service: OrderService = Depends(order_service),
):
    return service.list_orders(page, page_size, search, user_id)


@app.get("/admin/orders/options/users", response_model=List[UserOption])
def order_user_options(user: AdminUser = Depends(auth_dependency), service: OrderService = Depends(order_service)):
    return service.list_users_for_select()


@app.get("/admin/orders/options/statuses", response_model=List[str])
def order_status_options(user: AdminUser = Depends(auth_dependency)):
    return ORDER_STATUSES


@app.get("/admin/orders/options/products", response_model=List[ProductOption])
def order_product_options(user: AdminUser = Depends(auth_dependency), service: OrderService = Depends(order_service)):
    return service.list_products_for_select()


@app.get("/admin/orders/{order_id}", response_model=OrderOut)
def get_order(
    order_id: str,
    user: AdminUser = Depends(auth_dependency),
    service: OrderService = Depends(order_service),
):
    order = service.get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@app.post("/admin/orders", response_model=OrderResult)
def create_order(
    payload: OrderCreate,
    user: AdminUser = Depends(auth_dependency),
    service: OrderService = Depends(order_service),
):
    return unwrap(service.create_order(payload))


@app.patch("/admin/orders/{order_id}", response_model=OrderResult)
def update_order(
    order_id: str,
    payload: OrderUpdate,
    user: AdminUser = Depends(auth_dependency),
    service: OrderService = Depends(order_service),
):
    return unwrap(service.update_order(order_id, payload))


@app.delete("/admin/orders/{order_id}", response_model=ActionResult)
def delete_order(
    order_id: str,
    user: AdminUser = Depends(auth_dependency),
    service: OrderService = Depends(order_service),
):
    return unwrap(service.delete_order(order_id))


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
