from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from pymongo.errors import ServerSelectionTimeoutError

from category_service import CategoryService
from database import ensure_indexes
from order_service import OrderService
from product_service import ProductService
from revalidate import RevalidationBus
from schemas import CategoryCreate, ProductForm, Upload
from storage import BlobStoreError
from user_service import UserService


class MemoryBlobStore:
    """In-memory stand-in for the image store."""

    def __init__(self):
        self.blobs = {}
        self.fail_save = set()
        self.fail_delete = set()
        self.deleted = []
        self._counter = 0

    def save(self, name, data):
        if name in self.fail_save:
            raise BlobStoreError(f"upload of {name} refused")
        self._counter += 1
        url = f"https://blobs.test/uploads/{self._counter}-{name}"
        self.blobs[url] = data
        return url

    def delete(self, url):
        if url in self.fail_delete:
            raise BlobStoreError(f"delete of {url} refused")
        if url not in self.blobs:
            raise BlobStoreError(f"unknown blob {url}")
        del self.blobs[url]
        self.deleted.append(url)


class BrokenCollection:
    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise ServerSelectionTimeoutError("database unreachable")
        return fail


class BrokenDatabase:
    def __getitem__(self, name):
        return BrokenCollection()


@pytest.fixture
def db():
    database = mongomock.MongoClient()["shop_admin_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def broken_db():
    return BrokenDatabase()


@pytest.fixture
def blobs():
    return MemoryBlobStore()


@pytest.fixture
def bus():
    return RevalidationBus()


@pytest.fixture
def categories(db, bus):
    return CategoryService(db, bus)


@pytest.fixture
def products(db, blobs, bus):
    return ProductService(db, blobs, bus)


@pytest.fixture
def orders(db, bus):
    return OrderService(db, bus)


@pytest.fixture
def users(db):
    return UserService(db)


@pytest.fixture
def add_user(db):
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _add(user_id, number=None, address=None, offset=0):
        stamp = base + timedelta(minutes=offset)
        db["user"].insert_one({
            "_id": user_id,
            "number": number,
            "address": address,
            "created_at": stamp,
            "updated_at": stamp,
        })
        return user_id
    return _add


@pytest.fixture
def add_category(categories):
    def _add(name, description=None):
        result = categories.create_category(CategoryCreate(name=name, description=description))
        assert result.success, result.error
        return result.id
    return _add


@pytest.fixture
def add_product(products):
    def _add(name, price="10.00", category_id=None, images=0, **fields):
        uploads = [Upload(filename=f"{name}-{i}.png", content=b"png") for i in range(images)]
        form = ProductForm(name=name, price=price, category_id=category_id, **fields)
        result = products.create_product(form, uploads)
        assert result.success, result.error
        return result.id
    return _add
