"""
View invalidation: after a successful write the services announce which
admin listing is stale. Announcements are logged and kept in a short
history the admin UI polls through ``GET /admin/revalidations``.
"""

import logging
from collections import deque
from typing import Deque, Dict, List

from database import now

logger = logging.getLogger(__name__)

CATEGORIES_PATH = "/admin/categories"
PRODUCTS_PATH = "/admin/products"
ORDERS_PATH = "/admin/orders"


class RevalidationBus:
    def __init__(self, history: int = 100):
        self._recent: Deque[Dict] = deque(maxlen=history)

    def revalidate(self, path: str) -> None:
        self._recent.append({"path": path, "at": now()})
        logger.info("Revalidate %s", path)

    def recent(self) -> List[Dict]:
        return list(self._recent)
