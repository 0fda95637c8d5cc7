"""MongoDB access for storefront."""

import logging
import math
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from .config import Settings, get_settings
from .errors import ValidationError

logger = logging.getLogger(__name__)

USERS = "users"
PRODUCTS = "products"
ORDERS = "orders"
REVIEWS = "reviews"

MAX_PAGE_SIZE = 100

T = TypeVar("T")

_client: MongoClient | None = None


def get_client(settings: Settings | None = None) -> MongoClient:
    """Get the process-wide MongoClient, connecting lazily."""
    global _client
    if _client is None:
        settings = settings or get_settings()
        _client = MongoClient(settings.mongodb_uri, serverSelectionTimeoutMS=5000)
    return _client


def get_database() -> Database:
    """Get the configured database. Used as a FastAPI dependency."""
    settings = get_settings()
    return get_client(settings)[settings.db_name]


def ping(db: Database) -> None:
    """Round-trip to the server; raises pymongo errors if it is unreachable."""
    db.client.admin.command("ping")


def ensure_indexes(db: Database) -> None:
    """Create the indexes the services rely on for uniqueness and lookups."""
    db[USERS].create_index("email", unique=True)
    db[USERS].create_index([("role", ASCENDING), ("created_at", DESCENDING)])

    db[PRODUCTS].create_index([("category", ASCENDING), ("price", ASCENDING)])
    db[PRODUCTS].create_index([("rating.average", DESCENDING), ("sold_count", DESCENDING)])
    db[PRODUCTS].create_index([("is_active", ASCENDING), ("created_at", DESCENDING)])

    db[ORDERS].create_index("order_number", unique=True)
    db[ORDERS].create_index([("user", ASCENDING), ("created_at", DESCENDING)])
    db[ORDERS].create_index("order_status")

    # One review per user per product
    db[REVIEWS].create_index([("user", ASCENDING), ("product", ASCENDING)], unique=True)
    db[REVIEWS].create_index([("product", ASCENDING), ("created_at", DESCENDING)])
    logger.debug("Indexes ensured on %s", db.name)


def parse_object_id(value: str, kind: str) -> ObjectId:
    """
    Parse a path or body identifier.

    Raises:
        ValidationError: If ``value`` is not a valid ObjectId.
    """
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {kind} id: {value}")


def parse_sort(sort: str, allowed: dict[str, str]) -> list[tuple[str, int]]:
    """
    Turn ``"-price"`` / ``"name"`` style sort strings into a pymongo sort spec.

    Several keys may be comma separated. Keys are looked up in ``allowed``,
    which maps request names to document fields.
    """
    spec: list[tuple[str, int]] = []
    for raw in sort.split(","):
        key = raw.strip()
        if not key:
            continue
        direction = ASCENDING
        if key.startswith("-"):
            direction = DESCENDING
            key = key[1:]
        if key not in allowed:
            raise ValidationError(
                f"Cannot sort by '{key}'. Allowed: {', '.join(sorted(allowed))}"
            )
        spec.append((allowed[key], direction))
    return spec


@dataclass
class Page(Generic[T]):
    """One page of a listing plus the size of the full result."""

    items: list[T]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def meta(self) -> dict[str, Any]:
        """Pagination fields of the response envelope."""
        return {
            "count": len(self.items),
            "total": self.total,
            "pages": self.pages,
            "currentPage": self.page,
        }


def page_bounds(page: int, limit: int) -> tuple[int, int]:
    """Validate ``page``/``limit`` and return ``(skip, limit)``."""
    if page < 1:
        raise ValidationError("page must be at least 1")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    return (page - 1) * limit, limit
