"""Product catalog: listing, CRUD, tags and stock."""

import logging
import re
from typing import Any

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

from .database import PRODUCTS, Page, page_bounds, parse_object_id, parse_sort
from .errors import InvalidArgument, NotFound, ValidationError
from .models import Category, Product, utc_now

logger = logging.getLogger(__name__)

# Fields a client may write; rating and sold_count are derived.
PRODUCT_FIELDS = (
    "name",
    "description",
    "category",
    "price",
    "stock",
    "images",
    "brand",
    "material",
    "color",
    "compatible_models",
    "tags",
    "is_active",
)
REQUIRED_PRODUCT_FIELDS = ("name", "description", "category", "price")

SORT_FIELDS = {
    "created_at": "created_at",
    "createdAt": "created_at",
    "name": "name",
    "price": "price",
    "stock": "stock",
    "rating": "rating.average",
    "sold_count": "sold_count",
}

MIN_NAME_LENGTH = 3
MIN_DESCRIPTION_LENGTH = 10


def _require_str_list(value: Any, name: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"{name} must be a list of strings")
    return list(value)


def validate_product_fields(fields: dict[str, Any], partial: bool = False) -> dict[str, Any]:
    """
    Check product fields against the catalog constraints.

    Args:
        fields: Field values keyed by document field name.
        partial: Skip required-field checks (for updates).

    Returns:
        Normalized field values ready to store.

    Raises:
        ValidationError: On unknown fields or constraint violations.
    """
    unknown = set(fields) - set(PRODUCT_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown product fields: {', '.join(sorted(unknown))}")

    if not partial:
        missing = [f for f in REQUIRED_PRODUCT_FIELDS if fields.get(f) is None]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    clean: dict[str, Any] = {}
    for key, value in fields.items():
        if value is None:
            if key in REQUIRED_PRODUCT_FIELDS:
                raise ValidationError(f"{key} cannot be null")
            clean[key] = None
            continue

        if key == "name":
            value = str(value).strip()
            if len(value) < MIN_NAME_LENGTH:
                raise ValidationError(
                    f"Product name must be at least {MIN_NAME_LENGTH} characters"
                )
        elif key == "description":
            if len(str(value)) < MIN_DESCRIPTION_LENGTH:
                raise ValidationError(
                    f"Description must be at least {MIN_DESCRIPTION_LENGTH} characters"
                )
        elif key == "category":
            try:
                value = Category(value).value
            except ValueError:
                allowed = ", ".join(c.value for c in Category)
                raise ValidationError(f"Invalid category '{value}'. Allowed: {allowed}")
        elif key == "price":
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise ValidationError("Price cannot be negative")
            value = float(value)
        elif key == "stock":
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationError("Stock cannot be negative")
        elif key in ("images", "tags"):
            value = _require_str_list(value, key)
        elif key in ("brand", "material", "color"):
            value = str(value).strip()
        elif key == "compatible_models":
            models = []
            for entry in value:
                if not isinstance(entry, dict) or not entry.get("brand") or not entry.get("model_name"):
                    raise ValidationError("Compatible models need a brand and a model_name")
                models.append(
                    {
                        "brand": entry["brand"],
                        "model_name": entry["model_name"],
                        "release_year": entry.get("release_year"),
                    }
                )
            value = models
        elif key == "is_active":
            value = bool(value)
        clean[key] = value
    return clean


class ProductCatalog:
    """Reads and writes the products collection."""

    def __init__(self, db: Database):
        self.db = db
        self.products = db[PRODUCTS]

    def _find_one(self, oid: ObjectId) -> Product:
        doc = self.products.find_one({"_id": oid})
        if doc is None:
            raise NotFound("Product", str(oid))
        return Product.from_document(doc)

    def list_products(
        self,
        category: str | None = None,
        min_price: float | None = None,
        max_price: float | None = None,
        search: str | None = None,
        sort: str = "-created_at",
        page: int = 1,
        limit: int = 12,
        include_inactive: bool = False,
    ) -> Page[Product]:
        """
        List products matching the filters, one page at a time.

        ``include_inactive`` must only be passed as True for admins; callers
        resolve that from the request identity.
        """
        query: dict[str, Any] = {}
        if not include_inactive:
            query["is_active"] = True
        if category:
            query["category"] = category

        price_filter: dict[str, float] = {}
        if min_price is not None:
            price_filter["$gte"] = float(min_price)
        if max_price is not None:
            price_filter["$lte"] = float(max_price)
        if price_filter:
            query["price"] = price_filter

        if search:
            pattern = re.escape(search.strip())
            query["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"description": {"$regex": pattern, "$options": "i"}},
                {"tags": {"$regex": pattern, "$options": "i"}},
            ]

        skip, limit = page_bounds(page, limit)
        sort_spec = parse_sort(sort, SORT_FIELDS)
        cursor = self.products.find(query)
        if sort_spec:
            cursor = cursor.sort(sort_spec)
        items = [Product.from_document(d) for d in cursor.skip(skip).limit(limit)]
        total = self.products.count_documents(query)
        return Page(items=items, total=total, page=page, limit=limit)

    def get_product(self, product_id: str) -> Product:
        """
        Raises:
            NotFound: If the product doesn't exist.
        """
        return self._find_one(parse_object_id(product_id, "product"))

    def get_many(self, product_ids: list[str]) -> dict[str, Product]:
        """Fetch products by id; missing ids are simply absent from the result."""
        oids = [ObjectId(pid) for pid in product_ids]
        return {
            str(doc["_id"]): Product.from_document(doc)
            for doc in self.products.find({"_id": {"$in": oids}})
        }

    def create_product(self, fields: dict[str, Any]) -> Product:
        clean = validate_product_fields(fields)
        now = utc_now()
        doc = {
            "stock": 0,
            "images": [],
            "compatible_models": [],
            "tags": [],
            "is_active": True,
            **clean,
            "rating": {"average": 0.0, "count": 0},
            "sold_count": 0,
            "created_at": now,
            "updated_at": now,
        }
        result = self.products.insert_one(doc)
        logger.info("Created product %s (%s)", result.inserted_id, clean["name"])
        return self._find_one(result.inserted_id)

    def update_product(self, product_id: str, changes: dict[str, Any]) -> Product:
        """Apply a partial update of allow-listed fields."""
        oid = parse_object_id(product_id, "product")
        clean = validate_product_fields(changes, partial=True)
        if not clean:
            raise ValidationError("No fields to update")
        clean["updated_at"] = utc_now()
        doc = self.products.find_one_and_update(
            {"_id": oid}, {"$set": clean}, return_document=ReturnDocument.AFTER
        )
        if doc is None:
            raise NotFound("Product", product_id)
        return Product.from_document(doc)

    def adjust_stock(self, product_id: str, delta: int) -> Product:
        """
        Apply a signed stock increment.

        Raises:
            InvalidArgument: If ``delta`` is zero or would make stock negative.
            NotFound: If the product doesn't exist.
        """
        if not delta:
            raise InvalidArgument("Quantity is required and cannot be zero")
        oid = parse_object_id(product_id, "product")

        query: dict[str, Any] = {"_id": oid}
        if delta < 0:
            query["stock"] = {"$gte": -delta}
        doc = self.products.find_one_and_update(
            query,
            {"$inc": {"stock": delta}, "$set": {"updated_at": utc_now()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            current = self._find_one(oid)
            raise InvalidArgument(
                f"Cannot remove {-delta} units from {current.name}: only {current.stock} in stock"
            )
        return Product.from_document(doc)

    def add_tag(self, product_id: str, tag: str) -> Product:
        """Append a tag; an existing equal tag is kept, so duplicates are possible."""
        if not tag:
            raise ValidationError("Tag is required")
        oid = parse_object_id(product_id, "product")
        doc = self.products.find_one_and_update(
            {"_id": oid}, {"$push": {"tags": tag}}, return_document=ReturnDocument.AFTER
        )
        if doc is None:
            raise NotFound("Product", product_id)
        return Product.from_document(doc)

    def remove_tag(self, product_id: str, tag: str) -> Product:
        """Remove every occurrence of ``tag``."""
        oid = parse_object_id(product_id, "product")
        doc = self.products.find_one_and_update(
            {"_id": oid}, {"$pull": {"tags": tag}}, return_document=ReturnDocument.AFTER
        )
        if doc is None:
            raise NotFound("Product", product_id)
        return Product.from_document(doc)

    def delete_product(self, product_id: str) -> None:
        oid = parse_object_id(product_id, "product")
        result = self.products.delete_one({"_id": oid})
        if result.deleted_count == 0:
            raise NotFound("Product", product_id)
        logger.info("Deleted product %s", product_id)

    # Stock movements driven by orders

    def reserve(self, product_id: str, quantity: int) -> bool:
        """
        Atomically take ``quantity`` units out of stock and count them as sold.

        Returns False (and changes nothing) if fewer than ``quantity`` units
        are in stock at the moment of the update.
        """
        doc = self.products.find_one_and_update(
            {"_id": ObjectId(product_id), "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity, "sold_count": quantity}},
        )
        return doc is not None

    def release(self, product_id: str, quantity: int) -> None:
        """Put ``quantity`` units back into stock and take them off the sold count."""
        self.products.update_one(
            {"_id": ObjectId(product_id)},
            {"$inc": {"stock": quantity, "sold_count": -quantity}},
        )
