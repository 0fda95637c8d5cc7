"""Read-only aggregations over orders, products and reviews."""

import math
from datetime import datetime
from typing import Any

from pymongo import DESCENDING
from pymongo.database import Database

from .auth import Identity
from .database import ORDERS, PRODUCTS, REVIEWS, parse_object_id
from .errors import Forbidden, ValidationError
from .models import OrderStatus, format_datetime


TOP_PRODUCTS_LIMIT = 20
INTERVAL_FORMATS = {"day": "%Y-%m-%d", "month": "%Y-%m"}


def damped_score(average: float, count: int) -> float:
    """
    Rank score for top-rated listings: ``average * ln(count + 1)``.

    A single five-star review scores 5 * ln 2 ≈ 3.47, well below 4.5 over
    fifty reviews (≈ 17.7).
    """
    return average * math.log(count + 1)


def _round2(value: float | None) -> float:
    return round(value or 0.0, 2)


def _date_range(start: datetime | None, end: datetime | None) -> dict[str, Any]:
    """Match stage for non-cancelled orders created within ``[start, end]``."""
    if start and end and start > end:
        raise ValidationError("startDate must not be after endDate")
    match: dict[str, Any] = {"order_status": {"$nin": [OrderStatus.CANCELLED.value]}}
    created: dict[str, datetime] = {}
    if start:
        created["$gte"] = start
    if end:
        created["$lte"] = end
    if created:
        match["created_at"] = created
    return match


class SalesAnalytics:
    """Dashboard queries. Nothing here writes to the store."""

    def __init__(self, db: Database):
        self.db = db

    def product_stats(self) -> list[dict[str, Any]]:
        """Per-category counts, prices, stock, sales and rating over active products."""
        rows = self.db[PRODUCTS].aggregate(
            [
                {"$match": {"is_active": True}},
                {
                    "$group": {
                        "_id": "$category",
                        "total_products": {"$sum": 1},
                        "average_price": {"$avg": "$price"},
                        "total_stock": {"$sum": "$stock"},
                        "total_sold": {"$sum": "$sold_count"},
                        "average_rating": {"$avg": "$rating.average"},
                    }
                },
                {"$sort": {"total_sold": -1}},
            ]
        )
        return [
            {
                "category": row["_id"],
                "total_products": row["total_products"],
                "average_price": _round2(row["average_price"]),
                "total_stock": row["total_stock"],
                "total_sold": row["total_sold"],
                "average_rating": round(row["average_rating"] or 0.0, 1),
            }
            for row in rows
        ]

    def top_rated(self, limit: int = 10) -> list[dict[str, Any]]:
        """Active, reviewed products ordered by ``damped_score``, ranked in the database."""
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        rows = self.db[PRODUCTS].aggregate(
            [
                {"$match": {"is_active": True, "rating.count": {"$gte": 1}}},
                {
                    "$project": {
                        "name": 1,
                        "description": 1,
                        "category": 1,
                        "price": 1,
                        "images": 1,
                        "rating": 1,
                        "sold_count": 1,
                        "score": {
                            "$multiply": [
                                "$rating.average",
                                {"$ln": {"$add": ["$rating.count", 1]}},
                            ]
                        },
                    }
                },
                {"$sort": {"score": -1}},
                {"$limit": limit},
            ]
        )
        ranked = []
        for row in rows:
            rating = row.get("rating", {})
            ranked.append(
                {
                    "id": str(row["_id"]),
                    "name": row["name"],
                    "description": row.get("description"),
                    "category": row.get("category"),
                    "price": row.get("price"),
                    "images": row.get("images", []),
                    "rating": {"average": rating.get("average", 0.0), "count": rating.get("count", 0)},
                    "sold_count": row.get("sold_count", 0),
                    "score": row["score"],
                }
            )
        return ranked

    def sales(self, start: datetime | None = None, end: datetime | None = None) -> dict[str, Any]:
        """Revenue summary plus the best-selling products by revenue."""
        match = _date_range(start, end)
        orders = self.db[ORDERS]

        summary_rows = list(
            orders.aggregate(
                [
                    {"$match": match},
                    {
                        "$group": {
                            "_id": None,
                            "total_orders": {"$sum": 1},
                            "total_revenue": {"$sum": "$pricing.total"},
                            "average_order_value": {"$avg": "$pricing.total"},
                        }
                    },
                ]
            )
        )
        summary: dict[str, Any] = {}
        if summary_rows:
            row = summary_rows[0]
            summary = {
                "total_orders": row["total_orders"],
                "total_revenue": _round2(row["total_revenue"]),
                "average_order_value": _round2(row["average_order_value"]),
            }

        product_rows = list(
            orders.aggregate(
                [
                    {"$match": match},
                    {"$unwind": "$items"},
                    {
                        "$group": {
                            "_id": "$items.product",
                            "total_quantity": {"$sum": "$items.quantity"},
                            "total_revenue": {"$sum": "$items.subtotal"},
                            "order_count": {"$sum": 1},
                            "average_price": {"$avg": "$items.price"},
                            "snapshot_name": {"$first": "$items.product_snapshot.name"},
                        }
                    },
                    {"$sort": {"total_revenue": -1}},
                    {"$limit": TOP_PRODUCTS_LIMIT},
                ]
            )
        )
        products = {
            doc["_id"]: doc
            for doc in self.db[PRODUCTS].find(
                {"_id": {"$in": [row["_id"] for row in product_rows]}},
                {"name": 1, "category": 1},
            )
        }
        top_products = []
        for row in product_rows:
            product = products.get(row["_id"], {})
            top_products.append(
                {
                    "product_id": str(row["_id"]),
                    "product_name": product.get("name", row["snapshot_name"]),
                    "category": product.get("category"),
                    "total_quantity": row["total_quantity"],
                    "total_revenue": _round2(row["total_revenue"]),
                    "order_count": row["order_count"],
                    "average_price": _round2(row["average_price"]),
                }
            )
        return {"summary": summary, "top_products": top_products}

    def sales_timeseries(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        interval: str = "day",
    ) -> list[dict[str, Any]]:
        """Revenue and order count per day or per month, oldest period first."""
        fmt = INTERVAL_FORMATS.get(interval)
        if fmt is None:
            raise ValidationError("interval must be 'day' or 'month'")

        rows = self.db[ORDERS].aggregate(
            [
                {"$match": _date_range(start, end)},
                {
                    "$group": {
                        "_id": {"$dateToString": {"format": fmt, "date": "$created_at"}},
                        "total_revenue": {"$sum": "$pricing.total"},
                        "total_orders": {"$sum": 1},
                    }
                },
                {"$sort": {"_id": 1}},
            ]
        )
        return [
            {
                "period": row["_id"],
                "total_revenue": _round2(row["total_revenue"]),
                "total_orders": row["total_orders"],
            }
            for row in rows
        ]

    def order_status_counts(self) -> list[dict[str, Any]]:
        rows = self.db[ORDERS].aggregate(
            [
                {"$group": {"_id": "$order_status", "count": {"$sum": 1}}},
                {"$sort": {"count": -1}},
            ]
        )
        return [{"status": row["_id"], "count": row["count"]} for row in rows]

    def user_order_history(self, identity: Identity, user_id: str) -> dict[str, Any]:
        """
        A user's orders newest first plus spend statistics over non-cancelled ones.

        Raises:
            ValidationError: If ``user_id`` is malformed.
            Forbidden: Unless the caller is that user or an admin.
        """
        oid = parse_object_id(user_id, "user")
        if not identity.may_act_for(user_id):
            raise Forbidden("Not authorized")

        orders = []
        for doc in self.db[ORDERS].find({"user": oid}).sort("created_at", DESCENDING):
            items = doc.get("items", [])
            orders.append(
                {
                    "id": str(doc["_id"]),
                    "order_number": doc["order_number"],
                    "order_status": doc["order_status"],
                    "created_at": format_datetime(doc.get("created_at")),
                    "total": doc["pricing"]["total"],
                    "item_count": len(items),
                    "items": [
                        {
                            "product_name": item["product_snapshot"]["name"],
                            "quantity": item["quantity"],
                            "price": item["price"],
                            "subtotal": item["subtotal"],
                        }
                        for item in items
                    ],
                }
            )

        stats_rows = list(
            self.db[ORDERS].aggregate(
                [
                    {
                        "$match": {
                            "user": oid,
                            "order_status": {"$nin": [OrderStatus.CANCELLED.value]},
                        }
                    },
                    {
                        "$group": {
                            "_id": None,
                            "total_orders": {"$sum": 1},
                            "total_spent": {"$sum": "$pricing.total"},
                            "average_order_value": {"$avg": "$pricing.total"},
                        }
                    },
                ]
            )
        )
        statistics: dict[str, Any] = {}
        if stats_rows:
            row = stats_rows[0]
            statistics = {
                "total_orders": row["total_orders"],
                "total_spent": _round2(row["total_spent"]),
                "average_order_value": _round2(row["average_order_value"]),
            }
        return {"statistics": statistics, "orders": orders}

    def review_stats(self) -> dict[str, Any]:
        """Rating distribution across all reviews."""
        rows = list(
            self.db[REVIEWS].aggregate(
                [
                    {"$group": {"_id": "$rating", "count": {"$sum": 1}}},
                    {"$sort": {"_id": -1}},
                ]
            )
        )
        total = sum(row["count"] for row in rows)
        average = sum(row["_id"] * row["count"] for row in rows) / total if total else 0.0
        return {
            "total_reviews": total,
            "average_rating": round(average, 1),
            "distribution": [{"rating": row["_id"], "count": row["count"]} for row in rows],
        }
