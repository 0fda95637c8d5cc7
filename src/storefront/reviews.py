"""Product reviews and aggregate ratings."""

import logging
from typing import Any

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from .auth import Identity
from .database import ORDERS, PRODUCTS, REVIEWS, USERS, Page, page_bounds, parse_object_id, parse_sort
from .errors import Conflict, Forbidden, NotFound, ValidationError
from .models import OrderStatus, Review, utc_now

logger = logging.getLogger(__name__)

REVIEW_FIELDS = ("rating", "title", "comment")

SORT_FIELDS = {
    "created_at": "created_at",
    "createdAt": "created_at",
    "rating": "rating",
}

MIN_COMMENT_LENGTH = 10
MAX_COMMENT_LENGTH = 1000
MAX_TITLE_LENGTH = 100


def validate_review_fields(fields: dict[str, Any], partial: bool = False) -> dict[str, Any]:
    """
    Check review fields; ``partial`` skips the required-field checks.

    Raises:
        ValidationError: On unknown fields or constraint violations.
    """
    unknown = set(fields) - set(REVIEW_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown review fields: {', '.join(sorted(unknown))}")
    if not partial:
        if fields.get("rating") is None:
            raise ValidationError("Rating is required")
        if fields.get("comment") is None:
            raise ValidationError("Review comment is required")

    clean: dict[str, Any] = {}
    if "rating" in fields:
        rating = fields["rating"]
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be a whole number from 1 to 5")
        clean["rating"] = rating
    if "title" in fields:
        title = fields["title"]
        if title is not None:
            title = str(title).strip()
            if len(title) > MAX_TITLE_LENGTH:
                raise ValidationError(f"Title cannot exceed {MAX_TITLE_LENGTH} characters")
        clean["title"] = title
    if "comment" in fields:
        comment = fields["comment"]
        if comment is None or not MIN_COMMENT_LENGTH <= len(str(comment)) <= MAX_COMMENT_LENGTH:
            raise ValidationError(
                f"Comment must be between {MIN_COMMENT_LENGTH} and {MAX_COMMENT_LENGTH} characters"
            )
        clean["comment"] = str(comment)
    return clean


class ReviewManager:
    """Creates and edits reviews and keeps Product.rating in step with them."""

    def __init__(self, db: Database):
        self.db = db
        self.reviews = db[REVIEWS]

    def _get(self, review_id: str) -> Review:
        oid = parse_object_id(review_id, "review")
        doc = self.reviews.find_one({"_id": oid})
        if doc is None:
            raise NotFound("Review", review_id)
        return Review.from_document(doc)

    def recompute_rating(self, product_id: str) -> dict[str, Any]:
        """
        Replace the product's stored rating with one derived from all its reviews.

        The average is rounded to one decimal. A product without reviews goes
        back to ``{average: 0, count: 0}``.
        """
        oid = ObjectId(product_id)
        stats = list(
            self.reviews.aggregate(
                [
                    {"$match": {"product": oid}},
                    {
                        "$group": {
                            "_id": "$product",
                            "average": {"$avg": "$rating"},
                            "count": {"$sum": 1},
                        }
                    },
                ]
            )
        )
        rating = {"average": 0.0, "count": 0}
        if stats:
            rating = {
                "average": round(stats[0]["average"], 1),
                "count": stats[0]["count"],
            }
        self.db[PRODUCTS].update_one({"_id": oid}, {"$set": {"rating": rating}})
        logger.debug("Product %s rating is now %s", product_id, rating)
        return rating

    def has_delivered_purchase(self, user_id: str, product_id: str) -> bool:
        return (
            self.db[ORDERS].find_one(
                {
                    "user": ObjectId(user_id),
                    "order_status": OrderStatus.DELIVERED.value,
                    "items.product": ObjectId(product_id),
                },
                {"_id": 1},
            )
            is not None
        )

    def create_review(
        self,
        user_id: str,
        product_id: str,
        rating: int,
        comment: str,
        title: str | None = None,
    ) -> Review:
        """
        Create a review for a product the user has received.

        Raises:
            NotFound: If the product doesn't exist.
            Forbidden: If the user has no delivered order containing it.
            Conflict: If the user already reviewed it.
        """
        product_oid = parse_object_id(product_id, "product")
        clean = validate_review_fields({"rating": rating, "comment": comment, "title": title})

        if self.db[PRODUCTS].find_one({"_id": product_oid}, {"_id": 1}) is None:
            raise NotFound("Product", product_id)
        if not self.has_delivered_purchase(user_id, product_id):
            raise Forbidden("Only customers with delivered orders can leave a review")
        if self.reviews.find_one({"user": ObjectId(user_id), "product": product_oid}, {"_id": 1}):
            raise Conflict("You have already reviewed this product")

        review = Review.create(
            user_id=user_id,
            product_id=product_id,
            rating=clean["rating"],
            comment=clean["comment"],
            title=clean.get("title"),
            verified=True,
        )
        try:
            self.reviews.insert_one(review.to_document())
        except DuplicateKeyError:
            raise Conflict("You have already reviewed this product")

        self.recompute_rating(product_id)
        logger.info("User %s reviewed product %s (%d)", user_id, product_id, review.rating)
        return review

    def update_review(self, identity: Identity, review_id: str, changes: dict[str, Any]) -> Review:
        """
        Edit rating/title/comment of the caller's own review.

        Raises:
            NotFound: If the review doesn't exist.
            Forbidden: If the caller didn't write it.
        """
        review = self._get(review_id)
        if review.user_id != identity.user_id:
            raise Forbidden("Not authorized to update this review")
        clean = validate_review_fields(changes, partial=True)
        if not clean:
            raise ValidationError("No fields to update")
        clean["updated_at"] = utc_now()

        doc = self.reviews.find_one_and_update(
            {"_id": ObjectId(review.id)}, {"$set": clean}, return_document=ReturnDocument.AFTER
        )
        if doc is None:
            raise NotFound("Review", review_id)
        self.recompute_rating(review.product_id)
        return Review.from_document(doc)

    def delete_review(self, identity: Identity, review_id: str) -> None:
        """
        Raises:
            NotFound: If the review doesn't exist.
            Forbidden: Unless the caller wrote it or is an admin.
        """
        review = self._get(review_id)
        if not identity.may_act_for(review.user_id):
            raise Forbidden("Not authorized to delete this review")
        self.reviews.delete_one({"_id": ObjectId(review.id)})
        self.recompute_rating(review.product_id)
        logger.info("Deleted review %s", review_id)

    def list_product_reviews(
        self,
        product_id: str,
        sort: str = "-created_at",
        page: int = 1,
        limit: int = 10,
    ) -> Page[dict[str, Any]]:
        """Reviews of a product with the reviewer's name, one page at a time."""
        query = {"product": parse_object_id(product_id, "product")}
        skip, limit = page_bounds(page, limit)
        cursor = self.reviews.find(query)
        sort_spec = parse_sort(sort, SORT_FIELDS)
        if sort_spec:
            cursor = cursor.sort(sort_spec)
        reviews = [Review.from_document(d) for d in cursor.skip(skip).limit(limit)]

        authors = {
            str(doc["_id"]): {"id": str(doc["_id"]), "name": doc["name"]}
            for doc in self.db[USERS].find(
                {"_id": {"$in": [ObjectId(r.user_id) for r in reviews]}}, {"name": 1}
            )
        }
        items = []
        for review in reviews:
            data = review.to_dict()
            data["user"] = authors.get(review.user_id)
            items.append(data)
        return Page(items=items, total=self.reviews.count_documents(query), page=page, limit=limit)
