"""Order placement, cancellation and status lifecycle."""

import logging
from dataclasses import dataclass
from typing import Any

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from .auth import Identity
from .catalog import ProductCatalog
from .database import ORDERS, USERS, Page, page_bounds, parse_object_id
from .errors import (
    Conflict,
    Forbidden,
    InsufficientStock,
    InvalidState,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from .models import (
    CANCELLABLE_STATUSES,
    ORDER_TRANSITIONS,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    Pricing,
    ShippingAddress,
    generate_order_number,
    utc_now,
)

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 5


@dataclass(frozen=True)
class LineRequest:
    """One requested order line."""

    product_id: str
    quantity: int


class OrderManager:
    """Places orders and moves them through their status lifecycle."""

    def __init__(self, db: Database):
        self.db = db
        self.orders = db[ORDERS]
        self.catalog = ProductCatalog(db)

    def _get(self, order_id: str) -> Order:
        oid = parse_object_id(order_id, "order")
        doc = self.orders.find_one({"_id": oid})
        if doc is None:
            raise NotFound("Order", order_id)
        return Order.from_document(doc)

    def _insert(self, order: Order) -> Order:
        """Insert ``order``, drawing a fresh order number if the random one is taken."""
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            try:
                self.orders.insert_one(order.to_document())
                return order
            except DuplicateKeyError:
                logger.warning("Order number %s already taken, retrying", order.order_number)
                order.order_number = generate_order_number()
        raise Conflict("Could not allocate a unique order number")

    def _release_all(self, reserved: list[tuple[str, int]]) -> None:
        for product_id, quantity in reversed(reserved):
            self.catalog.release(product_id, quantity)
            logger.info("Released %d units of product %s", quantity, product_id)

    def place_order(
        self,
        buyer_id: str,
        lines: list[LineRequest],
        shipping_address: ShippingAddress,
        payment_method: PaymentMethod,
        discount: float = 0.0,
        notes: str | None = None,
    ) -> Order:
        """
        Validate lines against live stock, snapshot them and create a pending order.

        Lines are processed in order. Each one is checked, snapshotted and then
        taken out of stock with a conditional decrement. If any line fails, the
        units already taken for this order are put back before the error is
        raised, so a failed placement leaves stock untouched.

        Raises:
            ValidationError: If there are no lines or a quantity is below 1.
            NotFound: If a product doesn't exist.
            InsufficientStock: If a product cannot cover its line.
        """
        if not lines:
            raise ValidationError("No order items provided")
        for line in lines:
            if line.quantity < 1:
                raise ValidationError("Quantity must be at least 1")

        reserved: list[tuple[str, int]] = []
        items: list[OrderItem] = []
        try:
            for line in lines:
                product = self.catalog.get_product(line.product_id)
                if product.stock < line.quantity:
                    raise InsufficientStock(product.name, product.stock, line.quantity)

                item = OrderItem.from_product(product, line.quantity)
                if not self.catalog.reserve(product.id, line.quantity):
                    # Stock moved between the read and the update
                    current = self.catalog.get_product(product.id)
                    raise InsufficientStock(product.name, current.stock, line.quantity)
                reserved.append((product.id, line.quantity))
                items.append(item)

            order = Order.create(
                user_id=buyer_id,
                items=items,
                shipping_address=shipping_address,
                payment_method=payment_method,
                pricing=Pricing.for_items(items, discount),
                notes=notes,
            )
            self._insert(order)
        except Exception:
            self._release_all(reserved)
            raise

        logger.info(
            "Placed order %s for user %s (%d lines, total %.2f)",
            order.order_number,
            buyer_id,
            len(items),
            order.pricing.total,
        )
        return order

    def checkout_cart(
        self,
        buyer_id: str,
        shipping_address: ShippingAddress,
        payment_method: PaymentMethod,
        discount: float = 0.0,
        notes: str | None = None,
    ) -> Order:
        """Place an order for everything in the buyer's cart, then empty the cart."""
        user_oid = parse_object_id(buyer_id, "user")
        user = self.db[USERS].find_one({"_id": user_oid}, {"cart": 1})
        if user is None:
            raise NotFound("User", buyer_id)
        cart = user.get("cart", [])
        if not cart:
            raise ValidationError("Cart is empty")

        lines = [LineRequest(str(entry["product"]), entry["quantity"]) for entry in cart]
        order = self.place_order(
            buyer_id, lines, shipping_address, payment_method, discount=discount, notes=notes
        )
        self.db[USERS].update_one(
            {"_id": user_oid}, {"$set": {"cart": [], "updated_at": utc_now()}}
        )
        return order

    def _cancel(self, order: Order) -> Order:
        """Flip a cancellable order to cancelled and put its units back in stock."""
        now = utc_now()
        doc = self.orders.find_one_and_update(
            {
                "_id": ObjectId(order.id),
                "order_status": {"$in": [s.value for s in CANCELLABLE_STATUSES]},
            },
            {
                "$set": {
                    "order_status": OrderStatus.CANCELLED.value,
                    "cancelled_at": now,
                    "updated_at": now,
                }
            },
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise InvalidState("Cannot cancel order in current status")

        for item in order.items:
            self.catalog.release(item.product_id, item.quantity)
        logger.info("Cancelled order %s and restored stock", order.order_number)
        return Order.from_document(doc)

    def cancel_order(self, identity: Identity, order_id: str) -> Order:
        """
        Cancel an order on behalf of its buyer or an admin.

        Raises:
            NotFound: If the order doesn't exist.
            Forbidden: If the caller is neither the buyer nor an admin.
            InvalidState: Unless the order is pending or processing.
        """
        order = self._get(order_id)
        if not identity.may_act_for(order.user_id):
            raise Forbidden("Not authorized to cancel this order")
        if order.status not in CANCELLABLE_STATUSES:
            raise InvalidState("Cannot cancel order in current status")
        return self._cancel(order)

    def update_status(
        self,
        order_id: str,
        new_status: OrderStatus | None = None,
        tracking_number: str | None = None,
    ) -> Order:
        """
        Admin status change and/or tracking number update.

        Only moves listed in ORDER_TRANSITIONS are accepted. Moving to
        cancelled restores stock exactly like ``cancel_order``.

        Raises:
            NotFound: If the order doesn't exist.
            InvalidTransition: If the move is not allowed from the current status.
        """
        if new_status is None and not tracking_number:
            raise ValidationError("Provide an order status or a tracking number")
        order = self._get(order_id)

        if new_status is not None and new_status != order.status:
            if new_status not in ORDER_TRANSITIONS[order.status]:
                raise InvalidTransition(order.status.value, new_status.value)
            if new_status == OrderStatus.CANCELLED:
                order = self._cancel(order)
                new_status = None

        now = utc_now()
        update: dict[str, Any] = {"updated_at": now}
        if new_status is not None and new_status != order.status:
            update["order_status"] = new_status.value
            if new_status == OrderStatus.DELIVERED:
                update["delivered_at"] = now
        if tracking_number:
            update["tracking_number"] = tracking_number.strip()

        doc = self.orders.find_one_and_update(
            {"_id": ObjectId(order.id), "order_status": order.status.value},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise InvalidState("Order was modified by another request")
        updated = Order.from_document(doc)
        logger.info("Order %s is now %s", updated.order_number, updated.status.value)
        return updated

    def list_orders(
        self,
        buyer_id: str | None = None,
        status: OrderStatus | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page[Order]:
        """List orders newest first; all buyers when ``buyer_id`` is None."""
        query: dict[str, Any] = {}
        if buyer_id is not None:
            query["user"] = parse_object_id(buyer_id, "user")
        if status is not None:
            query["order_status"] = status.value

        skip, limit = page_bounds(page, limit)
        cursor = self.orders.find(query).sort("created_at", DESCENDING).skip(skip).limit(limit)
        items = [Order.from_document(d) for d in cursor]
        return Page(items=items, total=self.orders.count_documents(query), page=page, limit=limit)

    def get_order(self, identity: Identity, order_id: str) -> Order:
        """
        Raises:
            NotFound: If the order doesn't exist.
            Forbidden: Unless the caller owns the order or is an admin.
        """
        order = self._get(order_id)
        if not identity.may_act_for(order.user_id):
            raise Forbidden("Not authorized to view this order")
        return order

    def populate(self, orders: list[Order]) -> list[dict[str, Any]]:
        """Render orders with buyer and product summaries in place of bare ids."""
        user_ids = {ObjectId(o.user_id) for o in orders}
        buyers = {
            str(doc["_id"]): {"id": str(doc["_id"]), "name": doc["name"], "email": doc["email"]}
            for doc in self.db[USERS].find({"_id": {"$in": list(user_ids)}}, {"name": 1, "email": 1})
        }
        product_ids = list({item.product_id for o in orders for item in o.items})
        products = self.catalog.get_many(product_ids) if product_ids else {}

        rendered = []
        for order in orders:
            data = order.to_dict()
            data["user"] = buyers.get(order.user_id)
            for item_data, item in zip(data["items"], order.items):
                product = products.get(item.product_id)
                item_data["product"] = product.summary() if product else None
            rendered.append(data)
        return rendered
