"""Data models for storefront.

Each dataclass mirrors one MongoDB document shape. ``from_document`` accepts a
raw document (ObjectId references, naive UTC datetimes) and ``to_document``
produces one; ``to_dict`` produces the JSON-friendly form returned by the API.
"""

import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from bson import ObjectId


def utc_now() -> datetime:
    """Return the current UTC time as a naive datetime, the way BSON stores it."""
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def format_datetime(value: datetime | None) -> str | None:
    """Return a naive UTC datetime as an ISO 8601 string."""
    if value is None:
        return None
    return value.isoformat() + "Z"


def generate_order_number(now: datetime | None = None, rng: random.Random | None = None) -> str:
    """Return an order number shaped ``ORD<YY><MM><4-digit random>``."""
    now = now or utc_now()
    rng = rng or random
    return f"ORD{now:%y}{now:%m}{rng.randint(0, 9999):04d}"


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class Category(str, Enum):
    PHONE_CASE = "phone-case"
    LAPTOP_CASE = "laptop-case"
    TABLET_CASE = "tablet-case"
    WATCH_CASE = "watch-case"
    ACCESSORY = "accessory"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit-card"
    PAYPAL = "paypal"
    KASPI_QR = "kaspi-qr"
    CASH_ON_DELIVERY = "cash-on-delivery"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Legal status changes; delivered and cancelled are terminal.
ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING})

FREE_SHIPPING_THRESHOLD = 100.0
FLAT_SHIPPING_FEE = 5.0


# Users


@dataclass
class Address:
    """A saved shipping address embedded in a user."""

    id: str
    street: str
    city: str
    country: str = "USA"
    phone: str | None = None
    is_default: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "street": self.street,
            "city": self.city,
            "country": self.country,
            "phone": self.phone,
            "is_default": self.is_default,
        }

    def to_document(self) -> dict[str, Any]:
        return {
            "_id": ObjectId(self.id),
            "street": self.street,
            "city": self.city,
            "country": self.country,
            "phone": self.phone,
            "is_default": self.is_default,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Address":
        return cls(
            id=str(doc["_id"]),
            street=doc["street"],
            city=doc["city"],
            country=doc.get("country", "USA"),
            phone=doc.get("phone"),
            is_default=doc.get("is_default", False),
        )

    @classmethod
    def create(
        cls,
        street: str,
        city: str,
        country: str = "USA",
        phone: str | None = None,
        is_default: bool = False,
    ) -> "Address":
        return cls(
            id=str(ObjectId()),
            street=street,
            city=city,
            country=country,
            phone=phone,
            is_default=is_default,
        )


@dataclass
class CartItem:
    """A cart line; the product is a weak reference by id."""

    product_id: str
    quantity: int = 1
    added_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "product": self.product_id,
            "quantity": self.quantity,
            "added_at": format_datetime(self.added_at),
        }

    def to_document(self) -> dict[str, Any]:
        return {
            "product": ObjectId(self.product_id),
            "quantity": self.quantity,
            "added_at": self.added_at,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "CartItem":
        return cls(
            product_id=str(doc["product"]),
            quantity=doc.get("quantity", 1),
            added_at=doc.get("added_at") or utc_now(),
        )


@dataclass
class User:
    """A registered account."""

    id: str
    name: str
    email: str
    password_hash: str
    role: Role = Role.USER
    phone: str | None = None
    addresses: list[Address] = field(default_factory=list)
    cart: list[CartItem] = field(default_factory=list)
    is_active: bool = True
    last_login: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def to_dict(self) -> dict[str, Any]:
        """Public profile; the password hash is never included."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "phone": self.phone,
            "addresses": [a.to_dict() for a in self.addresses],
            "cart": [c.to_dict() for c in self.cart],
            "is_active": self.is_active,
            "last_login": format_datetime(self.last_login),
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    def to_document(self) -> dict[str, Any]:
        return {
            "_id": ObjectId(self.id),
            "name": self.name,
            "email": self.email,
            "password_hash": self.password_hash,
            "role": self.role.value,
            "phone": self.phone,
            "addresses": [a.to_document() for a in self.addresses],
            "cart": [c.to_document() for c in self.cart],
            "is_active": self.is_active,
            "last_login": self.last_login,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "User":
        return cls(
            id=str(doc["_id"]),
            name=doc["name"],
            email=doc["email"],
            password_hash=doc.get("password_hash", ""),
            role=Role(doc.get("role", Role.USER.value)),
            phone=doc.get("phone"),
            addresses=[Address.from_document(a) for a in doc.get("addresses", [])],
            cart=[CartItem.from_document(c) for c in doc.get("cart", [])],
            is_active=doc.get("is_active", True),
            last_login=doc.get("last_login"),
            created_at=doc.get("created_at") or utc_now(),
            updated_at=doc.get("updated_at") or utc_now(),
        )

    @classmethod
    def create(
        cls,
        name: str,
        email: str,
        password_hash: str,
        role: Role = Role.USER,
        phone: str | None = None,
    ) -> "User":
        """Create a new user with generated ID and timestamps."""
        now = utc_now()
        return cls(
            id=str(ObjectId()),
            name=name,
            email=email,
            password_hash=password_hash,
            role=role,
            phone=phone,
            created_at=now,
            updated_at=now,
        )


# Products


@dataclass
class Rating:
    """Aggregate rating derived from every review of a product."""

    average: float = 0.0
    count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"average": self.average, "count": self.count}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Rating":
        data = data or {}
        return cls(average=data.get("average", 0.0), count=data.get("count", 0))


@dataclass
class CompatibleModel:
    brand: str
    model_name: str
    release_year: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "brand": self.brand,
            "model_name": self.model_name,
            "release_year": self.release_year,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompatibleModel":
        return cls(
            brand=data["brand"],
            model_name=data["model_name"],
            release_year=data.get("release_year"),
        )


@dataclass
class Product:
    """A catalog entry."""

    id: str
    name: str
    description: str
    category: Category
    price: float
    stock: int = 0
    images: list[str] = field(default_factory=list)
    brand: str | None = None
    material: str | None = None
    color: str | None = None
    compatible_models: list[CompatibleModel] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    rating: Rating = field(default_factory=Rating)
    sold_count: int = 0
    is_active: bool = True
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def primary_image(self) -> str:
        return self.images[0] if self.images else ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "price": self.price,
            "stock": self.stock,
            "images": list(self.images),
            "brand": self.brand,
            "material": self.material,
            "color": self.color,
            "compatible_models": [m.to_dict() for m in self.compatible_models],
            "tags": list(self.tags),
            "rating": self.rating.to_dict(),
            "sold_count": self.sold_count,
            "is_active": self.is_active,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    def to_document(self) -> dict[str, Any]:
        doc = self.to_dict()
        doc.pop("id")
        doc["_id"] = ObjectId(self.id)
        doc["created_at"] = self.created_at
        doc["updated_at"] = self.updated_at
        return doc

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Product":
        return cls(
            id=str(doc["_id"]),
            name=doc["name"],
            description=doc.get("description", ""),
            category=Category(doc["category"]),
            price=doc["price"],
            stock=doc.get("stock", 0),
            images=list(doc.get("images", [])),
            brand=doc.get("brand"),
            material=doc.get("material"),
            color=doc.get("color"),
            compatible_models=[
                CompatibleModel.from_dict(m) for m in doc.get("compatible_models", [])
            ],
            tags=list(doc.get("tags", [])),
            rating=Rating.from_dict(doc.get("rating")),
            sold_count=doc.get("sold_count", 0),
            is_active=doc.get("is_active", True),
            created_at=doc.get("created_at") or utc_now(),
            updated_at=doc.get("updated_at") or utc_now(),
        )

    def summary(self) -> dict[str, Any]:
        """Short form embedded in populated orders and carts."""
        return {"id": self.id, "name": self.name, "images": list(self.images)}


# Orders


@dataclass
class ProductSnapshot:
    """Display fields of a product frozen at purchase time."""

    name: str
    price: float
    image: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "price": self.price, "image": self.image}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProductSnapshot":
        return cls(name=data["name"], price=data["price"], image=data.get("image", ""))


@dataclass
class OrderItem:
    id: str
    product_id: str
    snapshot: ProductSnapshot
    quantity: int
    price: float
    subtotal: float

    @classmethod
    def from_product(cls, product: Product, quantity: int) -> "OrderItem":
        """Snapshot ``product`` and price the line from that snapshot."""
        snapshot = ProductSnapshot(
            name=product.name, price=product.price, image=product.primary_image
        )
        return cls(
            id=str(ObjectId()),
            product_id=product.id,
            snapshot=snapshot,
            quantity=quantity,
            price=snapshot.price,
            subtotal=round(snapshot.price * quantity, 2),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "product": self.product_id,
            "product_snapshot": self.snapshot.to_dict(),
            "quantity": self.quantity,
            "price": self.price,
            "subtotal": self.subtotal,
        }

    def to_document(self) -> dict[str, Any]:
        return {
            "_id": ObjectId(self.id),
            "product": ObjectId(self.product_id),
            "product_snapshot": self.snapshot.to_dict(),
            "quantity": self.quantity,
            "price": self.price,
            "subtotal": self.subtotal,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "OrderItem":
        return cls(
            id=str(doc["_id"]),
            product_id=str(doc["product"]),
            snapshot=ProductSnapshot.from_dict(doc["product_snapshot"]),
            quantity=doc["quantity"],
            price=doc["price"],
            subtotal=doc["subtotal"],
        )


@dataclass
class ShippingAddress:
    """A copy of the delivery address embedded in an order."""

    name: str
    street: str
    city: str
    country: str
    phone: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "street": self.street,
            "city": self.city,
            "country": self.country,
            "phone": self.phone,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ShippingAddress":
        return cls(
            name=data["name"],
            street=data["street"],
            city=data["city"],
            country=data["country"],
            phone=data["phone"],
        )


@dataclass
class Pricing:
    subtotal: float
    shipping: float = 0.0
    discount: float = 0.0
    total: float = 0.0

    @classmethod
    def for_items(cls, items: list[OrderItem], discount: float = 0.0) -> "Pricing":
        """Price an order: flat shipping below the free-shipping threshold."""
        subtotal = round(sum(item.subtotal for item in items), 2)
        shipping = 0.0 if subtotal > FREE_SHIPPING_THRESHOLD else FLAT_SHIPPING_FEE
        discount = min(max(discount, 0.0), subtotal)
        return cls(
            subtotal=subtotal,
            shipping=shipping,
            discount=discount,
            total=round(subtotal + shipping - discount, 2),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "subtotal": self.subtotal,
            "shipping": self.shipping,
            "discount": self.discount,
            "total": self.total,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Pricing":
        return cls(
            subtotal=data["subtotal"],
            shipping=data.get("shipping", 0.0),
            discount=data.get("discount", 0.0),
            total=data["total"],
        )


@dataclass
class Order:
    id: str
    user_id: str
    order_number: str
    items: list[OrderItem]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    pricing: Pricing
    status: OrderStatus = OrderStatus.PENDING
    tracking_number: str | None = None
    notes: str | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user": self.user_id,
            "order_number": self.order_number,
            "items": [i.to_dict() for i in self.items],
            "shipping_address": self.shipping_address.to_dict(),
            "payment_method": self.payment_method.value,
            "order_status": self.status.value,
            "pricing": self.pricing.to_dict(),
            "tracking_number": self.tracking_number,
            "notes": self.notes,
            "delivered_at": format_datetime(self.delivered_at),
            "cancelled_at": format_datetime(self.cancelled_at),
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    def to_document(self) -> dict[str, Any]:
        return {
            "_id": ObjectId(self.id),
            "user": ObjectId(self.user_id),
            "order_number": self.order_number,
            "items": [i.to_document() for i in self.items],
            "shipping_address": self.shipping_address.to_dict(),
            "payment_method": self.payment_method.value,
            "order_status": self.status.value,
            "pricing": self.pricing.to_dict(),
            "tracking_number": self.tracking_number,
            "notes": self.notes,
            "delivered_at": self.delivered_at,
            "cancelled_at": self.cancelled_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Order":
        return cls(
            id=str(doc["_id"]),
            user_id=str(doc["user"]),
            order_number=doc["order_number"],
            items=[OrderItem.from_document(i) for i in doc.get("items", [])],
            shipping_address=ShippingAddress.from_dict(doc["shipping_address"]),
            payment_method=PaymentMethod(doc["payment_method"]),
            pricing=Pricing.from_dict(doc["pricing"]),
            status=OrderStatus(doc.get("order_status", OrderStatus.PENDING.value)),
            tracking_number=doc.get("tracking_number"),
            notes=doc.get("notes"),
            delivered_at=doc.get("delivered_at"),
            cancelled_at=doc.get("cancelled_at"),
            created_at=doc.get("created_at") or utc_now(),
            updated_at=doc.get("updated_at") or utc_now(),
        )

    @classmethod
    def create(
        cls,
        user_id: str,
        items: list[OrderItem],
        shipping_address: ShippingAddress,
        payment_method: PaymentMethod,
        pricing: Pricing,
        notes: str | None = None,
    ) -> "Order":
        """Create a pending order with generated ID, order number and timestamps."""
        now = utc_now()
        return cls(
            id=str(ObjectId()),
            user_id=user_id,
            order_number=generate_order_number(now),
            items=items,
            shipping_address=shipping_address,
            payment_method=payment_method,
            pricing=pricing,
            status=OrderStatus.PENDING,
            notes=notes,
            created_at=now,
            updated_at=now,
        )


# Reviews


@dataclass
class Review:
    id: str
    user_id: str
    product_id: str
    rating: int
    comment: str
    title: str | None = None
    verified: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user": self.user_id,
            "product": self.product_id,
            "rating": self.rating,
            "title": self.title,
            "comment": self.comment,
            "verified": self.verified,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    def to_document(self) -> dict[str, Any]:
        return {
            "_id": ObjectId(self.id),
            "user": ObjectId(self.user_id),
            "product": ObjectId(self.product_id),
            "rating": self.rating,
            "title": self.title,
            "comment": self.comment,
            "verified": self.verified,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Review":
        return cls(
            id=str(doc["_id"]),
            user_id=str(doc["user"]),
            product_id=str(doc["product"]),
            rating=doc["rating"],
            comment=doc.get("comment", ""),
            title=doc.get("title"),
            verified=doc.get("verified", False),
            created_at=doc.get("created_at") or utc_now(),
            updated_at=doc.get("updated_at") or utc_now(),
        )

    @classmethod
    def create(
        cls,
        user_id: str,
        product_id: str,
        rating: int,
        comment: str,
        title: str | None = None,
        verified: bool = False,
    ) -> "Review":
        now = utc_now()
        return cls(
            id=str(ObjectId()),
            user_id=user_id,
            product_id=product_id,
            rating=rating,
            comment=comment,
            title=title,
            verified=verified,
            created_at=now,
            updated_at=now,
        )
