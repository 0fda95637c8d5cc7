"""FastAPI REST API for the storefront."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .analytics import SalesAnalytics
from .auth import Identity, authenticate, authorize, optional_authenticate
from .catalog import ProductCatalog
from .config import Settings, get_settings
from .database import Page, get_database, ping
from .errors import StorefrontError
from .models import Category, OrderStatus, PaymentMethod, Role, ShippingAddress
from .orders import LineRequest, OrderManager
from .reviews import ReviewManager
from .users import UserAccounts

logger = logging.getLogger(__name__)


# --- Pydantic Schemas ---


class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str
    phone: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    phone: Optional[str] = None


class AddressCreateRequest(BaseModel):
    street: str
    city: str
    country: str = "USA"
    phone: Optional[str] = None
    is_default: bool = False


class AddressUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    street: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None
    is_default: Optional[bool] = None


class CartAddRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId")
    quantity: int = Field(default=1, ge=1)


class CompatibleModelSchema(BaseModel):
    brand: str
    model_name: str
    release_year: Optional[int] = None


class ProductCreateRequest(BaseModel):
    """Fields an admin may set on a new product."""

    model_config = ConfigDict(extra="forbid")

    name: str
    description: str
    category: Category
    price: float = Field(..., ge=0)
    stock: int = Field(default=0, ge=0)
    images: list[str] = Field(default_factory=list)
    brand: Optional[str] = None
    material: Optional[str] = None
    color: Optional[str] = None
    compatible_models: list[CompatibleModelSchema] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    is_active: bool = True


class ProductUpdateRequest(BaseModel):
    """Partial update; fields left out are not touched."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[Category] = None
    price: Optional[float] = Field(default=None, ge=0)
    stock: Optional[int] = Field(default=None, ge=0)
    images: Optional[list[str]] = None
    brand: Optional[str] = None
    material: Optional[str] = None
    color: Optional[str] = None
    compatible_models: Optional[list[CompatibleModelSchema]] = None
    tags: Optional[list[str]] = None
    is_active: Optional[bool] = None


class StockAdjustRequest(BaseModel):
    quantity: int = Field(..., description="Signed change to apply to stock")


class TagRequest(BaseModel):
    tag: str


class OrderLineSchema(BaseModel):
    product: str
    quantity: int = Field(..., ge=1)


class ShippingAddressSchema(BaseModel):
    name: str
    street: str
    city: str
    country: str
    phone: str


class PricingSchema(BaseModel):
    """Client-side price breakdown; only an admin's discount is taken from it."""

    subtotal: Optional[float] = None
    shipping: Optional[float] = None
    discount: float = Field(default=0.0, ge=0)
    total: Optional[float] = None


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    shipping_address: ShippingAddressSchema = Field(..., alias="shippingAddress")
    payment_method: PaymentMethod = Field(..., alias="paymentMethod")
    pricing: Optional[PricingSchema] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class OrderCreateRequest(CheckoutRequest):
    items: list[OrderLineSchema]


class OrderStatusRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_status: Optional[OrderStatus] = Field(default=None, alias="orderStatus")
    tracking_number: Optional[str] = Field(default=None, alias="trackingNumber")


class ReviewCreateRequest(BaseModel):
    product: str
    rating: int
    title: Optional[str] = None
    comment: str


class ReviewUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rating: Optional[int] = None
    title: Optional[str] = None
    comment: Optional[str] = None


# --- Helper Functions ---


bearer_scheme = HTTPBearer(auto_error=False)


def get_db() -> Database:
    """Database dependency; tests override it."""
    return get_database()


def get_app_settings() -> Settings:
    return get_settings()


def _token(credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    return credentials.credentials if credentials else None


def current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> Identity:
    return authenticate(db, _token(credentials), settings)


def optional_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> Optional[Identity]:
    return optional_authenticate(db, _token(credentials), settings)


def require_admin(identity: Identity = Depends(current_identity)) -> Identity:
    authorize(identity, [Role.ADMIN])
    return identity


def ok(
    data: Any = None,
    message: Optional[str] = None,
    page: Optional[Page] = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build the success envelope."""
    payload: dict[str, Any] = {"success": True}
    if message:
        payload["message"] = message
    if data is not None:
        payload["data"] = data
    if page is not None:
        payload.update(page.meta())
    payload.update(extra)
    return payload


def error_body(message: str, error: Optional[str] = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"success": False, "message": message}
    if error:
        payload["error"] = error
    return payload


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Query dates are compared with naive UTC datetimes from the store."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _discount(pricing: Optional[PricingSchema], identity: Identity) -> float:
    """The discount to apply; only admins may grant one."""
    if pricing is None or not pricing.discount:
        return 0.0
    if not identity.is_admin:
        logger.info("Ignoring client discount from user %s", identity.user_id)
        return 0.0
    return pricing.discount


# --- App ---


app = FastAPI(
    title="Storefront API",
    description="Catalog, cart, orders, reviews and admin analytics.",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Global Exception Handlers ---


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    """Map StorefrontError subclasses to their HTTP status and the error envelope."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, exc.detail or type(exc).__name__),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        messages.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return JSONResponse(
        status_code=400,
        content=error_body(", ".join(messages) or "Validation error", "ValidationError"),
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = "Route not found" if exc.status_code == 404 else str(exc.detail)
    return JSONResponse(status_code=exc.status_code, content=error_body(message))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=error_body("Internal Server Error", type(exc).__name__),
    )


# --- Endpoints ---


@app.get("/api/health")
def health_check(db: Database = Depends(get_db)):
    """Report whether the database answers."""
    try:
        ping(db)
        return ok({"status": "ok", "version": __version__})
    except PyMongoError as e:
        return JSONResponse(
            status_code=503, content=error_body("Database unavailable", str(e))
        )


# --- Auth Endpoints ---


@app.post("/api/auth/register", status_code=201)
def register(
    request: RegisterRequest,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    user, token = UserAccounts(db, settings).register(
        request.name, request.email, request.password, request.phone
    )
    return ok({"user": user.to_dict(), "token": token}, "User registered successfully")


@app.post("/api/auth/login")
def login(
    request: LoginRequest,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    user, token = UserAccounts(db, settings).login(request.email, request.password)
    return ok({"user": user.to_dict(), "token": token}, "Login successful")


@app.get("/api/auth/me")
def get_me(
    identity: Identity = Depends(current_identity),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    return ok(UserAccounts(db, settings).me(identity.user_id))


# --- Product Endpoints ---


@app.get("/api/products")
def list_products(
    category: Optional[Category] = None,
    min_price: Optional[float] = Query(default=None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(default=None, alias="maxPrice", ge=0),
    search: Optional[str] = None,
    sort: str = "-created_at",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=12, ge=1, le=100),
    include_inactive: bool = Query(default=False, alias="includeInactive"),
    identity: Optional[Identity] = Depends(optional_identity),
    db: Database = Depends(get_db),
):
    result = ProductCatalog(db).list_products(
        category=category.value if category else None,
        min_price=min_price,
        max_price=max_price,
        search=search,
        sort=sort,
        page=page,
        limit=limit,
        include_inactive=include_inactive and identity is not None and identity.is_admin,
    )
    return ok([p.to_dict() for p in result.items], page=result)


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return ok(ProductCatalog(db).get_product(product_id).to_dict())


@app.post("/api/products", status_code=201)
def create_product(
    request: ProductCreateRequest,
    admin: Identity = Depends(require_admin),
    db: Database = Depends(get_db),
):
    product = ProductCatalog(db).create_product(request.model_dump(mode="json"))
    return ok(product.to_dict(), "Product created successfully")


@app.put("/api/products/{product_id}")
def update_product(
    product_id: str,
    request: ProductUpdateRequest,
    admin: Identity = Depends(require_admin),
    db: Database = Depends(get_db),
):
    changes = request.model_dump(mode="json", exclude_unset=True)
    product = ProductCatalog(db).update_product(product_id, changes)
    return ok(product.to_dict(), "Product updated successfully")


@app.patch("/api/products/{product_id}/stock")
def update_stock(
    product_id: str,
    request: StockAdjustRequest,
    admin: Identity = Depends(require_admin),
    db: Database = Depends(get_db),
):
    product = ProductCatalog(db).adjust_stock(product_id, request.quantity)
    return ok(product.to_dict(), "Stock updated successfully")


@app.patch("/api/products/{product_id}/tags")
def add_tag(
    product_id: str,
    request: TagRequest,
    admin: Identity = Depends(require_admin),
    db: Database = Depends(get_db),
):
    product = ProductCatalog(db).add_tag(product_id, request.tag)
    return ok(product.to_dict(), "Tag added successfully")


@app.delete("/api/products/{product_id}/tags/{tag}")
def remove_tag(
    product_id: str,
    tag: str,
    admin: Identity = Depends(require_admin),
    db: Database = Depends(get_db),
):
    product = ProductCatalog(db).remove_tag(product_id, tag)
    return ok(product.to_dict(), "Tag removed successfully")


@app.delete("/api/products/{product_id}")
def delete_product(
    product_id: str,
    admin: Identity = Depends(require_admin),
    db: Database = Depends(get_db),
):
    ProductCatalog(db).delete_product(product_id)
    return ok({}, "Product deleted successfully")


# --- Order Endpoints ---


@app.post("/api/orders", status_code=201)
def create_order(
    request: OrderCreateRequest,
    identity: Identity = Depends(current_identity),
    db: Database = Depends(get_db),
):
    manager = OrderManager(db)
    order = manager.place_order(
        identity.user_id,
        [LineRequest(line.product, line.quantity) for line in request.items],
        ShippingAddress(**request.shipping_address.model_dump()),
        request.payment_method,
        discount=_discount(request.pricing, identity),
        notes=request.notes,
    )
    return ok(manager.populate([order])[0], "Order created successfully")


@app.post("/api/orders/checkout", status_code=201)
def checkout(
    request: CheckoutRequest,
    identity: Identity = Depends(current_identity),
    db: Database = Depends(get_db),
):
    """Turn the caller's cart into an order and empty the cart."""
    manager = OrderManager(db)
    order = manager.checkout_cart(
        identity.user_id,
        ShippingAddress(**request.shipping_address.model_dump()),
        request.payment_method,
        discount=_discount(request.pricing, identity),
        notes=request.notes,
    )
    return ok(manager.populate([order])[0], "Order created successfully")


@app.get("/api/orders")
def list_my_orders(
    status: Optional[OrderStatus] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    identity: Identity = Depends(current_identity),
    db: Database = Depends(get_db),
):
    manager = OrderManager(db)
    result = manager.list_orders(identity.user_id, status, page, limit)
    return ok(manager.populate(result.items), page=result)


@app.get("/api/orders/all")
def list_all_orders(
    status: Optional[OrderStatus] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    admin: Identity = Depends(require_admin),
    db: Database = Depends(get_db),
):
    manager = OrderManager(db)
    result = manager.list_orders(None, status, page, limit)
    return ok(manager.populate(result.items), page=result)


@app.get("/api/orders/{order_id}")
def get_order(
    order_id: str,
    identity: Identity = Depends(current_identity),
    db: Database = Depends(get_db),
):
    manager = OrderManager(db)
    return ok(manager.populate([manager.get_order(identity, order_id)])[0])


@app.patch("/api/orders/{order_id}/status")
def update_order_status(
    order_id: str,
    request: OrderStatusRequest,
    admin: Identity = Depends(require_admin),
    db: Database = Depends(get_db),
):
    manager = OrderManager(db)
    order = manager.update_status(order_id, request.order_status, request.tracking_number)
    return ok(manager.populate([order])[0], "Order status updated successfully")


@app.delete("/api/orders/{order_id}")
def cancel_order(
    order_id: str,
    identity: Identity = Depends(current_identity),
    db: Database = Depends(get_db),
):
    order = OrderManager(db).cancel_order(identity, order_id)
    return ok(order.to_dict(), "Order cancelled successfully")


# --- Review Endpoints ---


@app.get("/api/reviews/products/{product_id}")
def list_product_reviews(
    product_id: str,
    sort: str = "-created_at",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    result = ReviewManager(db).list_product_reviews(product_id, sort, page, limit)
    return ok(result.items, page=result)


@app.post("/api/reviews", status_code=201)
def create_review(
    request: ReviewCreateRequest,
    identity: Identity = Depends(current_identity),
    db: Database = Depends(get_db),
):
    review = ReviewManager(db).create_review(
        identity.user_id, request.product, request.rating, request.comment, request.title
    )
    return ok(review.to_dict(), "Review created successfully")


@app.put("/api/reviews/{review_id}")
def update_review(
    review_id: str,
    request: ReviewUpdateRequest,
    identity: Identity = Depends(current_identity),
    db: Database = Depends(get_db),
):
    review = ReviewManager(db).update_review(
        identity, review_id, request.model_dump(exclude_unset=True)
    )
    return ok(review.to_dict(), "Review updated successfully")


@app.delete("/api/reviews/{review_id}")
def delete_review(
    review_id: str,
    identity: Identity = Depends(current_identity),
    db: Database = Depends(get_db),
):
    ReviewManager(db).delete_review(identity, review_id)
    return ok({}, "Review deleted successfully")


# --- User Endpoints ---


@app.get("/api/users/cart")
def get_cart(
    identity: Identity = Depends(current_identity),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    return ok(UserAccounts(db, settings).get_cart(identity.user_id))


@app.post("/api/users/cart")
def add_to_cart(
    request: CartAddRequest,
    identity: Identity = Depends(current_identity),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    cart = UserAccounts(db, settings).add_to_cart(
        identity.user_id, request.product_id, request.quantity
    )
    return ok(cart, "Product added to cart")


@app.delete("/api/users/cart/{product_id}")
def remove_from_cart(
    product_id: str,
    identity: Identity = Depends(current_identity),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    cart = UserAccounts(db, settings).remove_from_cart(identity.user_id, product_id)
    return ok(cart, "Product removed from cart")


@app.delete("/api/users/cart")
def clear_cart(
    identity: Identity = Depends(current_identity),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    cart = UserAccounts(db, settings).clear_cart(identity.user_id)
    return ok(cart, "Cart cleared successfully")


@app.get("/api/users/{user_id}")
def get_user_profile(
    user_id: str,
    identity: Identity = Depends(current_identity),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    return ok(UserAccounts(db, settings).get_profile(identity, user_id).to_dict())


@app.put("/api/users/{user_id}")
def update_user_profile(
    user_id: str,
    request: ProfileUpdateRequest,
    identity: Identity = Depends(current_identity),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    user = UserAccounts(db, settings).update_profile(
        identity, user_id, name=request.name, phone=request.phone
    )
    return ok(user.to_dict(), "Profile updated successfully")


@app.post("/api/users/{user_id}/addresses")
def add_address(
    user_id: str,
    request: AddressCreateRequest,
    identity: Identity = Depends(current_identity),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    user = UserAccounts(db, settings).add_address(identity, user_id, request.model_dump())
    return ok(user.to_dict(), "Address added successfully")


@app.patch("/api/users/{user_id}/addresses/{address_id}")
def update_address(
    user_id: str,
    address_id: str,
    request: AddressUpdateRequest,
    identity: Identity = Depends(current_identity),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    user = UserAccounts(db, settings).update_address(
        identity, user_id, address_id, request.model_dump(exclude_unset=True)
    )
    return ok(user.to_dict(), "Address updated successfully")


@app.delete("/api/users/{user_id}/addresses/{address_id}")
def remove_address(
    user_id: str,
    address_id: str,
    identity: Identity = Depends(current_identity),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    user = UserAccounts(db, settings).remove_address(identity, user_id, address_id)
    return ok(user.to_dict(), "Address removed successfully")


# --- Analytics Endpoints ---


@app.get("/api/analytics/products/top-rated")
def top_rated_products(
    limit: int = Query(default=10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    products = SalesAnalytics(db).top_rated(limit)
    return ok(products, count=len(products))


@app.get("/api/analytics/reviews/stats")
def review_stats(db: Database = Depends(get_db)):
    return ok(SalesAnalytics(db).review_stats())


@app.get("/api/analytics/users/{user_id}/orders")
def user_order_history(
    user_id: str,
    identity: Identity = Depends(current_identity),
    db: Database = Depends(get_db),
):
    return ok(SalesAnalytics(db).user_order_history(identity, user_id))


@app.get("/api/analytics/products/stats")
def product_stats(
    admin: Identity = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return ok(SalesAnalytics(db).product_stats())


@app.get("/api/analytics/sales")
def sales(
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    admin: Identity = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return ok(SalesAnalytics(db).sales(_naive_utc(start_date), _naive_utc(end_date)))


@app.get("/api/analytics/sales/timeseries")
def sales_timeseries(
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    interval: str = "day",
    admin: Identity = Depends(require_admin),
    db: Database = Depends(get_db),
):
    series = SalesAnalytics(db).sales_timeseries(
        _naive_utc(start_date), _naive_utc(end_date), interval
    )
    return ok(series)


@app.get("/api/analytics/orders/status")
def order_status_stats(
    admin: Identity = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return ok(SalesAnalytics(db).order_status_counts())
