"""User accounts: registration, login, profile, addresses and cart."""

import logging
import re
from typing import Any

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from pymongo.results import UpdateResult

from .auth import Identity, hash_password, issue_token, verify_password
from .catalog import ProductCatalog
from .config import Settings
from .database import USERS, parse_object_id
from .errors import AccountDisabled, Conflict, Forbidden, NotFound, Unauthenticated, ValidationError
from .models import Address, CartItem, Role, User, utc_now

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_NAME_LENGTH = 2
MIN_PASSWORD_LENGTH = 4

ADDRESS_FIELDS = ("street", "city", "country", "phone", "is_default")


def validate_registration(name: str, email: str, password: str) -> tuple[str, str]:
    """
    Returns:
        The trimmed name and the normalized (lower-cased) email.

    Raises:
        ValidationError: If a field is missing or malformed.
    """
    if not name or not email or not password:
        raise ValidationError("Please provide name, email and password")
    name = name.strip()
    if len(name) < MIN_NAME_LENGTH:
        raise ValidationError(f"Name must be at least {MIN_NAME_LENGTH} characters long")
    email = email.strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("Please provide a valid email")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    return name, email


class UserAccounts:
    """Manages user documents, including their embedded addresses and cart."""

    def __init__(self, db: Database, settings: Settings):
        self.db = db
        self.settings = settings
        self.users = db[USERS]

    def _get(self, user_id: str) -> User:
        oid = parse_object_id(user_id, "user")
        doc = self.users.find_one({"_id": oid})
        if doc is None:
            raise NotFound("User", user_id)
        return User.from_document(doc)

    def _insert(self, user: User) -> User:
        try:
            self.users.insert_one(user.to_document())
        except DuplicateKeyError:
            raise Conflict("User with this email already exists")
        return user

    # Registration and login

    def register(
        self, name: str, email: str, password: str, phone: str | None = None
    ) -> tuple[User, str]:
        """
        Create a regular user account and sign a token for it.

        Raises:
            ValidationError: If a field is missing or malformed.
            Conflict: If the email is already registered.
        """
        name, email = validate_registration(name, email, password)
        if self.users.find_one({"email": email}, {"_id": 1}):
            raise Conflict("User with this email already exists")

        user = self._insert(
            User.create(name=name, email=email, password_hash=hash_password(password), phone=phone)
        )
        logger.info("Registered user %s", user.id)
        return user, issue_token(user.id, self.settings)

    def create_admin(self, name: str, email: str, password: str) -> User:
        """Create an admin account (CLI only; the API never grants the admin role)."""
        name, email = validate_registration(name, email, password)
        user = self._insert(
            User.create(name=name, email=email, password_hash=hash_password(password), role=Role.ADMIN)
        )
        logger.info("Created admin %s", user.id)
        return user

    def login(self, email: str, password: str) -> tuple[User, str]:
        """
        Raises:
            ValidationError: If email or password is missing.
            Unauthenticated: If the credentials don't match.
            AccountDisabled: If the account is deactivated.
        """
        if not email or not password:
            raise ValidationError("Please provide email and password")
        doc = self.users.find_one({"email": email.strip().lower()})
        if doc is None:
            raise Unauthenticated("Invalid credentials")
        user = User.from_document(doc)
        if not user.is_active:
            raise AccountDisabled("Account is deactivated. Please contact support.")
        if not verify_password(password, user.password_hash):
            raise Unauthenticated("Invalid credentials")

        user.last_login = utc_now()
        self.users.update_one({"_id": ObjectId(user.id)}, {"$set": {"last_login": user.last_login}})
        return user, issue_token(user.id, self.settings)

    # Profile

    def me(self, user_id: str) -> dict[str, Any]:
        """The caller's profile with cart lines populated with product details."""
        user = self._get(user_id)
        data = user.to_dict()
        data["cart"] = self._render_cart(user.cart)
        return data

    def get_profile(self, identity: Identity, user_id: str) -> User:
        user = self._get(user_id)
        if not identity.may_act_for(user_id):
            raise Forbidden("Not authorized to view this profile")
        return user

    def update_profile(
        self,
        identity: Identity,
        user_id: str,
        name: str | None = None,
        phone: str | None = None,
    ) -> User:
        if not identity.may_act_for(user_id):
            raise Forbidden("Not authorized to update this profile")
        update: dict[str, Any] = {}
        if name is not None:
            name = name.strip()
            if len(name) < MIN_NAME_LENGTH:
                raise ValidationError(f"Name must be at least {MIN_NAME_LENGTH} characters long")
            update["name"] = name
        if phone is not None:
            update["phone"] = phone.strip()
        if not update:
            raise ValidationError("No fields to update")
        update["updated_at"] = utc_now()

        doc = self.users.find_one_and_update(
            {"_id": parse_object_id(user_id, "user")},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFound("User", user_id)
        return User.from_document(doc)

    # Addresses

    def _own(self, identity: Identity, user_id: str) -> ObjectId:
        if identity.user_id != user_id:
            raise Forbidden("Not authorized")
        return parse_object_id(user_id, "user")

    def _update(self, query: dict[str, Any], update: dict[str, Any]) -> UpdateResult:
        """Apply one targeted update to a user document, stamping ``updated_at``."""
        update.setdefault("$set", {})["updated_at"] = utc_now()
        return self.users.update_one(query, update)

    def _clear_other_defaults(self, oid: ObjectId, keep: ObjectId) -> None:
        # One matching element per pass; the positional operator flips only the first.
        query = {
            "_id": oid,
            "addresses": {"$elemMatch": {"is_default": True, "_id": {"$ne": keep}}},
        }
        while self._update(query, {"$set": {"addresses.$.is_default": False}}).matched_count:
            pass

    def add_address(self, identity: Identity, user_id: str, fields: dict[str, Any]) -> User:
        """Append an address; a new default clears the flag everywhere else."""
        oid = self._own(identity, user_id)
        if not fields.get("street") or not fields.get("city"):
            raise ValidationError("Street and city are required")
        address = Address.create(
            street=fields["street"],
            city=fields["city"],
            country=fields.get("country") or "USA",
            phone=fields.get("phone"),
            is_default=bool(fields.get("is_default", False)),
        )
        pushed = self._update({"_id": oid}, {"$push": {"addresses": address.to_document()}})
        if not pushed.matched_count:
            raise NotFound("User", user_id)
        if address.is_default:
            self._clear_other_defaults(oid, ObjectId(address.id))
        return self._get(user_id)

    def _missing_address(self, user_id: str, address_id: str) -> NotFound:
        self._get(user_id)
        return NotFound("Address", address_id)

    def update_address(
        self, identity: Identity, user_id: str, address_id: str, fields: dict[str, Any]
    ) -> User:
        oid = self._own(identity, user_id)
        aid = parse_object_id(address_id, "address")

        changes = {
            f"addresses.$.{key}": fields[key]
            for key in ("street", "city", "country", "phone")
            if fields.get(key) is not None
        }
        if fields.get("is_default") in (True, False):
            changes["addresses.$.is_default"] = fields["is_default"]
        if not self._update({"_id": oid, "addresses._id": aid}, {"$set": changes}).matched_count:
            raise self._missing_address(user_id, address_id)
        if fields.get("is_default") is True:
            self._clear_other_defaults(oid, aid)
        return self._get(user_id)

    def remove_address(self, identity: Identity, user_id: str, address_id: str) -> User:
        """
        Raises:
            NotFound: If the user has no address with ``address_id``.
        """
        oid = self._own(identity, user_id)
        aid = parse_object_id(address_id, "address")
        result = self._update(
            {"_id": oid, "addresses._id": aid}, {"$pull": {"addresses": {"_id": aid}}}
        )
        if not result.matched_count:
            raise self._missing_address(user_id, address_id)
        return self._get(user_id)

    # Cart

    def _render_cart(self, cart: list[CartItem]) -> list[dict[str, Any]]:
        products = ProductCatalog(self.db).get_many([c.product_id for c in cart]) if cart else {}
        rendered = []
        for entry in cart:
            data = entry.to_dict()
            product = products.get(entry.product_id)
            data["product"] = product.to_dict() if product else None
            rendered.append(data)
        return rendered

    def get_cart(self, user_id: str) -> list[dict[str, Any]]:
        return self._render_cart(self._get(user_id).cart)

    def add_to_cart(self, user_id: str, product_id: str, quantity: int = 1) -> list[dict[str, Any]]:
        """
        Add a product to the cart, merging with an existing line for it.

        The line is bumped in place when present and pushed otherwise; each
        write touches only the cart, so concurrent changes to the user survive.
        """
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        ProductCatalog(self.db).get_product(product_id)
        oid = parse_object_id(user_id, "user")
        pid = ObjectId(product_id)

        # A second pass covers a line pushed concurrently between the two writes.
        for _ in range(2):
            merged = self._update(
                {"_id": oid, "cart.product": pid}, {"$inc": {"cart.$.quantity": quantity}}
            )
            if merged.matched_count:
                break
            line = CartItem(product_id=product_id, quantity=quantity)
            pushed = self._update(
                {"_id": oid, "cart.product": {"$ne": pid}}, {"$push": {"cart": line.to_document()}}
            )
            if pushed.matched_count:
                break
        else:
            self._get(user_id)
        return self.get_cart(user_id)

    def remove_from_cart(self, user_id: str, product_id: str) -> list[dict[str, Any]]:
        oid = parse_object_id(user_id, "user")
        pid = parse_object_id(product_id, "product")
        if not self._update({"_id": oid}, {"$pull": {"cart": {"product": pid}}}).matched_count:
            raise NotFound("User", user_id)
        return self.get_cart(user_id)

    def clear_cart(self, user_id: str) -> list[dict[str, Any]]:
        oid = parse_object_id(user_id, "user")
        if not self._update({"_id": oid}, {"$set": {"cart": []}}).matched_count:
            raise NotFound("User", user_id)
        return []
