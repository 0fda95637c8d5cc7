"""Bearer-token authentication and role checks."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

from bson import ObjectId
from bson.errors import InvalidId
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

from .config import Settings
from .database import USERS
from .errors import AccountDisabled, Forbidden, StorefrontError, Unauthenticated
from .models import Role, User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


@dataclass(frozen=True)
class Identity:
    """The caller of a request, derived from its bearer token."""

    user_id: str
    role: Role
    name: str
    email: str

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def may_act_for(self, owner_id: str) -> bool:
        """True if the caller owns ``owner_id``'s data or is an admin."""
        return self.user_id == owner_id or self.is_admin

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(user_id=user.id, role=user.role, name=user.name, email=user.email)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(plain_password, password_hash)


def issue_token(user_id: str, settings: Settings) -> str:
    """Sign a token carrying ``user_id`` that expires after ``settings.token_ttl_days``."""
    expire = datetime.now(timezone.utc) + timedelta(days=settings.token_ttl_days)
    return jwt.encode(
        {"id": user_id, "exp": expire},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


def decode_token(token: str, settings: Settings) -> str:
    """
    Verify signature and expiry and return the user id.

    Raises:
        Unauthenticated: If the token is invalid or expired.
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise Unauthenticated("Invalid or expired token")
    user_id = payload.get("id")
    if not isinstance(user_id, str):
        raise Unauthenticated("Invalid or expired token")
    return user_id


def authenticate(db: Database, token: str | None, settings: Settings) -> Identity:
    """
    Resolve a bearer token to the identity of an active user.

    Raises:
        Unauthenticated: Token missing, invalid, expired, or user gone.
        AccountDisabled: The user has been deactivated.
    """
    if not token:
        raise Unauthenticated()

    user_id = decode_token(token, settings)
    try:
        oid = ObjectId(user_id)
    except InvalidId:
        raise Unauthenticated("Invalid or expired token")

    doc = db[USERS].find_one({"_id": oid})
    if doc is None:
        raise Unauthenticated("User no longer exists")

    user = User.from_document(doc)
    if not user.is_active:
        raise AccountDisabled()
    return Identity.from_user(user)


def optional_authenticate(db: Database, token: str | None, settings: Settings) -> Identity | None:
    """Like ``authenticate`` but yields an anonymous caller (None) instead of failing."""
    if not token:
        return None
    try:
        return authenticate(db, token, settings)
    except StorefrontError as e:
        logger.debug("Ignoring unusable token on optional auth: %s", e)
        return None


def authorize(identity: Identity, roles: Iterable[Role]) -> None:
    """
    Raises:
        Forbidden: If the caller's role is not one of ``roles``.
    """
    if identity.role not in set(roles):
        raise Forbidden()
