"""Custom exceptions for storefront."""


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500

    def __init__(self, message: str, detail: str | None = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class ValidationError(StorefrontError):
    """Raised when a request is missing fields or violates a schema constraint."""

    status_code = 400


class InvalidArgument(StorefrontError):
    """Raised when an argument is well-formed but not acceptable (e.g. zero stock delta)."""

    status_code = 400


class Conflict(StorefrontError):
    """Raised on a uniqueness violation (duplicate email, duplicate review)."""

    status_code = 400


class Unauthenticated(StorefrontError):
    """Raised when a bearer token is missing, invalid or expired."""

    status_code = 401

    def __init__(self, message: str = "Not authorized to access this route. Please login."):
        super().__init__(message)


class AccountDisabled(StorefrontError):
    """Raised when the authenticated user has been deactivated."""

    status_code = 401

    def __init__(self, message: str = "User account is deactivated"):
        super().__init__(message)


class Forbidden(StorefrontError):
    """Raised when the caller lacks the role or ownership for an action."""

    status_code = 403

    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(message)


class NotFound(StorefrontError):
    """Raised when a referenced document doesn't exist."""

    status_code = 404

    def __init__(self, kind: str, ref: str | None = None):
        self.kind = kind
        self.ref = ref
        msg = f"{kind} not found"
        if ref is not None:
            msg = f"{kind} {ref} not found"
        super().__init__(msg)


class InsufficientStock(StorefrontError):
    """Raised when a product cannot cover the requested quantity."""

    status_code = 400

    def __init__(self, product_name: str, available: int, requested: int):
        self.product_name = product_name
        self.available = available
        self.requested = requested
        super().__init__(f"Insufficient stock for {product_name}")


class InvalidState(StorefrontError):
    """Raised when an order is not in a state that allows the operation."""

    status_code = 400


class InvalidTransition(StorefrontError):
    """Raised when an order status change is not in the transition table."""

    status_code = 400

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change order status from {current} to {requested}")
