"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register one handler per type and
map them to HTTP status codes:

    NotFoundError        → 404
    ValidationError      → 422 (business rule) / 400 (malformed input)
    ConflictError        → 409
    AuthenticationError  → 400 on the webhook endpoint (gateway convention)
    ExpiryError          → 410
    DependencyError      → 502

Cart and token failures subclass the generic types and carry a stable
``reason`` so the HTTP layer and tests can distinguish them without
string matching.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Workshop", resource_id=42)
    raise ValidationError("A valid email address is required.", details={"email": "invalid"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Workshop", "Enrollment").
        resource_id: The key that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation collides with current state.

    Covers duplicates (same workshop twice in a cart) and stale state
    preconditions (status already moved on).

    Args:
        resource: Model name.
        field: The field whose value conflicts.
        value: The conflicting value.
        message: Optional human-readable override for the default message.
    """

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class AuthenticationError(Exception):
    """Raised when an inbound request cannot be authenticated (bad webhook signature).

    Never retried by this system; logged as a security event.
    """


class ExpiryError(Exception):
    """Raised when a time-boxed credential (claim token) has expired.

    Recoverable: the Waitlist Coordinator can issue a fresh token.
    """


class DependencyError(Exception):
    """Raised when an external dependency (payment gateway, store) is unavailable.

    Not swallowed: the caller or the platform's own retry policy re-drives
    the operation.

    Args:
        dependency: Short name of the failing collaborator (e.g. "payment_gateway").
        message: What went wrong.
        status_code: Upstream HTTP status when there was one.
    """

    def __init__(self, dependency: str, message: str, status_code: int | None = None) -> None:
        self.dependency = dependency
        self.status_code = status_code
        super().__init__(f"{dependency}: {message}")


class InvalidTransition(ConflictError):
    """Raised when a status change is not an edge of the entity's state machine."""

    def __init__(self, resource: str, resource_id, current: str, target: str) -> None:
        self.resource_id = resource_id
        self.current_status = current
        self.target_status = target
        super().__init__(
            resource, "status", current,
            message=f"Cannot move {resource} {resource_id} from '{current}' to '{target}'",
        )


# ── Cart errors ──────────────────────────────────────────────────────────────


class AlreadyInCart(ConflictError):
    reason = "already_in_cart"

    def __init__(self, workshop_id: int) -> None:
        super().__init__(
            "CartItem", "workshop_id", str(workshop_id),
            message="This workshop is already in your cart.",
        )


class ItemNotFound(NotFoundError):
    reason = "item_not_found"

    def __init__(self, workshop_id: int) -> None:
        super().__init__("CartItem", workshop_id)

    def __str__(self) -> str:
        return "Item not found in cart."


class WorkshopUnavailable(ValidationError):
    reason = "workshop_unavailable"


class CapacityExhausted(ValidationError):
    reason = "capacity_exhausted"

    def __init__(self, workshop_id: int, message: str = "This workshop is full.") -> None:
        super().__init__(message, details={"workshop_id": workshop_id})


# ── Claim token errors ───────────────────────────────────────────────────────


class TokenNotFound(NotFoundError):
    reason = "not_found"

    def __init__(self) -> None:
        super().__init__("ClaimToken")

    def __str__(self) -> str:
        return "This waitlist link is invalid."


class TokenExpired(ExpiryError):
    reason = "expired"

    def __init__(self, entry_id: int) -> None:
        self.entry_id = entry_id
        super().__init__("This waitlist link has expired.")


class TokenAlreadyClaimed(ConflictError):
    reason = "already_claimed"

    def __init__(self, entry_id: int, status: str) -> None:
        self.entry_id = entry_id
        super().__init__(
            "WaitlistEntry", "status", status,
            message="This waitlist spot has already been claimed or is no longer available.",
        )


class TokenMismatch(ValidationError):
    reason = "mismatch"

    def __init__(self, expected_entry_id, bound_entry_id) -> None:
        self.expected_entry_id = expected_entry_id
        self.bound_entry_id = bound_entry_id
        super().__init__("This waitlist link is not valid for this entry.")
