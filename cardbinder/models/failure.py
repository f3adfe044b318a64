"""
Failure classification for the collection state engine.

Failures fall into three groups:
- Mutation failures: the optimistic change is rolled back and the failure
  is recorded on the store as ``last_error``.
- Read/hydration failures: logged, the previous in-memory state is kept.
- Scope misuse: an operation invoked without an owner session. This is a
  setup defect and is always raised.
"""

from enum import Enum

from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    """Classification of failure types."""

    # Input validation failures
    INVALID_INPUT = "invalid_input"
    INVALID_BINDER_SIZE = "invalid_binder_size"

    # Resource failures
    NOT_FOUND = "not_found"
    SYSTEM_BINDER = "system_binder"

    # Persistence failures
    STORE_UNAVAILABLE = "store_unavailable"
    WRITE_REJECTED = "write_rejected"

    # Setup defects
    OUT_OF_SCOPE = "out_of_scope"

    UNKNOWN = "unknown"


class FailureDetail(BaseModel):
    """Detailed information about a failure."""

    kind: FailureKind = Field(
        ...,
        description="Classification of the failure",
    )
    message: str = Field(
        ...,
        description="User-appropriate explanation of what went wrong",
    )
    detail: str | None = Field(
        default=None,
        description="Additional technical detail (optional)",
    )
    card_image_id: str | None = Field(
        default=None,
        description="Card the failed operation targeted, if any",
    )
    binder_id: str | None = Field(
        default=None,
        description="Binder the failed operation targeted, if any",
    )


class KnownError(Exception):
    """
    Base class for exceptions that represent known, explainable failures.

    Subclass this for errors where the system knows exactly what went wrong.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        status_code: int = 400,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.status_code = status_code
        super().__init__(message)

    def to_detail(
        self,
        card_image_id: str | None = None,
        binder_id: str | None = None,
    ) -> FailureDetail:
        """Convert to a FailureDetail."""
        return FailureDetail(
            kind=self.kind,
            message=self.message,
            detail=self.detail,
            card_image_id=card_image_id,
            binder_id=binder_id,
        )


class GatewayError(KnownError):
    """Raised by a persistence gateway when a read or write does not go through."""

    def __init__(self, operation: str, table: str, detail: str | None = None):
        self.operation = operation
        self.table = table
        super().__init__(
            kind=FailureKind.STORE_UNAVAILABLE,
            message=f"Could not {operation} {table}",
            detail=detail,
            status_code=503,
        )


class PersistenceError(KnownError):
    """
    Raised by the binder store after a failed write has been rolled back.

    The local state is already back to what it was before the call.
    """

    def __init__(self, message: str, cause: GatewayError):
        self.cause = cause
        super().__init__(
            kind=FailureKind.WRITE_REJECTED,
            message=message,
            detail=cause.detail or cause.message,
            status_code=503,
        )


class BinderNotFoundError(KnownError):
    """Raised when a binder id is not held by the store."""

    def __init__(self, binder_id: str):
        self.binder_id = binder_id
        super().__init__(
            kind=FailureKind.NOT_FOUND,
            message=f"Binder '{binder_id}' not found",
            status_code=404,
        )


class EntryNotFoundError(KnownError):
    """Raised when no entry in a binder matches the requested card or membership."""

    def __init__(self, binder_id: str, card_image_id: str, membership_id: int | None = None):
        self.binder_id = binder_id
        self.card_image_id = card_image_id
        self.membership_id = membership_id
        target = card_image_id if membership_id is None else f"{card_image_id}#{membership_id}"
        super().__init__(
            kind=FailureKind.NOT_FOUND,
            message=f"Card '{target}' is not in binder '{binder_id}'",
            status_code=404,
        )


class FavoriteNotFoundError(KnownError):
    """Raised when a card is not among the owner's favorites."""

    def __init__(self, card_image_id: str):
        self.card_image_id = card_image_id
        super().__init__(
            kind=FailureKind.NOT_FOUND,
            message=f"Card '{card_image_id}' is not a favorite",
            status_code=404,
        )


class InvalidBinderSizeError(KnownError):
    """Raised when a binder size outside the allowed grid sizes is requested."""

    def __init__(self, size: int, allowed: frozenset[int]):
        self.size = size
        super().__init__(
            kind=FailureKind.INVALID_BINDER_SIZE,
            message=f"Binder size must be one of {sorted(allowed)}, got {size}",
            status_code=422,
        )


class SystemBinderError(KnownError):
    """Raised when a system binder is targeted by a user-only mutation."""

    def __init__(self, binder_id: str, operation: str):
        self.binder_id = binder_id
        super().__init__(
            kind=FailureKind.SYSTEM_BINDER,
            message=f"System binder '{binder_id}' cannot be {operation}",
            status_code=409,
        )


class SessionScopeError(RuntimeError):
    """
    Raised when a store is used outside an owner session.

    This is a programmer error (missing owner, closed store), never a
    runtime condition, so it is not a KnownError and is never caught.
    """
