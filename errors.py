"""Error taxonomy for the storefront.

Services raise these; ``main`` maps each one to its HTTP status.
"""


class StoreError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(StoreError):
    status_code = 400
    default_message = "Invalid request"


class EmptyCartError(StoreError):
    status_code = 400
    default_message = "Cart is empty"


class UnauthorizedError(StoreError):
    status_code = 401
    default_message = "Not authenticated"


class NotFoundError(StoreError):
    status_code = 404
    default_message = "Not found"


class ConflictError(StoreError):
    """A concurrent write changed the document between read and write."""

    status_code = 409
    default_message = "Concurrent modification, please retry"


class InsufficientStockError(StoreError):
    status_code = 409
    default_message = "Insufficient stock"


class InternalError(StoreError):
    pass
