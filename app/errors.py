"""
Attribution error kinds.

Raised by app.core and translated to HTTP responses by the routers.
Nothing here is retried automatically; callers decide whether to try again.
"""


class AttributionError(Exception):
    """Base class for attribution engine failures."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class OrderNotFoundError(AttributionError):
    def __init__(self, order_id):
        super().__init__(f"Order {order_id} not found.", order_id=str(order_id))
        self.order_id = order_id


class ReportValidationError(AttributionError):
    """Malformed date range or unknown model / groupBy. Raised before any DB work."""


class StorageError(AttributionError):
    """A persistence failure during linking or reporting."""
