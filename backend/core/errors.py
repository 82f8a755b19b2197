"""Error taxonomy shared across evaluation, dispatch and ingestion."""

from __future__ import annotations


class StockguardError(Exception):
    """Base class for every error raised by this package."""


class InvalidStateError(StockguardError, ValueError):
    """Stock figures that cannot be evaluated (negative supply, zero consumption)."""


class StockNotFoundError(StockguardError):
    def __init__(self, facility_id: str, product_code: str):
        super().__init__(f"Stock record not found for {facility_id}/{product_code}")
        self.facility_id = facility_id
        self.product_code = product_code


class PayloadValidationError(StockguardError, ValueError):
    """Bad input shape or range. Never retried."""

    fault_code = "Client.Validation"


class OrderValidationError(PayloadValidationError):
    pass


class InvalidProvenanceError(StockguardError, ValueError):
    """A write carried a missing or unrecognized delivery path tag."""

    def __init__(self, path: object, allowed: tuple[str, ...]):
        super().__init__(f"Invalid path tag: {path!r}. Must be one of {', '.join(allowed)}")
        self.path = path
        self.allowed = allowed


class DuplicateOrderError(StockguardError):
    """The storage layer rejected an order because it already exists."""

    fault_code = "Client.Duplicate"

    def __init__(self, order_id: str, detail: str):
        super().__init__(detail)
        self.order_id = order_id
        self.detail = detail


class DuplicateCommandError(DuplicateOrderError):
    """An order command with this command id was already processed."""

    def __init__(self, command_id: str, order_id: str, detail: str):
        super().__init__(order_id, detail)
        self.command_id = command_id
