"""
Error taxonomy for the inventory bot.

Every error carries a human-readable message plus a ``context`` dict with the
state, user and raw input needed to reconstruct the failure from the logs.

Usage:
    try:
        quantity = parse_quantity(text)
    except ValidationError as e:
        logger.info(f"Rejected input: {e.as_dict()}")
"""

from typing import Any, Dict


class InventoryError(Exception):
    """Base class for all handled inventory bot errors."""

    default_message = "Inventory operation failed"

    def __init__(self, message: str = "", **context: Any):
        self.message = message or self.default_message
        self.context: Dict[str, Any] = context
        super().__init__(self.message)

    def as_dict(self) -> Dict[str, Any]:
        """Serialize for structured logging."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "context": {k: str(v) for k, v in self.context.items()},
        }


class ValidationError(InventoryError):
    """Bad user input. Recovered by re-prompting in the same state."""

    default_message = "Invalid input"


class NotFoundError(InventoryError):
    """Missing row, table or material. The flow terminates with a not-found reply."""

    default_message = "Record not found"


class IntegrityViolation(InventoryError):
    """
    A write would break the stock invariant (e.g. outbound above current stock).

    Attributes:
        available: Stock that was available when the check ran
        requested: Quantity the user asked for
    """

    default_message = "Insufficient stock"

    @property
    def available(self) -> int:
        return self.context.get("available", 0)

    @property
    def requested(self) -> int:
        return self.context.get("requested", 0)


class CollaboratorFailure(InventoryError):
    """The table store or chat gateway was unreachable or answered non-2xx."""

    default_message = "External service unavailable"
