"""
Domain errors raised by the optimizer, planner, ledger and commit services.

Every error carries the HTTP status the API layer answers with and a
``to_dict()`` payload, so routers can let them propagate to the global
handler registered in ``main.py``.
"""

from typing import Any, Dict, List, Optional


class CuttingError(Exception):
    """Base class for every domain error of the fabrication service."""

    status_code: int = 400
    code: str = "cutting_error"
    retryable: bool = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "error": self.code,
            "detail": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            payload["context"] = {k: _jsonable(v) for k, v in self.details.items()}
        return payload


class InfeasibleCutError(CuttingError):
    """A required cut is longer than every standard length of its material."""

    status_code = 422
    code = "infeasible_cut"

    def __init__(self, required_length, unit: str, longest_available=None, identifier: Optional[str] = None):
        if longest_available is None:
            message = f"No standard length configured to cut {required_length} {unit}"
        else:
            message = (
                f"Cut of {required_length} {unit} exceeds the longest standard length "
                f"({longest_available} {unit})"
            )
        if identifier:
            message = f"{message} for '{identifier}'"
        super().__init__(
            message,
            required_length=required_length,
            unit=unit,
            longest_available=longest_available,
            identifier=identifier,
        )
        self.required_length = required_length
        self.longest_available = longest_available


class InvalidCutError(CuttingError):
    """A cut or stock length that cannot be used (zero, negative, unknown unit)."""

    status_code = 422
    code = "invalid_cut"


class InsufficientStockError(CuttingError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, shortfalls: List[Any], message: Optional[str] = None):
        self.shortfalls = list(shortfalls)
        if message is None:
            message = "Insufficient stock: " + "; ".join(s.message() for s in self.shortfalls)
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["shortfalls"] = [s.to_dict() for s in self.shortfalls]
        return payload


class StockContentionError(CuttingError):
    """Stock of a material was locked or changed by a concurrent commit."""

    status_code = 409
    code = "stock_contention"
    retryable = True


class AlreadyCommittedError(CuttingError):
    status_code = 409
    code = "already_committed"


class PlanNotFoundError(CuttingError):
    status_code = 404
    code = "plan_not_found"


class OrderNotFoundError(CuttingError):
    status_code = 404
    code = "order_not_found"


class MaterialNotFoundError(CuttingError):
    status_code = 404
    code = "material_not_found"


class BatchNotFoundError(CuttingError):
    status_code = 404
    code = "batch_not_found"


class InvalidStatusTransitionError(CuttingError):
    status_code = 400
    code = "invalid_status_transition"


class LedgerError(CuttingError):
    """Invalid input to a ledger operation (inward, manual consumption, correction)."""

    status_code = 400
    code = "ledger_error"


class ImmutableLedgerError(CuttingError):
    """Stock transactions are append-only."""

    status_code = 409
    code = "immutable_ledger"


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)
