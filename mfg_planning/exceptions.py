"""
MfgPlan - Exceptions
====================

Errors raised by the planning managers and engines.

NotFound errors are non-retryable and surface directly to the caller.
Structural errors (cycles, invalid lifecycle transitions) reject the write
and leave the previous state untouched.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence


class ManufacturingError(Exception):
    """Base class for planning errors."""
    pass


# ═══════════════════════════════════════════════════════════════════════════════
# NOT FOUND
# ═══════════════════════════════════════════════════════════════════════════════

class NotFoundError(ManufacturingError):
    """Requested entity does not exist."""

    entity = "Entity"

    def __init__(self, identifier: str, message: Optional[str] = None):
        super().__init__(message or f"{self.entity} '{identifier}' not found")
        self.identifier = identifier


class BomNotFoundException(NotFoundError):
    entity = "BOM"

    @classmethod
    def for_product(cls, product_id: str, on_date=None) -> "BomNotFoundException":
        when = f" effective at {on_date.isoformat()}" if on_date else ""
        return cls(product_id, f"No BOM for product '{product_id}'{when}")


class RoutingNotFoundException(NotFoundError):
    entity = "Routing"

    @classmethod
    def for_product(cls, product_id: str, on_date=None) -> "RoutingNotFoundException":
        when = f" effective at {on_date.isoformat()}" if on_date else ""
        return cls(product_id, f"No routing for product '{product_id}'{when}")


class WorkCenterNotFoundException(NotFoundError):
    entity = "Work center"


class WorkOrderNotFoundException(NotFoundError):
    entity = "Work order"


class ChangeOrderNotFoundException(NotFoundError):
    entity = "Change order"


# ═══════════════════════════════════════════════════════════════════════════════
# STRUCTURAL / VALIDATION
# ═══════════════════════════════════════════════════════════════════════════════

class CircularBomException(ManufacturingError):
    """A BOM line would make a product depend on itself."""

    def __init__(self, product_id: str, path: Sequence[str]):
        self.product_id = product_id
        self.path = list(path)
        super().__init__(
            f"Circular BOM reference for product '{product_id}': {' -> '.join(self.path)}"
        )


class BomValidationError(ManufacturingError):
    """BOM lifecycle or content rule violated."""

    def __init__(self, message: str, validation_errors: Optional[List[str]] = None):
        super().__init__(message)
        self.validation_errors = validation_errors or [message]


class RoutingValidationError(ManufacturingError):
    """Routing lifecycle or content rule violated."""

    def __init__(self, message: str, validation_errors: Optional[List[str]] = None):
        super().__init__(message)
        self.validation_errors = validation_errors or [message]


class InvalidWorkOrderStatusException(ManufacturingError):
    """Work order transition not allowed from its current status."""

    def __init__(
        self,
        work_order_number: str,
        current_status: str,
        required_status: Sequence[str],
        action: str,
    ):
        self.work_order_number = work_order_number
        self.current_status = current_status
        self.required_status = list(required_status)
        self.action = action
        required = " or ".join(self.required_status) if self.required_status else "none"
        super().__init__(
            f"Cannot {action} work order {work_order_number}: status is {current_status}, "
            f"required {required}"
        )


class InvalidChangeOrderStatusException(ManufacturingError):
    """Change order action not allowed from its current status."""

    def __init__(self, order_number: str, current_status: str, required_status: Sequence[str], action: str):
        self.order_number = order_number
        self.current_status = current_status
        self.required_status = list(required_status)
        self.action = action
        required = " or ".join(self.required_status) if self.required_status else "none"
        super().__init__(
            f"Cannot {action} change order {order_number}: status is {current_status}, "
            f"required {required}"
        )


class ChangeOrderValidationError(ManufacturingError):
    """Change order content cannot be applied."""

    def __init__(self, message: str, validation_errors: Optional[List[str]] = None):
        super().__init__(message)
        self.validation_errors = validation_errors or [message]


# ═══════════════════════════════════════════════════════════════════════════════
# PLANNING
# ═══════════════════════════════════════════════════════════════════════════════

class ForecastUnavailableException(ManufacturingError):
    """Neither the primary nor the fallback forecast source produced a forecast."""

    def __init__(self, product_id: str, source_errors: Optional[Dict[str, str]] = None):
        self.product_id = product_id
        self.source_errors = source_errors or {}
        detail = "; ".join(f"{k}: {v}" for k, v in self.source_errors.items())
        message = f"No forecast available for product '{product_id}'"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class CapacityExceededException(ManufacturingError):
    """No date with enough capacity within the search window."""

    def __init__(self, product_id: str, quantity: float, search_days: int):
        self.product_id = product_id
        self.quantity = quantity
        self.search_days = search_days
        super().__init__(
            f"No capacity for {quantity} x '{product_id}' within {search_days} days"
        )
