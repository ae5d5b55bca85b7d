"""
MfgPlan - Routing Manager
=========================

Operation-sequence versioning per product.
Same lifecycle as BOMs (draft / released / obsolete); operations can only
be edited while the routing is a draft.
"""

from __future__ import annotations

import logging
from dataclasses import fields, replace
from datetime import date
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from mfg_planning.config import PlanningConfig, PlanningSettings
from mfg_planning.engineering.engineering_models import DocumentStatus, Operation, Routing
from mfg_planning.engineering.versioning import supersede_overlapping
from mfg_planning.exceptions import RoutingNotFoundException, RoutingValidationError
from mfg_planning.hooks import PlanningEventBus, PlanningEventType
from mfg_planning.providers.interfaces import RoutingRepository

logger = logging.getLogger(__name__)


class RoutingManager:
    """
    Owner and sole mutator of routings.
    """

    def __init__(
        self,
        repository: RoutingRepository,
        event_bus: Optional[PlanningEventBus] = None,
        config: Optional[PlanningConfig] = None,
    ):
        self.repository = repository
        self.event_bus = event_bus
        self.config = config or PlanningSettings.get_config()

    def get_by_id(self, routing_id: str) -> Routing:
        routing = self.repository.find_by_id(routing_id)
        if routing is None:
            raise RoutingNotFoundException(routing_id)
        return routing

    def get_effective(self, product_id: str, on_date: Optional[date] = None) -> Routing:
        routing = self.repository.find_by_product_id(product_id, on_date or date.today())
        if routing is None:
            raise RoutingNotFoundException.for_product(product_id, on_date)
        return routing

    def create(
        self,
        product_id: str,
        operations: Iterable[Operation] = (),
        version: int = 1,
        effective_from: Optional[date] = None,
        effective_to: Optional[date] = None,
        description: str = "",
    ) -> Routing:
        self._check_version_available(product_id, version)

        accepted: List[Operation] = []
        for op in operations:
            if any(o.operation_number == op.operation_number for o in accepted):
                raise RoutingValidationError(f"Duplicate operation number {op.operation_number}")
            accepted.append(op)

        routing = self.repository.create(Routing(
            id=f"RTG-{uuid4().hex[:8]}",
            product_id=product_id,
            version=version,
            status=DocumentStatus.DRAFT,
            operations=accepted,
            effective_from=effective_from,
            effective_to=effective_to,
            description=description,
        ))
        logger.info(f"Created routing {routing.id} for {product_id} v{version} with {len(accepted)} operations")
        return routing

    def create_version(
        self,
        routing_id: str,
        new_version: int,
        effective_from: Optional[date] = None,
    ) -> Routing:
        source = self.get_by_id(routing_id)
        self._check_version_available(source.product_id, new_version)

        routing = self.repository.create(Routing(
            id=f"RTG-{uuid4().hex[:8]}",
            product_id=source.product_id,
            version=new_version,
            status=DocumentStatus.DRAFT,
            operations=list(source.operations),
            effective_from=effective_from,
            description=source.description,
        ))
        logger.info(f"Created routing version {new_version} of {source.product_id} from {routing_id}")
        return routing

    def add_operation(self, routing_id: str, operation: Operation) -> Routing:
        routing = self.get_by_id(routing_id)
        self._require_draft(routing, "add operations to")
        if routing.get_operation(operation.operation_number) is not None:
            raise RoutingValidationError(
                f"Routing {routing_id} already has operation {operation.operation_number}"
            )
        return self.repository.update(routing.with_changes(operations=[*routing.operations, operation]))

    def remove_operation(self, routing_id: str, operation_number: int) -> Routing:
        routing = self.get_by_id(routing_id)
        self._require_draft(routing, "remove operations from")
        if routing.get_operation(operation_number) is None:
            raise RoutingValidationError(f"Routing {routing_id} has no operation {operation_number}")

        remaining = [op for op in routing.operations if op.operation_number != operation_number]
        return self.repository.update(routing.with_changes(operations=remaining))

    def update_operation(self, routing_id: str, operation_number: int, **changes: Any) -> Routing:
        """Change fields of an operation of a draft routing."""
        routing = self.get_by_id(routing_id)
        self._require_draft(routing, "update operations of")
        operation = routing.get_operation(operation_number)
        if operation is None:
            raise RoutingValidationError(f"Routing {routing_id} has no operation {operation_number}")
        unknown = sorted(set(changes) - {f.name for f in fields(Operation)})
        if unknown:
            raise RoutingValidationError(f"Unknown operation fields: {', '.join(unknown)}")

        updated_op = replace(operation, **changes)
        others = [op for op in routing.operations if op.operation_number != operation_number]
        if any(op.operation_number == updated_op.operation_number for op in others):
            raise RoutingValidationError(
                f"Routing {routing_id} already has operation {updated_op.operation_number}"
            )
        logger.debug(f"Updated operation {operation_number} of routing {routing_id}: {changes}")
        return self.repository.update(routing.with_changes(operations=[*others, updated_op]))

    def next_version(self, product_id: str) -> int:
        return max((r.version for r in self.repository.find_all_versions(product_id)), default=0) + 1

    def validate(self, routing_id: str) -> List[str]:
        routing = self.get_by_id(routing_id)
        errors = []
        if not routing.operations:
            errors.append("Routing has no operations")

        numbers = [op.operation_number for op in routing.operations]
        for n in sorted({n for n in numbers if numbers.count(n) > 1}):
            errors.append(f"Duplicate operation number {n}")

        return errors

    def release(self, routing_id: str) -> Routing:
        routing = self.get_by_id(routing_id)
        if routing.status != DocumentStatus.DRAFT:
            raise RoutingValidationError(
                f"Only draft routings can be released (routing {routing_id} is {routing.status.value})"
            )
        errors = self.validate(routing_id)
        if errors:
            raise RoutingValidationError(f"Routing {routing_id} cannot be released", errors)
        for op in routing.operations:
            if op.setup_time_minutes == 0 and op.run_time_minutes == 0 and op.operation_type.consumes_capacity:
                logger.warning(f"Routing {routing_id} operation {op.operation_number} has no setup or run time")

        released, superseded = supersede_overlapping(
            routing.with_changes(status=DocumentStatus.RELEASED),
            self.repository.find_all_versions(routing.product_id),
        )
        for other in superseded:
            self.repository.update(other)
        released = self.repository.update(released)

        logger.info(f"Released routing {routing_id} ({routing.product_id} v{routing.version})")
        if self.event_bus is not None and self.config.publish_events:
            self.event_bus.emit(
                PlanningEventType.ROUTING_RELEASED,
                source="routing_manager",
                routing_id=released.id,
                product_id=released.product_id,
                version=released.version,
            )
        return released

    def obsolete(self, routing_id: str) -> Routing:
        routing = self.get_by_id(routing_id)
        if routing.status == DocumentStatus.OBSOLETE:
            raise RoutingValidationError(f"Routing {routing_id} is already obsolete")
        logger.info(f"Obsoleted routing {routing_id}")
        return self.repository.update(routing.with_changes(status=DocumentStatus.OBSOLETE))

    # ───────────────────────────────────────────────────────────────────────────
    # Time calculations
    # ───────────────────────────────────────────────────────────────────────────

    def calculate_capacity_requirements(self, routing_id: str, quantity: float) -> Dict[str, float]:
        """Required hours per work center for an order of quantity."""
        return self.capacity_requirements(self.get_by_id(routing_id), quantity)

    @staticmethod
    def capacity_requirements(routing: Routing, quantity: float) -> Dict[str, float]:
        hours: Dict[str, float] = {}
        for op in routing.sorted_operations():
            required = op.capacity_hours(quantity)
            if required > 0:
                hours[op.work_center_id] = hours.get(op.work_center_id, 0.0) + required
        return hours

    def calculate_lead_time(self, routing_id: str, quantity: float) -> float:
        """
        Manufacturing lead time in hours.

        Each operation's run time is shortened by its overlap with the next one;
        the last operation never overlaps.
        """
        operations = self.get_by_id(routing_id).sorted_operations()
        total_minutes = 0.0
        for i, op in enumerate(operations):
            minutes = op.total_time_minutes(quantity)
            if i < len(operations) - 1 and op.overlap_percentage > 0:
                minutes -= op.run_time_minutes * quantity * op.overlap_percentage / 100
            total_minutes += minutes
        return total_minutes / 60

    # ───────────────────────────────────────────────────────────────────────────
    # Internals
    # ───────────────────────────────────────────────────────────────────────────

    def _check_version_available(self, product_id: str, version: int) -> None:
        existing = {r.version for r in self.repository.find_all_versions(product_id)}
        if version in existing:
            raise RoutingValidationError(f"Version {version} of routing for {product_id} already exists")

    def _require_draft(self, routing: Routing, action: str) -> None:
        if routing.status != DocumentStatus.DRAFT:
            raise RoutingValidationError(
                f"Cannot {action} routing {routing.id}: status is {routing.status.value}, required draft"
            )
