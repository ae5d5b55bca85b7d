"""
MfgPlan - Engineering Change Order Manager
==========================================

Approval workflow for BOM and routing changes.

    DRAFT ──submit──▶ PENDING_APPROVAL ──approve──▶ APPROVED ──implement──▶ IMPLEMENTED
                            │
                            └──reject──▶ REJECTED

    cancel: from any status except IMPLEMENTED and CANCELLED

Changes are only collected while the order is a draft. Implementation
never edits a released document: each affected BOM or routing gets a new
draft version, the changes are applied to it, and it is released
effective from the change order's date. If any change cannot be applied
the new drafts are obsoleted and the change order stays APPROVED.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from mfg_planning.config import PlanningConfig, PlanningSettings
from mfg_planning.engineering.bom_manager import BillOfMaterialsManager
from mfg_planning.engineering.change_order_models import (
    BomChange,
    BomChangeType,
    ChangeOrder,
    ChangeOrderAction,
    ChangeOrderStatus,
    RoutingChange,
    RoutingChangeType,
)
from mfg_planning.engineering.engineering_models import BillOfMaterials, Routing
from mfg_planning.engineering.routing_manager import RoutingManager
from mfg_planning.exceptions import (
    ChangeOrderNotFoundException,
    ChangeOrderValidationError,
    InvalidChangeOrderStatusException,
    ManufacturingError,
    NotFoundError,
)
from mfg_planning.hooks import PlanningEventBus, PlanningEventType
from mfg_planning.providers.interfaces import ChangeOrderRepository

logger = logging.getLogger(__name__)


TRANSITIONS: Dict[Tuple[ChangeOrderStatus, ChangeOrderAction], ChangeOrderStatus] = {
    (ChangeOrderStatus.DRAFT, ChangeOrderAction.SUBMIT): ChangeOrderStatus.PENDING_APPROVAL,
    (ChangeOrderStatus.PENDING_APPROVAL, ChangeOrderAction.APPROVE): ChangeOrderStatus.APPROVED,
    (ChangeOrderStatus.PENDING_APPROVAL, ChangeOrderAction.REJECT): ChangeOrderStatus.REJECTED,
    (ChangeOrderStatus.APPROVED, ChangeOrderAction.IMPLEMENT): ChangeOrderStatus.IMPLEMENTED,
    (ChangeOrderStatus.DRAFT, ChangeOrderAction.CANCEL): ChangeOrderStatus.CANCELLED,
    (ChangeOrderStatus.PENDING_APPROVAL, ChangeOrderAction.CANCEL): ChangeOrderStatus.CANCELLED,
    (ChangeOrderStatus.APPROVED, ChangeOrderAction.CANCEL): ChangeOrderStatus.CANCELLED,
    (ChangeOrderStatus.REJECTED, ChangeOrderAction.CANCEL): ChangeOrderStatus.CANCELLED,
}


class ChangeOrderManager:
    """
    Owner of engineering change orders.

    Usage:
        manager = ChangeOrderManager(InMemoryChangeOrderRepository(), bom_manager, routing_manager)
        eco = manager.create("P-100", "Switch to M6 screws", effective_date=date(2024, 3, 1))
        manager.add_bom_change(eco.id, BomChange(bom.id, BomChangeType.MODIFY_LINE,
                                                 line_number=20, changes={"component_product_id": "M6"}))
        manager.submit(eco.id)
        manager.approve(eco.id, "j.silva")
        manager.implement(eco.id)
    """

    def __init__(
        self,
        repository: ChangeOrderRepository,
        bom_manager: BillOfMaterialsManager,
        routing_manager: RoutingManager,
        event_bus: Optional[PlanningEventBus] = None,
        config: Optional[PlanningConfig] = None,
    ):
        self.repository = repository
        self.bom_manager = bom_manager
        self.routing_manager = routing_manager
        self.event_bus = event_bus
        self.config = config or PlanningSettings.get_config()

    # ───────────────────────────────────────────────────────────────────────────
    # Creation / lookup
    # ───────────────────────────────────────────────────────────────────────────

    def create(
        self,
        product_id: str,
        description: str,
        affected_bom_ids: Optional[List[str]] = None,
        affected_routing_ids: Optional[List[str]] = None,
        effective_date: Optional[date] = None,
    ) -> ChangeOrder:
        """Create a change order in DRAFT status."""
        change_order = self.repository.create(ChangeOrder(
            id=f"ECO-{uuid4().hex[:8]}",
            order_number=self._next_order_number(),
            product_id=product_id,
            description=description,
            affected_bom_ids=list(affected_bom_ids or []),
            affected_routing_ids=list(affected_routing_ids or []),
            effective_date=effective_date,
        ))
        logger.info(f"Created change order {change_order.order_number} for {product_id}")
        return change_order

    def get_by_id(self, change_order_id: str) -> ChangeOrder:
        change_order = self.repository.find_by_id(change_order_id)
        if change_order is None:
            raise ChangeOrderNotFoundException(change_order_id)
        return change_order

    def get_by_number(self, order_number: str) -> ChangeOrder:
        change_order = self.repository.find_by_number(order_number)
        if change_order is None:
            raise ChangeOrderNotFoundException(order_number)
        return change_order

    def get_pending_for_product(self, product_id: str) -> List[ChangeOrder]:
        """Change orders of the product not yet implemented, rejected or cancelled."""
        return [co for co in self.repository.find_by_product(product_id) if co.status.is_open]

    def get_history(self, product_id: str) -> List[ChangeOrder]:
        """Every change order of the product, oldest first."""
        return sorted(self.repository.find_by_product(product_id), key=lambda co: co.created_at)

    # ───────────────────────────────────────────────────────────────────────────
    # Changes
    # ───────────────────────────────────────────────────────────────────────────

    def add_bom_change(self, change_order_id: str, change: BomChange) -> ChangeOrder:
        change_order = self._require_draft(change_order_id, "add BOM changes to")
        affected = change_order.affected_bom_ids
        if change.bom_id not in affected:
            affected = [*affected, change.bom_id]
        updated = self.repository.update(change_order.with_changes(
            bom_changes=[*change_order.bom_changes, change],
            affected_bom_ids=affected,
        ))
        logger.debug(f"{updated.order_number}: {change.change_type.value} on BOM {change.bom_id}")
        return updated

    def add_routing_change(self, change_order_id: str, change: RoutingChange) -> ChangeOrder:
        change_order = self._require_draft(change_order_id, "add routing changes to")
        affected = change_order.affected_routing_ids
        if change.routing_id not in affected:
            affected = [*affected, change.routing_id]
        updated = self.repository.update(change_order.with_changes(
            routing_changes=[*change_order.routing_changes, change],
            affected_routing_ids=affected,
        ))
        logger.debug(f"{updated.order_number}: {change.change_type.value} on routing {change.routing_id}")
        return updated

    def validate(self, change_order_id: str, as_of: Optional[date] = None) -> List[str]:
        """
        Return the problems that would prevent implementation (empty when valid).

        Checks that there is something to change, that every referenced BOM
        and routing exists, and that the effective date is not before as_of
        (default today).
        """
        change_order = self.get_by_id(change_order_id)
        as_of = as_of or date.today()
        errors = []

        if not change_order.has_changes:
            errors.append("Change order has no BOM or routing changes")

        for index, bom_change in enumerate(change_order.bom_changes):
            try:
                self.bom_manager.get_by_id(bom_change.bom_id)
            except NotFoundError:
                errors.append(f"BOM change [{index}]: BOM '{bom_change.bom_id}' not found")

        for index, routing_change in enumerate(change_order.routing_changes):
            try:
                self.routing_manager.get_by_id(routing_change.routing_id)
            except NotFoundError:
                errors.append(f"Routing change [{index}]: routing '{routing_change.routing_id}' not found")

        if change_order.effective_date is not None and change_order.effective_date < as_of:
            errors.append("Effective date cannot be in the past")

        return errors

    # ───────────────────────────────────────────────────────────────────────────
    # Workflow
    # ───────────────────────────────────────────────────────────────────────────

    def submit(self, change_order_id: str) -> ChangeOrder:
        change_order = self.get_by_id(change_order_id)
        if not change_order.has_changes:
            raise ChangeOrderValidationError(
                f"Change order {change_order.order_number} has no changes to submit"
            )
        return self._transition(change_order, ChangeOrderAction.SUBMIT, submitted_at=datetime.now())

    def approve(self, change_order_id: str, approved_by: str) -> ChangeOrder:
        return self._transition(
            self.get_by_id(change_order_id),
            ChangeOrderAction.APPROVE,
            approved_at=datetime.now(),
            approved_by=approved_by,
        )

    def reject(self, change_order_id: str, rejected_by: str, reason: str) -> ChangeOrder:
        return self._transition(
            self.get_by_id(change_order_id),
            ChangeOrderAction.REJECT,
            rejected_at=datetime.now(),
            rejected_by=rejected_by,
            rejection_reason=reason,
        )

    def cancel(self, change_order_id: str, reason: str) -> ChangeOrder:
        return self._transition(
            self.get_by_id(change_order_id),
            ChangeOrderAction.CANCEL,
            cancelled_at=datetime.now(),
            cancellation_reason=reason,
        )

    def implement(self, change_order_id: str, as_of: Optional[date] = None) -> ChangeOrder:
        """
        Apply an approved change order as new released document versions.

        Changes are grouped per BOM / routing. Each group is applied, in the
        order it was added, to a new draft version copied from the referenced
        document; all drafts are validated before any of them is released.

        Raises:
            InvalidChangeOrderStatusException: change order is not APPROVED
            ChangeOrderValidationError: a change cannot be applied; nothing is released
        """
        change_order = self.get_by_id(change_order_id)
        self._check_transition(change_order, ChangeOrderAction.IMPLEMENT)

        errors = self.validate(change_order_id, as_of)
        if errors:
            raise ChangeOrderValidationError(
                f"Change order {change_order.order_number} cannot be implemented", errors
            )

        effective_from = change_order.effective_date or as_of or date.today()
        new_boms: List[BillOfMaterials] = []
        new_routings: List[Routing] = []
        try:
            for bom_id, changes in _group(change_order.bom_changes, "bom_id").items():
                source = self.bom_manager.get_by_id(bom_id)
                draft = self.bom_manager.create_version(
                    bom_id, self.bom_manager.next_version(source.product_id), effective_from=effective_from
                )
                new_boms.append(draft)
                for change in changes:
                    self._apply_bom_change(draft.id, change)

            for routing_id, changes in _group(change_order.routing_changes, "routing_id").items():
                source = self.routing_manager.get_by_id(routing_id)
                draft = self.routing_manager.create_version(
                    routing_id, self.routing_manager.next_version(source.product_id),
                    effective_from=effective_from,
                )
                new_routings.append(draft)
                for change in changes:
                    self._apply_routing_change(draft.id, change)
        except (ManufacturingError, ValueError) as e:
            self._discard(change_order, new_boms, new_routings)
            raise ChangeOrderValidationError(
                f"Change order {change_order.order_number} cannot be implemented", [str(e)]
            ) from e

        problems = [f"BOM {b.id}: {p}" for b in new_boms for p in self.bom_manager.validate(b.id)]
        problems += [f"Routing {r.id}: {p}" for r in new_routings for p in self.routing_manager.validate(r.id)]
        if problems:
            self._discard(change_order, new_boms, new_routings)
            raise ChangeOrderValidationError(
                f"Change order {change_order.order_number} cannot be implemented", problems
            )

        for bom in new_boms:
            self.bom_manager.release(bom.id)
        for routing in new_routings:
            self.routing_manager.release(routing.id)

        implemented = self._transition(
            change_order,
            ChangeOrderAction.IMPLEMENT,
            implemented_at=datetime.now(),
            effective_date=effective_from,
            created_bom_ids=[b.id for b in new_boms],
            created_routing_ids=[r.id for r in new_routings],
        )
        logger.info(
            f"Implemented change order {implemented.order_number}: "
            f"{len(new_boms)} BOM and {len(new_routings)} routing version(s) effective {effective_from}"
        )
        self._emit(
            PlanningEventType.CHANGE_ORDER_IMPLEMENTED,
            implemented,
            effective_date=effective_from.isoformat(),
            bom_ids=implemented.created_bom_ids,
            routing_ids=implemented.created_routing_ids,
        )
        return implemented

    # ───────────────────────────────────────────────────────────────────────────
    # Internals
    # ───────────────────────────────────────────────────────────────────────────

    def _apply_bom_change(self, bom_id: str, change: BomChange) -> None:
        if change.change_type == BomChangeType.ADD_LINE:
            self.bom_manager.add_line(bom_id, change.line)
        elif change.change_type == BomChangeType.REMOVE_LINE:
            self.bom_manager.remove_line(bom_id, change.line_number)
        elif change.change_type == BomChangeType.MODIFY_LINE:
            self.bom_manager.update_line(bom_id, change.line_number, **change.changes)
        # NEW_VERSION: the copy is the change

    def _apply_routing_change(self, routing_id: str, change: RoutingChange) -> None:
        if change.change_type == RoutingChangeType.ADD_OPERATION:
            self.routing_manager.add_operation(routing_id, change.operation)
        elif change.change_type == RoutingChangeType.REMOVE_OPERATION:
            self.routing_manager.remove_operation(routing_id, change.operation_number)
        elif change.change_type == RoutingChangeType.MODIFY_OPERATION:
            self.routing_manager.update_operation(routing_id, change.operation_number, **change.changes)

    def _discard(
        self,
        change_order: ChangeOrder,
        boms: List[BillOfMaterials],
        routings: List[Routing],
    ) -> None:
        """Obsolete drafts created by a failed implementation."""
        for bom in boms:
            self.bom_manager.obsolete(bom.id)
        for routing in routings:
            self.routing_manager.obsolete(routing.id)
        logger.warning(
            f"Change order {change_order.order_number} not implemented; "
            f"discarded {len(boms)} BOM and {len(routings)} routing draft(s)"
        )

    def _require_draft(self, change_order_id: str, action: str) -> ChangeOrder:
        change_order = self.get_by_id(change_order_id)
        if change_order.status != ChangeOrderStatus.DRAFT:
            raise InvalidChangeOrderStatusException(
                change_order.order_number,
                change_order.status.value,
                [ChangeOrderStatus.DRAFT.value],
                action,
            )
        return change_order

    def _check_transition(self, change_order: ChangeOrder, action: ChangeOrderAction) -> ChangeOrderStatus:
        key = (change_order.status, action)
        if key not in TRANSITIONS:
            raise InvalidChangeOrderStatusException(
                change_order.order_number,
                change_order.status.value,
                [status.value for (status, a) in TRANSITIONS if a == action],
                action.value,
            )
        return TRANSITIONS[key]

    def _transition(self, change_order: ChangeOrder, action: ChangeOrderAction, **changes: Any) -> ChangeOrder:
        target = self._check_transition(change_order, action)
        updated = self.repository.update(change_order.with_changes(status=target, **changes))
        logger.info(
            f"Change order {updated.order_number}: {change_order.status.value} -> {target.value} ({action.value})"
        )
        self._emit(
            PlanningEventType.CHANGE_ORDER_STATUS_CHANGED,
            updated,
            from_status=change_order.status.value,
            to_status=target.value,
            action=action.value,
        )
        return updated

    def _emit(self, event_type: PlanningEventType, change_order: ChangeOrder, **extra: Any) -> None:
        if self.event_bus is None or not self.config.publish_events:
            return
        self.event_bus.emit(
            event_type,
            source="change_order_manager",
            change_order_id=change_order.id,
            order_number=change_order.order_number,
            product_id=change_order.product_id,
            **extra,
        )

    def _next_order_number(self) -> str:
        sequence = self.repository.count() + 1
        number = f"{self.config.change_order_prefix}-{sequence:06d}"
        while self.repository.find_by_number(number) is not None:
            sequence += 1
            number = f"{self.config.change_order_prefix}-{sequence:06d}"
        return number


def _group(changes: List[Any], key: str) -> "OrderedDict[str, List[Any]]":
    """Changes per document id, keeping first-seen document order."""
    grouped: "OrderedDict[str, List[Any]]" = OrderedDict()
    for change in changes:
        grouped.setdefault(getattr(change, key), []).append(change)
    return grouped
