"""
MfgPlan - Planning Event Hooks
==============================

Observer hooks invoked by the planning core.

Audit trails, notifications and dashboards subscribe here instead of
being called from inside the planning algorithms. Delivery is synchronous
and in-process; a subscriber that raises is logged and skipped.

Usage:
    bus = PlanningEventBus()
    bus.subscribe([PlanningEventType.WORK_ORDER_STATUS_CHANGED], audit_log.record)

    manager = WorkOrderManager(repository, event_bus=bus)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

logger = logging.getLogger(__name__)


class PlanningEventType(str, Enum):
    """Events published by the planning core."""
    BOM_RELEASED = "bom.released"
    BOM_OBSOLETED = "bom.obsoleted"
    ROUTING_RELEASED = "routing.released"
    MRP_CALCULATED = "mrp.calculated"
    MRP_REGENERATED = "mrp.regenerated"
    CAPACITY_BOTTLENECK_DETECTED = "capacity.bottleneck_detected"
    FORECAST_FALLBACK_USED = "forecast.fallback_used"
    WORK_ORDER_STATUS_CHANGED = "work_order.status_changed"
    CHANGE_ORDER_STATUS_CHANGED = "change_order.status_changed"
    CHANGE_ORDER_IMPLEMENTED = "change_order.implemented"


@dataclass
class PlanningEvent:
    """Single planning event."""
    event_type: PlanningEventType
    payload: Dict[str, Any] = field(default_factory=dict)
    source: str = ""
    event_id: str = field(default_factory=lambda: uuid4().hex)
    occurred_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event": self.event_type.value,
            "source": self.source,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


EventCallback = Callable[[PlanningEvent], Any]


class PlanningEventBus:
    """
    In-process event bus for planning observers.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._subscribers: Dict[PlanningEventType, List[EventCallback]] = {}
        self._catch_all: List[EventCallback] = []

    def subscribe(
        self,
        event_types: Optional[Sequence[PlanningEventType]],
        callback: EventCallback,
    ) -> None:
        """
        Register a callback.

        Args:
            event_types: Events to receive, or None for every event
            callback: Called with the PlanningEvent
        """
        if event_types is None:
            self._catch_all.append(callback)
            return

        for event_type in event_types:
            if event_type not in self._subscribers:
                self._subscribers[event_type] = []
            self._subscribers[event_type].append(callback)

    def unsubscribe(self, callback: EventCallback) -> None:
        for callbacks in self._subscribers.values():
            if callback in callbacks:
                callbacks.remove(callback)
        if callback in self._catch_all:
            self._catch_all.remove(callback)

    def publish(self, event: PlanningEvent) -> int:
        """
        Deliver an event to its subscribers.

        Returns:
            Number of callbacks that handled the event without raising
        """
        if not self.enabled:
            return 0

        delivered = 0
        callbacks = self._subscribers.get(event.event_type, []) + self._catch_all
        for callback in callbacks:
            try:
                callback(event)
                delivered += 1
            except Exception as e:
                logger.error(f"Subscriber callback failed for {event.event_type.value}: {e}")

        logger.debug(f"Published {event.event_type.value} to {delivered}/{len(callbacks)} subscribers")
        return delivered

    def emit(self, event_type: PlanningEventType, source: str = "", **payload: Any) -> int:
        """Build and publish an event."""
        return self.publish(PlanningEvent(event_type=event_type, payload=payload, source=source))


class RecordingObserver:
    """Subscriber that keeps every event it receives."""

    def __init__(self):
        self.events: List[PlanningEvent] = []

    def __call__(self, event: PlanningEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: PlanningEventType) -> List[PlanningEvent]:
        return [e for e in self.events if e.event_type == event_type]
