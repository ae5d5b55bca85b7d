"""
MfgPlan - Bill of Materials Manager
===================================

BOM versioning and multi-level explosion.

Features:
- Draft / released / obsolete lifecycle with version copies
- Write-time circular reference check (direct and transitive)
- Depth-first explosion in line order with a bounded work-list
- Where-used and version comparison
"""

from __future__ import annotations

import logging
from dataclasses import fields, replace
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from uuid import uuid4

import pandas as pd

from mfg_planning.config import PlanningConfig, PlanningSettings
from mfg_planning.engineering.engineering_models import (
    BillOfMaterials,
    BomLine,
    BomType,
    DocumentStatus,
    ExplodedRequirement,
)
from mfg_planning.engineering.versioning import supersede_overlapping
from mfg_planning.exceptions import (
    BomNotFoundException,
    BomValidationError,
    CircularBomException,
)
from mfg_planning.hooks import PlanningEventBus, PlanningEventType
from mfg_planning.providers.interfaces import BomRepository

logger = logging.getLogger(__name__)


class BillOfMaterialsManager:
    """
    Owner and sole mutator of BOMs.

    Usage:
        manager = BillOfMaterialsManager(InMemoryBomRepository())
        bom = manager.create("BIKE", [BomLine("WHEEL", 2, line_number=10)])
        manager.release(bom.id)
        rows = manager.explode(bom.id, 5)
    """

    def __init__(
        self,
        repository: BomRepository,
        event_bus: Optional[PlanningEventBus] = None,
        config: Optional[PlanningConfig] = None,
    ):
        self.repository = repository
        self.event_bus = event_bus
        self.config = config or PlanningSettings.get_config()

    # ───────────────────────────────────────────────────────────────────────────
    # Lookup
    # ───────────────────────────────────────────────────────────────────────────

    def get_by_id(self, bom_id: str) -> BillOfMaterials:
        bom = self.repository.find_by_id(bom_id)
        if bom is None:
            raise BomNotFoundException(bom_id)
        return bom

    def get_effective(self, product_id: str, on_date: Optional[date] = None) -> BillOfMaterials:
        """Released BOM covering on_date (today when omitted)."""
        bom = self.repository.find_by_product_id(product_id, on_date or date.today())
        if bom is None:
            raise BomNotFoundException.for_product(product_id, on_date)
        return bom

    def find_effective(self, product_id: str, on_date: Optional[date] = None) -> Optional[BillOfMaterials]:
        return self.repository.find_by_product_id(product_id, on_date or date.today())

    def get_versions(self, product_id: str) -> List[BillOfMaterials]:
        return self.repository.find_all_versions(product_id)

    # ───────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ───────────────────────────────────────────────────────────────────────────

    def create(
        self,
        product_id: str,
        lines: Iterable[BomLine] = (),
        version: int = 1,
        bom_type: BomType = BomType.MANUFACTURING,
        effective_from: Optional[date] = None,
        effective_to: Optional[date] = None,
        description: str = "",
    ) -> BillOfMaterials:
        """Create a draft BOM. Every line is checked for cycles before anything is stored."""
        self._check_version_available(product_id, version)

        bom = BillOfMaterials(
            id=f"BOM-{uuid4().hex[:8]}",
            product_id=product_id,
            version=version,
            bom_type=bom_type,
            status=DocumentStatus.DRAFT,
            effective_from=effective_from,
            effective_to=effective_to,
            description=description,
        )

        accepted: List[BomLine] = []
        for line in lines:
            self._check_line_number(bom.with_changes(lines=accepted), line)
            self._check_circular(bom, line.component_product_id)
            accepted.append(line)

        bom = self.repository.create(bom.with_changes(lines=accepted))
        logger.info(f"Created BOM {bom.id} for {product_id} v{version} with {len(accepted)} lines")
        return bom

    def create_version(
        self,
        bom_id: str,
        new_version: int,
        effective_from: Optional[date] = None,
    ) -> BillOfMaterials:
        """Copy lines and type of an existing BOM into a new draft version."""
        source = self.get_by_id(bom_id)
        self._check_version_available(source.product_id, new_version)

        bom = BillOfMaterials(
            id=f"BOM-{uuid4().hex[:8]}",
            product_id=source.product_id,
            version=new_version,
            bom_type=source.bom_type,
            status=DocumentStatus.DRAFT,
            lines=list(source.lines),
            effective_from=effective_from,
            description=source.description,
        )
        bom = self.repository.create(bom)
        logger.info(f"Created BOM version {new_version} of {source.product_id} from {bom_id}")
        return bom

    def add_line(self, bom_id: str, line: BomLine) -> BillOfMaterials:
        """Add a component line to a draft BOM; rejects lines that would create a cycle."""
        bom = self.get_by_id(bom_id)
        self._require_draft(bom, "add lines to")
        self._check_line_number(bom, line)
        self._check_circular(bom, line.component_product_id)

        updated = self.repository.update(bom.with_changes(lines=[*bom.lines, line]))
        logger.debug(f"Added line {line.line_number} ({line.component_product_id}) to BOM {bom_id}")
        return updated

    def remove_line(self, bom_id: str, line_number: int) -> BillOfMaterials:
        bom = self.get_by_id(bom_id)
        self._require_draft(bom, "remove lines from")
        if bom.get_line(line_number) is None:
            raise BomValidationError(f"BOM {bom_id} has no line {line_number}")

        remaining = [l for l in bom.lines if l.line_number != line_number]
        updated = self.repository.update(bom.with_changes(lines=remaining))
        logger.debug(f"Removed line {line_number} from BOM {bom_id}")
        return updated

    def update_line(self, bom_id: str, line_number: int, **changes: Any) -> BillOfMaterials:
        """
        Change fields of a draft BOM line (quantity, uom, scrap, component...).

        Raises:
            BomValidationError: not a draft, unknown line or field, or line number taken
            CircularBomException: the new component would create a cycle
        """
        bom = self.get_by_id(bom_id)
        self._require_draft(bom, "update lines of")
        line = bom.get_line(line_number)
        if line is None:
            raise BomValidationError(f"BOM {bom_id} has no line {line_number}")
        unknown = sorted(set(changes) - {f.name for f in fields(BomLine)})
        if unknown:
            raise BomValidationError(f"Unknown BOM line fields: {', '.join(unknown)}")

        updated_line = replace(line, **changes)
        others = [l for l in bom.lines if l.line_number != line_number]
        self._check_line_number(bom.with_changes(lines=others), updated_line)
        if updated_line.component_product_id != line.component_product_id:
            self._check_circular(bom, updated_line.component_product_id)

        updated = self.repository.update(bom.with_changes(lines=[*others, updated_line]))
        logger.debug(f"Updated line {line_number} of BOM {bom_id}: {changes}")
        return updated

    def next_version(self, product_id: str) -> int:
        """Version number following the highest existing version of the product."""
        return max((b.version for b in self.repository.find_all_versions(product_id)), default=0) + 1

    def validate(self, bom_id: str) -> List[str]:
        """Return the list of problems preventing release (empty when valid)."""
        bom = self.get_by_id(bom_id)
        errors = []

        if not bom.lines:
            errors.append("BOM has no components")

        numbers = [l.line_number for l in bom.lines]
        duplicates = sorted({n for n in numbers if numbers.count(n) > 1})
        for n in duplicates:
            errors.append(f"Duplicate line number {n}")

        for line in bom.sorted_lines():
            try:
                self._check_circular(bom, line.component_product_id)
            except CircularBomException as e:
                errors.append(str(e))

        return errors

    def release(self, bom_id: str) -> BillOfMaterials:
        """DRAFT -> RELEASED. Overlapping released versions are superseded."""
        bom = self.get_by_id(bom_id)
        if bom.status != DocumentStatus.DRAFT:
            raise BomValidationError(
                f"Only draft BOMs can be released (BOM {bom_id} is {bom.status.value})"
            )

        errors = self.validate(bom_id)
        if errors:
            raise BomValidationError(f"BOM {bom_id} cannot be released", errors)

        released, superseded = supersede_overlapping(
            bom.with_changes(status=DocumentStatus.RELEASED),
            self.repository.find_all_versions(bom.product_id),
        )
        for other in superseded:
            self.repository.update(other)
        released = self.repository.update(released)

        logger.info(f"Released BOM {bom_id} ({bom.product_id} v{bom.version})")
        self._emit(PlanningEventType.BOM_RELEASED, released, superseded=[o.id for o in superseded])
        return released

    def obsolete(self, bom_id: str) -> BillOfMaterials:
        bom = self.get_by_id(bom_id)
        if bom.status == DocumentStatus.OBSOLETE:
            raise BomValidationError(f"BOM {bom_id} is already obsolete")

        updated = self.repository.update(bom.with_changes(status=DocumentStatus.OBSOLETE))
        logger.info(f"Obsoleted BOM {bom_id} ({bom.product_id} v{bom.version})")
        self._emit(PlanningEventType.BOM_OBSOLETED, updated)
        return updated

    # ───────────────────────────────────────────────────────────────────────────
    # Explosion
    # ───────────────────────────────────────────────────────────────────────────

    def explode(
        self,
        bom_id: str,
        quantity: float,
        max_depth: Optional[int] = None,
        on_date: Optional[date] = None,
    ) -> List[ExplodedRequirement]:
        """
        Explode a BOM into a flat, ordered list of requirements.

        Depth-first in line order: each component is followed by its own
        exploded components when it has an effective BOM.

        Args:
            bom_id: BOM to explode
            quantity: Parent quantity (multiplier)
            max_depth: Levels to expand (config.max_bom_depth when omitted, 1 = single level)
            on_date: Effectivity date for component BOMs (today when omitted)

        Returns:
            List of ExplodedRequirement, intermediate and leaf levels included

        Raises:
            ValueError: max_depth below 1
            CircularBomException: a component BOM loops back onto the path
        """
        if max_depth is not None and max_depth < 1:
            raise ValueError(f"max_depth must be at least 1, got {max_depth}")
        root = self.get_by_id(bom_id)
        limit = self.config.max_bom_depth if max_depth is None else max_depth
        on_date = on_date or date.today()
        requirements: List[ExplodedRequirement] = []

        # Work-list entries: (line, parent quantity, level, parent product, products on path)
        stack: List[Tuple[BomLine, float, int, str, Tuple[str, ...]]] = [
            (line, quantity, 1, root.product_id, (root.product_id,))
            for line in reversed(root.sorted_lines())
        ]

        while stack:
            line, parent_qty, level, parent_id, path = stack.pop()
            component_id = line.component_product_id
            child_bom = self.repository.find_by_product_id(component_id, on_date)
            required_qty = line.quantity_with_scrap(parent_qty)

            requirements.append(ExplodedRequirement(
                product_id=component_id,
                quantity=required_qty,
                level=level,
                parent_product_id=parent_id,
                line_number=line.line_number,
                uom=line.uom,
                has_bom=child_bom is not None,
            ))

            if child_bom is None:
                continue
            if component_id in path:
                raise CircularBomException(component_id, [*path, component_id])
            if level >= limit:
                if max_depth is None:
                    logger.warning(f"Max BOM depth ({limit}) reached at {component_id} under {root.product_id}")
                continue

            for child_line in reversed(child_bom.sorted_lines()):
                stack.append((child_line, required_qty, level + 1, component_id, (*path, component_id)))

        logger.debug(f"Exploded BOM {bom_id} x{quantity}: {len(requirements)} rows")
        return requirements

    def to_dataframe(self, requirements: List[ExplodedRequirement]) -> pd.DataFrame:
        """Convert an explosion to a DataFrame."""
        return pd.DataFrame(
            [
                {
                    "product_id": r.product_id,
                    "quantity": r.quantity,
                    "level": r.level,
                    "parent_product_id": r.parent_product_id,
                    "line_number": r.line_number,
                    "uom": r.uom,
                    "has_bom": r.has_bom,
                }
                for r in requirements
            ],
            columns=["product_id", "quantity", "level", "parent_product_id", "line_number", "uom", "has_bom"],
        )

    def summarize_requirements(self, requirements: List[ExplodedRequirement]) -> pd.DataFrame:
        """Total quantity per terminal (purchased/raw) component."""
        df = self.to_dataframe(requirements)
        leaves = df.loc[~df["has_bom"].astype(bool)]
        return leaves.groupby(["product_id", "uom"], as_index=False, sort=False)["quantity"].sum()

    # ───────────────────────────────────────────────────────────────────────────
    # Analysis
    # ───────────────────────────────────────────────────────────────────────────

    def where_used(self, product_id: str) -> List[BillOfMaterials]:
        """Non-obsolete BOMs that list product_id as a direct component."""
        return [
            bom for bom in self.repository.find_all()
            if bom.status != DocumentStatus.OBSOLETE and product_id in bom.component_ids()
        ]

    def compare(self, bom_id_a: str, bom_id_b: str) -> Dict[str, Any]:
        """Line differences between two BOMs, keyed by component."""
        a = {l.component_product_id: l for l in self.get_by_id(bom_id_a).lines}
        b = {l.component_product_id: l for l in self.get_by_id(bom_id_b).lines}

        changed = []
        for component_id in a.keys() & b.keys():
            old, new = a[component_id], b[component_id]
            if (old.quantity_per_parent_unit, old.uom, old.scrap_percentage) != (
                new.quantity_per_parent_unit, new.uom, new.scrap_percentage
            ):
                changed.append({
                    "component_product_id": component_id,
                    "from_quantity": old.quantity_per_parent_unit,
                    "to_quantity": new.quantity_per_parent_unit,
                    "from_uom": old.uom,
                    "to_uom": new.uom,
                })

        return {
            "added": sorted(b.keys() - a.keys()),
            "removed": sorted(a.keys() - b.keys()),
            "changed": sorted(changed, key=lambda c: c["component_product_id"]),
        }

    # ───────────────────────────────────────────────────────────────────────────
    # Internals
    # ───────────────────────────────────────────────────────────────────────────

    def _check_version_available(self, product_id: str, version: int) -> None:
        existing = {b.version for b in self.repository.find_all_versions(product_id)}
        if version in existing:
            raise BomValidationError(f"Version {version} of BOM for {product_id} already exists")

    def _check_line_number(self, bom: BillOfMaterials, line: BomLine) -> None:
        if bom.get_line(line.line_number) is not None:
            raise BomValidationError(f"BOM {bom.id} already has line {line.line_number}")

    def _require_draft(self, bom: BillOfMaterials, action: str) -> None:
        if bom.status != DocumentStatus.DRAFT:
            raise BomValidationError(
                f"Cannot {action} BOM {bom.id}: status is {bom.status.value}, required draft"
            )

    def _check_circular(self, bom: BillOfMaterials, component_id: str) -> None:
        """
        Raise CircularBomException when component_id is bom.product_id or
        transitively contains it through effective BOMs.
        """
        product_id = bom.product_id
        if component_id == product_id:
            raise CircularBomException(product_id, [product_id, product_id])

        check_date = bom.effective_from or date.today()
        visited: Set[str] = set()
        stack: List[Tuple[str, List[str]]] = [(component_id, [product_id, component_id])]

        while stack:
            current, path = stack.pop()
            if current in visited:
                continue
            visited.add(current)

            child_bom = self.repository.find_by_product_id(current, check_date)
            if child_bom is None:
                continue

            for line in child_bom.sorted_lines():
                child_id = line.component_product_id
                if child_id == product_id:
                    raise CircularBomException(product_id, [*path, child_id])
                if child_id not in visited:
                    stack.append((child_id, [*path, child_id]))

    def _emit(self, event_type: PlanningEventType, bom: BillOfMaterials, **extra: Any) -> None:
        if self.event_bus is not None and self.config.publish_events:
            self.event_bus.emit(
                event_type,
                source="bom_manager",
                bom_id=bom.id,
                product_id=bom.product_id,
                version=bom.version,
                **extra,
            )
