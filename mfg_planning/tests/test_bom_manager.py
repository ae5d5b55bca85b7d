"""
Tests for BillOfMaterialsManager - lifecycle, cycle check, explosion.
"""
from datetime import date

import pytest

from mfg_planning.config import PlanningConfig
from mfg_planning.engineering.bom_manager import BillOfMaterialsManager
from mfg_planning.engineering.engineering_models import BomLine, DocumentStatus
from mfg_planning.exceptions import (
    BomNotFoundException,
    BomValidationError,
    CircularBomException,
)
from mfg_planning.hooks import PlanningEventType


class TestExplosion:
    """Multi-level explosion in line order."""

    def test_depth_first_line_order(self, bom_manager, bike_tree):
        """Each component is followed by its own components."""
        rows = bom_manager.explode(bike_tree["BIKE"].id, 2)

        assert [(r.product_id, r.quantity, r.level) for r in rows] == [
            ("FRAME", 2, 1),
            ("WHEEL", 4, 1),
            ("RIM", 4, 2),
            ("SPOKE", 144, 2),
        ]
        assert rows[1].has_bom is True
        assert rows[2].parent_product_id == "WHEEL"

    def test_explode_is_idempotent(self, bom_manager, bike_tree):
        """Two explosions with the same inputs give the same ordered list."""
        first = bom_manager.explode(bike_tree["BIKE"].id, 5)
        second = bom_manager.explode(bike_tree["BIKE"].id, 5)
        assert first == second

    def test_single_level(self, bom_manager, bike_tree):
        """max_depth=1 stops at direct components."""
        rows = bom_manager.explode(bike_tree["BIKE"].id, 1, max_depth=1)
        assert [r.product_id for r in rows] == ["FRAME", "WHEEL"]

    @pytest.mark.parametrize("max_depth", [0, -1])
    def test_depth_below_one_rejected(self, bom_manager, bike_tree, max_depth):
        """An explicit depth of zero is not treated as unset."""
        with pytest.raises(ValueError):
            bom_manager.explode(bike_tree["BIKE"].id, 1, max_depth=max_depth)

    def test_configured_depth_limit(self, bom_repository, bike_tree):
        """The configured maximum depth bounds the explosion."""
        shallow = BillOfMaterialsManager(bom_repository, config=PlanningConfig(max_bom_depth=1))
        rows = shallow.explode(bike_tree["BIKE"].id, 1)
        assert [r.product_id for r in rows] == ["FRAME", "WHEEL"]

    def test_scrap_increases_quantity(self, bom_manager):
        """Scrap percentage inflates the required quantity."""
        bom = bom_manager.create("BOX", [BomLine("SHEET", 2, scrap_percentage=10)])
        bom_manager.release(bom.id)

        rows = bom_manager.explode(bom.id, 10)
        assert rows[0].quantity == pytest.approx(22.0)

    def test_summarize_leaves(self, bom_manager, bike_tree):
        """Summary totals only terminal components."""
        summary = bom_manager.summarize_requirements(bom_manager.explode(bike_tree["BIKE"].id, 1))
        totals = dict(zip(summary["product_id"], summary["quantity"]))
        assert totals == {"FRAME": 1, "RIM": 2, "SPOKE": 72}

    def test_to_dataframe(self, bom_manager, bike_tree):
        """Explosion converts to one row per requirement."""
        df = bom_manager.to_dataframe(bom_manager.explode(bike_tree["BIKE"].id, 1))
        assert len(df) == 4
        assert list(df["level"]) == [1, 1, 2, 2]


class TestCircularReferences:
    """Write-time cycle rejection."""

    def test_transitive_cycle_rejected_and_bom_unchanged(self, bom_manager, bike_tree):
        """RIM -> BIKE would close BIKE -> WHEEL -> RIM."""
        rim = bom_manager.create("RIM", [BomLine("STEEL", 1, line_number=10)])

        with pytest.raises(CircularBomException) as exc_info:
            bom_manager.add_line(rim.id, BomLine("BIKE", 1, line_number=20))

        assert exc_info.value.path[0] == "RIM"
        assert exc_info.value.path[-1] == "RIM"
        unchanged = bom_manager.get_by_id(rim.id)
        assert [l.component_product_id for l in unchanged.lines] == ["STEEL"]

    def test_self_reference_rejected(self, bom_manager, bom_repository):
        """A product cannot be its own component; nothing is stored."""
        with pytest.raises(CircularBomException):
            bom_manager.create("A", [BomLine("A", 1)])
        assert bom_repository.find_all_versions("A") == []

    def test_validate_reports_cycle_created_elsewhere(self, bom_manager, bom_repository):
        """validate() surfaces cycles introduced outside add_line."""
        a = bom_manager.create("A", [BomLine("B", 1)])
        bom_manager.release(a.id)
        b = bom_manager.create("B", [BomLine("C", 1)])
        # Bypass the manager to plant a cycle
        bom_repository.update(b.with_changes(lines=[*b.lines, BomLine("A", 1, line_number=20)]))

        errors = bom_manager.validate(b.id)
        assert any("Circular" in e for e in errors)


class TestLifecycle:
    """Draft / released / obsolete rules."""

    def test_release_requires_lines(self, bom_manager):
        """An empty BOM cannot be released."""
        bom = bom_manager.create("EMPTY")
        assert bom_manager.validate(bom.id) == ["BOM has no components"]

        with pytest.raises(BomValidationError) as exc_info:
            bom_manager.release(bom.id)
        assert "BOM has no components" in exc_info.value.validation_errors

    def test_release_only_from_draft(self, bom_manager, bike_tree):
        """A released BOM cannot be released again."""
        with pytest.raises(BomValidationError):
            bom_manager.release(bike_tree["BIKE"].id)

    def test_lines_only_editable_in_draft(self, bom_manager, bike_tree):
        """Released BOMs reject line changes."""
        with pytest.raises(BomValidationError):
            bom_manager.add_line(bike_tree["BIKE"].id, BomLine("BELL", 1, line_number=30))
        with pytest.raises(BomValidationError):
            bom_manager.remove_line(bike_tree["BIKE"].id, 10)

    def test_duplicate_line_number(self, bom_manager):
        """Line numbers are unique within a BOM."""
        bom = bom_manager.create("KIT", [BomLine("X", 1, line_number=10)])
        with pytest.raises(BomValidationError):
            bom_manager.add_line(bom.id, BomLine("Y", 1, line_number=10))

    def test_remove_line(self, bom_manager):
        """Draft lines can be removed."""
        bom = bom_manager.create("KIT", [BomLine("X", 1, line_number=10), BomLine("Y", 1, line_number=20)])
        updated = bom_manager.remove_line(bom.id, 10)
        assert updated.component_ids() == ["Y"]

    def test_update_line_in_draft(self, bom_manager, bike_tree):
        """Draft lines can be edited in place; the line number stays unique."""
        v2 = bom_manager.create_version(bike_tree["BIKE"].id, bom_manager.next_version("BIKE"))
        assert v2.version == 2

        updated = bom_manager.update_line(v2.id, 20, quantity_per_parent_unit=3, scrap_percentage=5)
        line = updated.get_line(20)
        assert (line.component_product_id, line.quantity_per_parent_unit, line.scrap_percentage) == ("WHEEL", 3, 5)

        with pytest.raises(BomValidationError):
            bom_manager.update_line(v2.id, 20, line_number=10)
        with pytest.raises(BomValidationError):
            bom_manager.update_line(v2.id, 20, colour="red")
        with pytest.raises(BomValidationError):
            bom_manager.update_line(v2.id, 99, quantity_per_parent_unit=1)
        with pytest.raises(BomValidationError):
            bom_manager.update_line(bike_tree["BIKE"].id, 20, quantity_per_parent_unit=3)

    def test_update_line_rejects_cycle(self, bom_manager, bike_tree):
        v2 = bom_manager.create_version(bike_tree["WHEEL"].id, 2)
        with pytest.raises(CircularBomException):
            bom_manager.update_line(v2.id, 10, component_product_id="BIKE")
        assert bom_manager.get_by_id(v2.id).get_line(10).component_product_id == "RIM"

    def test_release_publishes_event(self, bom_manager, observer):
        """Release notifies observers."""
        bom = bom_manager.create("KIT", [BomLine("X", 1)])
        bom_manager.release(bom.id)

        events = observer.of_type(PlanningEventType.BOM_RELEASED)
        assert len(events) == 1
        assert events[0].payload["product_id"] == "KIT"

    def test_obsolete(self, bom_manager, bike_tree):
        """Obsolete BOMs are no longer effective."""
        bom_manager.obsolete(bike_tree["BIKE"].id)
        with pytest.raises(BomNotFoundException):
            bom_manager.get_effective("BIKE")
        with pytest.raises(BomValidationError):
            bom_manager.obsolete(bike_tree["BIKE"].id)

    def test_not_found(self, bom_manager):
        """Unknown ids and products raise NotFound."""
        with pytest.raises(BomNotFoundException):
            bom_manager.get_by_id("BOM-missing")
        with pytest.raises(BomNotFoundException):
            bom_manager.get_effective("NOPE", date(2024, 1, 1))


class TestVersioning:
    """Version copies and effectivity."""

    def test_create_version_copies_lines(self, bom_manager, bike_tree):
        """New version starts as a draft copy of the source."""
        v2 = bom_manager.create_version(bike_tree["BIKE"].id, 2, effective_from=date(2024, 6, 1))
        assert v2.status == DocumentStatus.DRAFT
        assert v2.version == 2
        assert v2.lines == bike_tree["BIKE"].lines
        assert [b.version for b in bom_manager.get_versions("BIKE")] == [1, 2]

    def test_duplicate_version_rejected(self, bom_manager, bike_tree):
        """Versions are unique per product."""
        with pytest.raises(BomValidationError):
            bom_manager.create_version(bike_tree["BIKE"].id, 1)

    def test_release_supersedes_previous_version(self, bom_manager, bike_tree):
        """At most one version is effective on any date."""
        v2 = bom_manager.create_version(bike_tree["BIKE"].id, 2, effective_from=date(2024, 6, 1))
        bom_manager.add_line(v2.id, BomLine("BELL", 1, line_number=30))
        bom_manager.release(v2.id)

        v1 = bom_manager.get_by_id(bike_tree["BIKE"].id)
        assert v1.effective_to == date(2024, 5, 31)
        assert bom_manager.get_effective("BIKE", date(2024, 5, 31)).version == 1
        assert bom_manager.get_effective("BIKE", date(2024, 6, 1)).version == 2

    def test_compare_versions(self, bom_manager, bike_tree):
        """compare() lists added, removed and changed components."""
        v2 = bom_manager.create_version(bike_tree["BIKE"].id, 2)
        bom_manager.remove_line(v2.id, 10)
        bom_manager.add_line(v2.id, BomLine("CARBON_FRAME", 1, line_number=10))

        diff = bom_manager.compare(bike_tree["BIKE"].id, v2.id)
        assert diff["added"] == ["CARBON_FRAME"]
        assert diff["removed"] == ["FRAME"]
        assert diff["changed"] == []

    def test_where_used(self, bom_manager, bike_tree):
        """where_used finds direct parents."""
        parents = bom_manager.where_used("WHEEL")
        assert [b.product_id for b in parents] == ["BIKE"]
