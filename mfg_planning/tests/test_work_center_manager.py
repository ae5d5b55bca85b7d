"""
Tests for WorkCenterManager - calendar and availability.
"""
from datetime import date

import pytest

from mfg_planning.exceptions import WorkCenterNotFoundException
from mfg_planning.planning.work_center_manager import WorkCenter, WorkCenterManager


class TestWorkCenter:

    def test_daily_capacity(self):
        """hours × efficiency × units."""
        wc = WorkCenter(id="WC-CNC", code="CNC", hours_per_day=16, efficiency=0.75, capacity_units=2)
        assert wc.daily_capacity_hours == pytest.approx(24.0)

    @pytest.mark.parametrize("field,value", [
        ("hours_per_day", 0),
        ("hours_per_day", 25),
        ("efficiency", 1.5),
        ("capacity_units", 0),
        ("days_per_week", 8),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(ValueError):
            WorkCenter(id="WC-X", code="X", **{field: value})

    def test_working_days(self):
        wc = WorkCenter(id="WC-X", code="X", days_per_week=6)
        assert wc.is_working_day(date(2024, 1, 13))      # Saturday
        assert not wc.is_working_day(date(2024, 1, 14))  # Sunday


class TestAvailability:

    def test_week_of_single_shift(self, work_center_manager, monday):
        """8h Monday to Friday gives 40h a week."""
        hours = work_center_manager.get_available_hours_for_period("WC-WELD", monday, date(2024, 1, 15))
        assert hours == pytest.approx(40.0)

    def test_weekend_has_no_hours(self, work_center_manager):
        assert work_center_manager.get_available_hours("WC-WELD", date(2024, 1, 13)) == 0

    def test_closure(self, work_center_manager, monday):
        """Closed dates have no hours."""
        work_center_manager.add_closure("WC-WELD", monday)
        assert work_center_manager.get_available_hours("WC-WELD", monday) == 0
        assert work_center_manager.get_available_hours("WC-ASM", monday) == 8

    def test_inactive_has_no_hours(self, work_center_manager, monday):
        work_center_manager.deactivate("WC-WELD")
        assert work_center_manager.get_available_hours("WC-WELD", monday) == 0
        assert "WC-WELD" not in [wc.id for wc in work_center_manager.find_active()]

        work_center_manager.activate("WC-WELD")
        assert work_center_manager.get_available_hours("WC-WELD", monday) == 8

    def test_unknown_work_center(self, work_center_manager, monday):
        with pytest.raises(WorkCenterNotFoundException):
            work_center_manager.get_available_hours("WC-NOPE", monday)
        with pytest.raises(WorkCenterNotFoundException):
            work_center_manager.add_closure("WC-NOPE", monday)


class TestMasterData:

    def test_duplicate_rejected(self, work_center_manager):
        with pytest.raises(ValueError):
            work_center_manager.create(WorkCenter(id="WC-WELD", code="WELD2"))

    def test_alternatives_skip_inactive_and_unknown(self):
        """Only existing, active alternatives are returned."""
        manager = WorkCenterManager([
            WorkCenter(id="WC-A", code="A", alternative_ids=["WC-B", "WC-C", "WC-GHOST"]),
            WorkCenter(id="WC-B", code="B", active=False),
            WorkCenter(id="WC-C", code="C"),
        ])
        assert [wc.id for wc in manager.find_alternatives("WC-A")] == ["WC-C"]
