"""Unit tests for working-day arithmetic and dependency validation."""

from datetime import date, datetime

from obra_erp.core.models import DependencyType
from obra_erp.core.schedule import (
    Dependency,
    add_working_days,
    is_working_day,
    validate_task_dates_against_dependencies,
    working_days_between,
)

FRIDAY = date(2026, 1, 2)
MONDAY = date(2026, 1, 5)


class TestWorkingDays:
    """Tests for working-day helpers."""

    def test_weekend_skipped_on_five_day_week(self):
        assert add_working_days(FRIDAY, 1, 5) == MONDAY
        assert add_working_days(MONDAY, -1, 5) == FRIDAY

    def test_saturday_works_on_six_day_week(self):
        assert add_working_days(FRIDAY, 1, 6) == date(2026, 1, 3)
        assert not is_working_day(date(2026, 1, 4), 6)

    def test_negative_days_cross_weekends(self):
        assert add_working_days(MONDAY, -6, 5) == date(2025, 12, 26)
        assert add_working_days(date(2026, 1, 6), -2, 5) == FRIDAY

    def test_seven_day_week_counts_every_day(self):
        assert add_working_days(FRIDAY, 2, 7) == date(2026, 1, 4)
        assert add_working_days(MONDAY, -3, 7) == FRIDAY
        assert is_working_day(date(2026, 1, 4), 7)

    def test_zero_days_returns_start(self):
        assert add_working_days(datetime(2026, 1, 3, 15, 0), 0) == date(2026, 1, 3)

    def test_working_days_between_inclusive(self):
        assert working_days_between(FRIDAY, date(2026, 1, 9)) == 6
        assert working_days_between(MONDAY, FRIDAY) == 0


class TestDependencyValidation:
    """Tests for validate_task_dates_against_dependencies."""

    def _dep(self, start, end, dep_type=DependencyType.FS, lag=0):
        return Dependency(planned_start_date=start, planned_end_date=end, dependency_type=dep_type, lag_days=lag)

    def test_finish_to_start_same_day_allowed(self):
        pred = self._dep(date(2025, 12, 29), FRIDAY)
        assert validate_task_dates_against_dependencies(FRIDAY, MONDAY, [pred], []) == (True, None)

    def test_finish_to_start_with_lag(self):
        """Test lag is counted in working days from the predecessor end."""
        pred = self._dep(date(2025, 12, 29), FRIDAY, lag=1)
        valid, message = validate_task_dates_against_dependencies(date(2026, 1, 3), date(2026, 1, 9), [pred], [])
        assert valid is False
        assert "05/01/2026" in message
        assert "FS + 1 días" in message

    def test_start_to_start_uses_predecessor_start(self):
        pred = self._dep(MONDAY, date(2026, 1, 30), DependencyType.SS)
        assert validate_task_dates_against_dependencies(MONDAY, date(2026, 1, 6), [pred], [])[0] is True
        assert validate_task_dates_against_dependencies(FRIDAY, date(2026, 1, 6), [pred], [])[0] is False

    def test_finish_to_finish_constrains_end(self):
        pred = self._dep(MONDAY, date(2026, 1, 9), DependencyType.FF)
        valid, message = validate_task_dates_against_dependencies(MONDAY, date(2026, 1, 8), [pred], [])
        assert valid is False
        assert message.startswith("La fecha de fin")

    def test_successor_broken_by_move(self):
        """Test moving a task later cannot break its successors."""
        succ = self._dep(date(2026, 1, 8), date(2026, 1, 12))
        valid, message = validate_task_dates_against_dependencies(MONDAY, date(2026, 1, 9), [], [succ])
        assert valid is False
        assert "sucesora" in message
