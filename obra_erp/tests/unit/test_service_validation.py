"""Input checks that services apply before opening a transaction."""

from datetime import date

import pytest

from obra_erp.core.errors import ValidationError
from obra_erp.core.models import OrgRole
from obra_erp.services.reports import ReportService
from obra_erp.services.schedule import ScheduleService
from obra_erp.services.team import MIN_PASSWORD_LENGTH, _validate_password


class TestScheduleService:
    @pytest.mark.parametrize("days", [4, 8, 0])
    def test_invalid_working_days(self, mock_db, owner_ctx, days):
        with pytest.raises(ValidationError):
            ScheduleService(mock_db).create_schedule(owner_ctx, "p-1", "Plan maestro", working_days_per_week=days)
        mock_db.transaction.assert_not_called()

    def test_blank_schedule_name(self, mock_db, owner_ctx):
        with pytest.raises(ValidationError):
            ScheduleService(mock_db).create_schedule(owner_ctx, "p-1", "   ")

    def test_task_end_before_start(self, mock_db, owner_ctx):
        with pytest.raises(ValidationError):
            ScheduleService(mock_db).create_task(
                owner_ctx, "s-1", "1.1", "Excavación", date(2026, 3, 10), date(2026, 3, 1)
            )
        mock_db.transaction.assert_not_called()

    def test_task_requires_code_and_name(self, mock_db, owner_ctx):
        with pytest.raises(ValidationError):
            ScheduleService(mock_db).create_task(owner_ctx, "s-1", "", "Excavación", date(2026, 3, 1), date(2026, 3, 2))

    def test_task_wbs_node_outside_schedule_project(self, mock_db, owner_ctx):
        # schedule, project, member role, wbs node lookup
        mock_db.fetch_one.side_effect = [{"id": "s-1", "project_id": "p-1"}, {"id": "p-1"}, None, None]
        with pytest.raises(ValidationError, match="partida"):
            ScheduleService(mock_db).create_task(
                owner_ctx, "s-1", "1.1", "Excavación", date(2026, 3, 1), date(2026, 3, 2), wbs_node_id="n-9"
            )
        node_params = mock_db.fetch_one.call_args_list[3][0][1]
        assert node_params == ("n-9", "p-1", "org-1")

    def test_task_with_wbs_node_of_project(self, mock_db, owner_ctx):
        mock_db.fetch_one.side_effect = [
            {"id": "s-1", "project_id": "p-1"},
            {"id": "p-1"},
            None,
            {"id": "n-1"},
            {"next": 3},
            {"id": "t-1"},
        ]
        task = ScheduleService(mock_db).create_task(
            owner_ctx, "s-1", "1.1", "Excavación", date(2026, 3, 1), date(2026, 3, 2), wbs_node_id="n-1"
        )
        assert task == {"id": "t-1"}
        assert mock_db.fetch_one.call_args_list[5][0][1][-1] == 3

    def test_self_dependency(self, mock_db, owner_ctx):
        with pytest.raises(ValidationError):
            ScheduleService(mock_db).add_dependency(owner_ctx, "t-1", "t-1")
        mock_db.transaction.assert_not_called()

    def test_move_task_end_before_start(self, mock_db, owner_ctx):
        with pytest.raises(ValidationError):
            ScheduleService(mock_db).update_task_dates(owner_ctx, "t-1", date(2026, 5, 5), date(2026, 5, 1))


class TestTeamPasswords:
    def test_short_password_rejected(self):
        with pytest.raises(ValidationError):
            _validate_password("x" * (MIN_PASSWORD_LENGTH - 1))

    def test_missing_password_rejected(self):
        with pytest.raises(ValidationError):
            _validate_password(None)

    def test_min_length_accepted(self):
        _validate_password("x" * MIN_PASSWORD_LENGTH)


class TestProgressUpdates:
    @pytest.mark.parametrize("pct", [-1, 100.5, 250])
    def test_progress_out_of_range(self, mock_db, owner_ctx, pct):
        with pytest.raises(ValidationError):
            ReportService(mock_db).record_progress_update(owner_ctx, "p-1", None, pct)
        mock_db.transaction.assert_not_called()


class TestReports:
    def test_restricted_member_without_projects_gets_empty_reports(self, mock_db, make_ctx):
        ctx = make_ctx(OrgRole.VIEWER, restricted=True)
        mock_db.fetch_all.return_value = []
        service = ReportService(mock_db)
        assert service.expenses_by_supplier(ctx) == []
        assert service.top_materials(ctx) == []
        assert service.purchases_by_supplier(ctx) == []
