"""Unit tests for inventory movement rules and tenant checks."""

import pytest

from obra_erp.core.errors import NotFoundError, ValidationError
from obra_erp.core.models import LocationType, MovementType
from obra_erp.services.inventory import InventoryService, validate_movement_locations


class TestMovementLocations:
    @pytest.mark.parametrize(
        "movement_type,from_location,to_location",
        [
            (MovementType.PURCHASE, None, "loc-2"),
            (MovementType.TRANSFER, "loc-1", "loc-2"),
            (MovementType.ISSUE, "loc-1", None),
            (MovementType.ADJUSTMENT, "loc-1", None),
            (MovementType.ADJUSTMENT, None, "loc-2"),
        ],
    )
    def test_valid_combinations(self, movement_type, from_location, to_location):
        validate_movement_locations(movement_type, from_location, to_location)

    @pytest.mark.parametrize(
        "movement_type,from_location,to_location",
        [
            (MovementType.PURCHASE, "loc-1", None),
            (MovementType.TRANSFER, "loc-1", None),
            (MovementType.TRANSFER, None, "loc-2"),
            (MovementType.TRANSFER, "loc-1", "loc-1"),
            (MovementType.ISSUE, None, "loc-2"),
            (MovementType.ADJUSTMENT, "loc-1", "loc-2"),
            (MovementType.ADJUSTMENT, None, None),
        ],
    )
    def test_invalid_combinations(self, movement_type, from_location, to_location):
        with pytest.raises(ValidationError):
            validate_movement_locations(movement_type, from_location, to_location)

    def test_accepts_plain_strings(self):
        validate_movement_locations("ISSUE", "loc-1", None)


class TestRecordMovement:
    @pytest.fixture
    def service(self, mock_db):
        mock_db.fetch_all.return_value = [{"id": "loc-1"}]
        return InventoryService(mock_db)

    def test_issue_locks_item_and_stores_movement(self, service, mock_db, owner_ctx):
        mock_db.fetch_one.side_effect = [
            {"id": "item-1", "name": "Cemento"},
            {"stock": 10},
            {"id": "mov-1"},
        ]
        movement = service.record_movement(
            owner_ctx,
            {"item_id": "item-1", "movement_type": "ISSUE", "from_location_id": "loc-1", "quantity": 4},
        )
        assert movement == {"id": "mov-1"}
        item_sql = mock_db.fetch_one.call_args_list[0][0][0]
        assert item_sql.rstrip().endswith("FOR UPDATE")

    def test_decrease_beyond_stock_is_refused(self, service, mock_db, owner_ctx):
        mock_db.fetch_one.side_effect = [{"id": "item-1", "name": "Cemento"}, {"stock": 2}]
        with pytest.raises(ValidationError, match="Stock insuficiente"):
            service.record_movement(
                owner_ctx,
                {"item_id": "item-1", "movement_type": "ADJUSTMENT", "from_location_id": "loc-1", "quantity": 5},
            )
        # nothing inserted after the stock check
        assert mock_db.fetch_one.call_count == 2

    def test_unknown_location(self, service, mock_db, owner_ctx):
        mock_db.fetch_one.side_effect = [{"id": "item-1", "name": "Cemento"}]
        mock_db.fetch_all.return_value = []
        with pytest.raises(NotFoundError, match="Ubicación"):
            service.record_movement(
                owner_ctx,
                {"item_id": "item-1", "movement_type": "PURCHASE", "to_location_id": "loc-9", "quantity": 1},
            )

    def test_project_of_another_org(self, service, mock_db, owner_ctx):
        mock_db.fetch_one.side_effect = [{"id": "item-1", "name": "Cemento"}, None]
        with pytest.raises(NotFoundError, match="Proyecto"):
            service.record_movement(
                owner_ctx,
                {
                    "item_id": "item-1",
                    "movement_type": "PURCHASE",
                    "to_location_id": "loc-1",
                    "project_id": "project-x",
                    "quantity": 1,
                },
            )
        project_sql, project_params = mock_db.fetch_one.call_args_list[1][0]
        assert "FROM projects" in project_sql
        assert project_params == ("project-x", "org-1")

    def test_party_of_another_org(self, service, mock_db, owner_ctx):
        mock_db.fetch_one.side_effect = [{"id": "item-1", "name": "Cemento"}, None]
        with pytest.raises(NotFoundError, match="Contraparte"):
            service.record_movement(
                owner_ctx,
                {
                    "item_id": "item-1",
                    "movement_type": "PURCHASE",
                    "to_location_id": "loc-1",
                    "party_id": "party-x",
                    "quantity": 1,
                },
            )

    def test_non_positive_quantity(self, service, mock_db, owner_ctx):
        with pytest.raises(ValidationError):
            service.record_movement(
                owner_ctx, {"item_id": "item-1", "movement_type": "PURCHASE", "to_location_id": "loc-1", "quantity": 0}
            )
        mock_db.transaction.assert_not_called()


class TestCatalogReferences:
    def test_item_with_category_of_another_org(self, mock_db, owner_ctx):
        service = InventoryService(mock_db)
        with pytest.raises(NotFoundError, match="Categoría"):
            service.create_item(owner_ctx, {"sku": "CEM-50", "name": "Cemento", "category_id": "cat-x"})
        sql, params = mock_db.fetch_one.call_args[0]
        assert "FROM inventory_categories" in sql
        assert params == ("cat-x", "org-1")

    def test_item_update_with_category_of_another_org(self, mock_db, owner_ctx):
        service = InventoryService(mock_db)
        with pytest.raises(NotFoundError):
            service.update_item(owner_ctx, "item-1", {"category_id": "cat-x"})

    def test_item_without_category_skips_lookup(self, mock_db, owner_ctx):
        mock_db.fetch_one.return_value = {"id": "item-1", "sku": "CEM-50"}
        service = InventoryService(mock_db)
        service.create_item(owner_ctx, {"sku": "CEM-50", "name": "Cemento"})
        assert mock_db.fetch_one.call_count == 1

    def test_site_location_with_project_of_another_org(self, mock_db, owner_ctx):
        service = InventoryService(mock_db)
        with pytest.raises(NotFoundError, match="Proyecto"):
            service.create_location(owner_ctx, "Obrador", LocationType.PROJECT_SITE, project_id="project-x")

    def test_location_update_with_project_of_another_org(self, mock_db, owner_ctx):
        service = InventoryService(mock_db)
        with pytest.raises(NotFoundError):
            service.update_location(owner_ctx, "loc-1", {"project_id": "project-x"})
