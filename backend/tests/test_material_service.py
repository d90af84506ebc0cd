# Overview: Pytest coverage for material catalog maintenance and recipe replacement.

from decimal import Decimal

import pytest

from posledger.models import Material, ProductRecipe, StockChangeRecord
from posledger.services import material_service, recipe_service, stock_service
from posledger.validation import ValidationError


pytestmark = pytest.mark.inventory


class TestMaterialCatalog:

    def test_opening_balance_is_booked(self, db_session):
        material = material_service.create_material(name="Milk", unit="ml", current_stock="5000", alert_threshold="500")

        records = db_session.query(StockChangeRecord).filter_by(material_id=material.id).all()
        assert len(records) == 1
        assert records[0].change_type == "ADJUST"
        assert records[0].note == "Opening balance"
        assert stock_service.reconcile_material(material.id) == Decimal("5000")

    def test_zero_opening_writes_no_record(self, db_session):
        material = material_service.create_material(name="Cups", unit="pcs")

        assert material.current_stock == Decimal("0")
        assert db_session.query(StockChangeRecord).count() == 0

    @pytest.mark.parametrize("fields", [
        {"name": "", "unit": "g"},
        {"name": "Pearls", "unit": None},
        {"name": "Pearls", "unit": "g", "current_stock": "-1"},
        {"name": "Pearls", "unit": "g", "alert_threshold": "abc"},
        {"name": "Pearls", "unit": "g", "status": "ARCHIVED"},
    ])
    def test_invalid_material(self, db_session, fields):
        with pytest.raises(ValidationError):
            material_service.create_material(**fields)
        assert db_session.query(Material).count() == 0

    def test_update_leaves_stock_alone(self, db_session, make_material):
        pearls = make_material(stock="1000", threshold="200")

        updated = material_service.update_material(pearls.id, name="Black pearls", alert_threshold="300")

        assert updated.name == "Black pearls"
        assert updated.alert_threshold == Decimal("300")
        assert updated.current_stock == Decimal("1000")

    def test_update_unknown(self, db_session):
        assert material_service.update_material(999, name="x") is None

    def test_toggle_status(self, db_session, make_material):
        pearls = make_material()

        assert material_service.toggle_material_status(pearls.id).status == "INACTIVE"
        assert material_service.toggle_material_status(pearls.id).status == "ACTIVE"

    def test_inactive_materials_leave_summary(self, db_session, make_material):
        pearls = make_material(stock="0")
        material_service.toggle_material_status(pearls.id)

        assert stock_service.get_material_status_summary().total == 0
        assert material_service.list_materials(status="INACTIVE")[0].id == pearls.id

    def test_search(self, db_session, make_material):
        make_material(name="Tapioca pearls", unit="g")
        make_material(name="Milk", unit="ml")

        assert [m.name for m in material_service.list_materials(search="pearl")] == ["Tapioca pearls"]
        assert [m.name for m in material_service.list_materials(search="ml")] == ["Milk"]

    def test_delete_unused_material(self, db_session, make_material):
        pearls = make_material()
        stock_service.waste(pearls.id, "10")
        material_id = pearls.id

        assert material_service.delete_material(material_id) is True
        assert db_session.get(Material, material_id) is None
        assert db_session.query(StockChangeRecord).filter_by(material_id=material_id).count() == 0

    def test_delete_refused_while_in_recipe(self, db_session, make_product, make_material, set_recipe):
        product = make_product()
        pearls = make_material()
        set_recipe(product, {pearls: 60})

        assert material_service.delete_material(pearls.id) is False
        assert db_session.get(Material, pearls.id) is not None

    def test_delete_unknown(self, db_session):
        assert material_service.delete_material(999) is False


class TestRecipes:

    def test_replace_recipe(self, db_session, make_product, make_material):
        product = make_product()
        pearls = make_material(name="Pearls")
        milk = make_material(name="Milk", unit="ml")

        recipe_service.update_recipes(product.id, [
            {"material_id": pearls.id, "quantity": "60"},
            {"material_id": milk.id, "quantity": "150"},
        ])
        recipes = recipe_service.update_recipes(product.id, [
            {"material_id": milk.id, "quantity": "200"},
        ])

        assert [(r.material_id, r.quantity) for r in recipes] == [(milk.id, Decimal("200"))]
        assert db_session.query(ProductRecipe).filter_by(product_id=product.id).count() == 1

    def test_empty_list_clears_recipe(self, db_session, make_product, make_material, set_recipe):
        product = make_product()
        set_recipe(product, {make_material(): 60})

        assert recipe_service.update_recipes(product.id, []) == []

    def test_unknown_material_writes_nothing(self, db_session, make_product, make_material, set_recipe):
        product = make_product()
        pearls = make_material()
        set_recipe(product, {pearls: 60})

        with pytest.raises(ValidationError):
            recipe_service.update_recipes(product.id, [{"material_id": 999, "quantity": "1"}])

        assert len(recipe_service.get_recipes_for_product(product.id)) == 1

    def test_duplicate_material_rejected(self, db_session, make_product, make_material):
        product = make_product()
        pearls = make_material()

        with pytest.raises(ValidationError):
            recipe_service.update_recipes(product.id, [
                {"material_id": pearls.id, "quantity": "60"},
                {"material_id": pearls.id, "quantity": "30"},
            ])

    def test_unknown_product(self, db_session, make_material):
        pearls = make_material()
        with pytest.raises(ValidationError):
            recipe_service.update_recipes(999, [{"material_id": pearls.id, "quantity": "1"}])

    def test_bulk_lookup(self, db_session, make_product, make_material, set_recipe):
        tea = make_product(name="Black Tea")
        pearl_tea = make_product(name="Pearl Milk Tea")
        pearls = make_material()
        set_recipe(pearl_tea, {pearls: 60})

        recipes = recipe_service.get_recipes_for_products([tea.id, pearl_tea.id])

        assert recipes[tea.id] == []
        assert [r.material_id for r in recipes[pearl_tea.id]] == [pearls.id]

    def test_products_with_recipes(self, db_session, make_product, make_material, set_recipe):
        product = make_product()
        pearls = make_material()
        set_recipe(product, {pearls: 60})

        products = recipe_service.get_products_with_recipes()

        assert products[0]["id"] == product.id
        assert products[0]["recipes"][0]["material_name"] == pearls.name
        assert products[0]["recipes"][0]["quantity"] == "60.000"
