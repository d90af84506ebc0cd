# Overview: Pytest coverage for the raw-material stock ledger and low-stock alerts.

"""
Stock Ledger Tests

Every balance change must leave exactly one stock_change_record whose
stock_after equals the new balance, and the sum of record quantities must
equal current_stock.
"""

from decimal import Decimal

import pytest

from posledger.models import MaterialAlert, StockChangeRecord
from posledger.services import order_service, stock_service
from posledger.services.stock_service import MaterialNotFoundError
from posledger.validation import ValidationError


pytestmark = pytest.mark.inventory


def _line(product, quantity=1):
    return {
        "product_id": product.id,
        "product_name": product.name,
        "unit_price_cents": product.price_cents,
        "quantity": quantity,
    }


def _open_alerts(db_session, material):
    return db_session.query(MaterialAlert).filter_by(material_id=material.id, is_resolved=False).all()


class TestConsumeForOrder:

    def test_deducts_recipe_times_quantity(self, db_session, order_payload, make_product, make_material, set_recipe):
        product = make_product()
        pearls = make_material(name="Tapioca pearls", stock="1000")
        milk = make_material(name="Milk", unit="ml", stock="5000", threshold="500")
        set_recipe(product, {pearls: 60, milk: "150.5"})

        order = order_service.create_order(order_payload(items=[_line(product, 2)]))

        db_session.refresh(pearls)
        db_session.refresh(milk)
        assert pearls.current_stock == Decimal("880")
        assert milk.current_stock == Decimal("4699")

        records = (
            db_session.query(StockChangeRecord)
            .filter_by(order_id=order.id)
            .order_by(StockChangeRecord.material_id)
            .all()
        )
        assert [r.change_type for r in records] == ["OUT", "OUT"]
        assert records[0].stock_before == Decimal("1000")
        assert records[0].stock_after == Decimal("880")
        assert records[0].note == f"Order {order.order_number}"

    def test_lines_of_same_product_are_combined(self, db_session, order_payload, make_product, make_material, set_recipe):
        product = make_product()
        pearls = make_material(stock="1000")
        set_recipe(product, {pearls: 60})

        order = order_service.create_order(order_payload(items=[_line(product, 1), _line(product, 2)]))

        db_session.refresh(pearls)
        assert pearls.current_stock == Decimal("820")
        assert db_session.query(StockChangeRecord).filter_by(order_id=order.id).count() == 1

    def test_floors_at_zero(self, db_session, order_payload, make_product, make_material, set_recipe):
        product = make_product()
        pearls = make_material(stock="100", threshold="0")
        set_recipe(product, {pearls: 60})

        order = order_service.create_order(order_payload(items=[_line(product, 3)]))

        db_session.refresh(pearls)
        assert pearls.current_stock == Decimal("0")
        record = db_session.query(StockChangeRecord).filter_by(order_id=order.id).one()
        assert record.quantity == Decimal("-100")
        assert len(_open_alerts(db_session, pearls)) == 1

    def test_replay_is_noop(self, db_session, order_payload, make_product, make_material, set_recipe):
        product = make_product()
        pearls = make_material(stock="1000")
        set_recipe(product, {pearls: 60})
        order = order_service.create_order(order_payload(items=[_line(product)]))

        assert stock_service.consume_for_order(order) == []

        db_session.refresh(pearls)
        assert pearls.current_stock == Decimal("940")

    def test_products_without_recipe_consume_nothing(self, db_session, order_payload, make_product, make_material):
        product = make_product()
        pearls = make_material(stock="1000")

        order = order_service.create_order(order_payload(items=[_line(product)]))

        db_session.refresh(pearls)
        assert pearls.current_stock == Decimal("1000")
        assert db_session.query(StockChangeRecord).filter_by(order_id=order.id).count() == 0

    def test_addons_are_not_consumed(self, db_session, order_payload, make_product, make_material, set_recipe):
        tea = make_product(name="Black Tea", price_cents=3000)
        topping = make_product(name="Pearls topping", price_cents=1000)
        pearls = make_material(stock="1000")
        set_recipe(topping, {pearls: 60})

        order_service.create_order(order_payload(items=[{
            **_line(tea),
            "addons": [{"product_id": topping.id, "product_name": topping.name, "price_cents": 1000}],
        }]))

        db_session.refresh(pearls)
        assert pearls.current_stock == Decimal("1000")

    def test_crossing_threshold_raises_one_alert(self, db_session, order_payload, make_product, make_material, set_recipe):
        product = make_product()
        pearls = make_material(stock="300", threshold="200")
        set_recipe(product, {pearls: 60})

        order_service.create_order(order_payload(items=[_line(product)]))
        assert _open_alerts(db_session, pearls) == []

        order_service.create_order(order_payload(items=[_line(product)]))
        order_service.create_order(order_payload(items=[_line(product)]))

        alerts = _open_alerts(db_session, pearls)
        assert len(alerts) == 1
        assert alerts[0].stock_level == Decimal("180")
        assert alerts[0].alert_threshold == Decimal("200")


class TestManualMovements:

    def test_stock_in(self, db_session, make_material):
        pearls = make_material(stock="100", threshold="200")

        record = stock_service.stock_in(pearls.id, "500", note="Delivery")

        assert record.change_type == "IN"
        assert record.quantity == Decimal("500")
        assert record.stock_before == Decimal("100")
        assert record.stock_after == Decimal("600")
        db_session.refresh(pearls)
        assert pearls.current_stock == Decimal("600")

    def test_stock_in_rejects_non_positive(self, db_session, make_material):
        pearls = make_material()
        with pytest.raises(ValidationError):
            stock_service.stock_in(pearls.id, "0")
        with pytest.raises(ValidationError):
            stock_service.stock_in(pearls.id, "-5")

    def test_stock_in_unknown_material(self, db_session):
        with pytest.raises(MaterialNotFoundError):
            stock_service.stock_in(999, "5")

    def test_adjust_sets_absolute_balance(self, db_session, make_material):
        pearls = make_material(stock="1000")

        record = stock_service.adjust_stock(pearls.id, "975.5", note="Stock take")

        assert record.change_type == "ADJUST"
        assert record.quantity == Decimal("-24.5")
        db_session.refresh(pearls)
        assert pearls.current_stock == Decimal("975.5")

    def test_adjust_rejects_negative(self, db_session, make_material):
        pearls = make_material()
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(pearls.id, "-1")

    def test_waste_floors_at_zero(self, db_session, make_material):
        pearls = make_material(stock="50", threshold="0")

        record = stock_service.waste(pearls.id, "80", note="Spilled")

        assert record.change_type == "WASTE"
        assert record.quantity == Decimal("-50")
        assert record.stock_after == Decimal("0")

    def test_every_movement_reconciles(self, db_session, make_material):
        pearls = make_material(stock="1000")
        stock_service.stock_in(pearls.id, "250")
        stock_service.waste(pearls.id, "30")
        stock_service.adjust_stock(pearls.id, "1200")
        stock_service.waste(pearls.id, "12.25")

        db_session.refresh(pearls)
        assert stock_service.reconcile_material(pearls.id) == pearls.current_stock
        assert pearls.current_stock == Decimal("1187.75")


class TestAlerts:

    def test_stock_in_above_threshold_resolves(self, db_session, make_material):
        pearls = make_material(stock="300", threshold="200")
        stock_service.waste(pearls.id, "150")
        assert len(_open_alerts(db_session, pearls)) == 1

        stock_service.stock_in(pearls.id, "50")
        assert len(_open_alerts(db_session, pearls)) == 1

        stock_service.stock_in(pearls.id, "1")
        assert _open_alerts(db_session, pearls) == []

    def test_adjust_never_resolves(self, db_session, make_material):
        pearls = make_material(stock="300", threshold="200")
        stock_service.waste(pearls.id, "150")

        stock_service.adjust_stock(pearls.id, "5000")

        assert len(_open_alerts(db_session, pearls)) == 1

    def test_check_and_create_alert_is_idempotent(self, db_session, make_material):
        pearls = make_material(stock="100", threshold="200")

        assert stock_service.check_and_create_alert(pearls.id) is not None
        assert stock_service.check_and_create_alert(pearls.id) is None
        assert len(_open_alerts(db_session, pearls)) == 1

    def test_no_alert_above_threshold(self, db_session, make_material):
        pearls = make_material(stock="1000", threshold="200")
        assert stock_service.check_and_create_alert(pearls.id) is None

    def test_resolve_alert(self, db_session, make_material):
        pearls = make_material(stock="100", threshold="200")
        alert = stock_service.check_and_create_alert(pearls.id)

        resolved = stock_service.resolve_alert(alert.id)

        assert resolved.is_resolved is True
        assert resolved.resolved_at is not None
        assert stock_service.list_active_alerts() == []

    def test_resolve_unknown_alert(self, db_session):
        assert stock_service.resolve_alert(999) is None

    def test_sweep_alerts(self, db_session, make_material):
        make_material(name="Pearls", stock="100", threshold="200")
        make_material(name="Milk", stock="100", threshold="200")
        make_material(name="Tea", stock="1000", threshold="200")

        assert stock_service.sweep_alerts() == 2
        assert stock_service.sweep_alerts() == 0
        assert len(stock_service.list_active_alerts()) == 2


class TestQueries:

    def test_status_summary(self, db_session, make_material):
        make_material(name="Pearls", stock="1000", threshold="200")
        make_material(name="Milk", stock="150", threshold="200")
        make_material(name="Tea", stock="0", threshold="200")

        summary = stock_service.get_material_status_summary()

        assert summary.total == 3
        assert summary.normal == 1
        assert summary.low_stock == 1
        assert summary.out_of_stock == 1

    def test_low_stock_list(self, db_session, make_material):
        make_material(name="Pearls", stock="1000", threshold="200")
        milk = make_material(name="Milk", stock="150", threshold="200")

        assert [m.id for m in stock_service.list_low_stock_materials()] == [milk.id]

    def test_list_records_filters(self, db_session, make_material):
        pearls = make_material(name="Pearls", stock="1000")
        make_material(name="Milk", stock="1000")
        stock_service.stock_in(pearls.id, "10")
        stock_service.waste(pearls.id, "5")

        records, total = stock_service.list_stock_records(material_id=pearls.id)
        assert total == 3

        records, total = stock_service.list_stock_records(material_id=pearls.id, change_type="WASTE")
        assert total == 1
        assert records[0].quantity == Decimal("-5")

    def test_list_records_rejects_unknown_type(self, db_session):
        with pytest.raises(ValidationError):
            stock_service.list_stock_records(change_type="LOST")
