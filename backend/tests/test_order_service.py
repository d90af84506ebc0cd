# Overview: Pytest coverage for order intake, pricing, dedup, stats and status changes.

"""
Order Service Tests

Covers:
- Pricing: line totals with add-ons, percentage / amount / gift discounts
- Numbering: automatic daily sequence, caller-supplied sequence, #0126 format
- Offline dedup on (device_id, ordered_at): conflict on single create, skip in batch
- Batch renumbering of queued orders whose sequence was taken
- Hand-off to the stock ledger and the device's open shift
- Daily stats and the COMPLETED -> CANCELLED transition
"""

from datetime import date
from decimal import Decimal

import pytest

from posledger.models import Order, StockChangeRecord
from posledger.services import order_service, shift_service
from posledger.services.order_service import OrderConflictError
from posledger.validation import ValidationError


pytestmark = pytest.mark.orders


class TestNormalizePayload:
    """Validation and pricing without touching the database."""

    def test_line_total_includes_addons(self, app, order_payload):
        draft = order_service.normalize_order_payload(order_payload(items=[{
            "product_name": "Milk Tea",
            "unit_price_cents": 5000,
            "quantity": 2,
            "addons": [{"product_name": "Pearls", "price_cents": 1000}],
        }]))
        assert draft.lines[0].line_total_cents == 12000
        assert draft.subtotal_cents == 12000
        assert draft.total_cents == 12000

    def test_percentage_discount(self, app, order_payload):
        draft = order_service.normalize_order_payload(order_payload(
            items=[{"product_name": "Milk Tea", "unit_price_cents": 5000, "quantity": 2}],
            discount_type="percentage",
            discount_value=10,
        ))
        assert draft.discount_type == "PERCENTAGE"
        assert draft.discount_amount_cents == 1000
        assert draft.total_cents == 9000

    def test_amount_discount_clamped_to_subtotal(self, app, order_payload):
        draft = order_service.normalize_order_payload(order_payload(
            items=[{"product_name": "Black Tea", "unit_price_cents": 3000, "quantity": 1}],
            discount_type="fixed",
            discount_value=5000,
        ))
        assert draft.discount_type == "AMOUNT"
        assert draft.discount_amount_cents == 3000
        assert draft.total_cents == 0

    def test_gift_order_totals_zero(self, app, order_payload):
        draft = order_service.normalize_order_payload(order_payload(
            items=[{"product_name": "Black Tea", "unit_price_cents": 3000, "quantity": 3}],
            discount_type="gift",
        ))
        assert draft.discount_type == "GIFT"
        assert draft.subtotal_cents == 9000
        assert draft.total_cents == 0

    def test_explicit_discount_amount_wins(self, app, order_payload):
        draft = order_service.normalize_order_payload(order_payload(
            discount_type="percentage",
            discount_value=50,
            discount_amount_cents=100,
        ))
        assert draft.discount_amount_cents == 100

    def test_unknown_discount_type_is_dropped(self, app, order_payload):
        draft = order_service.normalize_order_payload(order_payload(
            discount_type="coupon",
            discount_value=10,
        ))
        assert draft.discount_type is None
        assert draft.discount_amount_cents == 0

    def test_percentage_over_100_rejected(self, app, order_payload):
        with pytest.raises(ValidationError):
            order_service.normalize_order_payload(order_payload(
                discount_type="percentage", discount_value=150,
            ))

    @pytest.mark.parametrize("raw,expected", [
        ("現金", "CASH"),
        ("信用卡", "CREDIT_CARD"),
        ("LINE Pay", "LINE_PAY"),
        ("line_pay", "LINE_PAY"),
        ("bitcoin", "CASH"),
        (None, "CASH"),
    ])
    def test_payment_method_aliases(self, app, order_payload, raw, expected):
        draft = order_service.normalize_order_payload(order_payload(payment_method=raw))
        assert draft.payment_method == expected

    def test_camel_case_keys_accepted(self, app):
        draft = order_service.normalize_order_payload({
            "items": [{"productName": "Black Tea", "price": 3000, "quantity": 1}],
            "deviceId": "T1",
            "timestamp": "2026-10-19T10:00:00Z",
            "paymentMethod": "信用卡",
            "customerTag": "walk-in",
        })
        assert draft.device_id == "T1"
        assert draft.payment_method == "CREDIT_CARD"
        assert draft.customer_tag == "walk-in"
        assert draft.lines[0].unit_price_cents == 3000

    @pytest.mark.parametrize("payload", [
        {},
        {"items": []},
        {"items": [{"product_name": "Tea", "unit_price_cents": 100, "quantity": 0}]},
        {"items": [{"product_name": "Tea", "unit_price_cents": -1, "quantity": 1}]},
        {"items": [{"unit_price_cents": 100, "quantity": 1}]},
        {"items": [{"product_name": "Tea", "unit_price_cents": 100, "quantity": 1}], "status": "PENDING"},
        {"items": [{"product_name": "Tea", "unit_price_cents": 100, "quantity": 1}], "daily_sequence": 0},
        {"items": [{"product_name": "Tea", "unit_price_cents": 100, "quantity": 1}], "ordered_at": "yesterday"},
    ])
    def test_invalid_payloads(self, app, payload):
        with pytest.raises(ValidationError):
            order_service.normalize_order_payload(payload)


class TestCreateOrder:

    def test_first_order_of_day(self, db_session, order_payload):
        order = order_service.create_order(order_payload())

        assert order.id is not None
        assert order.daily_sequence == 1
        assert order.order_number == "#0001"
        assert order.business_date == date(2026, 10, 19)
        assert order.status == "COMPLETED"
        assert len(order.lines) == 1

    def test_initial_offset_gives_0126(self, app, db_session, order_payload, monkeypatch):
        monkeypatch.setitem(app.config, "INITIAL_ORDER_SEQUENCE", 125)

        first = order_service.create_order(order_payload())
        second = order_service.create_order(order_payload())

        assert first.order_number == "#0126"
        assert second.order_number == "#0127"

    def test_caller_sequence_is_kept_and_reserved(self, db_session, order_payload):
        supplied = order_service.create_order(order_payload(daily_sequence=7, order_number="#0007"))
        following = order_service.create_order(order_payload())

        assert supplied.daily_sequence == 7
        assert following.daily_sequence == 8

    def test_taken_sequence_conflicts(self, db_session, order_payload):
        order_service.create_order(order_payload(daily_sequence=5))

        with pytest.raises(OrderConflictError):
            order_service.create_order(order_payload(daily_sequence=5))
        assert db_session.query(Order).count() == 1

    def test_duplicate_device_timestamp_conflicts(self, db_session, order_payload):
        payload = order_payload(device_id="T1")
        first = order_service.create_order(payload)

        with pytest.raises(OrderConflictError) as excinfo:
            order_service.create_order(dict(payload))

        assert excinfo.value.details["order_id"] == first.id
        assert db_session.query(Order).count() == 1

    def test_same_timestamp_other_device_is_new(self, db_session, order_payload):
        payload = order_payload(device_id="T1")
        order_service.create_order(payload)
        order_service.create_order({**payload, "device_id": "T2"})

        assert db_session.query(Order).count() == 2

    def test_consumes_recipe_stock(self, db_session, order_payload, make_product, make_material, set_recipe):
        product = make_product()
        pearls = make_material(stock="1000")
        set_recipe(product, {pearls: 60})

        order = order_service.create_order(order_payload(items=[{
            "product_id": product.id,
            "product_name": product.name,
            "unit_price_cents": product.price_cents,
            "quantity": 1,
        }]))

        db_session.refresh(pearls)
        assert pearls.current_stock == Decimal("940")
        record = db_session.query(StockChangeRecord).filter_by(order_id=order.id).one()
        assert record.change_type == "OUT"
        assert record.quantity == Decimal("-60")

    def test_stock_failure_keeps_sale_and_shift_totals(
        self, db_session, order_payload, make_product, make_material, set_recipe, monkeypatch,
    ):
        product = make_product()
        pearls = make_material(stock="1000")
        set_recipe(product, {pearls: 60})
        shift = shift_service.open_shift("T1")

        def _fail(order):
            raise RuntimeError("stock ledger unavailable")

        monkeypatch.setattr(order_service.stock_service, "consume_for_order", _fail)

        order = order_service.create_order(order_payload(device_id="T1", items=[{
            "product_id": product.id,
            "product_name": product.name,
            "unit_price_cents": 6000,
            "quantity": 1,
        }]))

        assert db_session.get(Order, order.id) is not None
        db_session.refresh(shift)
        db_session.refresh(pearls)
        assert shift.total_orders == 1
        assert shift.total_revenue_cents == 6000
        assert pearls.current_stock == Decimal("1000")
        assert db_session.query(StockChangeRecord).filter_by(order_id=order.id).count() == 0

    def test_cancelled_order_does_not_consume(self, db_session, order_payload, make_product, make_material, set_recipe):
        product = make_product()
        pearls = make_material(stock="1000")
        set_recipe(product, {pearls: 60})

        order_service.create_order(order_payload(
            status="CANCELLED",
            items=[{"product_id": product.id, "product_name": product.name, "unit_price_cents": 6000, "quantity": 1}],
        ))

        db_session.refresh(pearls)
        assert pearls.current_stock == Decimal("1000")

    def test_accumulates_into_open_shift(self, db_session, order_payload):
        shift = shift_service.open_shift("T1")

        order = order_service.create_order(order_payload(
            device_id="T1",
            items=[{"product_name": "Black Tea", "unit_price_cents": 3000, "quantity": 2}],
            discount_type="amount",
            discount_value=500,
        ))

        db_session.refresh(shift)
        assert order.shift_id == shift.id
        assert shift.total_orders == 1
        assert shift.total_revenue_cents == 6000
        assert shift.total_discount_cents == 500
        assert shift.net_revenue_cents == 5500

    def test_cancelled_order_does_not_accumulate(self, db_session, order_payload):
        shift = shift_service.open_shift("T1")

        order = order_service.create_order(order_payload(device_id="T1", status="CANCELLED"))

        db_session.refresh(shift)
        assert order.shift_id == shift.id
        assert shift.total_orders == 0
        assert shift.total_revenue_cents == 0

    def test_other_device_shift_untouched(self, db_session, order_payload):
        shift = shift_service.open_shift("T1")

        order = order_service.create_order(order_payload(device_id="T2"))

        db_session.refresh(shift)
        assert order.shift_id is None
        assert shift.total_orders == 0


class TestBatchCreate:

    def test_skips_already_stored_orders(self, db_session, order_payload):
        first = order_payload(device_id="T1")
        order_service.create_order(first)

        created = order_service.batch_create([first, order_payload(device_id="T1"), order_payload(device_id="T1")])

        assert len(created) == 2
        assert db_session.query(Order).count() == 3

    def test_skips_repeats_within_batch(self, db_session, order_payload):
        payload = order_payload(device_id="T1")

        created = order_service.batch_create([payload, dict(payload)])

        assert len(created) == 1
        assert db_session.query(Order).count() == 1

    def test_orders_without_device_are_never_deduplicated(self, db_session, order_payload):
        payload = order_payload()

        created = order_service.batch_create([payload, dict(payload)])

        assert len(created) == 2
        assert db_session.query(Order).count() == 2

    def test_taken_sequence_is_renumbered_and_batch_continues(self, db_session, order_payload):
        order_service.create_order(order_payload())

        created = order_service.batch_create([
            order_payload(device_id="T1", daily_sequence=1, order_number="#0001"),
            order_payload(device_id="T1"),
        ])

        assert len(created) == 2
        assert (created[0].daily_sequence, created[0].order_number) == (2, "#0002")
        assert created[1].daily_sequence == 3
        assert db_session.query(Order).count() == 3

    def test_renumbered_order_is_skipped_on_retry(self, db_session, order_payload):
        order_service.create_order(order_payload())
        queue = [order_payload(device_id="T1", daily_sequence=1), order_payload(device_id="T1")]
        order_service.batch_create(queue)

        assert order_service.batch_create([dict(p) for p in queue]) == []
        assert db_session.query(Order).count() == 3

    def test_validates_everything_before_writing(self, db_session, order_payload):
        with pytest.raises(ValidationError) as excinfo:
            order_service.batch_create([order_payload(), {"items": []}])

        assert "orders[1]" in str(excinfo.value)
        assert db_session.query(Order).count() == 0

    def test_rejects_non_list(self, db_session):
        with pytest.raises(ValidationError):
            order_service.batch_create({"items": []})


class TestStatsAndStatus:

    def test_daily_stats(self, db_session, order_payload):
        order_service.create_order(order_payload(
            items=[{"product_name": "Black Tea", "unit_price_cents": 100, "quantity": 1}],
        ))
        order_service.create_order(order_payload(
            items=[{"product_name": "Black Tea", "unit_price_cents": 250, "quantity": 1}],
            status="CANCELLED",
        ))

        stats = order_service.get_stats(date(2026, 10, 19))

        assert stats.total_orders == 2
        assert stats.completed_orders == 1
        assert stats.cancelled_orders == 1
        assert stats.total_revenue_cents == 100

    def test_stats_default_to_today(self, db_session, order_payload):
        order_service.create_order(order_payload())

        assert order_service.get_stats().total_orders == 1
        assert order_service.get_stats(date(2026, 10, 18)).total_orders == 0

    def test_cancel_completed_order(self, db_session, order_payload):
        order = order_service.create_order(order_payload())

        updated = order_service.update_order_status(order.id, "CANCELLED")

        assert updated.status == "CANCELLED"
        assert order_service.get_stats().total_revenue_cents == 0

    def test_cannot_reopen_cancelled_order(self, db_session, order_payload):
        order = order_service.create_order(order_payload(status="CANCELLED"))

        with pytest.raises(OrderConflictError):
            order_service.update_order_status(order.id, "COMPLETED")

    def test_same_status_is_noop(self, db_session, order_payload):
        order = order_service.create_order(order_payload())

        assert order_service.update_order_status(order.id, "COMPLETED").status == "COMPLETED"

    def test_unknown_order(self, db_session):
        assert order_service.update_order_status(999, "CANCELLED") is None

    def test_list_orders_newest_first(self, db_session, order_payload):
        older = order_service.create_order(order_payload(device_id="T1"))
        newer = order_service.create_order(order_payload(device_id="T2"))

        orders, total = order_service.list_orders()
        assert total == 2
        assert [o.id for o in orders] == [newer.id, older.id]

        orders, total = order_service.list_orders(device_id="T1")
        assert total == 1
        assert orders[0].id == older.id
