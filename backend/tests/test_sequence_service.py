# Overview: Pytest coverage for daily order sequence allocation.

from datetime import date

import pytest

from posledger.extensions import db
from posledger.models import DailySequence
from posledger.services import order_service
from posledger.services.sequence_service import (
    SequenceError,
    format_order_number,
    next_daily_sequence,
    peek_daily_sequence,
    reserve_daily_sequence,
)


DAY = date(2026, 10, 19)


pytestmark = pytest.mark.orders


class TestOrderNumberFormat:

    def test_pads_to_four_digits(self, app):
        assert format_order_number(126) == "#0126"

    def test_wider_numbers_are_not_truncated(self, app):
        assert format_order_number(12345) == "#12345"

    def test_prefix_and_padding_come_from_config(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "ORDER_NUMBER_PREFIX", "A-")
        monkeypatch.setitem(app.config, "ORDER_NUMBER_PADDING", 3)
        assert format_order_number(7) == "A-007"


class TestNextDailySequence:

    def test_first_of_day_is_one(self, db_session):
        assert next_daily_sequence(DAY) == 1
        assert next_daily_sequence(DAY) == 2
        db_session.commit()

        row = db_session.query(DailySequence).filter_by(business_date=DAY).one()
        assert row.last_sequence == 2

    def test_initial_offset(self, app, db_session, monkeypatch):
        """A configured base of 125 makes the first order #0126."""
        monkeypatch.setitem(app.config, "INITIAL_ORDER_SEQUENCE", 125)
        assert next_daily_sequence(DAY) == 126
        db_session.commit()

    def test_days_are_independent(self, db_session):
        assert next_daily_sequence(DAY) == 1
        assert next_daily_sequence(DAY) == 2
        assert next_daily_sequence(date(2026, 10, 20)) == 1
        db_session.commit()

    def test_counter_starts_above_existing_orders(self, db_session, order_payload):
        """Orders written with explicit numbers before the counter row existed still count."""
        order_service.create_order(order_payload(daily_sequence=40))
        db_session.query(DailySequence).delete()
        db_session.commit()

        assert next_daily_sequence(DAY) == 41
        db_session.commit()

    def test_day_required(self, db_session):
        with pytest.raises(SequenceError):
            next_daily_sequence(None)


class TestReserveDailySequence:

    def test_reserved_number_is_never_reissued(self, db_session):
        reserve_daily_sequence(DAY, 10)
        assert next_daily_sequence(DAY) == 11
        db_session.commit()

    def test_reserve_never_moves_counter_backwards(self, db_session):
        for _ in range(5):
            next_daily_sequence(DAY)
        reserve_daily_sequence(DAY, 3)
        assert next_daily_sequence(DAY) == 6
        db_session.commit()

    def test_rejects_non_positive(self, db_session):
        with pytest.raises(SequenceError):
            reserve_daily_sequence(DAY, 0)


class TestPeek:

    def test_peek_does_not_allocate(self, db_session):
        assert peek_daily_sequence(DAY) == 0
        assert db_session.query(DailySequence).count() == 0

        next_daily_sequence(DAY)
        db_session.commit()
        assert peek_daily_sequence(DAY) == 1
        assert peek_daily_sequence(DAY) == 1
