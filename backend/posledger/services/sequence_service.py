# Overview: Daily order sequence allocation and order number formatting.

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import case, func, update
from sqlalchemy.dialects import postgresql, sqlite

from ..extensions import db
from ..models import DailySequence, Order


class SequenceError(Exception):
    """Raised when daily sequence operations fail."""
    pass


def initial_sequence() -> int:
    """Configured base offset; the first order of a day gets this + 1."""
    return int(current_app.config.get("INITIAL_ORDER_SEQUENCE", 0))


def format_order_number(sequence: int) -> str:
    """Human-readable order code, e.g. 126 -> '#0126'."""
    prefix = current_app.config.get("ORDER_NUMBER_PREFIX", "#")
    pad = int(current_app.config.get("ORDER_NUMBER_PADDING", 4))
    return f"{prefix}{sequence:0{pad}d}"


def _seed_value(day: date) -> int:
    """
    Starting point for a new counter row.

    Orders written before the counter row existed still count: the row starts
    at the highest sequence already on file for the day, or the configured
    offset when there is none.
    """
    existing_max = (
        db.session.query(func.max(Order.daily_sequence))
        .filter(Order.business_date == day)
        .scalar()
    )
    base = initial_sequence()
    if existing_max is None:
        return base
    return max(base, int(existing_max))


def _ensure_counter_row(day: date) -> None:
    """Create the counter row for `day` if missing, tolerating a concurrent insert."""
    values = {"business_date": day, "last_sequence": _seed_value(day)}
    dialect = db.engine.dialect.name

    if dialect == "sqlite":
        stmt = sqlite.insert(DailySequence).values(**values).on_conflict_do_nothing(
            index_elements=["business_date"]
        )
        db.session.execute(stmt)
    elif dialect == "postgresql":
        stmt = postgresql.insert(DailySequence).values(**values).on_conflict_do_nothing(
            index_elements=["business_date"]
        )
        db.session.execute(stmt)
    else:
        exists = db.session.query(DailySequence.id).filter_by(business_date=day).first()
        if not exists:
            db.session.add(DailySequence(**values))
            db.session.flush()


def _current_value(day: date) -> int:
    value = (
        db.session.query(DailySequence.last_sequence)
        .filter_by(business_date=day)
        .scalar()
    )
    if value is None:
        raise SequenceError(f"No sequence counter for {day.isoformat()}")
    return int(value)


def next_daily_sequence(day: date) -> int:
    """
    Atomically allocate the next order sequence for a business day.

    The increment is a single UPDATE on the day's counter row, so the row lock
    serializes concurrent writers. Must run inside the transaction that inserts
    the order; this function never commits.
    """
    if day is None:
        raise SequenceError("day is required")

    stmt = (
        update(DailySequence)
        .where(DailySequence.business_date == day)
        .values(last_sequence=DailySequence.last_sequence + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        _ensure_counter_row(day)
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise SequenceError(f"Could not allocate sequence for {day.isoformat()}")

    return _current_value(day)


def reserve_daily_sequence(day: date, sequence: int) -> None:
    """
    Record a caller-supplied sequence so the allocator never issues it again.

    Moves the counter forward to `sequence` when it is behind; never backwards.
    """
    if sequence is None or sequence <= 0:
        raise SequenceError("sequence must be a positive integer")

    _ensure_counter_row(day)
    db.session.execute(
        update(DailySequence)
        .where(DailySequence.business_date == day)
        .values(
            last_sequence=case(
                (DailySequence.last_sequence < sequence, sequence),
                else_=DailySequence.last_sequence,
            )
        )
    )


def peek_daily_sequence(day: date) -> int:
    """Last sequence issued for `day` (the configured offset if none yet). Read-only."""
    value = (
        db.session.query(DailySequence.last_sequence)
        .filter_by(business_date=day)
        .scalar()
    )
    if value is None:
        return _seed_value(day)
    return int(value)
