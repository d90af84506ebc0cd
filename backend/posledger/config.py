# backend/posledger/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/posledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///posledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Order numbering: first order of a day is INITIAL_ORDER_SEQUENCE + 1
    INITIAL_ORDER_SEQUENCE = int(os.environ.get("INITIAL_ORDER_SEQUENCE", "0"))
    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "#")
    ORDER_NUMBER_PADDING = int(os.environ.get("ORDER_NUMBER_PADDING", "4"))

    # Calendar day boundaries for sequences, stats and settlements
    BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE", "UTC")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
