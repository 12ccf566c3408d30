# backend/stocksense/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stocksense.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stocksense.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Unit label used when a product is created without one
    STOCKSENSE_DEFAULT_UNIT = os.environ.get("STOCKSENSE_DEFAULT_UNIT", "piece")
    STOCKSENSE_TOP_PRODUCTS_LIMIT = int(os.environ.get("STOCKSENSE_TOP_PRODUCTS_LIMIT", "5"))
