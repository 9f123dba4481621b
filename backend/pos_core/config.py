# backend/pos_core/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/pos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Last-resort unit price when every tier price and the base price are zero (10.00)
    POS_DEFAULT_UNIT_PRICE_CENTS = int(os.environ.get("POS_DEFAULT_UNIT_PRICE_CENTS", "1000"))

    # Walk-in customers (no client selected) are priced on this tier
    POS_DEFAULT_TIER = os.environ.get("POS_DEFAULT_TIER", "E")

    # What settlement does when a line sells more than is in stock:
    # "allow" (flag silently), "warn" (flag and log), "reject" (refuse checkout)
    POS_OVERSELL_POLICY = os.environ.get("POS_OVERSELL_POLICY", "warn")

    # Client materialized the first time a sale is settled without a client
    POS_GENERAL_CLIENT_NAME = os.environ.get("POS_GENERAL_CLIENT_NAME", "General Client")

    # Receipt VAT rate (percent) used when checkout is asked to apply VAT
    POS_VAT_RATE = int(os.environ.get("POS_VAT_RATE", "20"))
