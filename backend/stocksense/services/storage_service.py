# Overview: Key/value JSON store and company export snapshots.

from __future__ import annotations

import json
from typing import Any

from flask import current_app

from ..extensions import db
from ..models import Expense, InventoryMovement, Product, Purchase, Sale, StockRecord, StorageEntry
from ..time_utils import to_utc_z, utcnow
from .concurrency import run_in_transaction
from .tenant_service import TenantContext

SETTINGS_KEY = "settings"
EXPORT_KEY_PREFIX = "export:"

DEFAULT_SETTINGS = {
    "currency": "SAR",
    "low_stock_alerts": True,
    "default_tax_rate_percent": "0",
}


class StorageError(ValueError):
    code = "storage_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _validate_key(key: str) -> str:
    if not isinstance(key, str) or not key.strip():
        raise StorageError("key is required")
    key = key.strip()
    if len(key) > 128:
        raise StorageError("key must be at most 128 characters", details={"key": key})
    return key


def _entry_query(company_id: int | None, key: str):
    query = db.session.query(StorageEntry).filter(StorageEntry.key == key)
    if company_id is None:
        return query.filter(StorageEntry.company_id.is_(None))
    return query.filter(StorageEntry.company_id == company_id)


def get_value(company_id: int | None, key: str, default: Any = None) -> Any:
    """Decoded value for a key, or default when absent."""
    entry = _entry_query(company_id, _validate_key(key)).first()
    if entry is None:
        return default
    return json.loads(entry.value_json)


def set_value(company_id: int | None, key: str, value: Any) -> StorageEntry:
    """Insert or replace the value stored under key. Last write wins."""
    key = _validate_key(key)
    try:
        encoded = json.dumps(value, sort_keys=True)
    except (TypeError, ValueError) as e:
        raise StorageError(f"value is not JSON-serializable: {e}", details={"key": key})

    def _op():
        entry = _entry_query(company_id, key).first()
        if entry is None:
            entry = StorageEntry(company_id=company_id, key=key, value_json=encoded)
            db.session.add(entry)
        else:
            entry.value_json = encoded
            entry.updated_at = utcnow()
        db.session.flush()
        return entry

    return run_in_transaction(_op, retry_integrity=True)


def delete_value(company_id: int | None, key: str) -> bool:
    """Remove a key. Returns False when it did not exist."""
    key = _validate_key(key)

    def _op():
        entry = _entry_query(company_id, key).first()
        if entry is None:
            return False
        db.session.delete(entry)
        db.session.flush()
        return True

    return run_in_transaction(_op)


def list_keys(company_id: int | None, prefix: str | None = None) -> list[str]:
    query = db.session.query(StorageEntry.key)
    if company_id is None:
        query = query.filter(StorageEntry.company_id.is_(None))
    else:
        query = query.filter(StorageEntry.company_id == company_id)
    if prefix:
        query = query.filter(StorageEntry.key.startswith(prefix))
    return [row.key for row in query.order_by(StorageEntry.key.asc()).all()]


def get_company_settings(ctx: TenantContext) -> dict:
    """Stored settings merged over the defaults."""
    settings = dict(DEFAULT_SETTINGS)
    settings.update(get_value(ctx.company_id, SETTINGS_KEY, {}) or {})
    return settings


def update_company_settings(ctx: TenantContext, patch: dict) -> dict:
    if not isinstance(patch, dict):
        raise StorageError("settings patch must be a mapping")
    stored = get_value(ctx.company_id, SETTINGS_KEY, {}) or {}
    stored.update(patch)
    set_value(ctx.company_id, SETTINGS_KEY, stored)
    return get_company_settings(ctx)


def export_company_data(ctx: TenantContext, *, save: bool = False) -> dict:
    """
    Snapshot of a company's catalog, stock, movements, documents and expenses.

    With save=True the snapshot is also stored under "export:<timestamp>".
    """
    cid = ctx.company_id
    exported_at = to_utc_z(utcnow())

    snapshot = {
        "company_id": cid,
        "exported_at": exported_at,
        "products": [
            p.to_dict()
            for p in db.session.query(Product).filter_by(company_id=cid).order_by(Product.id.asc()).all()
        ],
        "stock": [
            r.to_dict()
            for r in db.session.query(StockRecord).filter_by(company_id=cid).order_by(StockRecord.id.asc()).all()
        ],
        "movements": [
            m.to_dict()
            for m in db.session.query(InventoryMovement).filter_by(company_id=cid).order_by(InventoryMovement.id.asc()).all()
        ],
        "sales": [
            s.to_dict()
            for s in db.session.query(Sale).filter_by(company_id=cid).order_by(Sale.id.asc()).all()
        ],
        "purchases": [
            p.to_dict()
            for p in db.session.query(Purchase).filter_by(company_id=cid).order_by(Purchase.id.asc()).all()
        ],
        "expenses": [
            e.to_dict()
            for e in db.session.query(Expense).filter_by(company_id=cid).order_by(Expense.id.asc()).all()
        ],
        "settings": get_company_settings(ctx),
    }

    if save:
        set_value(cid, f"{EXPORT_KEY_PREFIX}{exported_at}", snapshot)
        current_app.logger.info("Company export stored (company_id=%s, at=%s)", cid, exported_at)
    return snapshot
