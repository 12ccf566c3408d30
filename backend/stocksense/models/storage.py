from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class StorageEntry(db.Model):
    """
    Key/value blob store: one JSON document per (company, key).

    company_id is NULL for installation-wide keys.
    """
    __tablename__ = "storage_entries"
    __table_args__ = (
        db.UniqueConstraint("company_id", "key", name="uq_storage_company_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True, index=True)
    key = db.Column(db.String(128), nullable=False)
    value_json = db.Column(db.Text, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "company_id": self.company_id,
            "key": self.key,
            "updated_at": to_utc_z(self.updated_at),
        }
