# Overview: Tagged location values used to address stock records.

"""
Stock Location Semantics (authoritative)

A stock record is scoped to exactly one of:
- COMPANY_WIDE: no branch, no warehouse
- BRANCH: a branch only
- WAREHOUSE: a warehouse only
- BRANCH_AND_WAREHOUSE: a warehouse attached to a branch

Every location has a canonical string key. Stock records are unique on
(company_id, product_id, location_key), so two lookups for the same location
always resolve to the same record, and a branch-scoped lookup never matches a
warehouse-scoped record.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


COMPANY_WIDE = "COMPANY_WIDE"
BRANCH = "BRANCH"
WAREHOUSE = "WAREHOUSE"
BRANCH_AND_WAREHOUSE = "BRANCH_AND_WAREHOUSE"

COMPANY_KEY = "company"


class LocationError(ValueError):
    """Raised when a location value or key is malformed."""
    code = "validation_error"


@dataclass(frozen=True)
class Location:
    branch_id: Optional[int] = None
    warehouse_id: Optional[int] = None

    def __post_init__(self):
        for name in ("branch_id", "warehouse_id"):
            value = getattr(self, name)
            if value is not None and (not isinstance(value, int) or isinstance(value, bool) or value <= 0):
                raise LocationError(f"{name} must be a positive integer")

    @classmethod
    def company_wide(cls) -> "Location":
        return cls()

    @classmethod
    def branch(cls, branch_id: int) -> "Location":
        return cls(branch_id=branch_id)

    @classmethod
    def warehouse(cls, warehouse_id: int) -> "Location":
        return cls(warehouse_id=warehouse_id)

    @classmethod
    def branch_and_warehouse(cls, branch_id: int, warehouse_id: int) -> "Location":
        return cls(branch_id=branch_id, warehouse_id=warehouse_id)

    @property
    def kind(self) -> str:
        if self.branch_id is not None and self.warehouse_id is not None:
            return BRANCH_AND_WAREHOUSE
        if self.branch_id is not None:
            return BRANCH
        if self.warehouse_id is not None:
            return WAREHOUSE
        return COMPANY_WIDE

    @property
    def key(self) -> str:
        kind = self.kind
        if kind == BRANCH_AND_WAREHOUSE:
            return f"branch:{self.branch_id}/warehouse:{self.warehouse_id}"
        if kind == BRANCH:
            return f"branch:{self.branch_id}"
        if kind == WAREHOUSE:
            return f"warehouse:{self.warehouse_id}"
        return COMPANY_KEY

    @classmethod
    def from_key(cls, key: str) -> "Location":
        """Inverse of Location.key."""
        if key == COMPANY_KEY:
            return cls()

        branch_id = None
        warehouse_id = None
        for part in key.split("/"):
            label, _, raw = part.partition(":")
            if not raw.isdigit():
                raise LocationError(f"invalid location key: {key!r}")
            if label == "branch" and branch_id is None and warehouse_id is None:
                branch_id = int(raw)
            elif label == "warehouse" and warehouse_id is None:
                warehouse_id = int(raw)
            else:
                raise LocationError(f"invalid location key: {key!r}")
        return cls(branch_id=branch_id, warehouse_id=warehouse_id)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "key": self.key,
            "branch_id": self.branch_id,
            "warehouse_id": self.warehouse_id,
        }

    def __str__(self) -> str:
        return self.key


def coerce_location(value) -> Location:
    """
    Accept a Location, None (company-wide), a location key string, or a
    mapping with branch_id / warehouse_id.
    """
    if value is None:
        return Location.company_wide()
    if isinstance(value, Location):
        return value
    if isinstance(value, str):
        return Location.from_key(value)
    if isinstance(value, dict):
        return Location(
            branch_id=value.get("branch_id"),
            warehouse_id=value.get("warehouse_id"),
        )
    raise LocationError(f"unsupported location value: {value!r}")
