"""
Tenant Service: explicit company/actor context and ownership checks.

Every ledger operation receives a TenantContext instead of reading a
"current user" from global state. Ids that come from callers (branch,
warehouse, product, user) are validated against ctx.company_id before use.

USAGE:
    ctx = build_context(company_id=1, user_id=3)
    require_location_in_company(Location.warehouse(2), ctx.company_id)
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..locations import Location
from ..models import Company, Branch, Warehouse, User


class TenantAccessError(Exception):
    """Raised when an id outside the caller's company is referenced."""
    code = "tenant_access_denied"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class TenantContext:
    """Who is acting, and on behalf of which company."""
    company_id: int
    user_id: int | None = None


def _log_cross_tenant_attempt(reason: str, *, company_id: int | None) -> None:
    current_app.logger.warning("Tenant access denied (company_id=%s): %s", company_id, reason)


def require_company(company_id: int, *, require_active: bool = True) -> Company:
    company = db.session.get(Company, company_id)
    if company is None:
        _log_cross_tenant_attempt(f"Company {company_id} not found", company_id=company_id)
        raise TenantAccessError("Company not found")
    if require_active and not company.is_active:
        raise TenantAccessError("Company is inactive")
    return company


def build_context(company_id: int, user_id: int | None = None) -> TenantContext:
    """
    Validate company (and actor, when given) and return a TenantContext.
    """
    require_company(company_id)
    if user_id is not None:
        require_user_in_company(user_id, company_id)
    return TenantContext(company_id=company_id, user_id=user_id)


def require_user_in_company(user_id: int, company_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None or user.company_id != company_id:
        _log_cross_tenant_attempt(f"User {user_id} not in company", company_id=company_id)
        raise TenantAccessError("User not found")
    if not user.is_active:
        raise TenantAccessError("User is inactive")
    return user


def require_branch_in_company(branch_id: int, company_id: int) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if branch is None or branch.company_id != company_id:
        # Don't reveal that it exists in another company
        _log_cross_tenant_attempt(f"Branch {branch_id} not in company", company_id=company_id)
        raise TenantAccessError("Branch not found", details={"branch_id": branch_id})
    return branch


def require_warehouse_in_company(warehouse_id: int, company_id: int) -> Warehouse:
    warehouse = db.session.get(Warehouse, warehouse_id)
    if warehouse is None or warehouse.company_id != company_id:
        _log_cross_tenant_attempt(f"Warehouse {warehouse_id} not in company", company_id=company_id)
        raise TenantAccessError("Warehouse not found", details={"warehouse_id": warehouse_id})
    return warehouse


def require_location_in_company(location: Location, company_id: int) -> Location:
    """
    Validate every id a location carries. Company-wide locations always pass.
    """
    if location.branch_id is not None:
        require_branch_in_company(location.branch_id, company_id)
    if location.warehouse_id is not None:
        require_warehouse_in_company(location.warehouse_id, company_id)
    return location
