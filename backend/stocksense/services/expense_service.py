# Overview: Operating expenses and their categories; feeds net profit in reporting.

"""
Expense Service

Expenses are money-only records: they never move stock and never write a
movement. Amounts are positive integer cents. Delete is soft (deleted_at set)
and a deleted expense drops out of every total.

MULTI-TENANT: categories, branches and users referenced by an expense must
belong to ctx.company_id.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Expense, ExpenseCategory
from ..time_utils import utcnow
from .concurrency import run_in_transaction
from .tenant_service import (
    TenantAccessError,
    TenantContext,
    require_branch_in_company,
    require_user_in_company,
)

MAX_EXPENSE_CENTS = 999_999_999


class ExpenseError(ValueError):
    """Invalid expense input."""
    code = "expense_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _require_text(value, field_name: str, max_len: int = 255) -> str:
    text = value.strip() if isinstance(value, str) else ""
    if not text:
        raise ExpenseError(f"{field_name} is required")
    if len(text) > max_len:
        raise ExpenseError(f"{field_name} must be at most {max_len} characters")
    return text


def _coerce_amount(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ExpenseError("amount_cents must be an integer number of cents")
    if value <= 0 or value > MAX_EXPENSE_CENTS:
        raise ExpenseError(f"amount_cents must be between 1 and {MAX_EXPENSE_CENTS}")
    return value


def get_expense_category(ctx: TenantContext, category_id: int) -> ExpenseCategory:
    category = db.session.get(ExpenseCategory, category_id)
    if category is None or category.company_id != ctx.company_id:
        raise TenantAccessError("Expense category not found", details={"category_id": category_id})
    return category


def create_expense_category(
    ctx: TenantContext,
    name: str,
    description: str | None = None,
) -> ExpenseCategory:
    def _op():
        category_name = _require_text(name, "name", max_len=128)
        existing = db.session.query(ExpenseCategory).filter_by(
            company_id=ctx.company_id,
            name=category_name,
        ).first()
        if existing is not None:
            raise ExpenseError("Expense category already exists.", details={"name": category_name})
        category = ExpenseCategory(
            company_id=ctx.company_id,
            name=category_name,
            description=description,
        )
        db.session.add(category)
        db.session.flush()
        return category

    return run_in_transaction(_op)


def list_expense_categories(ctx: TenantContext, include_inactive: bool = False) -> list[ExpenseCategory]:
    query = db.session.query(ExpenseCategory).filter_by(company_id=ctx.company_id)
    if not include_inactive:
        query = query.filter(ExpenseCategory.is_active.is_(True))
    return query.order_by(ExpenseCategory.name.asc(), ExpenseCategory.id.asc()).all()


def record_expense(
    ctx: TenantContext,
    category_id: int,
    amount_cents: int,
    description: str,
    *,
    expense_date: datetime | None = None,
    branch_id: int | None = None,
) -> Expense:
    """
    Record one expense against an active category.

    expense_date defaults to now (naive UTC) and is what date-window totals
    filter on.

    Raises:
        ExpenseError: bad amount or description, or inactive category
        TenantAccessError: category, branch or user from another company
    """
    amount = _coerce_amount(amount_cents)
    text = _require_text(description, "description")

    def _op():
        category = get_expense_category(ctx, category_id)
        if not category.is_active:
            raise ExpenseError("Expense category is inactive", details={"category_id": category_id})
        if branch_id is not None:
            require_branch_in_company(branch_id, ctx.company_id)
        if ctx.user_id is not None:
            require_user_in_company(ctx.user_id, ctx.company_id)
        expense = Expense(
            company_id=ctx.company_id,
            branch_id=branch_id,
            category_id=category.id,
            user_id=ctx.user_id,
            amount_cents=amount,
            description=text,
            expense_date=expense_date or utcnow(),
        )
        db.session.add(expense)
        db.session.flush()
        return expense

    expense = run_in_transaction(_op)
    current_app.logger.info(
        "Expense recorded (company_id=%s, expense_id=%s, amount_cents=%s)",
        ctx.company_id, expense.id, amount,
    )
    return expense


def _live_expenses(ctx: TenantContext, start: datetime | None, end: datetime | None):
    query = db.session.query(Expense).filter(
        Expense.company_id == ctx.company_id,
        Expense.deleted_at.is_(None),
    )
    if start is not None:
        query = query.filter(Expense.expense_date >= start)
    if end is not None:
        query = query.filter(Expense.expense_date <= end)
    return query


def list_expenses(
    ctx: TenantContext,
    start: datetime | None = None,
    end: datetime | None = None,
    category_id: int | None = None,
) -> list[Expense]:
    """Live expenses in [start, end], newest first."""
    query = _live_expenses(ctx, start, end)
    if category_id is not None:
        query = query.filter(Expense.category_id == category_id)
    return query.order_by(Expense.expense_date.desc(), Expense.id.desc()).all()


def delete_expense(ctx: TenantContext, expense_id: int) -> Expense:
    def _op():
        expense = db.session.get(Expense, expense_id)
        if expense is None or expense.company_id != ctx.company_id:
            raise TenantAccessError("Expense not found", details={"expense_id": expense_id})
        if expense.deleted_at is None:
            expense.deleted_at = utcnow()
            db.session.flush()
        return expense

    return run_in_transaction(_op)


def expenses_total(
    ctx: TenantContext,
    start: datetime | None = None,
    end: datetime | None = None,
) -> int:
    """Sum of live expenses in [start, end], in cents."""
    total = _live_expenses(ctx, start, end).with_entities(
        func.coalesce(func.sum(Expense.amount_cents), 0)
    ).scalar()
    return int(total or 0)
