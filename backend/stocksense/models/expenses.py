from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class ExpenseCategory(db.Model):
    """Company-defined bucket for operating costs (rent, salaries, ...)."""
    __tablename__ = "expense_categories"
    __table_args__ = (
        db.UniqueConstraint("company_id", "name", name="uq_expense_categories_company_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<ExpenseCategory id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Expense(db.Model):
    """
    Operating cost outside the stock ledger.

    Expenses never touch stock. They only feed the net profit figure:
    sales - purchases - expenses. Deleting an expense is a soft delete
    (deleted_at set) and removes it from every total.
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.Index("ix_expenses_company_date", "company_id", "expense_date"),
        db.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)
    category_id = db.Column(db.Integer, db.ForeignKey("expense_categories.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=False)
    expense_date = db.Column(db.DateTime(timezone=True), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    category = db.relationship("ExpenseCategory", lazy="joined")

    def __repr__(self) -> str:
        return f"<Expense id={self.id} amount_cents={self.amount_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "branch_id": self.branch_id,
            "category_id": self.category_id,
            "category": self.category.name if self.category else None,
            "user_id": self.user_id,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "expense_date": to_utc_z(self.expense_date),
            "created_at": to_utc_z(self.created_at),
            "deleted_at": to_utc_z(self.deleted_at),
        }
