"""SQLAlchemy-backed collaborators of the limit evaluator.

The evaluator only needs a handful of reads (and, for the ``once``
notification policy, a claim table). Each class here wraps database
failures into the error the evaluator expects from that collaborator.
"""
from datetime import date
from decimal import Decimal

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from database import Category, Expense, Limit, LimitNotification, User
from errors import DependencyReadError, RecordLookupError
from notifier import Contact


class SqlLimitRegistry:
    def __init__(self, db: Session):
        self.db = db

    def active_limits(self, user_id: str, category_id: str, today: date):
        try:
            return (
                self.db.query(Limit)
                .filter(
                    Limit.user_id == user_id,
                    Limit.category_id == category_id,
                    Limit.start_date <= today,
                    Limit.end_date >= today,
                )
                .order_by(Limit.created_at)
                .all()
            )
        except SQLAlchemyError as exc:
            raise DependencyReadError(f"Could not read limits: {exc}") from exc


class SqlExpenseLedger:
    def __init__(self, db: Session):
        self.db = db

    def amounts(self, user_id: str, category_id: str, start: date, end: date):
        try:
            rows = (
                self.db.query(Expense.amount)
                .filter(
                    Expense.user_id == user_id,
                    Expense.category_id == category_id,
                    Expense.expense_date >= start,
                    Expense.expense_date <= end,
                )
                .all()
            )
        except SQLAlchemyError as exc:
            raise DependencyReadError(f"Could not read expenses: {exc}") from exc
        return [Decimal(row.amount) for row in rows]


class SqlDirectory:
    def __init__(self, db: Session):
        self.db = db

    def contact(self, user_id: str) -> Contact:
        try:
            user = self.db.get(User, user_id)
        except SQLAlchemyError as exc:
            raise RecordLookupError(f"Could not read user {user_id}: {exc}") from exc
        if user is None or not user.email:
            raise RecordLookupError(f"No notification address for user {user_id}")
        return Contact(email=user.email, name=user.full_name or user.email)

    def category_name(self, category_id: str) -> str:
        try:
            category = self.db.get(Category, category_id)
        except SQLAlchemyError as exc:
            raise RecordLookupError(
                f"Could not read category {category_id}: {exc}"
            ) from exc
        if category is None:
            raise RecordLookupError(f"Unknown category {category_id}")
        return category.name


class SqlNotificationLog:
    """Claims on (limit, period) so a breach is only notified once."""

    def __init__(self, db: Session):
        self.db = db

    def claim(self, limit) -> bool:
        self.db.add(
            LimitNotification(
                limit_id=limit.id,
                period_start=limit.start_date,
                period_end=limit.end_date,
            )
        )
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False
        return True

    def release(self, limit):
        deleted = (
            self.db.query(LimitNotification)
            .filter(
                LimitNotification.limit_id == limit.id,
                LimitNotification.period_start == limit.start_date,
                LimitNotification.period_end == limit.end_date,
            )
            .delete(synchronize_session=False)
        )
        if deleted:
            self.db.commit()
