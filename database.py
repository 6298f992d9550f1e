from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    Numeric,
    Date,
    DateTime,
    ForeignKey,
    Boolean,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import sessionmaker, declarative_base, relationship
from sqlalchemy.pool import StaticPool
from datetime import datetime
import uuid

from config import Config

DATABASE_URL = Config.DATABASE_URL

engine_options = {}
if DATABASE_URL.startswith("sqlite"):
    engine_options["connect_args"] = {"check_same_thread": False}
    if DATABASE_URL in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection so every session sees the same in-memory db
        engine_options["poolclass"] = StaticPool

engine = create_engine(DATABASE_URL, **engine_options)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

Money = Numeric(12, 2)


def new_id():
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"
    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, nullable=True)
    full_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Category(Base):
    __tablename__ = "categories"
    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    color = Column(String(20), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_user_category_name"),
    )


class Product(Base):
    __tablename__ = "products"
    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    category_id = Column(String(36), ForeignKey("categories.id"), nullable=True)
    default_price = Column(Money, nullable=True)


class Expense(Base):
    __tablename__ = "expenses"
    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    category_id = Column(
        String(36), ForeignKey("categories.id"), nullable=False, index=True
    )
    amount = Column(Money, nullable=False)
    expense_date = Column(Date, nullable=False, index=True)
    description = Column(Text, nullable=True)
    is_recurring = Column(Boolean, nullable=False, default=False)
    recurring_interval = Column(String(20), nullable=True)
    next_occurrence = Column(Date, nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    category = relationship("Category", lazy="joined")
    products = relationship(
        "ExpenseProduct",
        backref="expense",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class ExpenseProduct(Base):
    __tablename__ = "expense_products"
    id = Column(String(36), primary_key=True, default=new_id)
    expense_id = Column(String(36), ForeignKey("expenses.id"), nullable=False)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False)
    quantity = Column(Numeric(12, 3), nullable=False, default=1)
    price_per_unit = Column(Money, nullable=False)

    product = relationship("Product", lazy="joined")


class Limit(Base):
    __tablename__ = "limits"
    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    category_id = Column(
        String(36), ForeignKey("categories.id"), nullable=False, index=True
    )
    name = Column(String(200), nullable=False)
    amount = Column(Money, nullable=False)
    period_type = Column(String(20), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class LimitNotification(Base):
    """A breach that has already been notified for one limit period."""

    __tablename__ = "limit_notifications"
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    limit_id = Column(String(36), ForeignKey("limits.id", ondelete="CASCADE"), nullable=False)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    notified_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            "limit_id", "period_start", "period_end", name="uq_limit_notification_period"
        ),
    )


class LimitCheck(Base):
    """Outbox row: one pending limit evaluation for a recorded expense."""

    __tablename__ = "limit_checks"
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(String(36), nullable=False)
    category_id = Column(String(36), nullable=False)
    expense_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    attempts = Column(Integer, nullable=False, default=0)
    processed_at = Column(DateTime, nullable=True, index=True)
    last_error = Column(Text, nullable=True)


class Budget(Base):
    __tablename__ = "budgets"
    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    category_id = Column(
        String(36), ForeignKey("categories.id"), nullable=False, index=True
    )
    amount = Column(Money, nullable=False)
    period_type = Column(String(20), nullable=False, default="monthly")
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    category = relationship("Category", lazy="joined")


class Report(Base):
    """A generated monthly report; numbered per user."""

    __tablename__ = "reports"
    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    report_number = Column(Integer, nullable=False)
    month_year = Column(String(30), nullable=False)
    expense_count = Column(Integer, nullable=False)
    total_amount = Column(Money, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "report_number", name="uq_report_number"),
        UniqueConstraint("user_id", "month_year", name="uq_report_month"),
    )


def init_db():
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
