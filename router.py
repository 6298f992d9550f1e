from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from database import (
    get_db,
    Budget,
    Category,
    Expense,
    ExpenseProduct,
    Limit,
    LimitNotification,
    Product,
    Report,
    User,
)
from schemas import (
    AnalyticsSummary,
    CategoryCreate,
    CategoryResponse,
    CategoryTrend,
    ExpenseCreate,
    ExpenseResponse,
    ExpenseUpdate,
    MonthlyReport,
    ProductCreate,
    ProductResponse,
    ReportResponse,
)
from auth import get_current_user
from evaluator import measure_limit
from jobs import drain_limit_checks, enqueue_limit_check
from periods import RECURRING_INTERVALS, month_bounds, next_occurrence
from reports import build_monthly_report, report_to_csv
from stores import SqlExpenseLedger
from datetime import date
from decimal import Decimal
from typing import Optional


router = APIRouter()


def get_owned(db: Session, model, record_id: str, user: User, label: str):
    record = (
        db.query(model).filter(model.id == record_id, model.user_id == user.id).first()
    )
    if not record:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return record


def validate_interval(interval: Optional[str]) -> str:
    allowed_intervals = list(RECURRING_INTERVALS)
    if not interval or interval.lower() not in allowed_intervals:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid recurring interval. Allowed values: {allowed_intervals}",
        )
    return interval.lower()


# categories
@router.post(
    "/categories", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED
)
async def create_category(
    category: CategoryCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    existing = (
        db.query(Category)
        .filter(Category.user_id == current_user.id, Category.name == category.name)
        .first()
    )
    if existing:
        raise HTTPException(status_code=409, detail="Category already exists")

    db_category = Category(
        user_id=current_user.id, name=category.name, color=category.color
    )
    db.add(db_category)
    db.commit()
    db.refresh(db_category)
    return db_category


@router.get("/categories", response_model=list[CategoryResponse])
async def get_categories(
    db: Session = Depends(get_db), current_user: User = Depends(get_current_user)
):
    return (
        db.query(Category)
        .filter(Category.user_id == current_user.id)
        .order_by(Category.name)
        .all()
    )


@router.patch("/categories/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: str,
    category: CategoryCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_category = get_owned(db, Category, category_id, current_user, "Category")
    duplicate = (
        db.query(Category)
        .filter(
            Category.user_id == current_user.id,
            Category.name == category.name,
            Category.id != category_id,
        )
        .first()
    )
    if duplicate:
        raise HTTPException(status_code=409, detail="Category already exists")

    db_category.name = category.name
    db_category.color = category.color
    db.commit()
    db.refresh(db_category)
    return db_category


@router.delete("/categories/{category_id}")
async def delete_category(
    category_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_category = get_owned(db, Category, category_id, current_user, "Category")
    in_use = db.query(Expense.id).filter(Expense.category_id == category_id).first()
    if in_use:
        raise HTTPException(
            status_code=409, detail="Cannot delete a category in use by expenses"
        )
    limit_ids = [
        row.id for row in db.query(Limit.id).filter(Limit.category_id == category_id)
    ]
    if limit_ids:
        db.query(LimitNotification).filter(
            LimitNotification.limit_id.in_(limit_ids)
        ).delete(synchronize_session=False)
        db.query(Limit).filter(Limit.id.in_(limit_ids)).delete(
            synchronize_session=False
        )
    db.query(Budget).filter(Budget.category_id == category_id).delete(
        synchronize_session=False
    )
    db.delete(db_category)
    db.commit()
    return {"message": "Category deleted successfully"}


# products
@router.post(
    "/products", response_model=ProductResponse, status_code=status.HTTP_201_CREATED
)
async def create_product(
    product: ProductCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if product.category_id:
        get_owned(db, Category, product.category_id, current_user, "Category")
    db_product = Product(
        user_id=current_user.id,
        name=product.name,
        category_id=product.category_id,
        default_price=product.default_price,
    )
    db.add(db_product)
    db.commit()
    db.refresh(db_product)
    return db_product


@router.get("/products", response_model=list[ProductResponse])
async def get_products(
    db: Session = Depends(get_db), current_user: User = Depends(get_current_user)
):
    return (
        db.query(Product)
        .filter(Product.user_id == current_user.id)
        .order_by(Product.name)
        .all()
    )


# expenses
@router.post(
    "/expenses", response_model=ExpenseResponse, status_code=status.HTTP_201_CREATED
)
async def create_expense(
    expense: ExpenseCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    get_owned(db, Category, expense.category_id, current_user, "Category")

    lines = []
    for line in expense.products:
        product = (
            db.query(Product)
            .filter(Product.id == line.product_id, Product.user_id == current_user.id)
            .first()
        )
        if not product:
            raise HTTPException(
                status_code=400, detail=f"Unknown product {line.product_id}"
            )
        lines.append(
            ExpenseProduct(
                product_id=product.id,
                quantity=line.quantity,
                price_per_unit=line.price_per_unit,
            )
        )

    amount = expense.amount
    if amount is None and lines:
        amount = sum(
            (line.quantity * line.price_per_unit for line in expense.products),
            Decimal("0"),
        ).quantize(Decimal("0.01"))
    if amount is None or amount <= 0:
        raise HTTPException(
            status_code=400,
            detail="A positive amount is required when no products are given",
        )

    expense_date = expense.expense_date or date.today()
    db_expense = Expense(
        user_id=current_user.id,
        category_id=expense.category_id,
        amount=amount,
        expense_date=expense_date,
        description=expense.description,
        is_recurring=expense.is_recurring,
    )
    if expense.is_recurring:
        db_expense.recurring_interval = validate_interval(expense.recurring_interval)
        db_expense.next_occurrence = next_occurrence(
            expense_date, db_expense.recurring_interval
        )
    db_expense.products = lines

    # the limit check is committed together with the expense and run after
    # the response is sent; the scheduler retries whatever is left
    db.add(db_expense)
    enqueue_limit_check(db, db_expense)
    db.commit()
    db.refresh(db_expense)
    background_tasks.add_task(drain_limit_checks)

    return db_expense


@router.get("/expenses", response_model=list[ExpenseResponse])
async def get_expenses(
    category_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    query = db.query(Expense).filter(Expense.user_id == current_user.id)
    if category_id:
        query = query.filter(Expense.category_id == category_id)
    if start_date:
        query = query.filter(Expense.expense_date >= start_date)
    if end_date:
        query = query.filter(Expense.expense_date <= end_date)
    return query.order_by(Expense.expense_date.desc(), Expense.created_at.desc()).all()


@router.get("/expenses/{expense_id}", response_model=ExpenseResponse)
async def get_expense(
    expense_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return get_owned(db, Expense, expense_id, current_user, "Expense")


@router.patch("/expenses/{expense_id}", response_model=ExpenseResponse)
async def update_expense(
    expense_id: str,
    expense: ExpenseUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_expense = get_owned(db, Expense, expense_id, current_user, "Expense")
    changes = expense.model_dump(exclude_unset=True)

    if changes.get("category_id"):
        get_owned(db, Category, changes["category_id"], current_user, "Category")
    for field in ("category_id", "amount", "expense_date", "description"):
        if field in changes and (changes[field] is not None or field == "description"):
            setattr(db_expense, field, changes[field])

    if changes.get("is_recurring") is False:
        db_expense.is_recurring = False
        db_expense.recurring_interval = None
        db_expense.next_occurrence = None
    elif changes.get("is_recurring") or (
        db_expense.is_recurring and "recurring_interval" in changes
    ):
        interval = validate_interval(
            changes.get("recurring_interval") or db_expense.recurring_interval
        )
        db_expense.is_recurring = True
        db_expense.recurring_interval = interval
        db_expense.next_occurrence = next_occurrence(db_expense.expense_date, interval)

    enqueue_limit_check(db, db_expense)
    db.commit()
    db.refresh(db_expense)
    background_tasks.add_task(drain_limit_checks)
    return db_expense


@router.delete("/expenses/{expense_id}")
async def delete_expense(
    expense_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    expense = get_owned(db, Expense, expense_id, current_user, "Expense")
    db.delete(expense)
    db.commit()
    return {"message": "Expense deleted successfully"}


# analytics
@router.get("/analytics/category-trends", response_model=list[CategoryTrend])
async def get_category_trends(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    query = (
        db.query(Expense.category_id, Category.name, Expense.expense_date, Expense.amount)
        .join(Category, Expense.category_id == Category.id)
        .filter(Expense.user_id == current_user.id)
    )
    if start_date:
        query = query.filter(Expense.expense_date >= start_date)
    if end_date:
        query = query.filter(Expense.expense_date <= end_date)

    totals = {}
    for category_id, name, expense_date, amount in query.all():
        key = (expense_date.strftime("%Y-%m"), name, category_id)
        totals[key] = totals.get(key, Decimal("0")) + Decimal(amount)

    return [
        {
            "category_id": category_id,
            "category_name": name,
            "month": month,
            "total": float(total),
        }
        for (month, name, category_id), total in sorted(totals.items())
    ]


@router.get("/analytics/summary", response_model=AnalyticsSummary)
async def get_summary(
    db: Session = Depends(get_db), current_user: User = Depends(get_current_user)
):
    today = date.today()
    month_start, month_end = month_bounds(today.year, today.month)
    amounts = [
        Decimal(row.amount)
        for row in db.query(Expense.amount).filter(
            Expense.user_id == current_user.id,
            Expense.expense_date >= month_start,
            Expense.expense_date <= month_end,
        )
    ]
    total = sum(amounts, Decimal("0"))

    active_limits = (
        db.query(Limit)
        .filter(
            Limit.user_id == current_user.id,
            Limit.start_date <= today,
            Limit.end_date >= today,
        )
        .all()
    )
    ledger = SqlExpenseLedger(db)
    reached = 0
    for limit in active_limits:
        if limit.amount > 0 and measure_limit(ledger, limit)[1] >= 100:
            reached += 1

    return AnalyticsSummary(
        month=month_start.strftime("%Y-%m"),
        total_spent=float(total),
        expense_count=len(amounts),
        average_expense=round(float(total / len(amounts)), 2) if amounts else 0.0,
        active_limits=len(active_limits),
        limits_reached=reached,
    )


# reports
def load_monthly_report(db: Session, user: User, year: int, month: int):
    if not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="month must be between 1 and 12")
    start, end = month_bounds(year, month)
    expenses = (
        db.query(Expense)
        .filter(
            Expense.user_id == user.id,
            Expense.expense_date >= start,
            Expense.expense_date <= end,
        )
        .order_by(Expense.expense_date.desc())
        .all()
    )
    if not expenses:
        raise HTTPException(status_code=404, detail="No expenses found for this month")
    return build_monthly_report(expenses, start.strftime("%B %Y"))


@router.get("/reports", response_model=list[ReportResponse])
async def get_reports(
    db: Session = Depends(get_db), current_user: User = Depends(get_current_user)
):
    return (
        db.query(Report)
        .filter(Report.user_id == current_user.id)
        .order_by(Report.report_number.desc())
        .all()
    )


@router.get("/reports/monthly", response_model=MonthlyReport)
async def get_monthly_report(
    year: Optional[int] = None,
    month: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    today = date.today()
    return load_monthly_report(
        db, current_user, year or today.year, month or today.month
    )


@router.get("/reports/monthly/export")
async def export_monthly_report(
    year: Optional[int] = None,
    month: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Exports the monthly report as CSV containing:
    - Summary statistics
    - All expenses of the month
    - Category-wise and product-wise totals
    """
    today = date.today()
    report = load_monthly_report(
        db, current_user, year or today.year, month or today.month
    )
    filename = f"SpendWise_Report_{report.summary.month_year.replace(' ', '_')}.csv"

    return StreamingResponse(
        iter([report_to_csv(report)]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
