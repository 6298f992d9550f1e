from pydantic import BaseModel, Field, condecimal, constr
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

Amount = condecimal(gt=0, max_digits=12, decimal_places=2)
PeriodType = Literal["weekly", "monthly"]


class LimitCheckRequest(BaseModel):
    # both are optional here so a missing id is reported by the evaluator
    # as a validation error instead of a generic 422
    user_id: Optional[str] = None
    category_id: Optional[str] = None


class Breach(BaseModel):
    limit_id: str
    limit_name: str
    category_name: str
    total_spent: float
    limit_amount: float
    percentage: float
    period_type: str
    notified: bool = False


class LimitCheckResponse(BaseModel):
    limits_evaluated: int
    limits_skipped: int = 0
    breaches: list[Breach] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error: str


class CategoryCreate(BaseModel):
    name: constr(min_length=1, max_length=100)
    color: Optional[str] = None


class CategoryResponse(CategoryCreate):
    id: str

    class Config:
        from_attributes = True


class ProductCreate(BaseModel):
    name: constr(min_length=1, max_length=200)
    category_id: Optional[str] = None
    default_price: Optional[condecimal(ge=0, max_digits=12, decimal_places=2)] = None


class ProductResponse(BaseModel):
    id: str
    name: str
    category_id: Optional[str] = None
    default_price: Optional[float] = None

    class Config:
        from_attributes = True


class ExpenseProductLine(BaseModel):
    product_id: str
    quantity: condecimal(gt=0, max_digits=12, decimal_places=3) = Decimal("1")
    price_per_unit: condecimal(ge=0, max_digits=12, decimal_places=2)


class ExpenseProductResponse(BaseModel):
    product_id: str
    quantity: float
    price_per_unit: float

    class Config:
        from_attributes = True


class ExpenseCreate(BaseModel):
    category_id: str
    # derived from the product lines when omitted
    amount: Optional[Amount] = None
    expense_date: Optional[date] = None
    description: Optional[str] = None
    is_recurring: bool = False
    recurring_interval: Optional[str] = None
    products: list[ExpenseProductLine] = Field(default_factory=list)


class ExpenseUpdate(BaseModel):
    category_id: Optional[str] = None
    amount: Optional[Amount] = None
    expense_date: Optional[date] = None
    description: Optional[str] = None
    is_recurring: Optional[bool] = None
    recurring_interval: Optional[str] = None


class ExpenseResponse(BaseModel):
    id: str
    user_id: str
    category_id: str
    amount: float
    expense_date: date
    description: Optional[str] = None
    is_recurring: bool
    recurring_interval: Optional[str] = None
    next_occurrence: Optional[date] = None
    products: list[ExpenseProductResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class LimitCreate(BaseModel):
    category_id: str
    name: constr(min_length=1, max_length=200)
    amount: Amount
    period_type: PeriodType
    start_date: Optional[date] = None


class LimitUpdate(BaseModel):
    name: Optional[constr(min_length=1, max_length=200)] = None
    amount: Optional[Amount] = None
    period_type: Optional[PeriodType] = None
    start_date: Optional[date] = None


class LimitResponse(BaseModel):
    id: str
    user_id: str
    category_id: str
    name: str
    amount: float
    period_type: str
    start_date: date
    end_date: date

    class Config:
        from_attributes = True


class LimitStatus(LimitResponse):
    total_spent: float
    percentage: float


class BudgetCreate(BaseModel):
    category_id: str
    amount: Amount
    period_type: PeriodType = "monthly"
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class BudgetUpdate(BaseModel):
    amount: Optional[Amount] = None
    period_type: Optional[PeriodType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class BudgetResponse(BaseModel):
    id: str
    category_id: str
    category_name: Optional[str] = None
    amount: float
    period_type: str
    start_date: date
    end_date: date
    spent_amount: float = 0.0
    remaining_amount: float = 0.0

    class Config:
        from_attributes = True


class CategoryTrend(BaseModel):
    category_id: str
    category_name: str
    month: str
    total: float

    class Config:
        from_attributes = True


class AnalyticsSummary(BaseModel):
    month: str
    total_spent: float
    expense_count: int
    average_expense: float
    active_limits: int
    limits_reached: int


class ReportSummary(BaseModel):
    month_year: str
    expense_count: int
    total_amount: float
    average_expense: float
    recurring_count: int
    one_time_count: int
    first_date: date
    last_date: date


class ReportExpenseRow(BaseModel):
    expense_date: date
    description: str
    category: str
    products: str
    amount: float


class ReportCategoryTotal(BaseModel):
    category: str
    total_spent: float
    percentage: float


class ReportProductTotal(BaseModel):
    product: str
    quantity: float
    total_spent: float


class MonthlyReport(BaseModel):
    summary: ReportSummary
    expenses: list[ReportExpenseRow]
    by_category: list[ReportCategoryTotal]
    by_product: list[ReportProductTotal]


class ReportResponse(BaseModel):
    id: str
    report_number: int
    month_year: str
    expense_count: int
    total_amount: float
    created_at: datetime

    class Config:
        from_attributes = True
