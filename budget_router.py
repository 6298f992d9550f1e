from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from database import get_db, Budget, Category, User
from schemas import BudgetCreate, BudgetResponse, BudgetUpdate
from auth import get_current_user
from periods import limit_period
from router import get_owned
from stores import SqlExpenseLedger
from datetime import date
from decimal import Decimal


budget_router = APIRouter()


def budget_period(start_date, end_date, period_type):
    start_date = start_date or date.today()
    if end_date is None:
        return limit_period(start_date, period_type)
    if end_date < start_date:
        raise HTTPException(
            status_code=400, detail="end_date must not be before start_date"
        )
    return start_date, end_date


def with_spending(db: Session, budget: Budget) -> BudgetResponse:
    amounts = SqlExpenseLedger(db).amounts(
        budget.user_id, budget.category_id, budget.start_date, budget.end_date
    )
    spent = sum(amounts, Decimal("0"))
    return BudgetResponse(
        id=budget.id,
        category_id=budget.category_id,
        category_name=budget.category.name if budget.category else None,
        amount=float(budget.amount),
        period_type=budget.period_type,
        start_date=budget.start_date,
        end_date=budget.end_date,
        spent_amount=float(spent),
        remaining_amount=float(Decimal(budget.amount) - spent),
    )


@budget_router.post(
    "/budgets", response_model=BudgetResponse, status_code=status.HTTP_201_CREATED
)
async def create_budget(
    budget: BudgetCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    get_owned(db, Category, budget.category_id, current_user, "Category")
    start_date, end_date = budget_period(
        budget.start_date, budget.end_date, budget.period_type
    )
    db_budget = Budget(
        user_id=current_user.id,
        category_id=budget.category_id,
        amount=budget.amount,
        period_type=budget.period_type,
        start_date=start_date,
        end_date=end_date,
    )
    db.add(db_budget)
    db.commit()
    db.refresh(db_budget)
    return with_spending(db, db_budget)


@budget_router.get("/budgets", response_model=list[BudgetResponse])
async def get_budgets(
    db: Session = Depends(get_db), current_user: User = Depends(get_current_user)
):
    """
    Lists the user's budgets, newest first, each with the amount spent in its
    category between start_date and end_date and what remains of it.
    """
    budgets = (
        db.query(Budget)
        .filter(Budget.user_id == current_user.id)
        .order_by(Budget.created_at.desc())
        .all()
    )
    return [with_spending(db, budget) for budget in budgets]


@budget_router.get("/budgets/{budget_id}", response_model=BudgetResponse)
async def get_budget(
    budget_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return with_spending(db, get_owned(db, Budget, budget_id, current_user, "Budget"))


@budget_router.patch("/budgets/{budget_id}", response_model=BudgetResponse)
async def update_budget(
    budget_id: str,
    budget: BudgetUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_budget = get_owned(db, Budget, budget_id, current_user, "Budget")
    changes = budget.model_dump(exclude_unset=True, exclude_none=True)

    if "amount" in changes:
        db_budget.amount = changes["amount"]
    if changes.keys() & {"period_type", "start_date", "end_date"}:
        db_budget.period_type = changes.get("period_type", db_budget.period_type)
        db_budget.start_date, db_budget.end_date = budget_period(
            changes.get("start_date", db_budget.start_date),
            changes.get("end_date"),
            db_budget.period_type,
        )

    db.commit()
    db.refresh(db_budget)
    return with_spending(db, db_budget)


@budget_router.delete("/budgets/{budget_id}")
async def delete_budget(
    budget_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_budget = get_owned(db, Budget, budget_id, current_user, "Budget")
    db.delete(db_budget)
    db.commit()
    return {"message": "Budget deleted successfully"}
