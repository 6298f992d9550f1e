from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from database import get_db, Category, Limit, LimitNotification, User
from schemas import (
    ErrorResponse,
    LimitCheckRequest,
    LimitCheckResponse,
    LimitCreate,
    LimitResponse,
    LimitStatus,
    LimitUpdate,
)
from auth import get_current_user
from errors import DataIntegrityError
from evaluator import LimitEvaluator, build_evaluator, display_percentage, measure_limit
from periods import limit_period
from router import get_owned
from stores import SqlExpenseLedger
from datetime import date


limit_router = APIRouter()


def get_evaluator(db: Session = Depends(get_db)) -> LimitEvaluator:
    return build_evaluator(db)


@limit_router.post(
    "/limits/check",
    response_model=LimitCheckResponse,
    responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
def check_limits(
    request: LimitCheckRequest,
    evaluator: LimitEvaluator = Depends(get_evaluator),
    current_user: User = Depends(get_current_user),
):
    """
    Evaluates the active spending limits of one category right after an
    expense was recorded and notifies the owner of every breached limit.
    """
    if request.user_id and request.user_id != current_user.id:
        raise HTTPException(
            status_code=403, detail="Cannot check limits of another user"
        )
    return evaluator.evaluate(request.user_id, request.category_id)


@limit_router.post(
    "/limits", response_model=LimitResponse, status_code=status.HTTP_201_CREATED
)
async def create_limit(
    limit: LimitCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    get_owned(db, Category, limit.category_id, current_user, "Category")

    start_date, end_date = limit_period(
        limit.start_date or date.today(), limit.period_type
    )
    db_limit = Limit(
        user_id=current_user.id,
        category_id=limit.category_id,
        name=limit.name,
        amount=limit.amount,
        period_type=limit.period_type,
        start_date=start_date,
        end_date=end_date,
    )
    db.add(db_limit)
    db.commit()
    db.refresh(db_limit)
    return db_limit


@limit_router.get("/limits", response_model=list[LimitResponse])
async def get_limits(
    db: Session = Depends(get_db), current_user: User = Depends(get_current_user)
):
    return (
        db.query(Limit)
        .filter(Limit.user_id == current_user.id)
        .order_by(Limit.created_at.desc())
        .all()
    )


@limit_router.get("/limits/{limit_id}", response_model=LimitStatus)
async def get_limit(
    limit_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_limit = get_owned(db, Limit, limit_id, current_user, "Limit")
    try:
        total, percentage = measure_limit(SqlExpenseLedger(db), db_limit)
    except DataIntegrityError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return LimitStatus(
        **LimitResponse.model_validate(db_limit).model_dump(),
        total_spent=float(total),
        percentage=display_percentage(percentage),
    )


@limit_router.patch("/limits/{limit_id}", response_model=LimitResponse)
async def update_limit(
    limit_id: str,
    limit: LimitUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_limit = get_owned(db, Limit, limit_id, current_user, "Limit")
    changes = limit.model_dump(exclude_unset=True, exclude_none=True)

    if "name" in changes:
        db_limit.name = changes["name"]
    if "amount" in changes:
        db_limit.amount = changes["amount"]
    if "period_type" in changes or "start_date" in changes:
        db_limit.period_type = changes.get("period_type", db_limit.period_type)
        db_limit.start_date, db_limit.end_date = limit_period(
            changes.get("start_date", db_limit.start_date), db_limit.period_type
        )

    db.commit()
    db.refresh(db_limit)
    return db_limit


@limit_router.delete("/limits/{limit_id}")
async def delete_limit(
    limit_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    db_limit = get_owned(db, Limit, limit_id, current_user, "Limit")
    db.query(LimitNotification).filter(LimitNotification.limit_id == limit_id).delete()
    db.delete(db_limit)
    db.commit()
    return {"message": "Limit deleted successfully"}
