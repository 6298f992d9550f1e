"""Background work: the limit-check outbox, recurring expenses, limit periods
and monthly reports.

Every job opens its own session from ``session_factory`` so it can run from
the APScheduler thread pool or from a FastAPI background task.
"""
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from config import Config
from database import (
    SessionLocal,
    Expense,
    ExpenseProduct,
    Limit,
    LimitCheck,
    Report,
)
from errors import (
    DependencyReadError,
    NotificationDeliveryError,
    RecordLookupError,
    TriggerValidationError,
)
from evaluator import build_evaluator
from notifier import build_report_notification, get_notifier
from periods import month_bounds, next_occurrence, period_containing
from reports import build_monthly_report
from stores import SqlDirectory

logger = logging.getLogger(__name__)


def enqueue_limit_check(db, expense):
    """Queue a limit evaluation for ``expense`` in the caller's transaction."""
    db.flush()
    check = LimitCheck(
        user_id=expense.user_id,
        category_id=expense.category_id,
        expense_id=expense.id,
    )
    db.add(check)
    return check


def drain_limit_checks(session_factory=SessionLocal, notifier=None, batch_size=100):
    """Run pending limit checks. Returns how many were completed.

    A check is retried on dependency read errors until
    ``LIMIT_CHECK_MAX_ATTEMPTS``; validation errors are final.
    """
    completed = 0
    with session_factory() as db:
        pending_ids = [
            row.id
            for row in db.query(LimitCheck.id)
            .filter(
                LimitCheck.processed_at.is_(None),
                LimitCheck.attempts < Config.LIMIT_CHECK_MAX_ATTEMPTS,
            )
            .order_by(LimitCheck.id)
            .limit(batch_size)
            .all()
        ]
        if not pending_ids:
            return 0

        evaluator = build_evaluator(db, notifier=notifier)
        for check_id in pending_ids:
            if _run_check(db, evaluator, check_id):
                completed += 1
    logger.info("Processed %d of %d pending limit check(s)", completed, len(pending_ids))
    return completed


def _run_check(db, evaluator, check_id):
    # Claiming marks the row processed; a retryable failure clears it again.
    claimed = (
        db.query(LimitCheck)
        .filter(LimitCheck.id == check_id, LimitCheck.processed_at.is_(None))
        .update(
            {
                LimitCheck.processed_at: datetime.utcnow(),
                LimitCheck.attempts: LimitCheck.attempts + 1,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    if not claimed:
        logger.info("Limit check %s was already taken by another drain", check_id)
        return False

    check = db.get(LimitCheck, check_id)
    done = False
    try:
        result = evaluator.evaluate(check.user_id, check.category_id)
    except TriggerValidationError as exc:
        logger.error("Dropping limit check %s: %s", check_id, exc)
        check.last_error = str(exc)
    except DependencyReadError as exc:
        logger.error("Limit check %s failed, will retry: %s", check_id, exc)
        db.rollback()
        check = db.get(LimitCheck, check_id)
        check.processed_at = None
        check.last_error = str(exc)
    else:
        logger.info(
            "Limit check %s: %d limit(s) evaluated, %d breached",
            check_id,
            result.limits_evaluated,
            len(result.breaches),
        )
        check.last_error = None
        done = True
    db.commit()
    return done


def process_recurring_expenses(session_factory=SessionLocal, today=None):
    """Materialize every recurring expense that is due.

    The copy is dated today and is not recurring itself; the template's
    ``next_occurrence`` moves forward by one interval.
    """
    today = today or date.today()
    processed = 0
    with session_factory() as db:
        due_ids = [
            row.id
            for row in db.query(Expense.id).filter(
                Expense.is_recurring.is_(True), Expense.next_occurrence <= today
            )
        ]
        for expense_id in due_ids:
            expense = db.get(Expense, expense_id)
            try:
                instance = Expense(
                    user_id=expense.user_id,
                    category_id=expense.category_id,
                    amount=expense.amount,
                    expense_date=today,
                    description=expense.description,
                    is_recurring=False,
                )
                instance.products = [
                    ExpenseProduct(
                        product_id=line.product_id,
                        quantity=line.quantity,
                        price_per_unit=line.price_per_unit,
                    )
                    for line in expense.products
                ]
                db.add(instance)
                expense.next_occurrence = next_occurrence(
                    expense.next_occurrence, expense.recurring_interval
                )
                enqueue_limit_check(db, instance)
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Could not create recurring expense from %s", expense_id)
            else:
                processed += 1
    logger.info("Processed %d recurring expense(s)", processed)
    return processed


def roll_limit_periods(session_factory=SessionLocal, today=None):
    """Move every limit whose period has ended to the period containing today.

    The new period starts the day after the old ``end_date``, so consecutive
    periods never share a day.
    """
    today = today or date.today()
    rolled = 0
    with session_factory() as db:
        for limit in db.query(Limit).filter(Limit.end_date < today).all():
            try:
                limit.start_date, limit.end_date = period_containing(
                    limit.end_date + timedelta(days=1), limit.period_type, today
                )
            except ValueError as exc:
                logger.error("Cannot roll limit %s: %s", limit.id, exc)
                continue
            rolled += 1
        db.commit()
    logger.info("Rolled %d limit period(s)", rolled)
    return rolled


def generate_monthly_reports(session_factory=SessionLocal, notifier=None, today=None):
    """Store and mail last month's report for every user with expenses in it.

    Reports are numbered per user. A user who already has a report for the
    month is skipped. A report that cannot be mailed stays stored.
    """
    today = today or date.today()
    last_month = today.replace(day=1) - timedelta(days=1)
    start, end = month_bounds(last_month.year, last_month.month)
    month_year = start.strftime("%B %Y")
    notifier = notifier or get_notifier()
    generated = 0
    with session_factory() as db:
        directory = SqlDirectory(db)
        user_ids = [
            row.user_id
            for row in db.query(Expense.user_id)
            .filter(Expense.expense_date >= start, Expense.expense_date <= end)
            .distinct()
        ]
        for user_id in user_ids:
            try:
                exists = (
                    db.query(Report.id)
                    .filter(Report.user_id == user_id, Report.month_year == month_year)
                    .first()
                )
                if exists:
                    logger.info("Report for %s already exists for user %s", month_year, user_id)
                    continue
                expenses = (
                    db.query(Expense)
                    .filter(
                        Expense.user_id == user_id,
                        Expense.expense_date >= start,
                        Expense.expense_date <= end,
                    )
                    .order_by(Expense.expense_date.desc())
                    .all()
                )
                report = build_monthly_report(expenses, month_year)
                last_number = (
                    db.query(func.max(Report.report_number))
                    .filter(Report.user_id == user_id)
                    .scalar()
                )
                db.add(
                    Report(
                        user_id=user_id,
                        report_number=(last_number or 0) + 1,
                        month_year=month_year,
                        expense_count=len(expenses),
                        total_amount=sum(
                            (Decimal(e.amount) for e in expenses), Decimal("0")
                        ),
                    )
                )
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Could not generate report for user %s", user_id)
                continue
            generated += 1

            try:
                contact = directory.contact(user_id)
                notifier.send(build_report_notification(contact, report.summary))
            except (RecordLookupError, NotificationDeliveryError) as exc:
                logger.error("Report for user %s was stored but not sent: %s", user_id, exc)
    logger.info("Generated %d monthly report(s) for %s", generated, month_year)
    return generated


def create_scheduler():
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        drain_limit_checks,
        "interval",
        seconds=Config.LIMIT_CHECK_INTERVAL_SECONDS,
        id="drain_limit_checks",
        max_instances=1,
        coalesce=True,
    )
    # daily, shortly after midnight
    scheduler.add_job(roll_limit_periods, "cron", hour=0, minute=0, id="roll_limit_periods")
    scheduler.add_job(
        process_recurring_expenses, "cron", hour=0, minute=5, id="process_recurring_expenses"
    )
    scheduler.add_job(
        generate_monthly_reports,
        "cron",
        day=1,
        hour=1,
        id="generate_monthly_reports",
    )
    return scheduler
