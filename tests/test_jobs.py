from datetime import date
from decimal import Decimal

import jobs
from database import (
    Category,
    Expense,
    ExpenseProduct,
    Limit,
    LimitCheck,
    LimitNotification,
    Product,
    Report,
    SessionLocal,
    User,
)
from errors import DependencyReadError
from evaluator import LimitEvaluator, build_evaluator

from conftest import RecordingNotifier


def seed(db, limit_amount="100", start=None, end=None):
    today = date.today()
    db.add(User(id="user-1", email="ada@example.com", full_name="Ada"))
    db.add(Category(id="cat-1", user_id="user-1", name="Groceries"))
    db.add(
        Limit(
            id="limit-1",
            user_id="user-1",
            category_id="cat-1",
            name="Groceries cap",
            amount=Decimal(limit_amount),
            period_type="monthly",
            start_date=start or today.replace(day=1),
            end_date=end or date(today.year + 1, 1, 1),
        )
    )
    db.commit()


def add_expense(db, amount, day=None, **fields):
    expense = Expense(
        user_id="user-1",
        category_id="cat-1",
        amount=Decimal(amount),
        expense_date=day or date.today(),
        **fields,
    )
    db.add(expense)
    jobs.enqueue_limit_check(db, expense)
    db.commit()
    return expense


def test_drain_processes_pending_checks(db):
    seed(db)
    add_expense(db, "150")
    notifier = RecordingNotifier()

    assert jobs.drain_limit_checks(notifier=notifier) == 1
    assert len(notifier.sent) == 1

    check = db.query(LimitCheck).one()
    db.refresh(check)
    assert check.processed_at is not None
    assert check.attempts == 1
    assert jobs.drain_limit_checks(notifier=notifier) == 0


def test_drain_retries_dependency_failures_until_max_attempts(db, monkeypatch):
    class FailingRegistry:
        def active_limits(self, user_id, category_id, today):
            raise DependencyReadError("database is locked")

    monkeypatch.setattr(
        jobs,
        "build_evaluator",
        lambda db, notifier=None: LimitEvaluator(FailingRegistry(), None, None, None),
    )
    monkeypatch.setattr(jobs.Config, "LIMIT_CHECK_MAX_ATTEMPTS", 2)
    seed(db)
    add_expense(db, "10")

    assert jobs.drain_limit_checks() == 0
    assert jobs.drain_limit_checks() == 0

    check = db.query(LimitCheck).one()
    db.refresh(check)
    assert check.attempts == 2
    assert check.processed_at is None
    assert check.last_error == "database is locked"

    # exhausted, no longer picked up
    assert jobs.drain_limit_checks() == 0
    db.refresh(check)
    assert check.attempts == 2


def test_drain_drops_invalid_checks(db):
    db.add(LimitCheck(user_id="", category_id="cat-1"))
    db.commit()

    assert jobs.drain_limit_checks(notifier=RecordingNotifier()) == 0

    check = db.query(LimitCheck).one()
    db.refresh(check)
    assert check.processed_at is not None
    assert "user_id" in check.last_error


def test_once_policy_claims_breach_in_database(db):
    seed(db)
    add_expense(db, "150")
    notifier = RecordingNotifier()

    with SessionLocal() as session:
        evaluator = build_evaluator(session, notifier=notifier, policy="once")
        first = evaluator.evaluate("user-1", "cat-1")
        second = evaluator.evaluate("user-1", "cat-1")

    assert first.breaches[0].notified is True
    assert second.breaches[0].notified is False
    assert len(notifier.sent) == 1
    assert db.query(LimitNotification).count() == 1


def test_once_policy_releases_claim_when_back_under_limit(db):
    seed(db)
    expense = add_expense(db, "150")
    notifier = RecordingNotifier()

    with SessionLocal() as session:
        build_evaluator(session, notifier=notifier, policy="once").evaluate("user-1", "cat-1")

    db.delete(db.get(Expense, expense.id))
    db.commit()
    with SessionLocal() as session:
        result = build_evaluator(session, notifier=notifier, policy="once").evaluate(
            "user-1", "cat-1"
        )

    assert result.breaches == []
    assert db.query(LimitNotification).count() == 0


def test_process_recurring_expenses_copies_due_expense(db):
    seed(db, limit_amount="1000")
    db.add(Product(id="prod-1", user_id="user-1", name="Milk"))
    template = Expense(
        user_id="user-1",
        category_id="cat-1",
        amount=Decimal("9.00"),
        expense_date=date(2024, 1, 10),
        description="Milk subscription",
        is_recurring=True,
        recurring_interval="weekly",
        next_occurrence=date(2024, 1, 17),
    )
    template.products = [
        ExpenseProduct(product_id="prod-1", quantity=Decimal("3"), price_per_unit=Decimal("3.00"))
    ]
    db.add(template)
    db.commit()

    processed = jobs.process_recurring_expenses(today=date(2024, 1, 17))

    assert processed == 1
    db.expire_all()
    copies = db.query(Expense).filter(Expense.is_recurring.is_(False)).all()
    assert len(copies) == 1
    copy = copies[0]
    assert copy.expense_date == date(2024, 1, 17)
    assert copy.amount == Decimal("9.00")
    assert copy.description == "Milk subscription"
    assert [line.product_id for line in copy.products] == ["prod-1"]
    assert db.get(Expense, template.id).next_occurrence == date(2024, 1, 24)
    assert db.query(LimitCheck).filter(LimitCheck.expense_id == copy.id).count() == 1


def test_process_recurring_expenses_skips_future_occurrences(db):
    seed(db)
    add_expense(
        db,
        "20",
        is_recurring=True,
        recurring_interval="monthly",
        next_occurrence=date(2024, 2, 1),
    )

    assert jobs.process_recurring_expenses(today=date(2024, 1, 31)) == 0


def test_roll_limit_periods_moves_expired_limits(db):
    seed(db, start=date(2024, 1, 1), end=date(2024, 1, 31))

    assert jobs.roll_limit_periods(today=date(2024, 3, 15)) == 1

    db.expire_all()
    limit = db.get(Limit, "limit-1")
    assert (limit.start_date, limit.end_date) == (date(2024, 3, 1), date(2024, 3, 31))
    assert jobs.roll_limit_periods(today=date(2024, 3, 15)) == 0


def test_roll_limit_periods_twice_keeps_periods_apart(db):
    seed(db, start=date(2024, 1, 31), end=date(2024, 2, 28))

    assert jobs.roll_limit_periods(today=date(2024, 3, 1)) == 1
    db.expire_all()
    limit = db.get(Limit, "limit-1")
    first = (limit.start_date, limit.end_date)

    assert jobs.roll_limit_periods(today=date(2024, 3, 31)) == 1
    db.expire_all()
    limit = db.get(Limit, "limit-1")
    second = (limit.start_date, limit.end_date)

    assert first == (date(2024, 2, 29), date(2024, 3, 28))
    assert second == (date(2024, 3, 29), date(2024, 4, 28))
    assert second[0] > first[1]


def test_check_taken_by_another_drain_is_not_run_again(db):
    seed(db)
    add_expense(db, "150")
    notifier = RecordingNotifier()

    with SessionLocal() as session:
        pending_ids = [row.id for row in session.query(LimitCheck.id)]
        assert jobs.drain_limit_checks(notifier=notifier) == 1

        evaluator = build_evaluator(session, notifier=notifier)
        assert jobs._run_check(session, evaluator, pending_ids[0]) is False

    assert len(notifier.sent) == 1
    check = db.query(LimitCheck).one()
    db.refresh(check)
    assert check.attempts == 1


def test_generate_monthly_reports_stores_and_mails_last_month(db):
    seed(db)
    db.add(User(id="user-2", email=None, full_name="No Mail"))
    add_expense(db, "30", day=date(2024, 2, 10))
    add_expense(db, "20.50", day=date(2024, 2, 29))
    add_expense(db, "99", day=date(2024, 3, 1))
    db.add(
        Expense(
            user_id="user-2",
            category_id="cat-1",
            amount=Decimal("5"),
            expense_date=date(2024, 2, 3),
        )
    )
    db.commit()
    notifier = RecordingNotifier()

    assert jobs.generate_monthly_reports(notifier=notifier, today=date(2024, 3, 1)) == 2

    report = db.query(Report).filter(Report.user_id == "user-1").one()
    assert (report.report_number, report.month_year) == (1, "February 2024")
    assert report.expense_count == 2
    assert report.total_amount == Decimal("50.50")
    assert db.query(Report).filter(Report.user_id == "user-2").count() == 1

    # user-2 has no address, so only one mail goes out
    assert len(notifier.sent) == 1
    assert notifier.sent[0].recipient_email == "ada@example.com"
    assert notifier.sent[0].subject == "Your Monthly Expense Report - February 2024"
    assert "$50.50" in notifier.sent[0].body


def test_generate_monthly_reports_numbers_reports_and_skips_repeats(db):
    seed(db)
    add_expense(db, "10", day=date(2024, 2, 10))
    add_expense(db, "15", day=date(2024, 3, 10))
    notifier = RecordingNotifier()

    assert jobs.generate_monthly_reports(notifier=notifier, today=date(2024, 3, 1)) == 1
    assert jobs.generate_monthly_reports(notifier=notifier, today=date(2024, 3, 2)) == 0
    assert jobs.generate_monthly_reports(notifier=notifier, today=date(2024, 4, 1)) == 1

    reports = db.query(Report).order_by(Report.report_number).all()
    assert [(r.report_number, r.month_year) for r in reports] == [
        (1, "February 2024"),
        (2, "March 2024"),
    ]
    assert len(notifier.sent) == 2


def test_report_stays_stored_when_mail_fails(db):
    seed(db)
    add_expense(db, "10", day=date(2024, 2, 10))
    notifier = RecordingNotifier(fail_for=("February 2024",))

    assert jobs.generate_monthly_reports(notifier=notifier, today=date(2024, 3, 1)) == 1
    assert db.query(Report).count() == 1
    assert notifier.sent == []


def test_scheduler_registers_jobs():
    scheduler = jobs.create_scheduler()
    assert {job.id for job in scheduler.get_jobs()} == {
        "drain_limit_checks",
        "roll_limit_periods",
        "process_recurring_expenses",
        "generate_monthly_reports",
    }
