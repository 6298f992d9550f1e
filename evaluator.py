"""Spending-limit evaluation.

After an expense is recorded for ``(user_id, category_id)`` the evaluator
re-aggregates spend for every active limit on that pair and hands one
notification per breached limit to the notifier.

Only :class:`TriggerValidationError` and :class:`DependencyReadError` escape
:meth:`LimitEvaluator.evaluate`. Everything else (a corrupt limit, a missing
user or category, a failed delivery) only affects the limit it concerns.
"""
import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy.orm import Session

from config import Config
from errors import (
    DataIntegrityError,
    NotificationDeliveryError,
    RecordLookupError,
    TriggerValidationError,
)
from notifier import build_breach_notification, get_notifier
from schemas import Breach, LimitCheckResponse
from stores import SqlDirectory, SqlExpenseLedger, SqlLimitRegistry, SqlNotificationLog

logger = logging.getLogger(__name__)

UNKNOWN_CATEGORY = "Unknown Category"
NOTIFY_POLICIES = ("every", "once")


def measure_limit(ledger, limit):
    """Return ``(total_spent, percentage)`` for one limit over its whole period."""
    amount = Decimal(limit.amount)
    if amount <= 0:
        raise DataIntegrityError(f"Limit {limit.id} has non-positive amount {amount}")
    amounts = ledger.amounts(
        limit.user_id, limit.category_id, limit.start_date, limit.end_date
    )
    total = sum(amounts, Decimal("0"))
    return total, total / amount * 100


def display_percentage(percentage: Decimal) -> float:
    return float(percentage.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


class LimitEvaluator:
    """Breach detection for one (user, category) pair.

    :param registry: ``active_limits(user_id, category_id, today)``
    :param ledger: ``amounts(user_id, category_id, start, end)``
    :param directory: ``contact(user_id)`` and ``category_name(category_id)``
    :param notifier: ``send(notification)``
    :param notification_log: optional ``claim(limit)``/``release(limit)``;
        when given, a limit period is only notified on the transition
        into breach.
    :param today: callable returning the evaluation date
    """

    def __init__(
        self,
        registry,
        ledger,
        directory,
        notifier,
        notification_log=None,
        today=date.today,
    ):
        self.registry = registry
        self.ledger = ledger
        self.directory = directory
        self.notifier = notifier
        self.notification_log = notification_log
        self.today = today

    def evaluate(self, user_id, category_id) -> LimitCheckResponse:
        user_id, category_id = self._validate(user_id, category_id)
        today = self.today()

        limits = self.registry.active_limits(user_id, category_id, today)
        if not limits:
            logger.info(
                "No active limits for user %s in category %s", user_id, category_id
            )
            return LimitCheckResponse(limits_evaluated=0)

        logger.info(
            "Checking %d active limit(s) for user %s in category %s",
            len(limits),
            user_id,
            category_id,
        )
        breaches = []
        skipped = 0
        for limit in limits:
            try:
                total, percentage = measure_limit(self.ledger, limit)
            except DataIntegrityError as exc:
                logger.error("Skipping limit %s: %s", limit.id, exc)
                skipped += 1
                continue

            logger.info(
                "Limit %s (%s): %.2f/%.2f (%.1f%%)",
                limit.id,
                limit.name,
                total,
                Decimal(limit.amount),
                percentage,
            )
            if percentage < 100:
                if self.notification_log is not None:
                    self.notification_log.release(limit)
                continue

            logger.warning("Limit %s (%s) reached", limit.id, limit.name)
            breaches.append(self._handle_breach(limit, total, percentage))

        return LimitCheckResponse(
            limits_evaluated=len(limits), limits_skipped=skipped, breaches=breaches
        )

    @staticmethod
    def _validate(user_id, category_id):
        missing = [
            name
            for name, value in (("user_id", user_id), ("category_id", category_id))
            if not isinstance(value, str) or not value.strip()
        ]
        if missing:
            raise TriggerValidationError(f"{' and '.join(missing)} required")
        return user_id.strip(), category_id.strip()

    def _handle_breach(self, limit, total, percentage) -> Breach:
        category_name = UNKNOWN_CATEGORY
        contact = None
        try:
            category_name = self.directory.category_name(limit.category_id)
            contact = self.directory.contact(limit.user_id)
        except RecordLookupError as exc:
            logger.error("Not notifying for limit %s: %s", limit.id, exc)

        breach = Breach(
            limit_id=str(limit.id),
            limit_name=limit.name,
            category_name=category_name,
            total_spent=float(total),
            limit_amount=float(limit.amount),
            percentage=display_percentage(percentage),
            period_type=limit.period_type,
        )
        if contact is not None:
            breach.notified = self._notify(limit, contact, breach)
        return breach

    def _notify(self, limit, contact, breach) -> bool:
        if self.notification_log is not None and not self.notification_log.claim(limit):
            logger.info(
                "Limit %s already notified for %s..%s",
                limit.id,
                limit.start_date,
                limit.end_date,
            )
            return False
        try:
            self.notifier.send(build_breach_notification(contact, breach))
        except NotificationDeliveryError:
            logger.exception("Failed to notify %s about limit %s", contact.email, limit.id)
            if self.notification_log is not None:
                self.notification_log.release(limit)
            return False
        return True


def build_evaluator(db: Session, notifier=None, policy=None) -> LimitEvaluator:
    """Wire an evaluator to the database session ``db``."""
    policy = policy or Config.LIMIT_NOTIFY_POLICY
    if policy not in NOTIFY_POLICIES:
        raise ValueError(f"LIMIT_NOTIFY_POLICY must be one of {NOTIFY_POLICIES}")
    return LimitEvaluator(
        registry=SqlLimitRegistry(db),
        ledger=SqlExpenseLedger(db),
        directory=SqlDirectory(db),
        notifier=notifier if notifier is not None else get_notifier(),
        notification_log=SqlNotificationLog(db) if policy == "once" else None,
    )
