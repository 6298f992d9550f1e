"""Outbound email: spending-limit breaches and monthly reports."""
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from html import escape

from config import Config
from errors import NotificationDeliveryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Contact:
    email: str
    name: str


@dataclass(frozen=True)
class Notification:
    recipient_email: str
    recipient_name: str
    subject: str
    body: str


def build_breach_notification(contact: Contact, breach) -> Notification:
    """Render the "limit reached" email for one breached limit."""
    subject = f"Spending limit reached: {breach.limit_name}"
    body = f"""
        <h1>Spending limit reached</h1>
        <p>Hello {escape(contact.name)},</p>
        <p>You have reached your {escape(breach.period_type)} spending limit
        <strong>{escape(breach.limit_name)}</strong> for
        <strong>{escape(breach.category_name)}</strong>.</p>
        <table>
          <tr><td>Limit</td><td>${breach.limit_amount:.2f}</td></tr>
          <tr><td>Spent so far</td><td>${breach.total_spent:.2f}</td></tr>
          <tr><td>Used</td><td>{breach.percentage:.1f}%</td></tr>
        </table>
        <p>Best regards,<br/>SpendWise Team</p>
    """
    return Notification(
        recipient_email=contact.email,
        recipient_name=contact.name,
        subject=subject,
        body=body,
    )


def build_report_notification(contact: Contact, summary) -> Notification:
    subject = f"Your Monthly Expense Report - {summary.month_year}"
    body = f"""
        <h1>Monthly Expense Report</h1>
        <p>Hello {escape(contact.name)},</p>
        <p>Your expense report for {escape(summary.month_year)} is ready!</p>
        <p>You can find it in your SpendWise Reports section.</p>
        <p>Total expenses: {summary.expense_count}</p>
        <p>Total amount: ${summary.total_amount:.2f}</p>
        <p>Best regards,<br/>SpendWise Team</p>
    """
    return Notification(
        recipient_email=contact.email,
        recipient_name=contact.name,
        subject=subject,
        body=body,
    )


class SmtpNotifier:
    def __init__(
        self,
        host,
        port=587,
        username=None,
        password=None,
        use_tls=True,
        timeout=10.0,
        sender=Config.MAIL_FROM,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout
        self.sender = sender

    def send(self, notification: Notification):
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = f"{notification.recipient_name} <{notification.recipient_email}>"
        message["Subject"] = notification.subject
        message.set_content("This message requires an HTML capable mail client.")
        message.add_alternative(notification.body, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or "")
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationDeliveryError(
                f"Could not deliver mail to {notification.recipient_email}: {exc}"
            ) from exc
        logger.info("Sent '%s' to %s", notification.subject, notification.recipient_email)


class LogNotifier:
    """Used when no SMTP host is configured: messages are only logged."""

    def send(self, notification: Notification):
        logger.info(
            "Mail delivery disabled, would send '%s' to %s",
            notification.subject,
            notification.recipient_email,
        )


def get_notifier():
    if not Config.SMTP_HOST:
        return LogNotifier()
    return SmtpNotifier(
        host=Config.SMTP_HOST,
        port=Config.SMTP_PORT,
        username=Config.SMTP_USERNAME,
        password=Config.SMTP_PASSWORD,
        use_tls=Config.SMTP_USE_TLS,
        timeout=Config.SMTP_TIMEOUT_SECONDS,
    )
