# src/notification/services.py
import logging
import smtplib
from email.mime.text import MIMEText

from fastapi import BackgroundTasks

from auth.models import User
from config import settings
from payment.models import Payment
from subscription.models import Subscription

logger = logging.getLogger(__name__)

SUBJECTS = {
    "purchase": "Your subscription is active",
    "renew": "Your subscription has been renewed",
    "upgrade": "Your plan has been upgraded",
}


def send_email(to_email: str, subject: str, body: str) -> bool:
    """Send a plain-text email. Failures are logged, never raised."""
    if not settings.SMTP_SERVER:
        logger.info(f"SMTP not configured, skipping email to {to_email}")
        return False
    try:
        msg = MIMEText(body)
        msg['Subject'] = subject
        msg['From'] = settings.FROM_EMAIL
        msg['To'] = to_email

        with smtplib.SMTP(settings.SMTP_SERVER, settings.SMTP_PORT) as server:
            server.starttls()
            if settings.SMTP_USERNAME:
                server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            server.sendmail(settings.FROM_EMAIL, to_email, msg.as_string())
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"SMTP error sending to {to_email}: {str(e)}", exc_info=True)
        return False
    logger.info(f"Email '{subject}' sent to {to_email}")
    return True


def build_payment_email(user: User, payment: Payment, subscription: Subscription):
    subject = SUBJECTS.get(payment.action, "Payment received")
    body = (
        f"Hi {user.name or user.email},\n\n"
        f"We received your payment of {payment.amount / 100:.2f} {payment.currency}.\n"
        f"Invoice: {payment.invoice_number}\n"
        f"Your subscription is active until {subscription.end_date.strftime('%Y-%m-%d')}.\n"
    )
    return subject, body


def schedule_payment_email(background_tasks: BackgroundTasks, user: User, payment: Payment, subscription: Subscription):
    """Queue the confirmation email to run after the response is sent."""
    subject, body = build_payment_email(user, payment, subscription)
    background_tasks.add_task(send_email, user.email, subject, body)
