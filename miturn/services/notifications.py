import asyncio
import logging
from typing import Any, Dict

from miturn.core.config import settings
from miturn.models.user import User
from miturn.services.email import EmailService, email_service

logger = logging.getLogger(__name__)

SUBJECTS = {
    "reminder_gentle": "Payment reminder for {circle_name} savings circle",
    "reminder_urgent": "URGENT: Payment reminder for {circle_name} savings circle",
    "reminder_overdue": "OVERDUE: Payment required for {circle_name} savings circle",
    "payout_received": "Payout received from {circle_name}!",
}

class NotificationService:
    """
    Delivers templated member notifications by email.

    ``send`` raises ``CollaboratorError`` on delivery failure; it never retries.
    """

    def __init__(self, email: EmailService | None = None):
        self.email = email or email_service

    async def send(self, recipient: User, template: str, data: Dict[str, Any]) -> None:
        context = {
            "project_name": "MiTurn",
            "name": recipient.display_name or "there",
            "dashboard_link": f"{settings.FRONTEND_URL}/dashboard",
            **data,
        }
        subject = SUBJECTS.get(template, "{project_name} update").format(**context)
        # smtplib blocks, keep it off the event loop
        await asyncio.to_thread(
            self.email.send_email,
            email_to=recipient.email,
            subject=subject,
            template_name=f"{template}.html",
            context=context,
        )
        logger.info(f"Notification {template} delivered to user {recipient.id}")

notification_service = NotificationService()
