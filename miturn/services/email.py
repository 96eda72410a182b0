from typing import Any, Dict
from jinja2 import Environment, FileSystemLoader
from pathlib import Path
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from miturn.core.config import settings
from miturn.core.exceptions import CollaboratorError
import logging

logger = logging.getLogger(__name__)

class EmailService:
    def __init__(self):
        self.template_dir = Path(__file__).resolve().parent.parent / "email-templates" / "src"
        self.env = Environment(loader=FileSystemLoader(str(self.template_dir)), autoescape=True)

    def render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        template = self.env.get_template(template_name)
        return template.render(**context)

    def send_email(
        self,
        *,
        email_to: str,
        subject: str,
        template_name: str,
        context: Dict[str, Any] | None = None,
    ) -> None:
        """
        Render ``template_name`` and deliver it over SMTP.

        Delivery is attempted once; any SMTP or socket failure is raised as
        ``CollaboratorError`` for the caller to record.
        """
        if not settings.EMAILS_FROM_EMAIL or not settings.SMTP_HOST:
            raise CollaboratorError("Email delivery is not configured", template=template_name)

        html_content = self.render_template(template_name, context or {})

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{settings.EMAILS_FROM_NAME} <{settings.EMAILS_FROM_EMAIL}>"
        msg["To"] = email_to
        msg.attach(MIMEText(html_content, "html"))

        try:
            logger.info(f"Connecting to SMTP server: {settings.SMTP_HOST}:{settings.SMTP_PORT}")
            with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=60) as server:
                server.ehlo()
                if settings.SMTP_TLS:
                    server.starttls()
                    server.ehlo()
                if settings.SMTP_USER and settings.SMTP_PASSWORD:
                    server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
                server.sendmail(settings.EMAILS_FROM_EMAIL, [email_to], msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send {template_name} to {email_to}: {e}")
            raise CollaboratorError(f"Email delivery failed: {e}", template=template_name) from e

        logger.info(f"Email sent to {email_to} with type: {template_name}")

email_service = EmailService()
