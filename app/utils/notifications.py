"""
Notification Utilities
SMTP e-mail with Jinja2 templates and in-memory attachments
"""
from typing import Optional, List, Dict, Any, Tuple
from dataclasses import dataclass
import asyncio
import re
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.mime.application import MIMEApplication
import logging
from pathlib import Path
from jinja2 import Template
from fastapi import HTTPException, status

from app.core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"

# (filename, content, mime subtype)
Attachment = Tuple[str, bytes, str]


@dataclass
class EmailConfig:
    """Email server configuration"""
    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_password: str
    from_email: str
    from_name: str = "ADC Clinic Billing"
    use_tls: bool = True
    use_ssl: bool = False


class EmailNotifier:
    """
    Email notification service

    Example:
        notifier = EmailNotifier(EmailConfig(
            smtp_host="smtp.gmail.com",
            smtp_port=587,
            smtp_user="billing@clinic.ph",
            smtp_password="app-password",
            from_email="billing@clinic.ph",
        ))

        await notifier.send_template_email(
            to="patient@example.com",
            subject="Your invoice",
            template_name="invoice_email.html",
            context={"invoice": detail},
            attachments=[("invoice.pdf", pdf_bytes, "pdf")]
        )
    """

    def __init__(self, config: EmailConfig):
        self.config = config

    def _build_message(
        self,
        to: List[str],
        subject: str,
        body: str,
        html_body: Optional[str],
        attachments: Optional[List[Attachment]],
        reply_to: Optional[str]
    ) -> MIMEMultipart:
        msg = MIMEMultipart('mixed')
        msg['Subject'] = subject
        msg['From'] = f"{self.config.from_name} <{self.config.from_email}>"
        msg['To'] = ', '.join(to)
        if reply_to:
            msg['Reply-To'] = reply_to

        alternative = MIMEMultipart('alternative')
        alternative.attach(MIMEText(body, 'plain'))
        if html_body:
            alternative.attach(MIMEText(html_body, 'html'))
        msg.attach(alternative)

        for filename, content, subtype in attachments or []:
            part = MIMEApplication(content, _subtype=subtype)
            part.add_header('Content-Disposition', 'attachment', filename=filename)
            msg.attach(part)

        return msg

    def _deliver(self, msg: MIMEMultipart) -> None:
        if self.config.use_ssl:
            server = smtplib.SMTP_SSL(self.config.smtp_host, self.config.smtp_port)
        else:
            server = smtplib.SMTP(self.config.smtp_host, self.config.smtp_port)
            if self.config.use_tls:
                server.starttls()

        try:
            server.login(self.config.smtp_user, self.config.smtp_password)
            server.send_message(msg)
        finally:
            server.quit()

    async def send_email(
        self,
        to: str | List[str],
        subject: str,
        body: str,
        html_body: Optional[str] = None,
        attachments: Optional[List[Attachment]] = None,
        reply_to: Optional[str] = None
    ) -> bool:
        """
        Send an email

        smtplib is blocking, so delivery runs in a worker thread.

        Returns:
            True if sent successfully, False otherwise
        """
        recipients = [to] if isinstance(to, str) else list(to)
        msg = self._build_message(recipients, subject, body, html_body, attachments, reply_to)

        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {', '.join(recipients)}: {str(e)}")
            return False

        logger.info(f"Email sent successfully to {', '.join(recipients)}")
        return True

    @staticmethod
    def render_template(template_name: str, context: Dict[str, Any]) -> Tuple[str, str]:
        """Returns (plain_text, html) for a template under app/templates"""
        with open(TEMPLATE_DIR / template_name, 'r', encoding='utf-8') as f:
            template = Template(f.read())

        html_body = template.render(**context)
        body = re.sub(r'\n\s*\n+', '\n\n', re.sub('<[^<]+?>', '', html_body)).strip()
        return body, html_body

    async def send_template_email(
        self,
        to: str | List[str],
        subject: str,
        template_name: str,
        context: Dict[str, Any],
        **kwargs
    ) -> bool:
        body, html_body = self.render_template(template_name, context)
        return await self.send_email(to=to, subject=subject, body=body, html_body=html_body, **kwargs)


def get_email_notifier() -> EmailNotifier:
    """FastAPI dependency; 503 when SMTP is not configured"""
    if not settings.smtp_configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Email service is not configured"
        )
    return EmailNotifier(EmailConfig(
        smtp_host=settings.SMTP_HOST,
        smtp_port=settings.SMTP_PORT,
        smtp_user=settings.SMTP_USER,
        smtp_password=settings.SMTP_PASSWORD,
        from_email=settings.FROM_EMAIL or settings.SMTP_USER,
        from_name=settings.FROM_NAME,
        use_ssl=settings.SMTP_PORT == 465,
        use_tls=settings.SMTP_PORT != 465,
    ))
