"""
Email Service
Plain SMTP with STARTTLS; without an SMTP password mails are only logged
"""
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional
import logging
import smtplib
import ssl

from eqms.core.config import settings

logger = logging.getLogger(__name__)


class EmailService:
    @staticmethod
    def send_email(
        recipients: List[str], subject: str, body: str, html_body: Optional[str] = None
    ) -> bool:
        if not settings.SMTP_PASSWORD:
            logger.info(f"Email would be sent to {recipients}: {subject}")
            return True

        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = subject
            msg["From"] = f"{settings.SMTP_FROM_NAME} <{settings.SMTP_USER}>"
            msg["To"] = ", ".join(recipients)

            msg.attach(MIMEText(body, "plain"))
            if html_body:
                msg.attach(MIMEText(html_body, "html"))

            context = ssl.create_default_context()
            with smtplib.SMTP(settings.SMTP_SERVER, settings.SMTP_PORT, timeout=30) as server:
                if settings.SMTP_USE_TLS:
                    server.starttls(context=context)
                server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
                server.sendmail(settings.SMTP_USER, recipients, msg.as_string())

            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {recipients}: {e}")
            return False

    @staticmethod
    def send_otp(email: str, code: str) -> bool:
        minutes = settings.OTP_TTL_SECONDS // 60
        body = (
            f"Your verification code is {code}.\n"
            f"It expires in {minutes} minutes. If you did not request it, ignore this email."
        )
        html_body = (
            f"<p>Your verification code is <strong>{code}</strong>.</p>"
            f"<p>It expires in {minutes} minutes.</p>"
        )
        return EmailService.send_email([email], f"{settings.APP_NAME} verification code", body, html_body)
