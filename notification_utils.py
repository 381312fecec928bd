import logging
import os
import smtplib
from dataclasses import dataclass
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Mapping, Optional

SENDER_NAME = "VFS Notifier"


@dataclass
class EmailSettings:
    user: Optional[str]
    password: Optional[str]
    notify_email: Optional[str]
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EmailSettings":
        env = os.environ if environ is None else environ
        user = (env.get("EMAIL_USER") or "").strip() or None
        try:
            smtp_port = int(env.get("SMTP_PORT") or 587)
        except ValueError as exc:  # noqa: B904
            raise ValueError("SMTP_PORT must be an integer") from exc
        return cls(
            user=user,
            password=env.get("EMAIL_PASS") or None,
            notify_email=(env.get("NOTIFY_EMAIL") or "").strip() or user,
            smtp_server=(env.get("SMTP_SERVER") or "smtp.gmail.com").strip(),
            smtp_port=smtp_port,
        )

    def is_configured(self) -> bool:
        return bool(self.user and self.password)


def send_notification(settings: EmailSettings, subject: str, message: str) -> bool:
    if not settings.is_configured():
        logging.info("Email credentials not provided. Skipping email.")
        return False

    try:
        msg = MIMEText(message, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = formataddr((SENDER_NAME, settings.user))
        msg["To"] = settings.notify_email

        with smtplib.SMTP(settings.smtp_server, settings.smtp_port) as server:
            server.starttls()
            server.login(settings.user, settings.password)
            server.sendmail(settings.user, [settings.notify_email], msg.as_string())

        logging.info("Notification email sent to %s", settings.notify_email)
        return True
    except smtplib.SMTPAuthenticationError as exc:
        logging.error("SMTP authentication failed: %s", exc)
        guidance = "Please verify EMAIL_USER and EMAIL_PASS."
        if "gmail" in settings.smtp_server.lower():
            guidance += " For Gmail, use an App Password and enable 2FA."
        logging.error(guidance)
    except Exception as exc:  # noqa: BLE001
        logging.exception("Failed to send email notification: %s", exc)

    return False
