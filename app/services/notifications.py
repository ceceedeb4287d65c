"""Outbound account notifications (verification codes and security notices)."""

from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Protocol
import logging
import smtplib
import ssl

from app.core.config import Settings

logger = logging.getLogger(__name__)


CODE_SUBJECTS = {
    "email_verify": "Verify your email address",
    "mfa_sign_in": "Your sign-in verification code",
    "mfa_enable": "Confirm two-factor authentication",
    "password_reset": "Reset your password",
}


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class NotificationSender(Protocol):
    def send_verification_code(self, email: str, code: str, code_type: str) -> bool:
        ...

    def send_recovery_codes_generated(self, email: str) -> bool:
        ...

    def send_recovery_code_used(self, email: str, ip_address: Optional[str], user_agent: Optional[str]) -> bool:
        ...

    def send_password_changed(self, email: str) -> bool:
        ...


def _code_body(code: str, code_type: str) -> str:
    if code_type == "password_reset":
        return (
            f"Use the code {code} to reset your password.\n\n"
            "It expires in 5 minutes. If you did not request a password reset, "
            "please secure your account."
        )
    return (
        f"Your verification code is {code}.\n\n"
        "It expires in 5 minutes. If you did not request this code, "
        "you can ignore this email."
    )


class LoggingNotificationSender:
    """Development sender: logs the message instead of delivering it."""

    def _deliver(self, email: str, subject: str, body: str) -> bool:
        logger.info(f"[email dev mode] to={redact_email(email)} subject={subject!r} body={body[:200]!r}")
        return True

    def send_verification_code(self, email: str, code: str, code_type: str) -> bool:
        subject = CODE_SUBJECTS.get(code_type, "Your verification code")
        return self._deliver(email, subject, _code_body(code, code_type))

    def send_recovery_codes_generated(self, email: str) -> bool:
        return self._deliver(
            email,
            "New recovery codes generated",
            "New MFA recovery codes were generated for your account. "
            "Any previously generated codes no longer work.",
        )

    def send_recovery_code_used(self, email: str, ip_address: Optional[str], user_agent: Optional[str]) -> bool:
        return self._deliver(
            email,
            "A recovery code was used",
            f"A recovery code was used to sign in to your account from {ip_address or 'an unknown address'} "
            f"({user_agent or 'unknown device'}). If this wasn't you, change your password immediately.",
        )

    def send_password_changed(self, email: str) -> bool:
        return self._deliver(
            email,
            "Your password was changed",
            "The password for your account was changed and all devices were signed out.",
        )


class SMTPNotificationSender(LoggingNotificationSender):
    """Sends notifications over SMTP (STARTTLS or implicit TLS)."""

    def __init__(
        self,
        *,
        smtp_host: str,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Ecommerce",
        timeout: int = 30,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.timeout = timeout

    def _deliver(self, email: str, subject: str, body: str) -> bool:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = email
        msg.attach(MIMEText(body, "plain"))

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, email, msg.as_string())
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed for {self.smtp_user}: {e}")
            return False
        except (smtplib.SMTPException, ssl.SSLError, OSError) as e:
            logger.error(f"Failed to send email to {redact_email(email)}: {type(e).__name__}: {e}")
            return False

        logger.info(f"Email sent to {redact_email(email)}: {subject}")
        return True


def build_notification_sender(settings: Settings) -> NotificationSender:
    """SMTP sender when SMTP_HOST is configured, otherwise the logging sender."""
    if settings.SMTP_HOST:
        return SMTPNotificationSender(
            smtp_host=settings.SMTP_HOST,
            smtp_port=settings.SMTP_PORT,
            smtp_user=settings.SMTP_USER,
            smtp_password=settings.SMTP_PASSWORD,
            smtp_use_tls=settings.SMTP_USE_TLS,
            from_email=settings.EMAIL_FROM,
            from_name=settings.EMAIL_FROM_NAME,
        )
    return LoggingNotificationSender()
