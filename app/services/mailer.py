"""Outgoing email: SMTP (Gmail or custom host) or a log-only backend for development."""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from urllib.parse import urlencode

from app.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

GMAIL_SMTP_HOST = "smtp.gmail.com"
GMAIL_SMTP_PORT = 587

CONFIRMATION_SUBJECT = "Confirm Your Email - Business Inventory"
PASSWORD_RESET_SUBJECT = "Reset Your Password - Business Inventory"


class Mailer:
    """
    Sends one message per call; send() returns True when handed to the transport.

    Backend selection: EMAIL_SERVICE=gmail uses Gmail SMTP; otherwise SMTP_HOST
    (if set) is used; with neither, messages are only logged.
    """

    def __init__(self, settings: Settings) -> None:
        self.from_email = settings.EMAIL_FROM
        self.username = settings.EMAIL_USER
        self.password = (
            settings.EMAIL_PASSWORD.get_secret_value() if settings.EMAIL_PASSWORD else None
        )
        self.timeout = settings.SMTP_TIMEOUT_SEC
        self.use_ssl = False
        if settings.EMAIL_SERVICE == "gmail":
            self.backend = "smtp"
            self.host: str | None = GMAIL_SMTP_HOST
            self.port = GMAIL_SMTP_PORT
        elif settings.SMTP_HOST:
            self.backend = "smtp"
            self.host = settings.SMTP_HOST
            self.port = settings.SMTP_PORT
            # SMTP_SECURE means implicit TLS (port 465); otherwise STARTTLS is attempted.
            self.use_ssl = settings.SMTP_SECURE
        else:
            if settings.EMAIL_SERVICE == "smtp":
                logger.warning("EMAIL_SERVICE=smtp but SMTP_HOST is not set; logging emails only")
            self.backend = "log"
            self.host = None
            self.port = settings.SMTP_PORT

    def _build_message(
        self, to: str, subject: str, html: str | None, text: str | None
    ) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["From"] = self.from_email
        msg["To"] = to
        msg["Subject"] = subject
        if text:
            msg.attach(MIMEText(text, "plain", "utf-8"))
        if html:
            msg.attach(MIMEText(html, "html", "utf-8"))
        return msg

    def _deliver_smtp(self, msg: MIMEMultipart) -> None:
        smtp_cls = smtplib.SMTP_SSL if self.use_ssl else smtplib.SMTP
        with smtp_cls(self.host, self.port, timeout=self.timeout) as server:
            if not self.use_ssl:
                server.starttls()
            if self.username:
                server.login(self.username, self.password or "")
            server.send_message(msg)

    def send(
        self,
        to: str,
        subject: str,
        html: str | None = None,
        text: str | None = None,
    ) -> bool:
        """Send one email. Returns False (never raises) when the transport fails."""
        if self.backend == "log":
            logger.info(
                "Email not sent (no transport configured)",
                extra={"to": to, "subject": subject, "body": text or ""},
            )
            return True
        msg = self._build_message(to, subject, html, text)
        try:
            self._deliver_smtp(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                "Email sending failed",
                extra={"to": to, "subject": subject, "reason": str(e)[:500]},
            )
            return False
        logger.info("Email sent", extra={"to": to, "subject": subject})
        return True


def build_callback_url(frontend_url: str, token: str, kind: str) -> str:
    """Frontend link carrying a single-use token; kind is email_confirmation or password_reset."""
    query = urlencode({"token": token, "type": kind})
    return f"{frontend_url.rstrip('/')}/auth/callback?{query}"


def _confirmation_html(url: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
      <head><meta charset="utf-8"><title>Confirm Your Email</title></head>
      <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <div style="background-color: #f8f9fa; padding: 30px; border-radius: 8px;">
          <h1 style="color: #2c3e50; text-align: center;">Welcome to Business Inventory!</h1>
          <p style="color: #34495e; font-size: 16px; line-height: 1.6;">
            Thank you for creating an account with Business Inventory. To complete your registration,
            please confirm your email address by clicking the button below:
          </p>
          <div style="text-align: center; margin: 30px 0;">
            <a href="{url}" style="background-color: #3498db; color: white; padding: 12px 30px;
               text-decoration: none; border-radius: 5px; font-weight: bold; display: inline-block;">
              Confirm Email Address
            </a>
          </div>
          <p style="color: #7f8c8d; font-size: 14px;">
            If the button doesn't work, copy and paste this link into your browser:<br>
            <a href="{url}" style="color: #3498db;">{url}</a>
          </p>
          <p style="color: #7f8c8d; font-size: 14px;">
            This link will expire in 24 hours. If you didn't create this account,
            you can safely ignore this email.
          </p>
        </div>
      </body>
    </html>
    """


def _password_reset_html(url: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
      <head><meta charset="utf-8"><title>Reset Your Password</title></head>
      <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <div style="background-color: #f8f9fa; padding: 30px; border-radius: 8px;">
          <h1 style="color: #2c3e50; text-align: center;">Reset Your Password</h1>
          <p style="color: #34495e; font-size: 16px; line-height: 1.6;">
            You recently requested to reset your password for your Business Inventory account.
            Click the button below to reset it:
          </p>
          <div style="text-align: center; margin: 30px 0;">
            <a href="{url}" style="background-color: #e74c3c; color: white; padding: 12px 30px;
               text-decoration: none; border-radius: 5px; font-weight: bold; display: inline-block;">
              Reset Password
            </a>
          </div>
          <p style="color: #7f8c8d; font-size: 14px;">
            If the button doesn't work, copy and paste this link into your browser:<br>
            <a href="{url}" style="color: #e74c3c;">{url}</a>
          </p>
          <p style="color: #7f8c8d; font-size: 14px;">
            This link will expire in 1 hour. If you didn't request a password reset,
            you can safely ignore this email. Your password will remain unchanged.
          </p>
        </div>
      </body>
    </html>
    """


def send_confirmation_email(mailer: Mailer, email: str, token: str, frontend_url: str) -> bool:
    url = build_callback_url(frontend_url, token, "email_confirmation")
    return mailer.send(
        email,
        CONFIRMATION_SUBJECT,
        html=_confirmation_html(url),
        text=f"Please confirm your email by clicking this link: {url}",
    )


def send_password_reset_email(mailer: Mailer, email: str, token: str, frontend_url: str) -> bool:
    url = build_callback_url(frontend_url, token, "password_reset")
    return mailer.send(
        email,
        PASSWORD_RESET_SUBJECT,
        html=_password_reset_html(url),
        text=f"Reset your password by clicking this link: {url}",
    )


def get_mailer() -> Mailer:
    """Dependency: mailer built from current settings."""
    return Mailer(get_settings())
