"""Transactional email over SMTP (password reset links)."""
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .config import Config

logger = logging.getLogger("support.mailer")


def send_reset_email(to_email: str, reset_link: str) -> bool:
    """Send a password-reset email via SMTP.

    Returns True if the email was sent, False when SMTP is not configured
    or sending failed (logged, so the caller can fall back to console output).
    """
    if not Config.SMTP_HOST or not Config.SMTP_FROM:
        return False

    html_body = f"""\
    <html>
    <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 480px; margin: 0 auto; padding: 24px;">
        <h2 style="color: #1f2937;">Reset your password</h2>
        <p style="color: #374151; line-height: 1.6;">
            We received a request to reset the password for your {Config.COMPANY_NAME} account.
            The link below is valid for one hour.
        </p>
        <p style="text-align: center; margin: 32px 0;">
            <a href="{reset_link}"
               style="display: inline-block; padding: 12px 32px; background: #2563eb;
                      color: #fff; text-decoration: none; border-radius: 6px; font-weight: 600;">
                Choose a new password
            </a>
        </p>
        <p style="color: #6b7280; font-size: 13px;">
            Didn't ask for this? Ignore this email and your password stays the same.
        </p>
    </body>
    </html>
    """

    try:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = f"{Config.COMPANY_NAME} password reset"
        msg["From"] = Config.SMTP_FROM
        msg["To"] = to_email
        msg.attach(MIMEText(f"Reset your password: {reset_link}", "plain"))
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(Config.SMTP_HOST, Config.SMTP_PORT) as server:
            server.ehlo()
            if Config.SMTP_PORT != 25:
                server.starttls()
            if Config.SMTP_USER and Config.SMTP_PASSWORD:
                server.login(Config.SMTP_USER, Config.SMTP_PASSWORD)
            server.sendmail(Config.SMTP_FROM, to_email, msg.as_string())

        logger.info("Password reset email sent to %s", to_email)
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Failed to send reset email to %s: %s", to_email, e)
        return False
