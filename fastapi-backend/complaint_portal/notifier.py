"""Email notifications for complaint submission, escalation and resolution.

The notifier is constructed explicitly at startup and passed to whoever needs
it. `start()` checks SMTP connectivity once; `close()` drains in-flight sends.
The `notify_*` methods are fire-and-forget: they schedule delivery in the
background and return immediately, and a failed delivery is logged, never
raised to the caller.
"""
import asyncio
import html
import logging
import re
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Protocol, Set

import aiosmtplib

from .config import Settings
from .metrics import NOTIFICATION_FAILURES
from .models import Complaint
from .time_utils import as_utc, utcnow

logger = logging.getLogger("app.notifier")


class Notifier(Protocol):
    def notify_submission(self, complaint: Complaint) -> None: ...

    def notify_escalation(self, complaint: Complaint, hours_overdue: int) -> None: ...

    def notify_resolution(self, complaint: Complaint) -> None: ...

    def notify_verification(self, email: str, token: str) -> None: ...

    def notify_password_reset(self, email: str, name: Optional[str], token: str) -> None: ...


class NullNotifier:
    """Notifier used when email delivery is not configured."""

    def notify_submission(self, complaint: Complaint) -> None:
        logger.debug("Email disabled - skipping submission notification for #%s", complaint.id)

    def notify_escalation(self, complaint: Complaint, hours_overdue: int) -> None:
        logger.debug("Email disabled - skipping escalation notification for #%s", complaint.id)

    def notify_resolution(self, complaint: Complaint) -> None:
        logger.debug("Email disabled - skipping resolution notification for #%s", complaint.id)

    def notify_verification(self, email: str, token: str) -> None:
        logger.debug("Email disabled - skipping verification email for %s", email)

    def notify_password_reset(self, email: str, name: Optional[str], token: str) -> None:
        logger.debug("Email disabled - skipping password reset email for %s", email)


def _html_to_text(html_body: str) -> str:
    text_body = re.sub(r"<[^>]+>", "", html_body)
    return html.unescape(text_body.replace("&nbsp;", " "))


def _resolution_time_text(complaint: Complaint) -> str:
    resolved = as_utc(complaint.resolved_at) or utcnow()
    hours = int((resolved - as_utc(complaint.created_at)).total_seconds() // 3600)
    days, remaining = divmod(hours, 24)
    if days > 0:
        return f"{days} day(s) and {remaining} hour(s)"
    return f"{hours} hour(s)"


class EmailNotifier:
    """SMTP-backed notifier with an explicit start/close lifecycle."""

    def __init__(self, settings: Settings, drain_timeout: float = 10.0):
        self._settings = settings
        self._drain_timeout = drain_timeout
        self._pending: Set[asyncio.Task] = set()
        self.enabled = False

    async def start(self) -> None:
        """Verify SMTP connectivity once. Missing credentials disable email."""
        s = self._settings
        if not s.email_enabled:
            logger.warning("Email credentials not configured - email notifications disabled")
            self.enabled = False
            return

        smtp = aiosmtplib.SMTP(
            hostname=s.smtp_host,
            port=s.smtp_port,
            use_tls=s.smtp_use_tls,
            timeout=s.smtp_timeout_seconds,
        )
        try:
            await smtp.connect()
            await smtp.login(s.smtp_user, s.smtp_password)
            await smtp.quit()
            logger.info("Email transport ready to send via %s:%s", s.smtp_host, s.smtp_port)
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
            # Delivery failures are contained per message, so a flaky check at
            # boot only warrants a warning.
            logger.warning("Email transport verification failed: %s; sends will still be attempted", exc)
        self.enabled = True

    async def close(self) -> None:
        pending = set(self._pending)
        if pending:
            done, not_done = await asyncio.wait(pending, timeout=self._drain_timeout)
            for task in not_done:
                task.cancel()
            logger.info("Email notifier closed (%d sent, %d cancelled)", len(done), len(not_done))
        self.enabled = False

    async def send_email(self, to_email: str, subject: str, html_body: str, text_body: Optional[str] = None) -> bool:
        """Send one message. Returns True on success; failures are logged."""
        if not self.enabled:
            logger.info("Email disabled - not sending %r to %s", subject, to_email)
            return False
        s = self._settings
        try:
            message = MIMEMultipart("alternative")
            message["Subject"] = subject
            message["From"] = s.email_from
            message["To"] = to_email
            message.attach(MIMEText(text_body or _html_to_text(html_body), "plain"))
            message.attach(MIMEText(html_body, "html"))

            await aiosmtplib.send(
                message,
                hostname=s.smtp_host,
                port=s.smtp_port,
                username=s.smtp_user or None,
                password=s.smtp_password or None,
                use_tls=s.smtp_use_tls,
                timeout=s.smtp_timeout_seconds,
            )
            logger.info("Email sent successfully to %s: %s", to_email, subject)
            return True
        except Exception as e:
            logger.error("Failed to send email to %s: %s", to_email, e)
            return False

    def _dispatch(self, kind: str, to_email: str, subject: str, html_body: str) -> None:
        if not self.enabled:
            logger.debug("Email disabled - skipping %s notification", kind)
            return

        async def _deliver() -> None:
            if not await self.send_email(to_email, subject, html_body):
                NOTIFICATION_FAILURES.labels(kind=kind).inc()

        task = asyncio.create_task(_deliver())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def notify_submission(self, complaint: Complaint) -> None:
        if not complaint.email or complaint.is_anonymous:
            logger.debug("No email address - skipping submission notification")
            return
        body = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
          <h2 style="color: #1d4ed8;">Complaint Submitted Successfully</h2>
          <p>Dear {html.escape(complaint.name or 'User')},</p>
          <p>Your complaint has been submitted and is now being reviewed by our team.</p>
          <p><strong>Complaint ID:</strong> #{complaint.id}</p>
          <p><strong>Category:</strong> {html.escape(complaint.category)}</p>
          <p><strong>Priority:</strong> {complaint.priority.upper()}</p>
          <h3>Description:</h3>
          <p>{html.escape(complaint.description)}</p>
          <p>You will receive an email notification when your complaint is resolved.</p>
        </div>
        """
        self._dispatch("submission", complaint.email, f"Complaint #{complaint.id} Submitted Successfully", body)

    def notify_escalation(self, complaint: Complaint, hours_overdue: int) -> None:
        admin_email = self._settings.admin_notify_email
        if not admin_email:
            logger.info("ADMIN_NOTIFY_EMAIL not configured - skipping escalation notification")
            return
        submitter = (
            "<em>Anonymous</em>"
            if complaint.is_anonymous or not complaint.email
            else html.escape(complaint.email)
        )
        body = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px; border: 3px solid #ef4444;">
          <h2 style="color: #dc2626;">SLA BREACH - ESCALATION ALERT</h2>
          <p><strong>Complaint ID:</strong> #{complaint.id}</p>
          <p><strong>Category:</strong> {html.escape(complaint.category)}</p>
          <p><strong>Priority:</strong> {complaint.priority.upper()}</p>
          <p><strong>Current Status:</strong> {complaint.status}</p>
          <p><strong>Escalation Level:</strong> {complaint.escalation_level}</p>
          <p><strong>Hours Pending:</strong> {hours_overdue} hours overdue</p>
          <p><strong>User:</strong> {submitter}</p>
          <h3>Description:</h3>
          <p>{html.escape(complaint.description)}</p>
          <p style="color: #dc2626; font-weight: bold;">IMMEDIATE ACTION REQUIRED - This complaint has exceeded its SLA limit.</p>
        </div>
        """
        subject = f"ESCALATION: Complaint #{complaint.id} - {complaint.priority.upper()} Priority"
        self._dispatch("escalation", admin_email, subject, body)

    def notify_resolution(self, complaint: Complaint) -> None:
        if not complaint.email:
            logger.debug("No email address - skipping resolution notification")
            return
        message = ""
        if complaint.admin_message:
            message = f"<h3>Resolution Message:</h3><p>{html.escape(complaint.admin_message)}</p>"
        body = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
          <h2 style="color: #22c55e;">Your Complaint Has Been Resolved</h2>
          <p><strong>Complaint ID:</strong> #{complaint.id}</p>
          <p><strong>Category:</strong> {html.escape(complaint.category)}</p>
          <p><strong>Resolution Time:</strong> {_resolution_time_text(complaint)}</p>
          {message}
          <p style="color: #6b7280; font-size: 14px;">Thank you for using our Complaint Portal.</p>
        </div>
        """
        self._dispatch("resolution", complaint.email, f"Your Complaint #{complaint.id} Has Been Resolved", body)

    def notify_verification(self, email: str, token: str) -> None:
        url = f"{self._settings.frontend_url}/verify-email?token={token}"
        body = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
          <h2>Verify Your Email</h2>
          <p>Click the link below to verify your email address:</p>
          <p><a href="{url}">{url}</a></p>
          <p><strong>This link will expire in {self._settings.single_use_token_hours} hours.</strong></p>
        </div>
        """
        self._dispatch("verification", email, "Verify Your Email - Complaint Portal", body)

    def notify_password_reset(self, email: str, name: Optional[str], token: str) -> None:
        url = f"{self._settings.frontend_url}/reset-password?token={token}"
        body = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
          <h2>Password Reset Request</h2>
          <p>Hello {html.escape(name or 'there')},</p>
          <p>Use the link below to choose a new password:</p>
          <p><a href="{url}">{url}</a></p>
          <p>If you did not request a password reset, please ignore this email.</p>
        </div>
        """
        self._dispatch("password_reset", email, "Password Reset Request - Complaint Portal", body)


__all__ = ["EmailNotifier", "Notifier", "NullNotifier"]
