"""Outbound email for submissions and issue reports."""

from __future__ import annotations

import asyncio
import html
import logging
import smtplib
from email.message import EmailMessage
from functools import lru_cache
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

from config import settings
from services.errors import DependencyFailureError
from services.session_token import create_moderation_token

logger = logging.getLogger(__name__)


class Notifier:
    """Sends email through an SMTP relay with a bounded timeout."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout_seconds: float = 10.0,
        sender: str = "",
    ):
        self.host = host
        self.port = int(port)
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout_seconds = float(timeout_seconds)
        self.sender = sender

    @property
    def configured(self) -> bool:
        return bool(self.host)

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as client:
            if self.use_tls:
                client.starttls()
            if self.username:
                client.login(self.username, self.password)
            client.send_message(message)

    async def send(self, message: EmailMessage) -> None:
        if not self.configured:
            raise DependencyFailureError("SMTP_HOST is not configured")
        if not message["From"]:
            message["From"] = self.sender
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._deliver, message),
                timeout=self.timeout_seconds + 1,
            )
        except asyncio.TimeoutError as exc:
            raise DependencyFailureError("SMTP delivery timed out") from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise DependencyFailureError(f"SMTP delivery failed: {exc}") from exc
        logger.info("email_sent to=%s subject=%s", message["To"], message["Subject"])


@lru_cache(maxsize=1)
def _default_notifier() -> Notifier:
    return Notifier(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        username=settings.SMTP_USER,
        password=settings.SMTP_PASS,
        use_tls=settings.SMTP_USE_TLS,
        timeout_seconds=settings.SMTP_TIMEOUT_SECONDS,
        sender=settings.MAIL_FROM,
    )


def get_notifier() -> Notifier:
    """FastAPI dependency returning the configured notifier."""
    return _default_notifier()


def moderation_link(submission_id: str, decision: str) -> str:
    query = urlencode(
        {
            "toolId": submission_id,
            "pending": decision,
            "token": create_moderation_token(submission_id),
        }
    )
    return f"{settings.PUBLIC_API_BASE_URL.rstrip('/')}/update-tool-status?{query}"


def build_submission_received_message(submission: Dict[str, Any]) -> EmailMessage:
    message = EmailMessage()
    message["From"] = settings.MAIL_FROM
    message["To"] = submission["email"]
    message["Subject"] = "Submission received"
    message.set_content(
        f"Your tool submission \"{submission['title']}\" was received. "
        "We will review it and publish it once approved."
    )
    return message


def build_admin_review_message(submission: Dict[str, Any]) -> EmailMessage:
    fields = [
        ("Submission", submission["id"]),
        ("User", submission["user_id"]),
        ("Email", submission.get("email") or ""),
        ("Title", submission["title"]),
        ("Link", submission["link"]),
        ("Category", submission["category"]),
        ("Price", submission.get("price") or ""),
        ("Description", submission.get("description") or ""),
    ]
    approve_url = moderation_link(submission["id"], "approved")
    decline_url = moderation_link(submission["id"], "declined")
    details = "\n".join(f"<p><b>{html.escape(label)}:</b> {html.escape(str(value))}</p>" for label, value in fields)

    message = EmailMessage()
    message["From"] = settings.MAIL_FROM
    message["To"] = settings.ADMIN_EMAIL
    message["Subject"] = "New tool submitted"
    message.set_content(
        "A new tool has been submitted for review.\n\n"
        + "\n".join(f"{label}: {value}" for label, value in fields)
        + f"\n\nApprove: {approve_url}\nDecline: {decline_url}\n"
    )
    message.add_alternative(
        "<p>A new tool has been submitted for review.</p>"
        f"{details}"
        f'<p><a href="{html.escape(approve_url)}">Approve</a> '
        f'<a href="{html.escape(decline_url)}">Decline</a></p>',
        subtype="html",
    )
    return message


def build_issue_report_message(post: str, body: str, reporter_email: Optional[str]) -> EmailMessage:
    message = EmailMessage()
    message["From"] = settings.MAIL_FROM
    message["To"] = settings.ADMIN_EMAIL
    if reporter_email:
        message["Reply-To"] = reporter_email
    message["Subject"] = f"Report for post: {post}"
    message.set_content(body)
    return message


async def _send_best_effort(
    notifier: Notifier,
    build: Callable[[], EmailMessage],
    label: str,
    reference: str,
) -> bool:
    try:
        await notifier.send(build())
        return True
    except DependencyFailureError as exc:
        logger.warning("notification_failed kind=%s ref=%s reason=%s", label, reference, exc.reason)
    except Exception as exc:
        logger.warning("notification_failed kind=%s ref=%s error=%s", label, reference, exc)
    return False


async def notify_submission(notifier: Notifier, submission: Dict[str, Any]) -> Dict[str, bool]:
    """Send the submitter confirmation and the admin review request.

    The two sends are independent; failures, including a message that
    cannot be built, are logged and never raised.
    """
    outcome = {"submitter": False, "admin": False}
    if submission.get("email"):
        outcome["submitter"] = await _send_best_effort(
            notifier,
            lambda: build_submission_received_message(submission),
            "submission_received",
            submission["id"],
        )
    if settings.ADMIN_EMAIL:
        outcome["admin"] = await _send_best_effort(
            notifier,
            lambda: build_admin_review_message(submission),
            "admin_review",
            submission["id"],
        )
    else:
        logger.warning("notification_skipped kind=admin_review ref=%s reason=ADMIN_EMAIL unset", submission["id"])
    return outcome


async def send_issue_report(notifier: Notifier, *, post: str, body: str, reporter_email: Optional[str]) -> None:
    if not settings.ADMIN_EMAIL:
        raise DependencyFailureError("ADMIN_EMAIL is not configured")
    await notifier.send(build_issue_report_message(post, body, reporter_email))
