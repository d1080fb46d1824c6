"""
Outcome notifications.

Senders deliver a rendered notification; Notifier turns pipeline events
into sends. Delivery is fire-and-forget: a failed send is logged and
counted, never raised into the pipeline.
"""

import smtplib
import threading
from email.mime.text import MIMEText
from typing import Any, Protocol

from partner_etl.core.models.notification import BatchNotificationEvent, NotificationEvent
from partner_etl.observability import metrics
from partner_etl.observability.logger import get_logger

logger = get_logger(__name__)

SUBJECTS = {
    "file_completed": "[partner-etl] {file_name} imported",
    "file_rejected": "[partner-etl] {file_name} rejected",
    "batch_completed": "[partner-etl] batch {batch_id} completed",
    "batch_failed": "[partner-etl] batch {batch_id} finished with rejected files",
}


class NotificationSender(Protocol):
    def send(self, template: str, recipient: str, context: dict[str, Any]) -> None: ...


def render_body(template: str, context: dict[str, Any]) -> str:
    lines = [SUBJECTS.get(template, template).format_map(_Defaulting(context)), ""]
    for key in ("file_name", "batch_id", "job_id", "outcome", "retry_count", "rows_imported", "reason"):
        if context.get(key) not in (None, ""):
            lines.append(f"{key}: {context[key]}")
    for key in ("completed", "rejected"):
        if context.get(key):
            lines.append(f"{key}: {', '.join(context[key])}")
    if context.get("errors"):
        lines.append("")
        lines.append("Errors:")
        lines.extend(f"  - {e}" for e in context["errors"])
    return "\n".join(lines)


class _Defaulting(dict):
    def __missing__(self, key: str) -> str:
        return ""


class LoggingSender:
    """Writes notifications to the log (local runs)."""

    def send(self, template: str, recipient: str, context: dict[str, Any]) -> None:
        logger.info(
            "Notification",
            extra={"template": template, "recipient": recipient, "body": render_body(template, context)},
        )


class RecordingSender:
    """Keeps every send in memory."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def send(self, template: str, recipient: str, context: dict[str, Any]) -> None:
        with self._lock:
            self.sent.append((template, recipient, context))

    def for_file(self, file_name: str) -> list[tuple[str, str, dict[str, Any]]]:
        with self._lock:
            return [s for s in self.sent if s[2].get("file_name") == file_name]


class SmtpSender:
    """
    Plain-text e-mail over SMTP.

    Args:
        host: SMTP server
        port: SMTP port
        from_address: Sender address
        username / password: Login, skipped when username is empty
        use_tls: Issue STARTTLS before login
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        from_address: str = "partner-etl@localhost",
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.from_address = from_address
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, template: str, recipient: str, context: dict[str, Any]) -> None:
        msg = MIMEText(render_body(template, context), "plain", "utf-8")
        msg["From"] = self.from_address
        msg["To"] = recipient
        msg["Subject"] = SUBJECTS.get(template, template).format_map(_Defaulting(context))

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password or "")
            server.send_message(msg)


class Notifier:
    """
    Sends file and batch outcome notifications.

    Args:
        sender: Delivery channel
        default_recipient: Used unless a file carries a notification override
    """

    def __init__(self, sender: NotificationSender, default_recipient: str):
        self.sender = sender
        self.default_recipient = default_recipient

    def _deliver(self, template: str, recipient: str, context: dict[str, Any]) -> bool:
        try:
            self.sender.send(template, recipient, context)
        except Exception:
            # Delivery never changes a pipeline outcome
            logger.exception(
                "Notification failed",
                extra={"template": template, "recipient": recipient, "file_name": context.get("file_name")},
            )
            metrics.increment_counter(metrics.notifications_total, template=template, status="failed")
            return False
        metrics.increment_counter(metrics.notifications_total, template=template, status="sent")
        return True

    def notify_file(self, event: NotificationEvent, recipient: str | None = None) -> bool:
        return self._deliver(event.template, recipient or self.default_recipient, event.model_dump(mode="json"))

    def notify_batch(self, event: BatchNotificationEvent) -> bool:
        return self._deliver(event.template, self.default_recipient, event.model_dump(mode="json"))
