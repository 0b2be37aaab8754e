"""
Mock email channel for the notification service.

The channel simulates sending emails by logging them. In production this is
where an SMTP client or an email API (SendGrid, AWS SES, Mailgun) would sit;
the notification service only relies on send(to, subject, body).

Design decisions:
- All sends are logged for visibility
- The channel keeps what it sent so tests can assert on it
- Failures can be simulated with fail_rate
- A failed send is reported in the result, not raised
"""

import logging
import random
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

logger = logging.getLogger("notifications")


@dataclass
class NotificationResult:
    """
    Result of an email send attempt.

    Captures success/failure and metadata for debugging and testing.
    """
    success: bool
    recipient: str
    subject: str
    body: str
    timestamp: datetime = field(default_factory=datetime.utcnow)
    error: Optional[str] = None

    def __str__(self) -> str:
        status = "✓" if self.success else "✗"
        return f"{status} EMAIL to {self.recipient}: {self.subject}"


class EmailSender(Protocol):
    """The email-send collaborator contract."""

    def send(self, to: str, subject: str, body: str) -> NotificationResult:
        ...


class EmailChannel:
    """
    Mock email channel.

    Logs email sends and tracks them for test assertions. Safe to call from
    several consumer workers at once.
    """

    def __init__(
        self,
        fail_rate: float = 0.0,
        from_addr: str = "notifications@freelance-platform.com",
    ):
        """
        Initialize the email channel.

        Args:
            fail_rate: Probability of send failure (0.0 to 1.0), for testing.
            from_addr: Sender address (for logging)
        """
        self.fail_rate = fail_rate
        self.from_addr = from_addr
        self.sent_messages: list[NotificationResult] = []
        self._lock = threading.Lock()

    def send(self, to: str, subject: str, body: str) -> NotificationResult:
        """
        Send an email (mock implementation).

        Args:
            to: Recipient email address
            subject: Email subject line
            body: Email body content

        Returns:
            NotificationResult indicating success/failure
        """
        # Simulate potential failure
        if self.fail_rate > 0 and random.random() < self.fail_rate:
            result = NotificationResult(
                success=False,
                recipient=to,
                subject=subject,
                body=body,
                error="Simulated email delivery failure",
            )
            logger.error(f"[EMAIL FAILED] To: {to} | Subject: {subject} | Error: {result.error}")
        else:
            result = NotificationResult(
                success=True,
                recipient=to,
                subject=subject,
                body=body,
            )
            logger.info(f"[EMAIL] From: {self.from_addr} | To: {to} | Subject: {subject}")
            logger.debug(f"[EMAIL BODY] {body}")

        with self._lock:
            self.sent_messages.append(result)
        return result

    def get_sent_count(self) -> int:
        """Get the number of send attempts (for testing)."""
        return len(self.sent_messages)

    def get_successful_sends(self) -> list[NotificationResult]:
        """Get all successful sends."""
        return [m for m in self.sent_messages if m.success]

    def clear_history(self):
        """Clear sent message history (useful between tests)."""
        with self._lock:
            self.sent_messages.clear()

    def find_message_to(self, recipient: str) -> Optional[NotificationResult]:
        """Find a message sent to a specific recipient."""
        for msg in self.sent_messages:
            if msg.recipient == recipient:
                return msg
        return None
