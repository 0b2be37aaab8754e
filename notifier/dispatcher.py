"""
Notification dispatcher.

Given a strategy and the rendered message, resolves the recipient (possibly
calling the user directory) and hands the email to the email channel.
No retries happen here: a failure surfaces as EmailSendFailed or
RecipientUnresolvable and the consumer decides what to do with it.
"""

import logging
from typing import Any, Mapping, Optional

from notifier.channels import EmailSender, NotificationResult
from notifier.directory import UserDirectory
from notifier.registry import NotificationRequest
from notifier.strategies import NotificationStrategy
from shared.errors import EmailSendFailed

logger = logging.getLogger("dispatcher")


class NotificationDispatcher:
    """
    Resolves recipients and sends emails.

    Holds no per-request state, so one dispatcher serves every worker.
    """

    def __init__(self, email: EmailSender, directory: Optional[UserDirectory] = None):
        self.email = email
        self.directory = directory

    def dispatch(
        self,
        strategy: NotificationStrategy,
        subject: str,
        body: str,
        fields: Mapping[str, Any],
    ) -> Optional[NotificationResult]:
        """
        Send one notification.

        Returns:
            The send result, or None if the strategy notifies nobody

        Raises:
            RecipientUnresolvable: If the recipient has no resolvable email
            EmailSendFailed: If the email channel failed or raised
        """
        recipient = strategy.resolve_recipient(fields, self.directory)
        if recipient is None:
            logger.info(f"No recipient for '{subject}' ({strategy.kind.value}), nothing to send")
            return None

        try:
            result = self.email.send(recipient.email, subject, body)
        except Exception as e:
            raise EmailSendFailed(
                f"Email to {recipient.email} raised: {e}",
                {"recipient": recipient.email},
            ) from e

        if not result.success:
            raise EmailSendFailed(
                f"Email to {recipient.email} failed: {result.error}",
                {"recipient": recipient.email},
            )

        logger.info(f"Notified {recipient.username or recipient.email} <{recipient.email}>: {subject}")
        return result

    def dispatch_request(self, request: NotificationRequest) -> Optional[NotificationResult]:
        """Dispatch a request planned by the registry."""
        return self.dispatch(request.strategy, request.subject, request.body, request.fields)
