"""
Notification service (consumer) side of the pipeline.

- ChangeConsumer reads change envelopes and runs each through the
  parse / classify / dispatch state machine
- StrategyRegistry maps topics to strategies and message templates
- NotificationDispatcher resolves the recipient and sends the email
"""

from notifier.channels import EmailChannel, NotificationResult
from notifier.consumer import ChangeConsumer, RecordOutcome, RecordState
from notifier.directory import FixtureUserDirectory, HttpUserDirectory, ResolvedRecipient
from notifier.dispatcher import NotificationDispatcher
from notifier.registry import NotificationRequest, StrategyRegistry, get_registry
from notifier.service import NotificationService

__all__ = [
    "EmailChannel",
    "NotificationResult",
    "ChangeConsumer",
    "RecordOutcome",
    "RecordState",
    "FixtureUserDirectory",
    "HttpUserDirectory",
    "ResolvedRecipient",
    "NotificationDispatcher",
    "NotificationRequest",
    "StrategyRegistry",
    "get_registry",
    "NotificationService",
]
