"""
Error taxonomy for the change-notification pipeline.

Every failure the pipeline can report has a stable ``code`` so log sinks can
group them. Per-record failures (unknown topic, malformed payload,
unresolvable recipient, email send failure) are caught at the consumer
boundary and never propagate past it. ``PublishFailed`` is the producer-side
counterpart and is reported as a warning.
"""

from typing import Any, Optional


class NotifierError(Exception):
    """Base class for all pipeline errors."""

    code = "NotifierError"

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class UnknownTopic(NotifierError):
    """A topic name or (entity kind, change kind) pair outside the closed set."""
    code = "UnknownTopic"


class MalformedPayload(NotifierError):
    """The payload cannot be parsed, or lacks a field a rule requires."""
    code = "MalformedPayload"


class RecipientUnresolvable(NotifierError):
    """Neither the payload nor the user lookup yielded an email address."""
    code = "RecipientUnresolvable"


class EmailSendFailed(NotifierError):
    """The email collaborator reported a failure or raised."""
    code = "EmailSendFailed"


class PublishFailed(NotifierError):
    """An envelope could not be handed to the broker."""
    code = "PublishFailed"


class BrokerUnavailable(NotifierError):
    """The broker cannot be reached. Raised by broker clients."""
    code = "BrokerUnavailable"


class UserNotFound(NotifierError):
    """The user lookup has no user for the identifier."""
    code = "UserNotFound"


class UserLookupFailed(NotifierError):
    """The user lookup could not answer (transport error, bad response)."""
    code = "UserLookupFailed"
