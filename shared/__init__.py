"""
Shared infrastructure for both sides of the change-notification pipeline.

This package contains code used by the platform (producer) and the
notification service (consumer):
- Topic taxonomy (closed set of change topics)
- Payload codec (structural encode, tolerant extract)
- Error taxonomy
- In-memory partitioned broker
- Configuration and logging setup
"""

from shared.topics import (
    ChangeKind,
    ChangeTopic,
    EntityKind,
    parse_topic,
    topic_for,
)
from shared.codec import ABSENT, PayloadView, decode, encode, extract
from shared.broker import ChangeEnvelope, InMemoryBroker, Record, TopicPartition
from shared.config import NotifierConfig, configure_logging

__all__ = [
    "ChangeKind",
    "ChangeTopic",
    "EntityKind",
    "parse_topic",
    "topic_for",
    "ABSENT",
    "PayloadView",
    "decode",
    "encode",
    "extract",
    "ChangeEnvelope",
    "InMemoryBroker",
    "Record",
    "TopicPartition",
    "NotifierConfig",
    "configure_logging",
]
