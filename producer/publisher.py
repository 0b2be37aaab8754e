"""
Change publisher for the platform side.

One publisher is bound to one entity kind. Given a snapshot and a change
kind it resolves the topic, encodes the snapshot, and hands the envelope to
the broker keyed by the entity id.

Design decisions:
- Fire-and-forget: a broker outage (BrokerUnavailable, or a client's
  ConnectionError or TimeoutError) is logged as PublishFailed and reported
  through the return value, never raised to the caller. Retrying is the
  broker client's job.
- An invalid (entity kind, change kind) pair is a programming error and
  raises UnknownTopic.
- Keying by entity id keeps every envelope for one entity in one partition,
  so an entity's transitions are consumed in the order they were published.
"""

import logging
from typing import Any, Optional, Protocol, Union

from shared.broker import Record
from shared.codec import encode, extract, is_absent
from shared.errors import BrokerUnavailable, PublishFailed
from shared.topics import ChangeKind, ChangeTopic, EntityKind, topic_for

logger = logging.getLogger("publisher")

# Connectivity errors a broker client may raise for one send
TRANSIENT_BROKER_ERRORS = (BrokerUnavailable, ConnectionError, TimeoutError)


class BrokerClient(Protocol):
    """
    The part of a broker client the publisher needs.

    send() may raise BrokerUnavailable, ConnectionError or TimeoutError when
    the broker cannot be reached; anything else is a bug and propagates.
    """

    def send(self, topic: str, payload: bytes, key: Optional[str] = None) -> Record:
        ...


class ChangePublisher:
    """
    Publishes change envelopes for one entity kind.

    Example:
        publisher = ChangePublisher(EntityKind.TASK, broker)
        publisher.publish(task, ChangeKind.FREELANCER_ASSIGNED)
    """

    def __init__(self, entity_kind: Union[EntityKind, str], broker: BrokerClient):
        self.entity_kind = EntityKind(entity_kind)
        self.broker = broker
        self.published_count = 0
        self.failed_count = 0
        self.last_failure: Optional[PublishFailed] = None

    def publish(self, snapshot: Any, change_kind: Union[ChangeKind, str]) -> bool:
        """
        Publish a snapshot of a changed entity.

        Args:
            snapshot: The entity as it is after the change (model, dataclass, or dict)
            change_kind: What happened to the entity

        Returns:
            True if the broker accepted the envelope, False if it was unreachable

        Raises:
            UnknownTopic: If this entity kind has no topic for the change kind
        """
        topic = topic_for(self.entity_kind, change_kind)
        payload = encode(snapshot)
        key = self._key_for(payload)

        try:
            self.broker.send(topic.wire_name, payload, key=key)
        except TRANSIENT_BROKER_ERRORS as e:
            self._report_failure(topic, key, e)
            return False

        self.published_count += 1
        logger.info(f"Published {topic} for {self.entity_kind.value} id={key}")
        return True

    @staticmethod
    def _key_for(payload: bytes) -> Optional[str]:
        entity_id = extract(payload, "id")
        return None if is_absent(entity_id) else str(entity_id)

    def _report_failure(self, topic: ChangeTopic, key: Optional[str], error: Exception) -> None:
        failure = PublishFailed(
            f"Could not publish {topic}: {error}",
            {"topic": topic.wire_name, "correlation_id": key},
        )
        self.failed_count += 1
        self.last_failure = failure
        logger.warning(
            f"[{failure.code}] topic={topic} correlation_id={key} error={error}",
            extra={"code": failure.code, "topic": topic.wire_name, "correlation_id": key},
        )
