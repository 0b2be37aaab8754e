"""
In-memory partitioned broker.

Stands in for a Kafka-style broker in demos and tests. It keeps an
append-only log per topic partition and committed offsets per consumer
group, which is enough to show the delivery semantics the notification
service relies on:

- Envelopes with the same key land in the same partition, in send order
- A consumer group sees every record at least once; anything fetched but
  not committed is fetched again (redelivery)
- Partitions of a topic are assigned to a group as a whole; the broker owns
  group membership, consumers only join and leave

Not implemented: retention, rebalancing between several members of one
group, persistence. Only the pieces the pipeline exercises exist here.
"""

import logging
import threading
import zlib
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import uuid4

from shared.errors import BrokerUnavailable

logger = logging.getLogger("broker")


@dataclass(frozen=True)
class ChangeEnvelope:
    """
    The unit transmitted on the broker.

    Attributes:
        topic: Wire name of the topic (used for routing)
        payload: Serialized entity snapshot
        key: Partition key, normally the entity id
        envelope_id: Unique identifier for this envelope
        timestamp: When the envelope was created
    """
    topic: str
    payload: bytes
    key: Optional[str] = None
    envelope_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def __str__(self) -> str:
        return f"Envelope({self.topic}, id={self.envelope_id[:8]}, key={self.key})"


@dataclass(frozen=True)
class TopicPartition:
    topic: str
    partition: int

    def __str__(self) -> str:
        return f"{self.topic}[{self.partition}]"


@dataclass(frozen=True)
class Record:
    """An envelope as delivered to a consumer."""
    topic: str
    partition: int
    offset: int
    envelope: ChangeEnvelope

    @property
    def payload(self) -> bytes:
        return self.envelope.payload

    @property
    def topic_partition(self) -> TopicPartition:
        return TopicPartition(self.topic, self.partition)


class InMemoryBroker:
    """
    Thread-safe in-memory broker with partitioned topics.

    Example:
        broker = InMemoryBroker(partitions=3)
        broker.send("task_posted", b'{"id": 1}', key="1")

        parts = broker.assign("notification-service", ["task_posted"])
        for tp in parts:
            for record in broker.fetch("notification-service", tp):
                ...
                broker.commit("notification-service", tp, record.offset + 1)
    """

    def __init__(self, partitions: int = 3):
        if partitions < 1:
            raise ValueError("partitions must be >= 1")
        self.partitions = partitions
        self.available = True

        self._lock = threading.Lock()
        self._logs: dict[TopicPartition, list[Record]] = defaultdict(list)
        self._committed: dict[tuple[str, TopicPartition], int] = {}
        self._members: dict[str, set[str]] = defaultdict(set)
        self._round_robin = 0

    # =========================================================================
    # Producer side
    # =========================================================================

    def partition_for(self, key: Optional[str]) -> int:
        """Stable partition for a key; keyless sends are spread round robin."""
        if key is None:
            self._round_robin = (self._round_robin + 1) % self.partitions
            return self._round_robin
        return zlib.crc32(key.encode("utf-8")) % self.partitions

    def send(self, topic: str, payload: bytes, key: Optional[str] = None) -> Record:
        """
        Append an envelope to a topic.

        Raises:
            BrokerUnavailable: If the broker is marked unavailable
        """
        if not self.available:
            raise BrokerUnavailable(f"Broker unavailable, cannot send to {topic}", {"topic": topic})

        envelope = ChangeEnvelope(topic=topic, payload=payload, key=key)
        with self._lock:
            partition = self.partition_for(key)
            tp = TopicPartition(topic, partition)
            log = self._logs[tp]
            record = Record(topic=topic, partition=partition, offset=len(log), envelope=envelope)
            log.append(record)

        logger.debug(f"Appended {envelope} at {tp} offset {record.offset}")
        return record

    # =========================================================================
    # Consumer side
    # =========================================================================

    def assign(self, group_id: str, topics: list[str]) -> list[TopicPartition]:
        """Join a consumer group and return every partition of the topics."""
        with self._lock:
            self._members[group_id].update(topics)
        logger.info(f"Group '{group_id}' joined {len(topics)} topic(s)")
        return [TopicPartition(t, p) for t in topics for p in range(self.partitions)]

    def leave(self, group_id: str) -> None:
        """Leave a consumer group. Committed offsets are kept."""
        with self._lock:
            self._members.pop(group_id, None)
        logger.info(f"Group '{group_id}' left")

    def is_member(self, group_id: str) -> bool:
        with self._lock:
            return group_id in self._members

    def fetch(self, group_id: str, tp: TopicPartition, max_records: int = 100) -> list[Record]:
        """Records after the group's committed offset, oldest first."""
        if not self.available:
            raise BrokerUnavailable(f"Broker unavailable, cannot fetch {tp}", {"topic": tp.topic})
        with self._lock:
            start = self._committed.get((group_id, tp), 0)
            return list(self._logs.get(tp, [])[start:start + max_records])

    def commit(self, group_id: str, tp: TopicPartition, offset: int) -> None:
        """Commit the next offset to read for a partition."""
        with self._lock:
            key = (group_id, tp)
            if offset > self._committed.get(key, 0):
                self._committed[key] = offset

    def committed(self, group_id: str, tp: TopicPartition) -> int:
        with self._lock:
            return self._committed.get((group_id, tp), 0)

    def lag(self, group_id: str, topics: list[str]) -> int:
        """Number of records not yet committed by a group."""
        with self._lock:
            total = 0
            for tp, log in self._logs.items():
                if tp.topic in topics:
                    total += len(log) - self._committed.get((group_id, tp), 0)
            return total

    # =========================================================================
    # Inspection
    # =========================================================================

    def records(self, topic: Optional[str] = None) -> list[Record]:
        """Every record (optionally for one topic), ordered by partition and offset."""
        with self._lock:
            selected = [
                record
                for tp in sorted(self._logs, key=lambda t: (t.topic, t.partition))
                if topic is None or tp.topic == topic
                for record in self._logs[tp]
            ]
        return selected

    def topics(self) -> list[str]:
        with self._lock:
            return sorted({tp.topic for tp in self._logs})
