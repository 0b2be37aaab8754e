"""
Change consumer for the notification service.

Subscribes to the topics the registry has rules for, and processes every
record through a fixed state machine:

    RECEIVED -> PARSED -> CLASSIFIED -> DISPATCHED -> ACKNOWLEDGED

or one of the terminal failure states MALFORMED, UNKNOWN_TOPIC and
DISPATCH_FAILED. A record is acknowledged (its offset committed) after
processing whatever the outcome: a notification failure never blocks the
group and never causes redelivery. Redelivery only happens if the worker dies
before committing.

Concurrency:
- Partitions are processed in parallel on a thread pool, one task per
  partition per poll
- Records within a partition are processed one at a time in offset order
- stop() lets the in-flight poll finish before leaving the group, and the
  background thread never polls again once stop() was called
"""

import logging
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol

from notifier.channels import NotificationResult
from notifier.dispatcher import NotificationDispatcher
from notifier.registry import StrategyRegistry
from shared.broker import Record, TopicPartition
from shared.codec import decode, is_absent
from shared.errors import BrokerUnavailable, MalformedPayload, NotifierError, UnknownTopic
from shared.topics import parse_topic

logger = logging.getLogger("change_consumer")


class RecordState(str, Enum):
    """States a record passes through."""
    RECEIVED = "received"
    PARSED = "parsed"
    CLASSIFIED = "classified"
    DISPATCHED = "dispatched"
    ACKNOWLEDGED = "acknowledged"

    # Terminal failures (still acknowledged)
    MALFORMED = "malformed"
    UNKNOWN_TOPIC = "unknown_topic"
    DISPATCH_FAILED = "dispatch_failed"


FAILURE_STATES = {RecordState.MALFORMED, RecordState.UNKNOWN_TOPIC, RecordState.DISPATCH_FAILED}


@dataclass
class RecordOutcome:
    """What happened to one record."""
    topic: str
    partition: int
    offset: int
    state: RecordState = RecordState.RECEIVED
    history: list[RecordState] = field(default_factory=lambda: [RecordState.RECEIVED])
    correlation_id: Optional[str] = None
    error_code: Optional[str] = None
    error: Optional[str] = None
    result: Optional[NotificationResult] = None
    acknowledged: bool = False

    def advance(self, state: RecordState) -> None:
        self.state = state
        self.history.append(state)

    @property
    def failed(self) -> bool:
        return self.error_code is not None

    @property
    def sent(self) -> bool:
        return self.result is not None and self.result.success


class ConsumerBroker(Protocol):
    """The part of a broker client the consumer needs."""

    def assign(self, group_id: str, topics: list[str]) -> list[TopicPartition]:
        ...

    def fetch(self, group_id: str, tp: TopicPartition, max_records: int = 100) -> list[Record]:
        ...

    def commit(self, group_id: str, tp: TopicPartition, offset: int) -> None:
        ...

    def leave(self, group_id: str) -> None:
        ...


class ChangeConsumer:
    """
    Consumes change envelopes and drives notifications.

    Example:
        consumer = ChangeConsumer(broker, StrategyRegistry(), dispatcher)
        consumer.poll_once()          # process whatever is waiting
        consumer.start()              # or poll in the background
        ...
        consumer.stop()               # drain and leave the group
    """

    def __init__(
        self,
        broker: ConsumerBroker,
        registry: StrategyRegistry,
        dispatcher: NotificationDispatcher,
        topics: Optional[list[str]] = None,
        group_id: str = "notification-service",
        max_workers: int = 4,
        fetch_max: int = 100,
    ):
        self.broker = broker
        self.registry = registry
        self.dispatcher = dispatcher
        self.topics = topics if topics is not None else [t.wire_name for t in registry.topics()]
        self.group_id = group_id
        self.max_workers = max_workers
        self.fetch_max = fetch_max

        self._assignment: Optional[list[TopicPartition]] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._poll_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._stats: Counter = Counter()
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # =========================================================================
    # Group membership
    # =========================================================================

    @property
    def subscribed(self) -> bool:
        return self._assignment is not None

    def subscribe(self) -> list[TopicPartition]:
        """Join the consumer group (idempotent)."""
        with self._poll_lock:
            return self._subscribe_locked()

    def _subscribe_locked(self) -> list[TopicPartition]:
        if self._assignment is None:
            self._assignment = self.broker.assign(self.group_id, list(self.topics))
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix=f"{self.group_id}-worker",
            )
            logger.info(f"Subscribed to {', '.join(self.topics)} as '{self.group_id}'")
        return list(self._assignment)

    def close(self) -> None:
        """Wait for in-flight work, then leave the group."""
        with self._poll_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None
            if self._assignment is not None:
                self.broker.leave(self.group_id)
                self._assignment = None
                logger.info(f"Consumer '{self.group_id}' left the group")

    # =========================================================================
    # Polling
    # =========================================================================

    def poll_once(self) -> list[RecordOutcome]:
        """
        Fetch and process one batch from every assigned partition.

        Returns:
            Outcomes in partition order, offsets ascending within a partition
        """
        with self._poll_lock:
            return self._poll_locked()

    def _poll_locked(self) -> list[RecordOutcome]:
        self._subscribe_locked()
        futures = [
            self._executor.submit(self._consume_partition, tp)
            for tp in self._assignment
        ]
        outcomes: list[RecordOutcome] = []
        for future in futures:
            outcomes.extend(future.result())
        return outcomes

    def _background_poll(self) -> Optional[list[RecordOutcome]]:
        """One poll for the background thread; None once stop() was called."""
        with self._poll_lock:
            if self._stopping.is_set():
                return None
            return self._poll_locked()

    def drain(self, max_polls: int = 1000) -> list[RecordOutcome]:
        """Poll until a poll returns nothing."""
        outcomes: list[RecordOutcome] = []
        for _ in range(max_polls):
            batch = self.poll_once()
            if not batch:
                break
            outcomes.extend(batch)
        return outcomes

    def start(self, poll_interval_s: float = 0.5) -> None:
        """Poll in a background thread until stop() is called."""
        if self._thread is not None:
            logger.warning("ChangeConsumer already started")
            return

        self.subscribe()
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._run,
            args=(poll_interval_s,),
            name=f"{self.group_id}-poller",
            daemon=True,
        )
        self._thread.start()
        logger.info("ChangeConsumer started")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop polling, let the in-flight batch finish, and leave the group."""
        self._stopping.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self.close()
        logger.info("ChangeConsumer stopped")

    def _run(self, poll_interval_s: float) -> None:
        while True:
            try:
                outcomes = self._background_poll()
            except Exception:
                logger.exception("Unexpected error while polling")
                outcomes = []
            if outcomes is None:
                return
            if not outcomes:
                self._stopping.wait(poll_interval_s)

    def _consume_partition(self, tp: TopicPartition) -> list[RecordOutcome]:
        try:
            records = self.broker.fetch(self.group_id, tp, self.fetch_max)
        except BrokerUnavailable as e:
            logger.warning(f"Fetch from {tp} failed: {e}")
            return []

        outcomes = []
        for record in records:
            outcome = self.process(record)
            self.broker.commit(self.group_id, tp, record.offset + 1)
            outcome.acknowledged = True
            if outcome.state == RecordState.DISPATCHED:
                outcome.advance(RecordState.ACKNOWLEDGED)
            self._count(outcome.state)
            outcomes.append(outcome)
        return outcomes

    # =========================================================================
    # Per-record processing
    # =========================================================================

    def process(self, record: Record) -> RecordOutcome:
        """
        Run one record through the state machine. Never raises.

        Acknowledging is left to the caller; the returned outcome ends in
        DISPATCHED or a failure state.
        """
        outcome = RecordOutcome(topic=record.topic, partition=record.partition, offset=record.offset)
        logger.debug(f"Received {record.topic}[{record.partition}]@{record.offset}")

        # Parsed
        try:
            view = decode(record.payload)
        except MalformedPayload as e:
            return self._fail(outcome, RecordState.MALFORMED, e, record)
        outcome.correlation_id = self._correlation_id(view)
        outcome.advance(RecordState.PARSED)

        # Classified
        try:
            topic = parse_topic(record.topic)
            self.registry.rule_for(topic)
        except UnknownTopic as e:
            return self._fail(outcome, RecordState.UNKNOWN_TOPIC, e, record)
        outcome.advance(RecordState.CLASSIFIED)

        try:
            request = self.registry.plan(topic, view)
        except MalformedPayload as e:
            return self._fail(outcome, RecordState.MALFORMED, e, record)

        # Dispatched
        try:
            outcome.result = self.dispatcher.dispatch_request(request)
        except NotifierError as e:
            return self._fail(outcome, RecordState.DISPATCH_FAILED, e, record)
        except Exception as e:
            logger.exception(f"Unexpected dispatch error for {record.topic}@{record.offset}")
            return self._fail(outcome, RecordState.DISPATCH_FAILED, e, record)

        outcome.advance(RecordState.DISPATCHED)
        return outcome

    @staticmethod
    def _correlation_id(view: Any) -> Optional[str]:
        entity_id = view.extract("id")
        return None if is_absent(entity_id) else str(entity_id)

    def _fail(
        self,
        outcome: RecordOutcome,
        state: RecordState,
        error: Exception,
        record: Record,
    ) -> RecordOutcome:
        code = getattr(error, "code", "DispatchFailed")
        if state == RecordState.DISPATCH_FAILED and code not in ("RecipientUnresolvable", "EmailSendFailed"):
            code = "DispatchFailed"
        message = getattr(error, "message", str(error))

        outcome.error_code = code
        outcome.error = message
        outcome.advance(state)

        log = logger.error if state == RecordState.DISPATCH_FAILED else logger.warning
        log(
            f"[{code}] topic={record.topic} partition={record.partition} offset={record.offset} "
            f"envelope={record.envelope.envelope_id} correlation_id={outcome.correlation_id}: {message}",
            extra={"code": code, "topic": record.topic, "correlation_id": outcome.correlation_id},
        )
        return outcome

    # =========================================================================
    # Stats
    # =========================================================================

    def _count(self, state: RecordState) -> None:
        with self._stats_lock:
            self._stats[state.value] += 1

    def stats(self) -> dict[str, int]:
        """Processed-record counts by final state."""
        with self._stats_lock:
            counts = {s.value: 0 for s in (RecordState.ACKNOWLEDGED, *FAILURE_STATES)}
            counts.update(self._stats)
        return counts
