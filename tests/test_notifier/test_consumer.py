"""
Tests for the change consumer.

These tests drive records through the consumer state machine:
1. A platform action publishes a change envelope
2. The consumer classifies it and picks a strategy
3. The right party is emailed, or the failure is logged
4. The record is acknowledged either way
"""

import logging
import threading
import time

import pytest
from notifier.consumer import ChangeConsumer, RecordState
from notifier.dispatcher import NotificationDispatcher
from producer.services import TaskService
from shared.broker import InMemoryBroker
from shared.codec import encode
from shared.models import Task
from shared.topics import ChangeTopic, all_topic_names


FULL_PATH = [
    RecordState.RECEIVED,
    RecordState.PARSED,
    RecordState.CLASSIFIED,
    RecordState.DISPATCHED,
    RecordState.ACKNOWLEDGED,
]


class BlockingBroker(InMemoryBroker):
    """Broker whose fetch waits until released."""

    def __init__(self):
        super().__init__(partitions=1)
        self.entered = threading.Event()
        self.release = threading.Event()

    def fetch(self, group_id, tp, max_records=100):
        self.entered.set()
        self.release.wait(5)
        return super().fetch(group_id, tp, max_records)


class TestFreelancerAssigned:
    """A freelancer is emailed when assigned to a task."""

    def test_assignment_emails_freelancer(self, broker, consumer, email_channel, customer, alice):
        task = Task(id=100, customer=customer, freelancer=alice, title="Fix bug")
        broker.send("freelancer_assigned", encode(task), key="100")

        outcomes = consumer.drain()

        assert len(outcomes) == 1
        outcome = outcomes[0]
        assert outcome.history == FULL_PATH
        assert outcome.acknowledged
        assert outcome.correlation_id == "100"
        assert outcome.sent

        assert email_channel.get_sent_count() == 1
        message = email_channel.find_message_to("a@x.com")
        assert message.subject == "You have been assigned to Fix bug"
        assert message.body.startswith("Hi alice,")

    def test_committed_offset_advances(self, broker, consumer, customer, alice):
        record = broker.send(
            "freelancer_assigned",
            encode(Task(id=100, customer=customer, freelancer=alice, title="Fix bug")),
            key="100",
        )

        consumer.drain()

        assert broker.committed(consumer.group_id, record.topic_partition) == 1
        assert consumer.poll_once() == []


class TestTaskPosted:
    """A posted task has no freelancer and emails nobody."""

    def test_no_email_and_no_error(self, broker, consumer, email_channel, customer):
        broker.send("task_posted", encode(Task(id=101, customer=customer, title="New task")), key="101")

        outcomes = consumer.drain()

        assert outcomes[0].state == RecordState.ACKNOWLEDGED
        assert outcomes[0].error_code is None
        assert outcomes[0].result is None
        assert email_channel.get_sent_count() == 0


class TestUnknownTopic:
    """A record on a topic outside the taxonomy is logged and acknowledged."""

    def test_unknown_topic_is_acknowledged(self, broker, registry, dispatcher, email_channel, caplog):
        consumer = ChangeConsumer(broker, registry, dispatcher, topics=["TASK_POSTED_X"])
        record = broker.send("TASK_POSTED_X", encode({"id": 103, "title": "Typo"}), key="103")

        try:
            with caplog.at_level(logging.WARNING, logger="change_consumer"):
                outcomes = consumer.drain()
        finally:
            consumer.close()

        assert outcomes[0].state == RecordState.UNKNOWN_TOPIC
        assert outcomes[0].error_code == "UnknownTopic"
        assert outcomes[0].acknowledged
        assert broker.committed(consumer.group_id, record.topic_partition) == 1
        assert email_channel.get_sent_count() == 0

        logged = [r for r in caplog.records if getattr(r, "code", None) == "UnknownTopic"]
        assert len(logged) == 1
        assert logged[0].topic == "TASK_POSTED_X"
        assert logged[0].correlation_id == "103"

    def test_known_topic_is_never_unknown(self, broker, consumer, email_channel):
        """Changes that email nobody still pass classification."""
        broker.send("user_deleted", encode({"id": 4, "username": "dave"}), key="4")
        broker.send("proposal_created", encode({"id": 5, "freelancer_id": 2, "task_id": 1}), key="5")

        outcomes = consumer.drain()

        assert [o.history for o in outcomes] == [FULL_PATH, FULL_PATH]
        assert all(o.error_code is None for o in outcomes)
        assert email_channel.get_sent_count() == 0


class TestEmailFailure:
    """A failed send is logged, acknowledged, and does not block later records."""

    def test_failure_is_acknowledged(self, broker, registry, failing_email_channel, directory, customer, alice):
        dispatcher = NotificationDispatcher(failing_email_channel, directory)
        consumer = ChangeConsumer(broker, registry, dispatcher)
        task = Task(id=104, customer=customer, freelancer=alice, title="Fix bug")
        first = broker.send("freelancer_assigned", encode(task), key="104")
        broker.send("freelancer_assigned", encode(task.model_copy(update={"id": 105})), key="104")

        try:
            outcomes = consumer.drain()
        finally:
            consumer.close()

        assert [o.state for o in outcomes] == [RecordState.DISPATCH_FAILED] * 2
        assert all(o.error_code == "EmailSendFailed" for o in outcomes)
        assert all(o.acknowledged for o in outcomes)
        assert broker.committed(consumer.group_id, first.topic_partition) == 2
        assert consumer.stats()["dispatch_failed"] == 2

    def test_unresolvable_recipient(self, broker, consumer, email_channel):
        payload = encode({"id": 106, "title": "Fix bug", "freelancer": {"username": "zed"}})
        broker.send("freelancer_assigned", payload, key="106")

        outcome = consumer.drain()[0]

        assert outcome.state == RecordState.DISPATCH_FAILED
        assert outcome.error_code == "RecipientUnresolvable"
        assert email_channel.get_sent_count() == 0

    def test_unexpected_error_is_dispatch_failed(self, broker, registry, email_channel):
        class ExplodingDirectory:
            def resolve_user(self, identifier):
                raise RuntimeError("boom")

        dispatcher = NotificationDispatcher(email_channel, ExplodingDirectory())
        consumer = ChangeConsumer(broker, registry, dispatcher)
        broker.send("task_accepted", encode({"id": 1, "title": "t", "customer": {"username": "bob"}}), key="1")

        try:
            outcome = consumer.drain()[0]
        finally:
            consumer.close()

        assert outcome.state == RecordState.DISPATCH_FAILED
        assert outcome.error_code == "DispatchFailed"
        assert outcome.acknowledged


class TestMalformedPayload:
    """Payloads that cannot be read are acknowledged as malformed."""

    def test_unparseable_payload(self, broker, consumer, email_channel):
        broker.send("freelancer_assigned", b"\x00not json", key="1")

        outcome = consumer.drain()[0]

        assert outcome.history == [RecordState.RECEIVED, RecordState.MALFORMED]
        assert outcome.error_code == "MalformedPayload"
        assert outcome.correlation_id is None
        assert outcome.acknowledged
        assert email_channel.get_sent_count() == 0

    def test_missing_required_field(self, broker, consumer):
        broker.send("freelancer_assigned", encode({"id": 7, "freelancer": None}), key="7")

        outcome = consumer.drain()[0]

        assert outcome.history == [
            RecordState.RECEIVED,
            RecordState.PARSED,
            RecordState.CLASSIFIED,
            RecordState.MALFORMED,
        ]
        assert outcome.correlation_id == "7"


class TestDelivery:
    """Ordering, redelivery and concurrency."""

    def test_partition_order_is_preserved(self, broker, consumer, email_channel, customer, alice):
        task = Task(id=200, customer=customer, freelancer=alice, title="First")
        for title in ("First", "Second", "Third"):
            broker.send("freelancer_assigned", encode(task.model_copy(update={"title": title})), key="200")

        outcomes = consumer.drain()

        assert [o.offset for o in outcomes] == [0, 1, 2]
        assert [m.subject for m in email_channel.sent_messages] == [
            "You have been assigned to First",
            "You have been assigned to Second",
            "You have been assigned to Third",
        ]

    def test_redelivered_record_is_sent_again(self, broker, consumer, email_channel, customer, alice):
        """There is no de-duplication: processing a record twice sends twice."""
        record = broker.send(
            "freelancer_assigned",
            encode(Task(id=100, customer=customer, freelancer=alice, title="Fix bug")),
            key="100",
        )

        consumer.process(record)
        consumer.process(record)

        first, second = email_channel.sent_messages
        assert (first.recipient, first.subject, first.body) == (second.recipient, second.subject, second.body)

    def test_process_does_not_acknowledge(self, consumer, make_record):
        outcome = consumer.process(make_record("task_posted", encode({"title": "x"})))

        assert outcome.state == RecordState.DISPATCHED
        assert not outcome.acknowledged

    def test_many_partitions_in_parallel(self, broker, consumer, email_channel, customer, alice):
        for task_id in range(20):
            task = Task(id=task_id, customer=customer, freelancer=alice, title=f"Task {task_id}")
            broker.send("freelancer_assigned", encode(task), key=str(task_id))

        outcomes = consumer.drain()

        assert len(outcomes) == 20
        assert email_channel.get_sent_count() == 20
        assert consumer.stats()["acknowledged"] == 20
        assert broker.lag(consumer.group_id, consumer.topics) == 0

    def test_broker_outage_skips_poll(self, broker, consumer, customer):
        broker.send("task_posted", encode(Task(id=1, customer=customer, title="t")), key="1")
        broker.available = False

        assert consumer.poll_once() == []

        broker.available = True
        assert len(consumer.poll_once()) == 1


class TestLifecycle:
    """Tests for background polling and shutdown."""

    def test_start_and_stop(self, broker, consumer, email_channel, customer, alice):
        consumer.start(poll_interval_s=0.01)
        tasks = TaskService(broker)
        tasks.post_task(1, customer, "Fix bug")
        tasks.post_task(2, customer, "Other")
        tasks.post_task(3, customer, "Third")
        tasks.assign_freelancer(3, alice)

        deadline = time.monotonic() + 5
        while email_channel.get_sent_count() < 1 and time.monotonic() < deadline:
            time.sleep(0.01)
        consumer.stop(timeout=5)

        assert email_channel.get_sent_count() == 1
        assert not broker.is_member(consumer.group_id)
        assert not consumer.subscribed

    def test_subscribe_defaults_to_every_topic(self, broker, consumer):
        parts = consumer.subscribe()

        assert {tp.topic for tp in parts} == set(all_topic_names())
        assert len(parts) == len(ChangeTopic) * broker.partitions

    def test_timed_out_stop_does_not_rejoin(self, registry, dispatcher):
        """A poller still busy when stop() gives up exits without rejoining the group."""
        broker = BlockingBroker()
        consumer = ChangeConsumer(broker, registry, dispatcher, topics=["task_posted"])
        consumer.start(poll_interval_s=0.01)
        assert broker.entered.wait(5)
        poller = consumer._thread

        threading.Timer(0.2, broker.release.set).start()
        consumer.stop(timeout=0.01)
        poller.join(5)

        assert not poller.is_alive()
        assert not broker.is_member(consumer.group_id)
        assert not consumer.subscribed

    def test_background_poll_after_stop_does_nothing(self, broker, consumer):
        consumer.start(poll_interval_s=0.01)
        consumer.stop(timeout=5)

        assert consumer._background_poll() is None
        assert not broker.is_member(consumer.group_id)
        assert not consumer.subscribed

    def test_stats_start_at_zero(self, consumer):
        assert consumer.stats() == {
            "acknowledged": 0,
            "malformed": 0,
            "unknown_topic": 0,
            "dispatch_failed": 0,
        }


@pytest.mark.parametrize("topic,payload,expected", [
    ("task_accepted", {"id": 1, "title": "t", "customer": {"username": "bob"}}, "bob.smith@example.com"),
    ("task_send_on_review", {"id": 1, "title": "t", "customer": {"id": 1}}, "bob.smith@example.com"),
    ("freelancer_removed", {"id": 1, "title": "t", "freelancer": {"username": "carol"}}, "carol.white@example.com"),
    ("user_created", {"id": 9, "username": "ivy", "email": "ivy@example.com"}, "ivy@example.com"),
])
def test_each_rule_reaches_its_recipient(broker, consumer, email_channel, topic, payload, expected):
    broker.send(topic, encode(payload), key=str(payload["id"]))

    outcome = consumer.drain()[0]

    assert outcome.state == RecordState.ACKNOWLEDGED
    assert email_channel.find_message_to(expected) is not None
