"""
Tests for the change publisher.
"""

import json
import logging

import pytest
from producer.publisher import ChangePublisher
from shared.errors import UnknownTopic
from shared.models import Task, User
from shared.topics import ChangeKind, EntityKind


@pytest.fixture
def task(customer, alice) -> Task:
    return Task(id=100, customer=customer, freelancer=alice, title="Fix bug")


class TestPublish:
    """Tests for ChangePublisher.publish."""

    def test_publish_routes_to_topic(self, broker, task):
        publisher = ChangePublisher(EntityKind.TASK, broker)

        assert publisher.publish(task, ChangeKind.FREELANCER_ASSIGNED) is True

        records = broker.records("freelancer_assigned")
        assert len(records) == 1
        assert records[0].envelope.key == "100"
        assert json.loads(records[0].payload)["freelancer"]["username"] == "alice"
        assert publisher.published_count == 1

    def test_same_entity_same_partition(self, broker, task):
        publisher = ChangePublisher("task", broker)

        for _ in range(3):
            publisher.publish(task, ChangeKind.FREELANCER_ASSIGNED)

        records = broker.records("freelancer_assigned")
        assert {r.partition for r in records} == {broker.partition_for("100")}
        assert [r.offset for r in records] == [0, 1, 2]

    def test_snapshot_without_id_is_keyless(self, broker):
        publisher = ChangePublisher(EntityKind.PROPOSAL, broker)

        publisher.publish({"task_id": 1, "freelancer_id": 2}, ChangeKind.CREATED)

        assert broker.records("proposal_created")[0].envelope.key is None

    def test_invalid_change_kind_raises(self, broker):
        publisher = ChangePublisher(EntityKind.USER, broker)

        with pytest.raises(UnknownTopic):
            publisher.publish(User(id=1, username="bob"), ChangeKind.POSTED)

        assert broker.records() == []


class TestBrokerOutage:
    """A broker outage is reported, never raised."""

    def test_unavailable_broker_returns_false(self, broker, task, caplog):
        broker.available = False
        publisher = ChangePublisher(EntityKind.TASK, broker)

        with caplog.at_level(logging.WARNING, logger="publisher"):
            result = publisher.publish(task, ChangeKind.FREELANCER_ASSIGNED)

        assert result is False
        assert publisher.failed_count == 1
        assert publisher.published_count == 0
        assert publisher.last_failure.code == "PublishFailed"

        logged = [r for r in caplog.records if getattr(r, "code", None) == "PublishFailed"]
        assert len(logged) == 1
        assert logged[0].topic == "freelancer_assigned"
        assert logged[0].correlation_id == "100"

    def test_publishing_resumes_after_outage(self, broker, task):
        publisher = ChangePublisher(EntityKind.TASK, broker)
        broker.available = False
        publisher.publish(task, ChangeKind.POSTED)
        broker.available = True

        assert publisher.publish(task, ChangeKind.POSTED) is True
        assert len(broker.records("task_posted")) == 1

    @pytest.mark.parametrize("error", [
        ConnectionError("broker connection reset"),
        TimeoutError("broker send timed out"),
    ])
    def test_connection_errors_return_false(self, task, error):
        class FlakyBroker:
            def send(self, topic, payload, key=None):
                raise error

        publisher = ChangePublisher(EntityKind.TASK, FlakyBroker())

        assert publisher.publish(task, ChangeKind.FREELANCER_ASSIGNED) is False
        assert publisher.failed_count == 1
        assert publisher.last_failure.code == "PublishFailed"
