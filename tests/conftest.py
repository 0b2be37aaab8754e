"""
Shared pytest fixtures for the change-notification tests.

These fixtures provide consistent test data and fresh collaborators for
every test.
"""

import pytest
from pathlib import Path

from notifier.channels import EmailChannel
from notifier.consumer import ChangeConsumer
from notifier.directory import FixtureUserDirectory
from notifier.dispatcher import NotificationDispatcher
from notifier.registry import StrategyRegistry
from shared.broker import ChangeEnvelope, InMemoryBroker, Record
from shared.models import User


@pytest.fixture
def data_dir() -> Path:
    """Path to the fixture data directory."""
    return Path(__file__).parent.parent / "data"


@pytest.fixture
def broker() -> InMemoryBroker:
    """Fresh in-memory broker for each test."""
    return InMemoryBroker(partitions=3)


@pytest.fixture
def email_channel() -> EmailChannel:
    """Fresh EmailChannel that never fails."""
    return EmailChannel(fail_rate=0.0)


@pytest.fixture
def failing_email_channel() -> EmailChannel:
    """EmailChannel whose every send fails."""
    return EmailChannel(fail_rate=1.0)


@pytest.fixture
def directory(data_dir: Path) -> FixtureUserDirectory:
    """User directory backed by data/users.json."""
    return FixtureUserDirectory(data_dir=data_dir)


@pytest.fixture
def registry() -> StrategyRegistry:
    return StrategyRegistry()


@pytest.fixture
def dispatcher(email_channel, directory) -> NotificationDispatcher:
    return NotificationDispatcher(email_channel, directory)


@pytest.fixture
def consumer(broker, registry, dispatcher) -> ChangeConsumer:
    """Consumer subscribed to every topic with a rule; closed after the test."""
    consumer = ChangeConsumer(broker, registry, dispatcher, max_workers=2)
    yield consumer
    consumer.close()


@pytest.fixture
def make_record():
    """Build a Record as if delivered by the broker."""
    def _make(topic: str, payload: bytes, partition: int = 0, offset: int = 0) -> Record:
        return Record(
            topic=topic,
            partition=partition,
            offset=offset,
            envelope=ChangeEnvelope(topic=topic, payload=payload),
        )
    return _make


# =============================================================================
# User Fixtures (match data/users.json)
# =============================================================================

@pytest.fixture
def customer() -> User:
    """Bob, the customer who posts tasks."""
    return User(id=1, username="bob", first_name="Bob", email="bob.smith@example.com")


@pytest.fixture
def alice() -> User:
    """Alice, a freelancer. Her snapshot email differs from the directory on purpose."""
    return User(id=2, username="alice", first_name="Alice", email="a@x.com")


@pytest.fixture
def carol() -> User:
    """Carol, a freelancer."""
    return User(id=3, username="carol", first_name="Carol", email="carol.white@example.com")
