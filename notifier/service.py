"""
Notification service: wires the consumer side together.

Builds the registry, dispatcher and consumer from a NotifierConfig and the
collaborators (broker, user directory, email channel). Anything not passed in
is created from the config.

Example:
    broker = InMemoryBroker()
    service = NotificationService(broker=broker)
    service.start()                 # consume in the background
    TaskService(broker).post_task(...)
    ...
    service.stop()                  # drain and leave the group
"""

import logging
from typing import Optional

from notifier.channels import EmailChannel, EmailSender
from notifier.consumer import ChangeConsumer, RecordOutcome
from notifier.directory import FixtureUserDirectory, HttpUserDirectory, UserDirectory
from notifier.dispatcher import NotificationDispatcher
from notifier.registry import StrategyRegistry, get_registry
from shared.broker import InMemoryBroker
from shared.config import NotifierConfig

logger = logging.getLogger("notification_service")


def build_directory(config: NotifierConfig) -> UserDirectory:
    """User directory selected by config.user_lookup."""
    if config.user_lookup == "http":
        return HttpUserDirectory(config.user_service_url, timeout_s=config.lookup_timeout_s)
    return FixtureUserDirectory(data_dir=config.data_dir)


class NotificationService:
    """Event-driven notification service."""

    def __init__(
        self,
        config: Optional[NotifierConfig] = None,
        broker: Optional[InMemoryBroker] = None,
        directory: Optional[UserDirectory] = None,
        channel: Optional[EmailSender] = None,
        registry: Optional[StrategyRegistry] = None,
        topics: Optional[list[str]] = None,
    ):
        """
        Initialize the notification service.

        Args:
            config: Settings (defaults to NotifierConfig())
            broker: Broker to consume from (defaults to a new in-memory broker)
            directory: User lookup (defaults to the one config selects)
            channel: Email sender (defaults to a mock EmailChannel)
            registry: Topic rules (defaults to the built-in table)
            topics: Topics to subscribe to (defaults to every topic with a rule)
        """
        self.config = config or NotifierConfig()
        self.broker = broker or InMemoryBroker(partitions=self.config.partitions)
        self.directory = directory or build_directory(self.config)
        self.channel = channel or EmailChannel(
            fail_rate=self.config.email_fail_rate,
            from_addr=self.config.email_from,
        )
        self.registry = registry or get_registry()
        self.dispatcher = NotificationDispatcher(self.channel, self.directory)
        self.consumer = ChangeConsumer(
            self.broker,
            self.registry,
            self.dispatcher,
            topics=topics,
            group_id=self.config.group_id,
            max_workers=self.config.max_workers,
            fetch_max=self.config.fetch_max,
        )
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    def start(self) -> None:
        """Start consuming in the background."""
        if self._started:
            logger.warning("NotificationService already started")
            return
        self.consumer.start(self.config.poll_interval_s)
        self._started = True
        logger.info("NotificationService started")

    def stop(self) -> None:
        """Drain in-flight records and leave the consumer group."""
        if not self._started:
            self.consumer.close()
            return
        self.consumer.stop()
        self._started = False
        logger.info("NotificationService stopped")

    def drain(self) -> list[RecordOutcome]:
        """Process everything waiting on the broker, in the calling thread."""
        return self.consumer.drain()

    def stats(self) -> dict[str, int]:
        return self.consumer.stats()
