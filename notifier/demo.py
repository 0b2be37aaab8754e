"""
Demonstration scenarios for the change-notification pipeline.

Each scenario builds a fresh broker, platform services and notification
service, performs some platform actions, drains the consumer, and returns a
DemoReport. The CLI prints the reports; the ops API returns them as JSON.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from notifier.channels import EmailChannel
from notifier.consumer import RecordOutcome
from notifier.directory import FixtureUserDirectory
from notifier.service import NotificationService
from producer.services import TaskService, UserService
from shared.broker import InMemoryBroker
from shared.codec import encode
from shared.config import NotifierConfig
from shared.models import User

logger = logging.getLogger("demo")

CUSTOMER = User(id=1, username="bob", first_name="Bob", email="bob.smith@example.com")
ALICE = User(id=2, username="alice", first_name="Alice", email="a@x.com")


@dataclass
class DemoReport:
    """What a scenario did."""
    scenario: str
    outcomes: list[RecordOutcome] = field(default_factory=list)
    messages: list[dict] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)

    @property
    def notifications_sent(self) -> int:
        return sum(1 for m in self.messages if m["success"])


def _setup(
    config: Optional[NotifierConfig] = None,
    email_fail_rate: float = 0.0,
    topics: Optional[list[str]] = None,
) -> tuple[InMemoryBroker, NotificationService, EmailChannel]:
    config = config or NotifierConfig()
    broker = InMemoryBroker(partitions=config.partitions)
    channel = EmailChannel(fail_rate=email_fail_rate, from_addr=config.email_from)
    service = NotificationService(
        config=config,
        broker=broker,
        directory=FixtureUserDirectory(data_dir=config.data_dir),
        channel=channel,
        topics=topics,
    )
    return broker, service, channel


def _report(scenario: str, service: NotificationService, channel: EmailChannel) -> DemoReport:
    outcomes = service.drain()
    service.stop()
    return DemoReport(
        scenario=scenario,
        outcomes=outcomes,
        messages=[
            {"recipient": m.recipient, "subject": m.subject, "success": m.success, "error": m.error}
            for m in channel.sent_messages
        ],
        stats=service.stats(),
    )


def run_freelancer_assigned_demo(config: Optional[NotifierConfig] = None) -> DemoReport:
    """A freelancer is assigned to a task and gets an email."""
    broker, service, channel = _setup(config)
    tasks = TaskService(broker)

    tasks.post_task(100, CUSTOMER, "Fix bug")
    tasks.assign_freelancer(100, ALICE)
    return _report("freelancer-assigned", service, channel)


def run_task_posted_demo(config: Optional[NotifierConfig] = None) -> DemoReport:
    """A task is posted with no freelancer; nobody is emailed and nothing fails."""
    broker, service, channel = _setup(config)
    TaskService(broker).post_task(101, CUSTOMER, "New task")
    return _report("task-posted", service, channel)


def run_task_lifecycle_demo(config: Optional[NotifierConfig] = None) -> DemoReport:
    """
    A task goes through its whole lifecycle.

    The customer snapshot carries no email, so the customer's address is
    looked up in the user directory.
    """
    broker, service, channel = _setup(config)
    tasks = TaskService(broker)
    customer = CUSTOMER.model_copy(update={"email": None})
    carol = User(id=3, username="carol", first_name="Carol", email="carol.white@example.com")

    tasks.post_task(102, customer, "Design a logo")
    tasks.assign_freelancer(102, carol)
    tasks.remove_freelancer(102)
    tasks.assign_freelancer(102, ALICE)
    tasks.send_on_review(102)
    tasks.accept_task(102)
    return _report("task-lifecycle", service, channel)


def run_user_registered_demo(config: Optional[NotifierConfig] = None) -> DemoReport:
    """A new user registers and gets a welcome email."""
    broker, service, channel = _setup(config)
    UserService(broker).register(
        User(id=7, username="frank", first_name="Frank", email="frank@example.com")
    )
    return _report("user-registered", service, channel)


def run_unknown_topic_demo(config: Optional[NotifierConfig] = None) -> DemoReport:
    """A record arrives on a topic outside the taxonomy; it is logged and acknowledged."""
    bogus = "TASK_POSTED_X"
    broker, service, channel = _setup(config, topics=[bogus, "task_posted"])
    broker.send(bogus, encode({"id": 103, "title": "Typo'd topic"}), key="103")
    return _report("unknown-topic", service, channel)


def run_email_failure_demo(config: Optional[NotifierConfig] = None) -> DemoReport:
    """The email channel fails; the consumer logs it and moves on."""
    broker, service, channel = _setup(config, email_fail_rate=1.0)
    tasks = TaskService(broker)
    tasks.post_task(104, CUSTOMER, "Fix bug")
    tasks.assign_freelancer(104, ALICE)
    UserService(broker).register(
        User(id=8, username="grace", first_name="Grace", email="grace@example.com")
    )
    return _report("email-failure", service, channel)


SCENARIOS: dict[str, Callable[..., DemoReport]] = {
    "freelancer-assigned": run_freelancer_assigned_demo,
    "task-posted": run_task_posted_demo,
    "task-lifecycle": run_task_lifecycle_demo,
    "user-registered": run_user_registered_demo,
    "unknown-topic": run_unknown_topic_demo,
    "email-failure": run_email_failure_demo,
}


def run_scenario(name: str, config: Optional[NotifierConfig] = None) -> DemoReport:
    """
    Raises:
        ValueError: If the scenario name is unknown
    """
    runner = SCENARIOS.get(name)
    if runner is None:
        raise ValueError(f"Unknown scenario: {name}")
    logger.info(f"Running scenario '{name}'")
    return runner(config)


def print_report(report: DemoReport) -> None:
    """Print a report for the CLI."""
    print("\n" + "=" * 70)
    print(f"SCENARIO: {report.scenario}")
    print("=" * 70)
    for outcome in report.outcomes:
        states = " -> ".join(s.value for s in outcome.history)
        line = f"  {outcome.topic}[{outcome.partition}]@{outcome.offset}: {states}"
        if outcome.error_code:
            line += f" ({outcome.error_code})"
        print(line)
    print("-" * 70)
    for message in report.messages:
        status = "✓" if message["success"] else "✗"
        print(f"  {status} {message['recipient']}: {message['subject']}")
    print(f"\nNotifications sent: {report.notifications_sent}")
    print(f"Stats: {report.stats}\n")
