"""
Tests for the assembled notification service and the demo scenarios.

These are end-to-end: platform services publish, the notification service
consumes, and assertions are made on the emails sent.
"""

import pytest
from notifier.demo import SCENARIOS, run_scenario
from notifier.directory import FixtureUserDirectory, HttpUserDirectory
from notifier.service import NotificationService, build_directory
from producer.services import TaskService, UserService
from shared.config import NotifierConfig


@pytest.fixture
def service(broker, email_channel, directory):
    service = NotificationService(broker=broker, channel=email_channel, directory=directory)
    yield service
    service.stop()


class TestNotificationService:
    """Tests for NotificationService wiring."""

    def test_end_to_end(self, service, broker, email_channel, customer, alice):
        tasks = TaskService(broker)
        tasks.post_task(1, customer, "Fix bug")
        tasks.assign_freelancer(1, alice)
        UserService(broker).register(alice)

        service.drain()

        assert sorted(m.recipient for m in email_channel.sent_messages) == ["a@x.com", "a@x.com"]
        assert service.stats()["acknowledged"] == 3

    def test_start_and_stop(self, service):
        service.start()
        assert service.running
        assert service.consumer.subscribed

        service.stop()
        assert not service.running
        assert not service.consumer.subscribed

    def test_defaults_from_config(self):
        config = NotifierConfig(partitions=5, group_id="notifier-test")
        service = NotificationService(config=config)

        try:
            assert service.broker.partitions == 5
            assert service.consumer.group_id == "notifier-test"
            assert isinstance(service.directory, FixtureUserDirectory)
        finally:
            service.stop()


def test_build_directory_http():
    directory = build_directory(NotifierConfig(user_lookup="http", user_service_url="http://users.test/"))

    try:
        assert isinstance(directory, HttpUserDirectory)
        assert directory.base_url == "http://users.test"
    finally:
        directory.close()


class TestScenarios:
    """Tests for the demo scenarios."""

    def test_freelancer_assigned(self):
        report = run_scenario("freelancer-assigned")

        assert report.notifications_sent == 1
        assert report.messages[0]["recipient"] == "a@x.com"
        assert report.messages[0]["subject"] == "You have been assigned to Fix bug"

    def test_task_posted(self):
        report = run_scenario("task-posted")

        assert report.messages == []
        assert report.stats["acknowledged"] == 1

    def test_task_lifecycle(self):
        report = run_scenario("task-lifecycle")

        recipients = sorted(m["recipient"] for m in report.messages)
        assert recipients == [
            "a@x.com",
            "bob.smith@example.com",
            "bob.smith@example.com",
            "carol.white@example.com",
            "carol.white@example.com",
        ]
        assert report.stats["acknowledged"] == 6

    def test_user_registered(self):
        report = run_scenario("user-registered")

        assert report.messages[0]["recipient"] == "frank@example.com"
        assert report.messages[0]["subject"].startswith("Welcome")

    def test_unknown_topic(self):
        report = run_scenario("unknown-topic")

        assert report.stats["unknown_topic"] == 1
        assert report.messages == []

    def test_email_failure(self):
        report = run_scenario("email-failure")

        assert report.notifications_sent == 0
        assert report.stats["dispatch_failed"] == 2
        assert report.stats["acknowledged"] == 1
        assert {o.error_code for o in report.outcomes if o.failed} == {"EmailSendFailed"}

    def test_every_scenario_runs(self):
        for name in SCENARIOS:
            assert run_scenario(name).scenario == name

    def test_unknown_scenario(self):
        with pytest.raises(ValueError):
            run_scenario("nope")
