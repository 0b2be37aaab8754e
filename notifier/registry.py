"""
Strategy registry: topic -> (strategy, subject template, body template).

The table is static and built once at import. It is the only place that
knows which topics produce emails, which fields each one reads from the
payload, and what the message says.

Templates use {placeholder} substitution. A placeholder whose field is absent
from the payload renders as an empty string, never as an error.

Design decisions:
- Pure lookup and formatting; no I/O and no mutable state, so every consumer
  worker can share one registry without locking
- plan() is a pure function (topic, payload) -> NotificationRequest
- Every topic in the taxonomy has a rule; most user and proposal changes
  notify nobody. A registry built from custom rules raises UnknownTopic for
  the topics it leaves out
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from notifier.strategies import NotificationStrategy, StrategyKind, get_strategy
from shared.codec import ABSENT, PayloadView, decode, is_absent
from shared.errors import MalformedPayload, UnknownTopic
from shared.topics import ChangeTopic, parse_topic


@dataclass(frozen=True)
class NotificationRule:
    """
    How one topic is turned into an email.

    Attributes:
        strategy: Which party is notified
        subject_template: Subject line with {placeholders}
        body_template: Body with {placeholders}
        fields: Placeholder name -> dotted payload path
        required: Placeholder names the payload must provide
    """
    strategy: StrategyKind
    subject_template: str
    body_template: str
    fields: Mapping[str, str] = field(default_factory=dict)
    required: tuple[str, ...] = ()


@dataclass(frozen=True)
class NotificationRequest:
    """Everything needed to dispatch one notification."""
    topic: ChangeTopic
    strategy: NotificationStrategy
    subject: str
    body: str
    fields: Mapping[str, Any]


class _Substitutions(dict):
    """Template values; missing or absent fields render as ''."""

    def __missing__(self, key: str) -> str:
        return ""


def render_template(template: str, fields: Mapping[str, Any]) -> str:
    """Expand {placeholders}, substituting '' for absent values."""
    values = _Substitutions(
        (name, "" if is_absent(value) or value is None else value)
        for name, value in fields.items()
    )
    return template.format_map(values)


# =============================================================================
# Rule Definitions
# =============================================================================

_TASK_FIELDS = {
    "task_id": "id",
    "title": "title",
    "freelancer_id": "freelancer.id",
    "freelancer_username": "freelancer.username",
    "freelancer_email": "freelancer.email",
    "customer_id": "customer.id",
    "customer_username": "customer.username",
    "customer_email": "customer.email",
}

_USER_FIELDS = {
    "user_id": "id",
    "user_username": "username",
    "user_email": "email",
    "first_name": "first_name",
}

_PROPOSAL_FIELDS = {
    "proposal_id": "id",
    "task_id": "task_id",
    "freelancer_id": "freelancer_id",
}

RULES: Mapping[ChangeTopic, NotificationRule] = MappingProxyType({

    ChangeTopic.TASK_POSTED: NotificationRule(
        strategy=StrategyKind.NOBODY,
        subject_template="New task posted: {title}",
        body_template="""The task "{title}" has been posted and is open for proposals.
""",
        fields=_TASK_FIELDS,
        required=("title",),
    ),

    ChangeTopic.FREELANCER_ASSIGNED: NotificationRule(
        strategy=StrategyKind.FREELANCER,
        subject_template="You have been assigned to {title}",
        body_template="""Hi {freelancer_username},

You have been assigned to the task "{title}".

Good luck with the work!
""",
        fields=_TASK_FIELDS,
        required=("title",),
    ),

    ChangeTopic.TASK_ACCEPTED: NotificationRule(
        strategy=StrategyKind.CUSTOMER,
        subject_template="Task accepted: {title}",
        body_template="""Hi {customer_username},

The task "{title}" has been marked as accepted. Work by {freelancer_username} is complete.

Thank you for using the platform!
""",
        fields=_TASK_FIELDS,
        required=("title",),
    ),

    ChangeTopic.FREELANCER_REMOVED: NotificationRule(
        strategy=StrategyKind.FREELANCER,
        subject_template="You have been removed from {title}",
        body_template="""Hi {freelancer_username},

You are no longer assigned to the task "{title}".

The task is open for other freelancers again.
""",
        fields=_TASK_FIELDS,
        required=("title",),
    ),

    ChangeTopic.TASK_SEND_ON_REVIEW: NotificationRule(
        strategy=StrategyKind.CUSTOMER,
        subject_template="Ready for review: {title}",
        body_template="""Hi {customer_username},

{freelancer_username} has sent the solution for "{title}" for your review.

Please review it and accept it or request changes.
""",
        fields=_TASK_FIELDS,
        required=("title",),
    ),

    ChangeTopic.USER_CREATED: NotificationRule(
        strategy=StrategyKind.SUBJECT_USER,
        subject_template="Welcome to the Freelance Platform, {user_username}",
        body_template="""Hi {first_name},

Your account "{user_username}" has been created.

Thanks for joining us!
""",
        fields=_USER_FIELDS,
        required=("user_username",),
    ),

    ChangeTopic.USER_UPDATED: NotificationRule(
        strategy=StrategyKind.NOBODY,
        subject_template="User updated: {user_username}",
        body_template="",
        fields=_USER_FIELDS,
    ),

    ChangeTopic.USER_DELETED: NotificationRule(
        strategy=StrategyKind.NOBODY,
        subject_template="User deleted: {user_username}",
        body_template="",
        fields=_USER_FIELDS,
    ),

    ChangeTopic.PROPOSAL_CREATED: NotificationRule(
        strategy=StrategyKind.NOBODY,
        subject_template="Proposal {proposal_id} created for task {task_id}",
        body_template="",
        fields=_PROPOSAL_FIELDS,
    ),

    ChangeTopic.PROPOSAL_UPDATED: NotificationRule(
        strategy=StrategyKind.NOBODY,
        subject_template="Proposal {proposal_id} updated",
        body_template="",
        fields=_PROPOSAL_FIELDS,
    ),

    ChangeTopic.PROPOSAL_DELETED: NotificationRule(
        strategy=StrategyKind.NOBODY,
        subject_template="Proposal {proposal_id} withdrawn",
        body_template="",
        fields=_PROPOSAL_FIELDS,
    ),
})


# =============================================================================
# Registry
# =============================================================================

TopicLike = Union[ChangeTopic, str]


class StrategyRegistry:
    """
    Read-only lookup from topic to strategy and message templates.

    Example:
        registry = StrategyRegistry()
        request = registry.plan(ChangeTopic.FREELANCER_ASSIGNED, payload_bytes)
        request.subject   # "You have been assigned to Fix bug"
    """

    def __init__(self, rules: Optional[Mapping[ChangeTopic, NotificationRule]] = None):
        self._rules = MappingProxyType(dict(RULES if rules is None else rules))

    @staticmethod
    def _topic(topic: TopicLike) -> ChangeTopic:
        return topic if isinstance(topic, ChangeTopic) else parse_topic(topic)

    def rule_for(self, topic: TopicLike) -> NotificationRule:
        """
        Raises:
            UnknownTopic: If the topic has no notification rule
        """
        resolved = self._topic(topic)
        rule = self._rules.get(resolved)
        if rule is None:
            raise UnknownTopic(f"No notification rule for topic {resolved}", {"topic": resolved.wire_name})
        return rule

    def topics(self) -> list[ChangeTopic]:
        """Topics with a rule, i.e. the ones to subscribe to."""
        return list(self._rules)

    def strategy_for(self, topic: TopicLike) -> NotificationStrategy:
        return get_strategy(self.rule_for(topic).strategy)

    def subject_for(self, topic: TopicLike) -> str:
        """The unexpanded subject template."""
        return self.rule_for(topic).subject_template

    def fields_for(self, topic: TopicLike) -> Mapping[str, str]:
        return self.rule_for(topic).fields

    def render_subject(self, topic: TopicLike, fields: Mapping[str, Any]) -> str:
        return render_template(self.rule_for(topic).subject_template, fields)

    def body_for(self, topic: TopicLike, fields: Mapping[str, Any]) -> str:
        return render_template(self.rule_for(topic).body_template, fields)

    def extract_fields(self, topic: TopicLike, payload: Any) -> dict[str, Any]:
        """
        Extract the fields the topic's rule reads.

        Raises:
            MalformedPayload: If the payload is unparseable or lacks a required field
        """
        rule = self.rule_for(topic)
        view: PayloadView = decode(payload)
        fields = view.extract_many(rule.fields)

        missing = [name for name in rule.required if is_absent(fields.get(name, ABSENT))]
        if missing:
            raise MalformedPayload(
                f"Payload for {self._topic(topic)} is missing required field(s): {', '.join(missing)}",
                {"topic": self._topic(topic).wire_name, "missing": missing},
            )
        return fields

    def plan(self, topic: TopicLike, payload: Any) -> NotificationRequest:
        """Build the notification for one payload without side effects."""
        resolved = self._topic(topic)
        rule = self.rule_for(resolved)
        fields = self.extract_fields(resolved, payload)
        return NotificationRequest(
            topic=resolved,
            strategy=get_strategy(rule.strategy),
            subject=render_template(rule.subject_template, fields),
            body=render_template(rule.body_template, fields),
            fields=MappingProxyType(fields),
        )


_default_registry = StrategyRegistry()


def get_registry() -> StrategyRegistry:
    """The registry built from RULES."""
    return _default_registry
