"""
Change-event topic taxonomy.

Topics are a closed set fixed at build time. Each topic combines an entity
kind (user, task, proposal) with a change kind (created, updated, deleted, or
a task state transition) and has one wire name used as the broker topic.

Design decisions:
- Topics are an Enum, so there is no way to add one at runtime
- Lookups fail with UnknownTopic instead of creating new names; a typo'd
  topic never becomes a new, unconsumed broker topic
- Task wire names match the ones the platform has always used on the broker
"""

from enum import Enum
from typing import Union

from shared.errors import UnknownTopic


class EntityKind(str, Enum):
    """Entities whose changes are published."""
    USER = "user"
    TASK = "task"
    PROPOSAL = "proposal"


class ChangeKind(str, Enum):
    """What happened to the entity."""
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"

    # Task lifecycle transitions
    POSTED = "posted"
    FREELANCER_ASSIGNED = "freelancer_assigned"
    ACCEPTED = "accepted"
    FREELANCER_REMOVED = "freelancer_removed"
    SENT_FOR_REVIEW = "sent_for_review"


class ChangeTopic(Enum):
    """
    The closed set of change topics.

    Member value is (wire name, entity kind, change kind).
    """
    USER_CREATED = ("user_created", EntityKind.USER, ChangeKind.CREATED)
    USER_UPDATED = ("user_updated", EntityKind.USER, ChangeKind.UPDATED)
    USER_DELETED = ("user_deleted", EntityKind.USER, ChangeKind.DELETED)

    PROPOSAL_CREATED = ("proposal_created", EntityKind.PROPOSAL, ChangeKind.CREATED)
    PROPOSAL_UPDATED = ("proposal_updated", EntityKind.PROPOSAL, ChangeKind.UPDATED)
    PROPOSAL_DELETED = ("proposal_deleted", EntityKind.PROPOSAL, ChangeKind.DELETED)

    TASK_POSTED = ("task_posted", EntityKind.TASK, ChangeKind.POSTED)
    FREELANCER_ASSIGNED = ("freelancer_assigned", EntityKind.TASK, ChangeKind.FREELANCER_ASSIGNED)
    TASK_ACCEPTED = ("task_accepted", EntityKind.TASK, ChangeKind.ACCEPTED)
    FREELANCER_REMOVED = ("freelancer_removed", EntityKind.TASK, ChangeKind.FREELANCER_REMOVED)
    TASK_SEND_ON_REVIEW = ("task_send_on_review", EntityKind.TASK, ChangeKind.SENT_FOR_REVIEW)

    @property
    def wire_name(self) -> str:
        """Name of the broker topic."""
        return self.value[0]

    @property
    def entity_kind(self) -> EntityKind:
        return self.value[1]

    @property
    def change_kind(self) -> ChangeKind:
        return self.value[2]

    def __str__(self) -> str:
        return self.wire_name


# =============================================================================
# Lookup tables (built once at import)
# =============================================================================

_BY_PAIR: dict[tuple[EntityKind, ChangeKind], ChangeTopic] = {
    (topic.entity_kind, topic.change_kind): topic for topic in ChangeTopic
}

_BY_NAME: dict[str, ChangeTopic] = {}
for _topic in ChangeTopic:
    if _topic.wire_name in _BY_NAME:
        raise RuntimeError(f"Duplicate topic wire name: {_topic.wire_name}")
    _BY_NAME[_topic.wire_name] = _topic
    _BY_NAME[_topic.name.lower()] = _topic


def topic_for(
    entity_kind: Union[EntityKind, str],
    change_kind: Union[ChangeKind, str],
) -> ChangeTopic:
    """
    Resolve the topic for an entity change.

    Raises:
        UnknownTopic: If the pair is not part of the taxonomy
    """
    try:
        pair = (EntityKind(entity_kind), ChangeKind(change_kind))
    except ValueError:
        raise UnknownTopic(
            f"No topic for ({entity_kind}, {change_kind})",
            {"entity_kind": str(entity_kind), "change_kind": str(change_kind)},
        ) from None

    topic = _BY_PAIR.get(pair)
    if topic is None:
        raise UnknownTopic(
            f"No topic for ({pair[0].value}, {pair[1].value})",
            {"entity_kind": pair[0].value, "change_kind": pair[1].value},
        )
    return topic


def parse_topic(name: str) -> ChangeTopic:
    """
    Resolve a wire name (case-insensitive) to its topic.

    Raises:
        UnknownTopic: If the name is not in the taxonomy
    """
    if not isinstance(name, str):
        raise UnknownTopic(f"Topic name must be a string, got {type(name).__name__}")

    topic = _BY_NAME.get(name.strip().lower())
    if topic is None:
        raise UnknownTopic(f"Unknown topic: {name!r}", {"topic": name})
    return topic


def topics_for_entity(entity_kind: Union[EntityKind, str]) -> list[ChangeTopic]:
    """All topics published for one entity kind, in declaration order."""
    kind = EntityKind(entity_kind)
    return [topic for topic in ChangeTopic if topic.entity_kind == kind]


def all_topic_names() -> list[str]:
    """Wire names of every topic."""
    return [topic.wire_name for topic in ChangeTopic]
