"""
Notification strategies: who gets notified for a topic.

Each strategy encapsulates one rule, expressed as the party to notify:
nobody, the task's freelancer, the task's customer, or the user the event is
about. A party is read from extracted fields named after it:

    <party>_email       used directly when present
    <party>_username    looked up in the user directory otherwise
    <party>_id          looked up when there is no username either

Strategies are stateless; one instance serves every worker.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union

from notifier.directory import ResolvedRecipient, UserDirectory
from shared.codec import is_absent
from shared.errors import RecipientUnresolvable, UserLookupFailed, UserNotFound

logger = logging.getLogger("strategies")


class StrategyKind(str, Enum):
    """Variant tags for the strategy table."""
    NOBODY = "nobody"
    FREELANCER = "freelancer"
    CUSTOMER = "customer"
    SUBJECT_USER = "subject_user"


@dataclass(frozen=True)
class UserReference:
    """A recipient known only by an identifier; needs a directory lookup."""
    identifier: Union[str, int]


RecipientRef = Union[ResolvedRecipient, UserReference]


def _present(value: Any) -> bool:
    return not is_absent(value) and value is not None and value != ""


class NotificationStrategy:
    """
    Base strategy. Subclasses set `kind` and `party`.

    Args to the methods are the fields extracted from the payload for the
    topic (see NotificationRule.fields).
    """

    kind: StrategyKind = StrategyKind.NOBODY
    party: Optional[str] = None

    def recipient_ref(self, fields: Mapping[str, Any]) -> Optional[RecipientRef]:
        """
        Who to notify, as far as the payload alone can tell.

        Returns:
            ResolvedRecipient if the payload has the email, UserReference if it
            only identifies the user, None if this rule notifies nobody

        Raises:
            RecipientUnresolvable: If the party is missing from the payload
        """
        if self.party is None:
            return None

        username = fields.get(f"{self.party}_username")
        email = fields.get(f"{self.party}_email")
        user_id = fields.get(f"{self.party}_id")

        if _present(email):
            return ResolvedRecipient(
                username=str(username) if _present(username) else "",
                email=str(email),
            )
        if _present(username):
            return UserReference(str(username))
        if _present(user_id):
            return UserReference(user_id)

        raise RecipientUnresolvable(
            f"Payload does not identify the {self.party}",
            {"party": self.party},
        )

    def resolve_recipient(
        self,
        fields: Mapping[str, Any],
        directory: Optional[UserDirectory],
    ) -> Optional[ResolvedRecipient]:
        """
        Resolve the recipient, calling the directory if needed.

        Raises:
            RecipientUnresolvable: If no email address can be found
        """
        ref = self.recipient_ref(fields)
        if ref is None or isinstance(ref, ResolvedRecipient):
            return ref

        if directory is None:
            raise RecipientUnresolvable(
                f"No user directory to resolve {self.party} {ref.identifier}",
                {"party": self.party, "identifier": str(ref.identifier)},
            )

        try:
            recipient = directory.resolve_user(ref.identifier)
        except (UserNotFound, UserLookupFailed) as e:
            raise RecipientUnresolvable(
                f"Cannot resolve {self.party} {ref.identifier}: {e.message}",
                {"party": self.party, "identifier": str(ref.identifier), "cause": e.code},
            ) from e

        if not recipient.email:
            raise RecipientUnresolvable(
                f"{self.party} {ref.identifier} has no email address",
                {"party": self.party, "identifier": str(ref.identifier)},
            )
        logger.debug(f"Resolved {self.party} {ref.identifier} -> {recipient.email}")
        return recipient

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class NoRecipientStrategy(NotificationStrategy):
    """Nobody is notified (e.g. a task was just posted)."""
    kind = StrategyKind.NOBODY
    party = None


class FreelancerStrategy(NotificationStrategy):
    """Notify the task's freelancer (assigned, or the one just removed)."""
    kind = StrategyKind.FREELANCER
    party = "freelancer"


class CustomerStrategy(NotificationStrategy):
    """Notify the customer who posted the task."""
    kind = StrategyKind.CUSTOMER
    party = "customer"


class SubjectUserStrategy(NotificationStrategy):
    """Notify the user the event is about."""
    kind = StrategyKind.SUBJECT_USER
    party = "user"


STRATEGIES: dict[StrategyKind, NotificationStrategy] = {
    StrategyKind.NOBODY: NoRecipientStrategy(),
    StrategyKind.FREELANCER: FreelancerStrategy(),
    StrategyKind.CUSTOMER: CustomerStrategy(),
    StrategyKind.SUBJECT_USER: SubjectUserStrategy(),
}


def get_strategy(kind: StrategyKind) -> NotificationStrategy:
    return STRATEGIES[kind]
