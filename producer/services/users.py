"""
User service simulator for the platform side.

Keeps users in memory and publishes user_created / user_updated /
user_deleted events.
"""

import logging
from typing import Optional

from producer.publisher import BrokerClient, ChangePublisher
from shared.models import User
from shared.topics import ChangeKind, EntityKind

logger = logging.getLogger("user_service")


class UserService:
    """Simulated user service that publishes user change events."""

    def __init__(self, broker: BrokerClient, publisher: Optional[ChangePublisher] = None):
        self.publisher = publisher or ChangePublisher(EntityKind.USER, broker)
        self._users: dict[int, User] = {}

    def get_user(self, user_id: int) -> Optional[User]:
        return self._users.get(user_id)

    def register(self, user: User) -> bool:
        """Add a user; usernames and emails must be unique."""
        for existing in self._users.values():
            if existing.username == user.username:
                logger.warning(f"Username already taken: {user.username}")
                return False
            if user.email and existing.email == user.email:
                logger.warning(f"Email already registered: {user.email}")
                return False

        self._users[user.id] = user
        self.publisher.publish(user, ChangeKind.CREATED)
        return True

    def update(self, user: User) -> bool:
        if user.id not in self._users:
            logger.error(f"User not found: {user.id}")
            return False
        self._users[user.id] = user
        self.publisher.publish(user, ChangeKind.UPDATED)
        return True

    def delete(self, user_id: int) -> bool:
        user = self._users.pop(user_id, None)
        if user is None:
            return False
        self.publisher.publish(user, ChangeKind.DELETED)
        return True
