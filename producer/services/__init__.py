"""
Platform service simulators.

Each service changes entities in memory and publishes a change event.
None of them knows about notifications.
"""

from producer.services.tasks import TaskService
from producer.services.users import UserService
from producer.services.proposals import ProposalService

__all__ = [
    "TaskService",
    "UserService",
    "ProposalService",
]
