"""
Platform (producer) side of the pipeline.

- ChangePublisher turns entity snapshots into envelopes on the broker
- The services simulate the platform's entity transitions
"""

from producer.publisher import ChangePublisher
from producer.services import ProposalService, TaskService, UserService

__all__ = [
    "ChangePublisher",
    "TaskService",
    "UserService",
    "ProposalService",
]
