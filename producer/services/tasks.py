"""
Task service simulator for the platform side.

Holds tasks in memory and publishes a change event on every lifecycle
transition. It stands in for the platform's task service; storage,
validation and authorization live there, not here.

Key point:
- This service ONLY publishes events
- It does not know which transitions lead to emails, or to whom
"""

import logging
from datetime import datetime
from typing import Optional

from producer.publisher import BrokerClient, ChangePublisher
from shared.models import Task, TaskStatus, User
from shared.topics import ChangeKind, EntityKind

logger = logging.getLogger("task_service")


class TaskService:
    """
    Simulated task service that publishes task change events.

    Example:
        service = TaskService(broker)
        task = service.post_task(1, customer, "Fix bug")
        service.assign_freelancer(1, alice)   # publishes freelancer_assigned
    """

    def __init__(self, broker: BrokerClient, publisher: Optional[ChangePublisher] = None):
        self.publisher = publisher or ChangePublisher(EntityKind.TASK, broker)
        self._tasks: dict[int, Task] = {}

    def get_task(self, task_id: int) -> Optional[Task]:
        return self._tasks.get(task_id)

    def post_task(self, task_id: int, customer: User, title: str, **details) -> Task:
        """Create an unassigned task and publish task_posted."""
        task = Task(id=task_id, customer=customer, title=title, **details)
        self._tasks[task_id] = task
        logger.info(f"Task {task_id} posted by {customer.username}")
        self.publisher.publish(task, ChangeKind.POSTED)
        return task

    def assign_freelancer(self, task_id: int, freelancer: User) -> Optional[Task]:
        """Assign a freelancer and publish freelancer_assigned."""
        task = self._require(task_id)
        if task is None:
            return None

        task = task.model_copy(update={
            "freelancer": freelancer,
            "status": TaskStatus.ASSIGNED,
            "assigned_date": datetime.utcnow(),
        })
        self._tasks[task_id] = task
        self.publisher.publish(task, ChangeKind.FREELANCER_ASSIGNED)
        return task

    def remove_freelancer(self, task_id: int) -> Optional[Task]:
        """
        Unassign the freelancer and publish freelancer_removed.

        The published snapshot is the one from before the removal, so the
        notification side can still see who was removed.
        """
        task = self._require(task_id)
        if task is None:
            return None
        if task.freelancer is None:
            logger.warning(f"Task {task_id} has no freelancer to remove")
            return task

        self.publisher.publish(task, ChangeKind.FREELANCER_REMOVED)
        task = task.model_copy(update={
            "freelancer": None,
            "status": TaskStatus.UNASSIGNED,
            "assigned_date": None,
        })
        self._tasks[task_id] = task
        return task

    def send_on_review(self, task_id: int) -> Optional[Task]:
        """Mark the solution as submitted and publish task_send_on_review."""
        task = self._require(task_id)
        if task is None:
            return None

        task = task.model_copy(update={
            "status": TaskStatus.SUBMITTED,
            "submitted_date": datetime.utcnow(),
        })
        self._tasks[task_id] = task
        self.publisher.publish(task, ChangeKind.SENT_FOR_REVIEW)
        return task

    def accept_task(self, task_id: int) -> Optional[Task]:
        """Accept the submitted solution and publish task_accepted."""
        task = self._require(task_id)
        if task is None:
            return None

        task = task.model_copy(update={"status": TaskStatus.ACCEPTED})
        self._tasks[task_id] = task
        self.publisher.publish(task, ChangeKind.ACCEPTED)
        return task

    def _require(self, task_id: int) -> Optional[Task]:
        task = self._tasks.get(task_id)
        if task is None:
            logger.error(f"Task not found: {task_id}")
        return task
