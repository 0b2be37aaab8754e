"""
Proposal service simulator for the platform side.

Keeps proposals in memory and publishes proposal change events.
"""

import logging
from typing import Optional

from producer.publisher import BrokerClient, ChangePublisher
from shared.models import Proposal
from shared.topics import ChangeKind, EntityKind

logger = logging.getLogger("proposal_service")


class ProposalService:
    """Simulated proposal service that publishes proposal change events."""

    def __init__(self, broker: BrokerClient, publisher: Optional[ChangePublisher] = None):
        self.publisher = publisher or ChangePublisher(EntityKind.PROPOSAL, broker)
        self._proposals: dict[int, Proposal] = {}

    def get_proposal(self, proposal_id: int) -> Optional[Proposal]:
        return self._proposals.get(proposal_id)

    def create(self, proposal: Proposal) -> Proposal:
        self._proposals[proposal.id] = proposal
        self.publisher.publish(proposal, ChangeKind.CREATED)
        return proposal

    def update(self, proposal: Proposal) -> bool:
        if proposal.id not in self._proposals:
            logger.error(f"Proposal not found: {proposal.id}")
            return False
        self._proposals[proposal.id] = proposal
        self.publisher.publish(proposal, ChangeKind.UPDATED)
        return True

    def delete(self, proposal_id: int) -> bool:
        proposal = self._proposals.pop(proposal_id, None)
        if proposal is None:
            return False
        self.publisher.publish(proposal, ChangeKind.DELETED)
        return True
