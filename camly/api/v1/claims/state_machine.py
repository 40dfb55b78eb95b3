"""
Claim state machine for managing claim status transitions
"""

from typing import Dict, List, Set

from camly.core.exceptions import BadRequestException
from camly.models.claim import ClaimKind, ClaimStatus


class ClaimStateMachine:
    """
    Manages valid claim status transitions

    Internal claims go VALIDATING -> SETTLED directly; on-chain claims pass
    through SUBMITTING and CONFIRMED. A CONFIRMED claim must eventually settle:
    the transfer already happened on chain.
    """

    def __init__(self):
        self.transitions: Dict[ClaimStatus, Set[ClaimStatus]] = {
            ClaimStatus.VALIDATING: {
                ClaimStatus.REJECTED,
                ClaimStatus.SUBMITTING,
                ClaimStatus.SETTLED,  # Internal claims only
            },
            ClaimStatus.SUBMITTING: {
                ClaimStatus.CONFIRMED,
                ClaimStatus.FAILED,
            },
            ClaimStatus.CONFIRMED: {
                ClaimStatus.SETTLED,
            },
            ClaimStatus.REJECTED: set(),
            ClaimStatus.FAILED: set(),
            ClaimStatus.SETTLED: set(),
        }

    def can_transition(
        self,
        current_status: ClaimStatus,
        new_status: ClaimStatus,
        kind: ClaimKind = ClaimKind.ONCHAIN,
    ) -> bool:
        """
        Check if transition is valid

        Args:
            current_status: Current claim status
            new_status: Desired new status
            kind: Internal claims may not enter the chain states

        Returns:
            True if transition is allowed
        """
        if kind == ClaimKind.INTERNAL and new_status in (ClaimStatus.SUBMITTING, ClaimStatus.CONFIRMED):
            return False
        if (
            kind == ClaimKind.ONCHAIN
            and current_status == ClaimStatus.VALIDATING
            and new_status == ClaimStatus.SETTLED
        ):
            return False
        return new_status in self.transitions.get(current_status, set())

    def transition(self, claim, new_status: ClaimStatus) -> None:
        """Move a claim record to a new status or raise"""
        if not self.can_transition(claim.status, new_status, claim.kind):
            raise BadRequestException(
                f"Cannot move claim from {claim.status.value} to {new_status.value}",
                error_code="INVALID_CLAIM_TRANSITION",
            )
        claim.status = new_status

    def get_valid_transitions(self, current_status: ClaimStatus) -> List[ClaimStatus]:
        return list(self.transitions.get(current_status, set()))

    def is_terminal_state(self, status: ClaimStatus) -> bool:
        return len(self.transitions.get(status, set())) == 0

    def is_in_flight(self, status: ClaimStatus) -> bool:
        """Submitted to the chain but not yet settled in the ledger"""
        return status in (ClaimStatus.SUBMITTING, ClaimStatus.CONFIRMED)
