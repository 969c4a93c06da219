"""Vote admission: decides whether a cast vote is accepted and records it once.

Checks run in a fixed order and stop at the first failure:

1. input is well formed (``InvalidArgument``)
2. the proposal exists and is active (``ProposalUnavailable``)
3. no local vote exists for (scope, proposal, voter) (``DuplicateVote``)
4. the ledger has no vote for the pair either (``DuplicateVote``)

An admitted vote is submitted to the ledger, then the vote record is inserted,
then the proposal tally is incremented. The vote store is written first so
that recounting it (``reconcile_proposal``) always repairs an undercount.
"""

import logging
import time
from typing import Any, Callable

from errors import (
    DuplicateRecord,
    DuplicateVote,
    InvalidArgument,
    LedgerError,
    NotFound,
    ProposalUnavailable,
    ReconciliationRequired,
    StorageError,
    VotingError,
)
from ledger import LedgerGateway
from models import Proposal, Vote, VoteReceipt, utcnow
from stores import ProposalStore, VoteStore, new_vote_id
from validation import parse_proposal_id, parse_vote_id, parse_voter_address

logger = logging.getLogger(__name__)


class VoteAdmissionEngine:
    def __init__(
        self,
        ledger: LedgerGateway,
        proposals: ProposalStore,
        votes: VoteStore,
        enforce_deadline: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ledger = ledger
        self.proposals = proposals
        self.votes = votes
        self.enforce_deadline = enforce_deadline
        self.clock = clock

    @property
    def scope(self) -> str:
        return self.ledger.contract_address

    def _admissible_proposal(self, proposal_id: int) -> Proposal:
        proposal = self.proposals.get(self.scope, proposal_id)
        if proposal is None or not proposal.is_active:
            raise ProposalUnavailable()
        if self.enforce_deadline and proposal.is_expired(self.clock()):
            raise ProposalUnavailable("Proposal has expired")
        return proposal

    def cast_vote(self, proposal_id: Any, voter_address: Any) -> VoteReceipt:
        if proposal_id in (None, "") or voter_address in (None, ""):
            raise InvalidArgument("Proposal ID and voter address are required")
        pid = parse_proposal_id(proposal_id)
        voter = parse_voter_address(voter_address)
        scope = self.scope

        self._admissible_proposal(pid)

        if self.votes.find(scope, pid, voter) is not None:
            logger.info("Rejected duplicate vote by %s on proposal %s", voter, pid)
            raise DuplicateVote()

        if self.ledger.has_user_voted(pid, voter):
            logger.info("Rejected vote by %s on proposal %s: already on ledger", voter, pid)
            raise DuplicateVote("User has already voted on this proposal on the blockchain")

        try:
            receipt = self.ledger.vote(pid, voter)
        except VotingError:
            raise
        except Exception as exc:
            logger.warning("Ledger vote submission failed for %s on proposal %s: %s", voter, pid, exc)
            raise LedgerError.from_exception(exc) from exc

        # Past this point the ledger holds the vote; local failures need reconciliation.
        vote = Vote(
            vote_id=new_vote_id(),
            proposal_id=pid,
            contract_address=scope,
            voter_address=voter,
            transaction_hash=receipt.transaction_hash,
            block_number=receipt.block_number,
            gas_used=receipt.gas_used,
            gas_price=receipt.gas_price,
            timestamp=utcnow(),
        )
        try:
            vote = self.votes.insert(vote)
        except DuplicateRecord as exc:
            logger.warning(
                "Concurrent duplicate vote by %s on proposal %s rejected at insert (tx %s)",
                voter,
                pid,
                receipt.transaction_hash,
            )
            raise DuplicateVote() from exc
        except StorageError as exc:
            logger.critical(
                "Ledger accepted vote tx %s by %s on proposal %s but the vote record was not stored: %s",
                receipt.transaction_hash,
                voter,
                pid,
                exc,
            )
            raise ReconciliationRequired(transaction_hash=receipt.transaction_hash) from exc

        try:
            counted = self.proposals.record_vote(scope, pid, voter)
        except StorageError as exc:
            logger.critical(
                "Vote %s (tx %s) stored but tally of proposal %s not incremented: %s",
                vote.vote_id,
                receipt.transaction_hash,
                pid,
                exc,
            )
            raise ReconciliationRequired(
                "Vote stored but proposal tally not updated; reconciliation required",
                transaction_hash=receipt.transaction_hash,
            ) from exc
        if not counted:
            logger.warning("Tally of proposal %s already included %s or proposal vanished", pid, voter)

        logger.info("Vote %s by %s admitted on proposal %s (tx %s)", vote.vote_id, voter, pid, receipt.transaction_hash)
        return VoteReceipt(
            vote_id=vote.vote_id,
            proposal_id=pid,
            voter_address=voter,
            transaction_hash=receipt.transaction_hash,
            block_number=receipt.block_number,
            gas_used=receipt.gas_used,
        )

    def find_vote(self, proposal_id: Any, voter_address: Any) -> Vote | None:
        if proposal_id in (None, "") or voter_address in (None, ""):
            raise InvalidArgument("Proposal ID and voter address are required")
        return self.votes.find(self.scope, parse_proposal_id(proposal_id), parse_voter_address(voter_address))

    def verify_vote(self, vote_id: Any) -> Vote:
        vote = self.votes.mark_verified(parse_vote_id(vote_id))
        if vote is None:
            raise NotFound("Vote not found")
        return vote

    def reconcile_proposal(self, proposal_id: Any) -> dict[str, Any]:
        """Recompute a proposal's tally from its vote records."""
        pid = parse_proposal_id(proposal_id)
        result = self.proposals.recount(self.scope, pid, self.votes)
        if result is None:
            raise NotFound("Proposal not found")
        before, after = result
        changed = before.vote_count != after.vote_count or sorted(before.voters) != sorted(after.voters)
        if changed:
            logger.info("Reconciled proposal %s tally: %s -> %s", pid, before.vote_count, after.vote_count)
        return {
            "proposalId": pid,
            "previousVoteCount": before.vote_count,
            "voteCount": after.vote_count,
            "corrected": changed,
        }

    def reconcile_all(self) -> dict[str, Any]:
        proposals, _ = self.proposals.query(contract_address=self.scope)
        results = [self.reconcile_proposal(p.proposal_id) for p in proposals]
        corrected = [r for r in results if r["corrected"]]
        logger.info("Reconciled %d proposals, %d corrected", len(results), len(corrected))
        return {"checked": len(results), "corrected": corrected}
