import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from errors import DuplicateRecord, LedgerError, NotFound, StorageError, ValidationError, VotingError
from ledger import LedgerGateway
from models import Proposal, utcnow
from stores import ProposalStore, VoteStore
from validation import parse_proposal_id, validate_deadline, validate_description, validate_title

logger = logging.getLogger(__name__)

TIME_RANGES = {
    "1d": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
DEFAULT_TIME_RANGE = "7d"


def time_range_start(time_range: str | None, now: datetime | None = None) -> tuple[str, datetime]:
    key = time_range if time_range in TIME_RANGES else DEFAULT_TIME_RANGE
    return key, (now or utcnow()) - TIME_RANGES[key]


class ProposalLifecycleManager:
    """Creates, updates, closes and deletes proposals; reports expiry."""

    def __init__(
        self,
        ledger: LedgerGateway,
        proposals: ProposalStore,
        votes: VoteStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ledger = ledger
        self.proposals = proposals
        self.votes = votes
        self.clock = clock

    @property
    def scope(self) -> str:
        return self.ledger.contract_address

    def get(self, proposal_id: Any) -> Proposal:
        proposal = self.proposals.get(self.scope, parse_proposal_id(proposal_id))
        if proposal is None:
            raise NotFound("Proposal not found")
        return proposal

    def create_proposal(self, title: Any, description: Any, deadline: Any = 0) -> Proposal:
        if not title or not description:
            raise ValidationError("Title and description are required")
        title = validate_title(title)
        description = validate_description(description)
        deadline = validate_deadline(deadline)

        try:
            receipt = self.ledger.create_proposal(title, description, deadline)
        except VotingError:
            raise
        except Exception as exc:
            logger.warning("Ledger proposal creation failed: %s", exc)
            raise LedgerError.from_exception(exc) from exc
        if receipt.proposal_id is None:
            raise LedgerError("Ledger did not assign a proposal id")

        proposal = Proposal(
            proposal_id=receipt.proposal_id,
            contract_address=self.scope,
            title=title,
            description=description,
            creator=self.ledger.creator(),
            transaction_hash=receipt.transaction_hash,
            block_number=receipt.block_number,
            gas_used=receipt.gas_used,
            deadline=deadline,
            is_active=True,
            vote_count=0,
            voters=[],
        )
        try:
            proposal = self.proposals.insert(proposal)
        except DuplicateRecord as exc:
            logger.critical(
                "Ledger created proposal %s (tx %s) but it collides with a stored proposal",
                receipt.proposal_id,
                receipt.transaction_hash,
            )
            raise ValidationError(f"Proposal {receipt.proposal_id} already exists") from exc
        except StorageError:
            logger.critical(
                "Ledger created proposal %s (tx %s) but it was not stored; run a ledger sync",
                receipt.proposal_id,
                receipt.transaction_hash,
            )
            raise
        logger.info("Proposal %s created: %s", proposal.proposal_id, title)
        return proposal

    def close_proposal(self, proposal_id: Any) -> Proposal:
        proposal = self.get(proposal_id)
        if not proposal.is_active:
            return proposal
        closed = self.proposals.update_fields(self.scope, proposal.proposal_id, is_active=False)
        if closed is None:
            raise NotFound("Proposal not found")
        logger.info("Proposal %s closed with %d votes", closed.proposal_id, closed.vote_count)
        return closed

    def update_proposal(self, proposal_id: Any, fields: dict[str, Any]) -> Proposal:
        proposal = self.get(proposal_id)
        changes: dict[str, Any] = {}
        if fields.get("title") is not None:
            changes["title"] = validate_title(fields["title"])
        if fields.get("description") is not None:
            changes["description"] = validate_description(fields["description"])
        is_active = fields.get("isActive", fields.get("is_active"))
        if is_active is not None:
            if not isinstance(is_active, bool):
                raise ValidationError("isActive must be a boolean")
            if is_active and not proposal.is_active:
                raise ValidationError("A closed proposal cannot be reopened")
            changes["is_active"] = is_active
        if not changes:
            return proposal
        updated = self.proposals.update_fields(self.scope, proposal.proposal_id, **changes)
        if updated is None:
            raise NotFound("Proposal not found")
        return updated

    def delete_proposal(self, proposal_id: Any) -> int:
        proposal = self.get(proposal_id)
        # Votes go first so a failed delete can be retried without orphaning them.
        removed = self.votes.delete_for_proposal(self.scope, proposal.proposal_id)
        self.proposals.delete(self.scope, proposal.proposal_id)
        logger.info("Proposal %s deleted with %d votes", proposal.proposal_id, removed)
        return removed

    def list_proposals(
        self,
        contract_address: str | None = None,
        active: bool | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> dict[str, Any]:
        page = max(1, page)
        proposals, total = self.proposals.query(
            contract_address=contract_address,
            active=active,
            offset=(page - 1) * limit,
            limit=limit,
        )
        return {
            "proposals": proposals,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": -(-total // limit),
            },
        }

    def is_expired(self, proposal: Proposal) -> bool:
        return proposal.is_expired(self.clock())

    def time_remaining(self, proposal: Proposal) -> float | None:
        return proposal.time_remaining(self.clock())

    def stats(self, proposal_id: Any) -> dict[str, Any]:
        proposal = self.get(proposal_id)
        votes = self.votes.for_proposal(self.scope, proposal.proposal_id)
        voters = sorted({v.voter_address for v in votes})
        return {
            "proposalId": proposal.proposal_id,
            "totalVotes": len(votes),
            "uniqueVoters": len(voters),
            "voters": voters,
            "voteCount": proposal.vote_count,
            "isActive": proposal.is_active,
            "createdAt": proposal.created_at.isoformat(),
            "deadline": proposal.deadline,
            "isExpired": self.is_expired(proposal),
            "timeRemaining": self.time_remaining(proposal),
        }

    def analytics(self, time_range: str | None = None) -> dict[str, Any]:
        key, since = time_range_start(time_range)
        return {"timeRange": key, "analytics": self.proposals.creation_analytics(since)}

    def sync_from_ledger(self) -> dict[str, int]:
        """Mirror ledger proposals that the store does not know yet."""
        snapshots = self.ledger.get_all_proposals()
        created = 0
        for snapshot in snapshots:
            if self.proposals.get(self.scope, snapshot.proposal_id) is not None:
                continue
            created_at = datetime.fromtimestamp(snapshot.created_at, tz=timezone.utc) if snapshot.created_at else utcnow()
            try:
                self.proposals.insert(
                    Proposal(
                        proposal_id=snapshot.proposal_id,
                        contract_address=self.scope,
                        title=snapshot.title,
                        description=snapshot.description,
                        creator=snapshot.creator,
                        deadline=snapshot.deadline,
                        is_active=snapshot.is_active,
                        vote_count=0,
                        voters=[],
                        created_at=created_at,
                        updated_at=utcnow(),
                    )
                )
            except DuplicateRecord:
                continue
            created += 1
        logger.info("Synced %d ledger proposals, %d new", len(snapshots), created)
        return {"synced": len(snapshots), "created": created}
