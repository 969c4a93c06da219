import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def proposal_is_expired(deadline: int, now: float | None = None) -> bool:
    if not deadline:
        return False
    current = time.time() if now is None else now
    return current > deadline


def proposal_time_remaining(deadline: int, now: float | None = None) -> float | None:
    if not deadline:
        return None
    current = time.time() if now is None else now
    return max(0.0, deadline - current)


@dataclass
class Proposal:
    proposal_id: int
    contract_address: str
    title: str
    description: str
    creator: str
    transaction_hash: str | None = None
    block_number: int = 0
    gas_used: int = 0
    deadline: int = 0
    is_active: bool = True
    vote_count: int = 0
    voters: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: float | None = None) -> bool:
        return proposal_is_expired(self.deadline, now)

    def time_remaining(self, now: float | None = None) -> float | None:
        return proposal_time_remaining(self.deadline, now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "proposalId": self.proposal_id,
            "contractAddress": self.contract_address,
            "title": self.title,
            "description": self.description,
            "creator": self.creator,
            "transactionHash": self.transaction_hash,
            "blockNumber": self.block_number,
            "gasUsed": self.gas_used,
            "deadline": self.deadline,
            "isActive": self.is_active,
            "voteCount": self.vote_count,
            "voters": list(self.voters),
            "isExpired": self.is_expired(),
            "timeRemaining": self.time_remaining(),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass
class Vote:
    vote_id: str
    proposal_id: int
    contract_address: str
    voter_address: str
    transaction_hash: str
    block_number: int
    gas_used: int
    gas_price: str
    timestamp: datetime = field(default_factory=utcnow)
    is_verified: bool = False
    verification_hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.vote_id,
            "proposalId": self.proposal_id,
            "contractAddress": self.contract_address,
            "voterAddress": self.voter_address,
            "transactionHash": self.transaction_hash,
            "blockNumber": self.block_number,
            "gasUsed": self.gas_used,
            "gasPrice": self.gas_price,
            "timestamp": _iso(self.timestamp),
            "isVerified": self.is_verified,
            "verificationHash": self.verification_hash,
        }

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.vote_id,
            "proposalId": self.proposal_id,
            "voterAddress": self.voter_address,
            "timestamp": _iso(self.timestamp),
            "isVerified": self.is_verified,
            "verificationHash": self.verification_hash,
            "gasUsed": self.gas_used,
        }


@dataclass(frozen=True)
class LedgerReceipt:
    """What a ledger reports back for a confirmed transaction."""

    transaction_hash: str
    block_number: int
    gas_used: int
    gas_price: str = "0"
    proposal_id: int | None = None


@dataclass(frozen=True)
class LedgerProposal:
    proposal_id: int
    title: str
    description: str
    creator: str
    created_at: int
    deadline: int
    is_active: bool
    vote_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "proposalId": self.proposal_id,
            "title": self.title,
            "description": self.description,
            "creator": self.creator,
            "createdAt": self.created_at,
            "deadline": self.deadline,
            "isActive": self.is_active,
            "voteCount": self.vote_count,
        }


@dataclass(frozen=True)
class VoteReceipt:
    vote_id: str
    proposal_id: int
    voter_address: str
    transaction_hash: str
    block_number: int
    gas_used: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.vote_id,
            "proposalId": self.proposal_id,
            "voterAddress": self.voter_address,
            "transactionHash": self.transaction_hash,
            "blockNumber": self.block_number,
            "gasUsed": self.gas_used,
        }
