"""Proposal and vote stores.

Both stores share one contract whatever the backend: the proposal store owns
the aggregate tally (``vote_count`` and the ``voters`` cache) and the vote
store owns individual vote records. Uniqueness violations surface as
``DuplicateRecord`` so callers never depend on a driver's exception types.
"""

import copy
import os
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Any

from errors import DuplicateRecord
from models import Proposal, Vote, utcnow


def new_vote_id() -> str:
    return os.urandom(12).hex()


def _day(value: datetime) -> str:
    return value.strftime("%Y-%m-%d")


class ProposalStore(ABC):
    @abstractmethod
    def insert(self, proposal: Proposal) -> Proposal: ...

    @abstractmethod
    def get(self, contract_address: str, proposal_id: int) -> Proposal | None: ...

    @abstractmethod
    def query(
        self,
        contract_address: str | None = None,
        active: bool | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[Proposal], int]: ...

    @abstractmethod
    def update_fields(self, contract_address: str, proposal_id: int, **fields: Any) -> Proposal | None: ...

    @abstractmethod
    def record_vote(self, contract_address: str, proposal_id: int, voter_address: str) -> bool:
        """Atomically add one voter to the tally; False if already counted or missing."""

    @abstractmethod
    def set_tally(self, contract_address: str, proposal_id: int, voters: list[str]) -> Proposal | None: ...

    @abstractmethod
    def recount(
        self, contract_address: str, proposal_id: int, votes: "VoteStore"
    ) -> tuple[Proposal, Proposal] | None:
        """Rebuild the tally from ``votes`` in one atomic step; returns (before, after)."""

    @abstractmethod
    def delete(self, contract_address: str, proposal_id: int) -> bool: ...

    @abstractmethod
    def creation_analytics(self, since: datetime) -> list[dict[str, Any]]: ...

    def count(self, contract_address: str | None = None, active: bool | None = None) -> int:
        return self.query(contract_address=contract_address, active=active, limit=0)[1]


class VoteStore(ABC):
    @abstractmethod
    def insert(self, vote: Vote) -> Vote: ...

    @abstractmethod
    def get(self, vote_id: str) -> Vote | None: ...

    @abstractmethod
    def find(self, contract_address: str, proposal_id: int, voter_address: str) -> Vote | None: ...

    @abstractmethod
    def for_proposal(self, contract_address: str, proposal_id: int) -> list[Vote]: ...

    @abstractmethod
    def by_voter(self, voter_address: str, contract_address: str | None = None) -> list[Vote]: ...

    @abstractmethod
    def recent(self, limit: int) -> list[Vote]: ...

    @abstractmethod
    def delete_for_proposal(self, contract_address: str, proposal_id: int) -> int: ...

    @abstractmethod
    def mark_verified(self, vote_id: str) -> Vote | None: ...

    @abstractmethod
    def stats(self, contract_address: str | None = None) -> dict[str, int]: ...

    @abstractmethod
    def analytics(self, since: datetime, contract_address: str | None = None) -> list[dict[str, Any]]: ...

    def voters_for(self, contract_address: str, proposal_id: int) -> list[str]:
        votes = sorted(self.for_proposal(contract_address, proposal_id), key=lambda v: v.timestamp)
        return [v.voter_address for v in votes]


class MemoryProposalStore(ProposalStore):
    """Process-local proposal store for development and tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[tuple[str, int], Proposal] = {}
        self._tx_hashes: set[str] = set()

    def insert(self, proposal: Proposal) -> Proposal:
        key = (proposal.contract_address, proposal.proposal_id)
        with self._lock:
            if key in self._rows:
                raise DuplicateRecord(f"Proposal {proposal.proposal_id} already exists")
            if proposal.transaction_hash and proposal.transaction_hash in self._tx_hashes:
                raise DuplicateRecord("Transaction hash already recorded")
            self._rows[key] = copy.deepcopy(proposal)
            if proposal.transaction_hash:
                self._tx_hashes.add(proposal.transaction_hash)
            return copy.deepcopy(proposal)

    def get(self, contract_address: str, proposal_id: int) -> Proposal | None:
        with self._lock:
            row = self._rows.get((contract_address, proposal_id))
            return copy.deepcopy(row) if row else None

    def query(self, contract_address=None, active=None, offset=0, limit=None):
        with self._lock:
            rows = [
                p
                for p in self._rows.values()
                if (contract_address is None or p.contract_address == contract_address)
                and (active is None or p.is_active == active)
            ]
            rows.sort(key=lambda p: p.created_at, reverse=True)
            total = len(rows)
            end = None if limit is None else offset + limit
            return [copy.deepcopy(p) for p in rows[offset:end]], total

    def update_fields(self, contract_address, proposal_id, **fields):
        with self._lock:
            row = self._rows.get((contract_address, proposal_id))
            if row is None:
                return None
            for name in ("title", "description", "is_active"):
                if fields.get(name) is not None:
                    setattr(row, name, fields[name])
            row.updated_at = utcnow()
            return copy.deepcopy(row)

    def record_vote(self, contract_address, proposal_id, voter_address):
        with self._lock:
            row = self._rows.get((contract_address, proposal_id))
            if row is None or voter_address in row.voters:
                return False
            row.voters.append(voter_address)
            row.vote_count += 1
            row.updated_at = utcnow()
            return True

    def set_tally(self, contract_address, proposal_id, voters):
        with self._lock:
            row = self._rows.get((contract_address, proposal_id))
            if row is None:
                return None
            row.voters = list(voters)
            row.vote_count = len(voters)
            row.updated_at = utcnow()
            return copy.deepcopy(row)

    def recount(self, contract_address, proposal_id, votes):
        # Holding the lock across the read keeps record_vote from landing in between.
        with self._lock:
            row = self._rows.get((contract_address, proposal_id))
            if row is None:
                return None
            before = copy.deepcopy(row)
            voters = votes.voters_for(contract_address, proposal_id)
            row.voters = list(voters)
            row.vote_count = len(voters)
            row.updated_at = utcnow()
            return before, copy.deepcopy(row)

    def delete(self, contract_address, proposal_id):
        with self._lock:
            row = self._rows.pop((contract_address, proposal_id), None)
            if row is None:
                return False
            self._tx_hashes.discard(row.transaction_hash)
            return True

    def creation_analytics(self, since):
        buckets: dict[str, dict[str, Any]] = {}
        with self._lock:
            for p in self._rows.values():
                if p.created_at < since:
                    continue
                bucket = buckets.setdefault(_day(p.created_at), {"proposals": 0, "totalVotes": 0})
                bucket["proposals"] += 1
                bucket["totalVotes"] += p.vote_count
        return [{"date": day, **buckets[day]} for day in sorted(buckets)]


class MemoryVoteStore(VoteStore):
    """Process-local vote store enforcing the same unique keys as the database."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, Vote] = {}
        self._by_key: dict[tuple[str, int, str], str] = {}
        self._tx_hashes: set[str] = set()

    def insert(self, vote: Vote) -> Vote:
        key = (vote.contract_address, vote.proposal_id, vote.voter_address)
        with self._lock:
            if key in self._by_key:
                raise DuplicateRecord("Vote already recorded for this proposal and voter")
            if vote.transaction_hash in self._tx_hashes:
                raise DuplicateRecord("Transaction hash already recorded")
            if vote.vote_id in self._rows:
                raise DuplicateRecord("Vote id already in use")
            self._rows[vote.vote_id] = replace(vote)
            self._by_key[key] = vote.vote_id
            self._tx_hashes.add(vote.transaction_hash)
            return replace(vote)

    def get(self, vote_id):
        with self._lock:
            row = self._rows.get(vote_id)
            return replace(row) if row else None

    def find(self, contract_address, proposal_id, voter_address):
        with self._lock:
            vote_id = self._by_key.get((contract_address, proposal_id, voter_address))
            return replace(self._rows[vote_id]) if vote_id else None

    def _select(self, predicate) -> list[Vote]:
        with self._lock:
            rows = [replace(v) for v in self._rows.values() if predicate(v)]
        rows.sort(key=lambda v: v.timestamp, reverse=True)
        return rows

    def for_proposal(self, contract_address, proposal_id):
        return self._select(lambda v: v.contract_address == contract_address and v.proposal_id == proposal_id)

    def by_voter(self, voter_address, contract_address=None):
        return self._select(
            lambda v: v.voter_address == voter_address
            and (contract_address is None or v.contract_address == contract_address)
        )

    def recent(self, limit):
        return self._select(lambda v: True)[:limit]

    def delete_for_proposal(self, contract_address, proposal_id):
        with self._lock:
            doomed = [
                v
                for v in self._rows.values()
                if v.contract_address == contract_address and v.proposal_id == proposal_id
            ]
            for vote in doomed:
                del self._rows[vote.vote_id]
                del self._by_key[(vote.contract_address, vote.proposal_id, vote.voter_address)]
                self._tx_hashes.discard(vote.transaction_hash)
            return len(doomed)

    def mark_verified(self, vote_id):
        with self._lock:
            row = self._rows.get(vote_id)
            if row is None:
                return None
            if not row.is_verified:
                row.is_verified = True
                row.verification_hash = row.vote_id
            return replace(row)

    def stats(self, contract_address=None):
        votes = self._select(lambda v: contract_address is None or v.contract_address == contract_address)
        return {
            "totalVotes": len(votes),
            "uniqueVoterCount": len({v.voter_address for v in votes}),
            "totalGasUsed": sum(v.gas_used for v in votes),
        }

    def analytics(self, since, contract_address=None):
        buckets: dict[str, dict[str, Any]] = defaultdict(lambda: {"votes": 0, "voters": set(), "totalGasUsed": 0})
        for vote in self._select(
            lambda v: v.timestamp >= since and (contract_address is None or v.contract_address == contract_address)
        ):
            bucket = buckets[_day(vote.timestamp)]
            bucket["votes"] += 1
            bucket["voters"].add(vote.voter_address)
            bucket["totalGasUsed"] += vote.gas_used
        return [
            {
                "date": day,
                "votes": buckets[day]["votes"],
                "uniqueVoters": len(buckets[day]["voters"]),
                "totalGasUsed": buckets[day]["totalGasUsed"],
            }
            for day in sorted(buckets)
        ]
