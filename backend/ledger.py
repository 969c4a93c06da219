"""Ledger gateways: the system of record for proposal and vote transactions.

The API talks to one ``LedgerGateway`` chosen at startup. ``SimulatedLedger``
keeps its chain state in the instance so every process or test owns its own.
"""

import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from typing import Any

from errors import DuplicateVote, LedgerError, ProposalUnavailable
from models import LedgerProposal, LedgerReceipt
from settings import Settings

logger = logging.getLogger(__name__)

SIMULATED_GAS_PRICE = "20000000000"

INTERFACE = [
    {"name": "create_proposal", "inputs": ["title", "description", "deadline"], "outputs": ["proposal_id"]},
    {"name": "vote", "inputs": ["proposal_id", "voter_address"], "outputs": []},
    {"name": "has_user_voted", "inputs": ["proposal_id", "voter_address"], "outputs": ["bool"], "readonly": True},
    {"name": "get_all_proposals", "inputs": [], "outputs": ["proposal[]"], "readonly": True},
]


class LedgerGateway(ABC):
    name = "ledger"

    @property
    @abstractmethod
    def contract_address(self) -> str: ...

    @abstractmethod
    def create_proposal(self, title: str, description: str, deadline: int = 0) -> LedgerReceipt: ...

    @abstractmethod
    def vote(self, proposal_id: int, voter_address: str) -> LedgerReceipt: ...

    @abstractmethod
    def has_user_voted(self, proposal_id: int, voter_address: str) -> bool: ...

    @abstractmethod
    def get_all_proposals(self) -> list[LedgerProposal]: ...

    @abstractmethod
    def contract_info(self) -> dict[str, Any]: ...

    def creator(self) -> str:
        """Account that signs proposal transactions."""
        return self.contract_address

    def contract_abi(self) -> list[dict[str, Any]]:
        return INTERFACE

    def is_healthy(self) -> bool:
        try:
            self.contract_info()
            return True
        except Exception as exc:  # noqa: BLE001
            logger.warning("Ledger health check failed: %s", exc)
            return False


class SimulatedLedger(LedgerGateway):
    """In-memory chain for local development without a funded account."""

    name = "simulated"

    def __init__(
        self,
        contract_address: str = "0x1234567890123456789012345678901234567890",
        owner: str = "0xabcdefabcdefabcdefabcdefabcdefabcdefabcd",
        start_block: int = 12345,
    ) -> None:
        self._contract_address = contract_address.lower()
        self.owner = owner.lower()
        self._lock = threading.Lock()
        self._proposals: dict[int, dict[str, Any]] = {}
        self._voters: dict[int, set[str]] = {}
        self._proposal_count = 0
        self._block = start_block

    @property
    def contract_address(self) -> str:
        return self._contract_address

    def _next_block(self) -> int:
        self._block += 1
        return self._block

    @staticmethod
    def _tx_hash() -> str:
        return "0x" + os.urandom(32).hex()

    def create_proposal(self, title, description, deadline=0):
        with self._lock:
            self._proposal_count += 1
            proposal_id = self._proposal_count
            self._proposals[proposal_id] = {
                "title": title,
                "description": description,
                "creator": self.owner,
                "created_at": int(time.time()),
                "deadline": int(deadline or 0),
                "is_active": True,
                "vote_count": 0,
            }
            self._voters[proposal_id] = set()
            receipt = LedgerReceipt(
                transaction_hash=self._tx_hash(),
                block_number=self._next_block(),
                gas_used=100000 + int.from_bytes(os.urandom(2), "big") % 50000,
                gas_price=SIMULATED_GAS_PRICE,
                proposal_id=proposal_id,
            )
        logger.info("Simulated proposal %s created: %s", proposal_id, title)
        return receipt

    def vote(self, proposal_id, voter_address):
        voter = voter_address.lower()
        with self._lock:
            proposal = self._proposals.get(proposal_id)
            if proposal is None:
                raise ProposalUnavailable("Proposal does not exist on the ledger")
            if not proposal["is_active"]:
                raise ProposalUnavailable("Proposal is not active on the ledger")
            voters = self._voters[proposal_id]
            if voter in voters:
                raise DuplicateVote("User has already voted on this proposal on the blockchain")
            voters.add(voter)
            proposal["vote_count"] += 1
            receipt = LedgerReceipt(
                transaction_hash=self._tx_hash(),
                block_number=self._next_block(),
                gas_used=50000 + int.from_bytes(os.urandom(2), "big") % 20000,
                gas_price=SIMULATED_GAS_PRICE,
            )
        logger.info("Simulated vote by %s on proposal %s", voter, proposal_id)
        return receipt

    def creator(self):
        return self.owner

    def has_user_voted(self, proposal_id, voter_address):
        with self._lock:
            return voter_address.lower() in self._voters.get(proposal_id, set())

    def get_all_proposals(self):
        with self._lock:
            return [
                LedgerProposal(
                    proposal_id=pid,
                    title=p["title"],
                    description=p["description"],
                    creator=p["creator"],
                    created_at=p["created_at"],
                    deadline=p["deadline"],
                    is_active=p["is_active"],
                    vote_count=p["vote_count"],
                )
                for pid, p in sorted(self._proposals.items())
            ]

    def contract_info(self):
        with self._lock:
            count = self._proposal_count
            block = self._block
        return {
            "address": self._contract_address,
            "owner": self.owner,
            "network": "simulated",
            "isInitialized": True,
            "isMock": True,
            "proposalCount": count,
            "blockNumber": block,
        }


class UnavailableLedger(LedgerGateway):
    """Stands in when the configured ledger could not be initialised; every call fails."""

    name = "unavailable"

    def __init__(self, reason: str) -> None:
        self.reason = reason

    @property
    def contract_address(self) -> str:
        return ""

    def _fail(self):
        raise LedgerError(f"Blockchain client unavailable: {self.reason}", status_code=503)

    def create_proposal(self, title, description, deadline=0):
        self._fail()

    def vote(self, proposal_id, voter_address):
        self._fail()

    def has_user_voted(self, proposal_id, voter_address):
        self._fail()

    def get_all_proposals(self):
        self._fail()

    def contract_info(self):
        self._fail()


def build_ledger(settings: Settings) -> LedgerGateway:
    if settings.ledger_mode == "simulated":
        return SimulatedLedger(
            contract_address=settings.simulated_contract_address,
            owner=settings.simulated_owner,
        )
    if settings.ledger_mode == "algorand":
        from algorand_client import AlgorandLedger

        try:
            return AlgorandLedger.from_settings(settings)
        except Exception as exc:  # noqa: BLE001
            logger.error("Algorand ledger unavailable: %s", exc)
            return UnavailableLedger(str(exc))
    raise ValueError(f"Unknown LEDGER_MODE: {settings.ledger_mode!r}")
