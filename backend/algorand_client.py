import base64
import hashlib
import logging
import threading
from typing import Any

from algosdk import account, encoding, logic, mnemonic, transaction
from algosdk.error import AlgodHTTPError
from algosdk.v2client import algod

from errors import DuplicateVote, LedgerError
from ledger import LedgerGateway
from models import LedgerProposal, LedgerReceipt
from settings import Settings
from smart_contract import (
    ACTIVE_OFFSET,
    CREATED_AT_OFFSET,
    CREATOR_OFFSET,
    DEADLINE_OFFSET,
    DESCRIPTION_HASH_OFFSET,
    PROPOSAL_BOX_PREFIX,
    TITLE_OFFSET,
    VOTE_COUNT_OFFSET,
    proposal_box_name,
    voter_box_name,
)

logger = logging.getLogger(__name__)


def _u64(value: int) -> bytes:
    return int(value).to_bytes(8, "big")


def _read_u64(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset : offset + 8], "big")


def decode_proposal_box(proposal_id: int, value: bytes) -> LedgerProposal:
    return LedgerProposal(
        proposal_id=proposal_id,
        title=value[TITLE_OFFSET:].decode("utf-8"),
        description="sha256:" + value[DESCRIPTION_HASH_OFFSET:TITLE_OFFSET].hex(),
        creator=encoding.encode_address(value[CREATOR_OFFSET:DESCRIPTION_HASH_OFFSET]),
        created_at=_read_u64(value, CREATED_AT_OFFSET),
        deadline=_read_u64(value, DEADLINE_OFFSET),
        is_active=_read_u64(value, ACTIVE_OFFSET) == 1,
        vote_count=_read_u64(value, VOTE_COUNT_OFFSET),
    )


class AlgorandLedger(LedgerGateway):
    """Proposal/vote ledger backed by the voting application on Algorand."""

    name = "algorand"

    def __init__(self, client: algod.AlgodClient, private_key: str, app_id: int, timeout_rounds: int = 12) -> None:
        if app_id <= 0:
            raise RuntimeError("ALGORAND_APP_ID must be set to a deployed application id")
        self.algod = client
        self.private_key = private_key
        self.sender = account.address_from_private_key(private_key)
        self.app_id = app_id
        self.timeout_rounds = timeout_rounds
        # The next proposal box is predicted from the global count, so creates run one at a time.
        self._create_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "AlgorandLedger":
        if not settings.algod_address:
            raise RuntimeError("ALGORAND_ALGOD_ADDRESS is required")
        if not settings.service_mnemonic:
            raise RuntimeError("ALGORAND_SERVICE_MNEMONIC is required")
        headers = {"X-API-Key": settings.algod_token} if settings.algod_token else {}
        client = algod.AlgodClient(settings.algod_token, settings.algod_address, headers=headers)
        return cls(
            client,
            mnemonic.to_private_key(settings.service_mnemonic),
            settings.algorand_app_id,
            timeout_rounds=settings.tx_timeout_rounds,
        )

    @property
    def contract_address(self) -> str:
        return logic.get_application_address(self.app_id)

    def wait_for_confirmation(self, tx_id: str, timeout_rounds: int | None = None) -> dict[str, Any]:
        timeout = timeout_rounds if timeout_rounds is not None else self.timeout_rounds
        start_round = self.algod.status()["last-round"] + 1
        current_round = start_round
        while current_round < start_round + timeout:
            pending_txn = self.algod.pending_transaction_info(tx_id)
            confirmed_round = pending_txn.get("confirmed-round", 0)
            if confirmed_round > 0:
                return pending_txn
            pool_error = pending_txn.get("pool-error")
            if pool_error:
                raise RuntimeError(f"Transaction rejected: {pool_error}")
            self.algod.status_after_block(current_round)
            current_round += 1
        raise TimeoutError(f"Transaction not confirmed after {timeout} rounds")

    def _submit(self, app_args: list[bytes], boxes: list[tuple[int, bytes]]) -> tuple[str, dict[str, Any], int, str]:
        sp = self.algod.suggested_params()
        txn = transaction.ApplicationNoOpTxn(
            sender=self.sender,
            sp=sp,
            index=self.app_id,
            app_args=app_args,
            boxes=boxes,
        )
        signed = txn.sign(self.private_key)
        tx_id = self.algod.send_transaction(signed)
        pending = self.wait_for_confirmation(tx_id)
        return tx_id, pending, int(txn.fee), str(sp.min_fee or sp.fee)

    def _global_count(self) -> int:
        app_info = self.algod.application_info(self.app_id)
        for entry in app_info["params"].get("global-state", []):
            if base64.b64decode(entry["key"]) == b"count":
                return int(entry["value"].get("uint", 0))
        return 0

    def create_proposal(self, title, description, deadline=0):
        digest = hashlib.sha256(description.encode("utf-8")).digest()
        try:
            with self._create_lock:
                expected_id = self._global_count() + 1
                tx_id, pending, fee, gas_price = self._submit(
                    [b"create_proposal", title.encode("utf-8"), digest, _u64(deadline or 0)],
                    [(self.app_id, proposal_box_name(expected_id))],
                )
        except Exception as exc:
            logger.warning("Algorand create_proposal failed: %s", exc)
            raise LedgerError.from_exception(exc) from exc

        logs = pending.get("logs", [])
        if not logs:
            raise LedgerError("Proposal creation log not found in confirmed transaction")
        proposal_id = int.from_bytes(base64.b64decode(logs[0]), "big")
        return LedgerReceipt(
            transaction_hash=tx_id,
            block_number=int(pending["confirmed-round"]),
            gas_used=fee,
            gas_price=gas_price,
            proposal_id=proposal_id,
        )

    def vote(self, proposal_id, voter_address):
        try:
            tx_id, pending, fee, gas_price = self._submit(
                [b"vote", _u64(proposal_id), bytes.fromhex(voter_address[2:])],
                [
                    (self.app_id, proposal_box_name(proposal_id)),
                    (self.app_id, voter_box_name(proposal_id, voter_address)),
                ],
            )
        except Exception as exc:
            logger.warning("Algorand vote on proposal %s failed: %s", proposal_id, exc)
            if self._voter_box_exists(proposal_id, voter_address):
                raise DuplicateVote("User has already voted on this proposal on the blockchain") from exc
            raise LedgerError.from_exception(exc) from exc
        return LedgerReceipt(
            transaction_hash=tx_id,
            block_number=int(pending["confirmed-round"]),
            gas_used=fee,
            gas_price=gas_price,
        )

    def creator(self):
        return self.sender

    def _voter_box_exists(self, proposal_id, voter_address) -> bool:
        """Best-effort check after a failed vote; the submission error wins if algod is unreachable."""
        try:
            return self.has_user_voted(proposal_id, voter_address)
        except LedgerError as exc:
            logger.warning("Could not check voter box for proposal %s: %s", proposal_id, exc)
            return False

    def has_user_voted(self, proposal_id, voter_address):
        try:
            self.algod.application_box_by_name(self.app_id, voter_box_name(proposal_id, voter_address))
        except AlgodHTTPError as exc:
            if exc.code == 404:
                return False
            raise LedgerError.from_exception(exc) from exc
        return True

    def get_all_proposals(self):
        try:
            names = [base64.b64decode(b["name"]) for b in self.algod.application_boxes(self.app_id).get("boxes", [])]
            proposals = []
            for name in names:
                if len(name) != 9 or not name.startswith(PROPOSAL_BOX_PREFIX):
                    continue
                box = self.algod.application_box_by_name(self.app_id, name)
                proposals.append(decode_proposal_box(int.from_bytes(name[1:], "big"), base64.b64decode(box["value"])))
        except AlgodHTTPError as exc:
            raise LedgerError.from_exception(exc) from exc
        return sorted(proposals, key=lambda p: p.proposal_id)

    def contract_info(self):
        try:
            app_info = self.algod.application_info(self.app_id)
            status = self.algod.status()
        except AlgodHTTPError as exc:
            raise LedgerError.from_exception(exc) from exc
        return {
            "address": self.contract_address,
            "appId": self.app_id,
            "owner": app_info["params"].get("creator"),
            "sender": self.sender,
            "network": "algorand",
            "isInitialized": True,
            "isMock": False,
            "proposalCount": self._global_count(),
            "blockNumber": int(status.get("last-round", 0)),
        }
