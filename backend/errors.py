"""Failure taxonomy shared by the stores, the ledger gateways and the API."""


class VotingError(Exception):
    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidArgument(VotingError):
    status_code = 400
    default_message = "Invalid argument"


class ValidationError(VotingError):
    status_code = 400
    default_message = "Validation failed"


class NotFound(VotingError):
    status_code = 404
    default_message = "Resource not found"


class ProposalUnavailable(VotingError):
    status_code = 404
    default_message = "Proposal not found or not active"


class DuplicateVote(VotingError):
    status_code = 400
    default_message = "User has already voted on this proposal"


class LedgerError(VotingError):
    status_code = 502
    default_message = "Blockchain transaction failed"

    def __init__(self, message: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code

    @classmethod
    def from_exception(cls, exc: Exception) -> "LedgerError":
        text = str(exc)
        lowered = text.lower()
        if "insufficient funds" in lowered or "overspend" in lowered:
            return cls("Insufficient funds for transaction", status_code=400)
        if "user rejected" in lowered:
            return cls("Transaction rejected by user", status_code=400)
        return cls(f"Blockchain transaction failed: {text}")


class StorageError(VotingError):
    status_code = 500
    default_message = "Storage failure"


class DuplicateRecord(StorageError):
    """A uniqueness constraint rejected an insert."""

    status_code = 409
    default_message = "Duplicate record"


class ReconciliationRequired(StorageError):
    """The ledger accepted a vote that the local stores did not fully record."""

    default_message = "Vote recorded on ledger but not persisted locally; reconciliation required"

    def __init__(self, message: str | None = None, transaction_hash: str | None = None) -> None:
        super().__init__(message)
        self.transaction_hash = transaction_hash
