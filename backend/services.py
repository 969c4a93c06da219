import logging
from dataclasses import dataclass

from admission import VoteAdmissionEngine
from ledger import LedgerGateway, build_ledger
from lifecycle import ProposalLifecycleManager
from settings import Settings
from stores import MemoryProposalStore, MemoryVoteStore, ProposalStore, VoteStore

logger = logging.getLogger(__name__)


@dataclass
class VotingServices:
    settings: Settings
    ledger: LedgerGateway
    proposals: ProposalStore
    votes: VoteStore
    engine: VoteAdmissionEngine
    lifecycle: ProposalLifecycleManager


def assemble(settings: Settings, ledger: LedgerGateway, proposals: ProposalStore, votes: VoteStore) -> VotingServices:
    return VotingServices(
        settings=settings,
        ledger=ledger,
        proposals=proposals,
        votes=votes,
        engine=VoteAdmissionEngine(ledger, proposals, votes, enforce_deadline=settings.enforce_deadline),
        lifecycle=ProposalLifecycleManager(ledger, proposals, votes),
    )


def build_stores(settings: Settings) -> tuple[ProposalStore, VoteStore]:
    if settings.store_backend == "memory":
        return MemoryProposalStore(), MemoryVoteStore()
    if settings.store_backend == "postgres":
        import db
        from postgres_store import PostgresProposalStore, PostgresVoteStore

        db.init_pool(settings)
        db.ensure_schema()
        return PostgresProposalStore(), PostgresVoteStore()
    raise ValueError(f"Unknown STORE_BACKEND: {settings.store_backend!r}")


def build_services(settings: Settings) -> VotingServices:
    ledger = build_ledger(settings)
    proposals, votes = build_stores(settings)
    logger.info("Using %s ledger at %s with %s store", ledger.name, ledger.contract_address, settings.store_backend)
    return assemble(settings, ledger, proposals, votes)
