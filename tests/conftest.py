import pytest

from ledger import SimulatedLedger
from services import assemble
from settings import Settings
from stores import MemoryProposalStore, MemoryVoteStore

VOTER_A = "0x" + "aa" * 20
VOTER_B = "0x" + "bb" * 20
VOTER_C = "0x" + "cc" * 20


def make_services(settings: Settings | None = None, ledger=None, proposals=None, votes=None):
    return assemble(
        settings or Settings(),
        ledger or SimulatedLedger(),
        proposals or MemoryProposalStore(),
        votes or MemoryVoteStore(),
    )


@pytest.fixture
def services():
    return make_services()


@pytest.fixture
def engine(services):
    return services.engine


@pytest.fixture
def lifecycle(services):
    return services.lifecycle


@pytest.fixture
def proposal(lifecycle):
    return lifecycle.create_proposal("Upgrade X", "Move the treasury contract to v2.", 0)


@pytest.fixture
def client(services):
    from app import app, install_services

    app.config["TESTING"] = True
    install_services(services)
    return app.test_client()
