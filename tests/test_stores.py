from datetime import timedelta

import pytest

from errors import DuplicateRecord
from models import Proposal, Vote, utcnow
from stores import MemoryProposalStore, MemoryVoteStore, new_vote_id

SCOPE = "0x" + "12" * 20
OTHER_SCOPE = "0x" + "34" * 20


def _proposal(proposal_id=1, scope=SCOPE, tx="0xp1", **overrides):
    fields = dict(
        proposal_id=proposal_id,
        contract_address=scope,
        title=f"Proposal {proposal_id}",
        description="desc",
        creator="0xcreator",
        transaction_hash=tx,
    )
    fields.update(overrides)
    return Proposal(**fields)


def _vote(voter, proposal_id=1, scope=SCOPE, tx=None, **overrides):
    fields = dict(
        vote_id=new_vote_id(),
        proposal_id=proposal_id,
        contract_address=scope,
        voter_address=voter,
        transaction_hash=tx or f"0x{voter[-4:]}{proposal_id}",
        block_number=10,
        gas_used=50000,
        gas_price="0",
    )
    fields.update(overrides)
    return Vote(**fields)


def test_new_vote_id_shape():
    ids = {new_vote_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(len(i) == 24 and int(i, 16) >= 0 for i in ids)


def test_proposal_key_is_scoped_by_contract():
    store = MemoryProposalStore()
    store.insert(_proposal())
    store.insert(_proposal(scope=OTHER_SCOPE, tx="0xp2"))

    with pytest.raises(DuplicateRecord):
        store.insert(_proposal(tx="0xp3"))
    with pytest.raises(DuplicateRecord):
        store.insert(_proposal(proposal_id=2, tx="0xp1"))
    assert store.count() == 2
    assert store.count(SCOPE) == 1


def test_returned_proposals_are_copies():
    store = MemoryProposalStore()
    inserted = store.insert(_proposal())
    inserted.voters.append("0xmutated")
    assert store.get(SCOPE, 1).voters == []


def test_record_vote_only_counts_new_voters():
    store = MemoryProposalStore()
    store.insert(_proposal())
    assert store.record_vote(SCOPE, 1, "0xa") is True
    assert store.record_vote(SCOPE, 1, "0xa") is False
    assert store.record_vote(SCOPE, 2, "0xa") is False
    row = store.get(SCOPE, 1)
    assert row.vote_count == 1
    assert row.voters == ["0xa"]


def test_set_tally_and_delete():
    store = MemoryProposalStore()
    store.insert(_proposal())
    repaired = store.set_tally(SCOPE, 1, ["0xa", "0xb"])
    assert repaired.vote_count == 2
    assert store.set_tally(SCOPE, 9, []) is None

    assert store.delete(SCOPE, 1) is True
    assert store.delete(SCOPE, 1) is False
    # The transaction hash is free again once its row is gone.
    store.insert(_proposal(proposal_id=3, tx="0xp1"))


def test_update_fields_leaves_tally_alone():
    store = MemoryProposalStore()
    store.insert(_proposal())
    store.record_vote(SCOPE, 1, "0xa")
    updated = store.update_fields(SCOPE, 1, title="New", vote_count=50)
    assert updated.title == "New"
    assert updated.vote_count == 1
    assert store.update_fields(SCOPE, 2, title="x") is None


def test_creation_analytics_skips_old_rows():
    store = MemoryProposalStore()
    now = utcnow()
    store.insert(_proposal(created_at=now))
    store.insert(_proposal(proposal_id=2, tx="0xp2", created_at=now - timedelta(days=40)))

    report = store.creation_analytics(now - timedelta(days=7))
    assert report == [{"date": now.strftime("%Y-%m-%d"), "proposals": 1, "totalVotes": 0}]


def test_vote_store_enforces_unique_keys():
    store = MemoryVoteStore()
    first = store.insert(_vote("0xa", tx="0xt1"))

    with pytest.raises(DuplicateRecord):
        store.insert(_vote("0xa", tx="0xt2"))
    with pytest.raises(DuplicateRecord):
        store.insert(_vote("0xb", tx="0xt1"))
    with pytest.raises(DuplicateRecord):
        store.insert(_vote("0xc", tx="0xt3", vote_id=first.vote_id))

    # Same voter on another proposal or contract is a different vote.
    store.insert(_vote("0xa", proposal_id=2, tx="0xt4"))
    store.insert(_vote("0xa", scope=OTHER_SCOPE, tx="0xt5"))
    assert store.stats()["totalVotes"] == 3
    assert store.stats(SCOPE) == {"totalVotes": 2, "uniqueVoterCount": 1, "totalGasUsed": 100000}


def test_vote_queries():
    store = MemoryVoteStore()
    now = utcnow()
    store.insert(_vote("0xa", timestamp=now - timedelta(minutes=2)))
    store.insert(_vote("0xb", timestamp=now - timedelta(minutes=1)))
    store.insert(_vote("0xa", proposal_id=2, timestamp=now))

    assert [v.voter_address for v in store.for_proposal(SCOPE, 1)] == ["0xb", "0xa"]
    assert [v.proposal_id for v in store.by_voter("0xa")] == [2, 1]
    assert store.by_voter("0xa", OTHER_SCOPE) == []
    assert len(store.recent(2)) == 2
    assert store.recent(1)[0].proposal_id == 2
    assert store.voters_for(SCOPE, 1) == ["0xa", "0xb"]


def test_delete_for_proposal_frees_keys():
    store = MemoryVoteStore()
    store.insert(_vote("0xa", tx="0xt1"))
    store.insert(_vote("0xb", tx="0xt2"))
    store.insert(_vote("0xa", proposal_id=2, tx="0xt3"))

    assert store.delete_for_proposal(SCOPE, 1) == 2
    assert store.for_proposal(SCOPE, 1) == []
    assert len(store.for_proposal(SCOPE, 2)) == 1
    store.insert(_vote("0xa", tx="0xt1"))


def test_mark_verified_is_idempotent():
    store = MemoryVoteStore()
    vote = store.insert(_vote("0xa"))
    assert store.mark_verified("f" * 24) is None

    first = store.mark_verified(vote.vote_id)
    second = store.mark_verified(vote.vote_id)
    assert first.is_verified and second.is_verified
    assert first.verification_hash == second.verification_hash == vote.vote_id


def test_vote_analytics_groups_by_day():
    store = MemoryVoteStore()
    now = utcnow()
    store.insert(_vote("0xa", timestamp=now))
    store.insert(_vote("0xb", timestamp=now))
    store.insert(_vote("0xc", timestamp=now - timedelta(days=3)))
    store.insert(_vote("0xd", scope=OTHER_SCOPE, timestamp=now))

    report = store.analytics(now - timedelta(days=1), SCOPE)
    assert report == [{"date": now.strftime("%Y-%m-%d"), "votes": 2, "uniqueVoters": 2, "totalGasUsed": 100000}]
    assert sum(day["votes"] for day in store.analytics(now - timedelta(days=7))) == 4
