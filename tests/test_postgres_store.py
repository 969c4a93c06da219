"""Postgres stores against a mocked psycopg2 connection."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import psycopg2
import psycopg2.errors
import pytest

from errors import DuplicateRecord, StorageError
from models import Proposal, Vote
from postgres_store import PostgresProposalStore, PostgresVoteStore

SCOPE = "0x" + "12" * 20
NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _connection():
    conn = MagicMock()
    cur = MagicMock()
    conn.cursor.return_value = cur
    return conn, cur


def _stores(store_cls):
    conn, cur = _connection()
    released = []
    store = store_cls(connect=lambda: conn, release=released.append)
    return store, conn, cur, released


def _proposal_row(**overrides):
    row = {
        "proposal_id": 3,
        "contract_address": SCOPE,
        "title": "Title",
        "description": "desc",
        "creator": "0xcreator",
        "transaction_hash": "0xtx",
        "block_number": 7,
        "gas_used": 120000,
        "deadline": 0,
        "is_active": True,
        "vote_count": 1,
        "voters": ["0xa"],
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return tuple(row.values())


def _vote_row(vote_id="ab" * 12):
    return (vote_id + "  ", 3, SCOPE, "0xa", "0xvt", 8, 50000, "0", NOW, False, None)


def test_insert_proposal_commits_and_releases():
    store, conn, cur, released = _stores(PostgresProposalStore)
    cur.fetchone.return_value = _proposal_row()

    stored = store.insert(Proposal(proposal_id=3, contract_address=SCOPE, title="Title", description="desc", creator="0xc"))

    assert stored.proposal_id == 3
    assert stored.voters == ["0xa"]
    conn.commit.assert_called_once()
    conn.rollback.assert_not_called()
    cur.close.assert_called_once()
    assert released == [conn]


def test_unique_violation_becomes_duplicate_record():
    store, conn, cur, released = _stores(PostgresVoteStore)
    cur.execute.side_effect = psycopg2.errors.UniqueViolation("duplicate key value violates unique constraint")

    vote = Vote(
        vote_id="ab" * 12,
        proposal_id=3,
        contract_address=SCOPE,
        voter_address="0xa",
        transaction_hash="0xvt",
        block_number=8,
        gas_used=50000,
        gas_price="0",
    )
    with pytest.raises(DuplicateRecord):
        store.insert(vote)

    conn.rollback.assert_called_once()
    conn.commit.assert_not_called()
    assert released == [conn]


def test_other_database_errors_become_storage_errors():
    store, conn, cur, _ = _stores(PostgresProposalStore)
    cur.execute.side_effect = psycopg2.OperationalError("server closed the connection unexpectedly")

    with pytest.raises(StorageError) as excinfo:
        store.get(SCOPE, 3)
    assert not isinstance(excinfo.value, DuplicateRecord)
    conn.rollback.assert_called_once()


def test_record_vote_reports_whether_a_row_changed():
    store, _, cur, _ = _stores(PostgresProposalStore)
    cur.rowcount = 1
    assert store.record_vote(SCOPE, 3, "0xa") is True

    sql, params = cur.execute.call_args[0]
    assert "ANY(voters)" in sql
    assert params == ("0xa", SCOPE, 3, "0xa")

    cur.rowcount = 0
    assert store.record_vote(SCOPE, 3, "0xa") is False


def test_query_returns_rows_and_total():
    store, _, cur, _ = _stores(PostgresProposalStore)
    cur.fetchone.return_value = (12,)
    cur.fetchall.return_value = [_proposal_row(), _proposal_row(proposal_id=4, is_active=False)]

    rows, total = store.query(contract_address=SCOPE, active=True, offset=10, limit=2)

    assert total == 12
    assert [p.proposal_id for p in rows] == [3, 4]
    count_sql, count_params = cur.execute.call_args_list[0][0]
    assert "contract_address = %s AND is_active = %s" in count_sql
    assert count_params == (SCOPE, True)
    assert cur.execute.call_args_list[1][0][1] == (SCOPE, True, 2, 10)


def test_get_missing_proposal_returns_none():
    store, _, cur, _ = _stores(PostgresProposalStore)
    cur.fetchone.return_value = None
    assert store.get(SCOPE, 99) is None


def test_vote_rows_are_trimmed_and_typed():
    store, _, cur, _ = _stores(PostgresVoteStore)
    cur.fetchall.return_value = [_vote_row()]

    vote = store.find(SCOPE, 3, "0xa")
    assert vote.vote_id == "ab" * 12
    assert vote.block_number == 8
    assert vote.timestamp == NOW


def test_vote_stats_scoped_and_unscoped():
    store, _, cur, _ = _stores(PostgresVoteStore)
    cur.fetchone.return_value = (5, 3, 250000)

    assert store.stats(SCOPE) == {"totalVotes": 5, "uniqueVoterCount": 3, "totalGasUsed": 250000}
    assert cur.execute.call_args[0][1] == (SCOPE,)

    store.stats()
    assert cur.execute.call_args[0][1] == ()


def test_delete_for_proposal_returns_rowcount():
    store, _, cur, _ = _stores(PostgresVoteStore)
    cur.rowcount = 4
    assert store.delete_for_proposal(SCOPE, 3) == 4


def test_recount_locks_row_and_counts_in_sql():
    store, conn, cur, _ = _stores(PostgresProposalStore)
    cur.fetchone.side_effect = [_proposal_row(vote_count=0, voters=[]), _proposal_row(vote_count=1, voters=["0xa"])]

    before, after = store.recount(SCOPE, 3, votes=None)

    assert (before.vote_count, after.vote_count) == (0, 1)
    select_sql = cur.execute.call_args_list[0][0][0]
    update_sql = cur.execute.call_args_list[1][0][0]
    assert "FOR UPDATE" in select_sql
    assert "FROM votes" in update_sql and "array_agg" in update_sql
    conn.commit.assert_called_once()


def test_recount_missing_proposal():
    store, _, cur, _ = _stores(PostgresProposalStore)
    cur.fetchone.return_value = None
    assert store.recount(SCOPE, 3, votes=None) is None
    assert cur.execute.call_count == 1


def test_delete_removes_votes_in_the_same_transaction():
    store, conn, cur, _ = _stores(PostgresProposalStore)
    cur.rowcount = 1

    assert store.delete(SCOPE, 3) is True

    statements = [call[0][0] for call in cur.execute.call_args_list]
    assert statements[0].startswith("DELETE FROM votes")
    assert statements[1].startswith("DELETE FROM proposals")
    conn.commit.assert_called_once()
