from contextlib import contextmanager
from datetime import datetime
from typing import Any

import psycopg2
import psycopg2.errors

import db
from errors import DuplicateRecord, StorageError
from models import Proposal, Vote
from stores import ProposalStore, VoteStore

PROPOSAL_COLUMNS = """
    proposal_id, contract_address, title, description, creator, transaction_hash,
    block_number, gas_used, deadline, is_active, vote_count, voters, created_at, updated_at
"""

VOTE_COLUMNS = """
    id, proposal_id, contract_address, voter_address, transaction_hash, block_number,
    gas_used, gas_price, timestamp, is_verified, verification_hash
"""


def _proposal_from_row(row) -> Proposal:
    return Proposal(
        proposal_id=int(row[0]),
        contract_address=row[1],
        title=row[2],
        description=row[3],
        creator=row[4],
        transaction_hash=row[5],
        block_number=int(row[6]),
        gas_used=int(row[7]),
        deadline=int(row[8]),
        is_active=bool(row[9]),
        vote_count=int(row[10]),
        voters=list(row[11] or []),
        created_at=row[12],
        updated_at=row[13],
    )


def _vote_from_row(row) -> Vote:
    return Vote(
        vote_id=row[0].strip(),
        proposal_id=int(row[1]),
        contract_address=row[2],
        voter_address=row[3],
        transaction_hash=row[4],
        block_number=int(row[5]),
        gas_used=int(row[6]),
        gas_price=row[7],
        timestamp=row[8],
        is_verified=bool(row[9]),
        verification_hash=row[10],
    )


class _PostgresBase:
    def __init__(self, connect=db.get_connection, release=db.release_connection) -> None:
        self._connect = connect
        self._release = release

    @contextmanager
    def _cursor(self):
        try:
            with db.cursor(self._connect, self._release) as cur:
                yield cur
        except psycopg2.errors.UniqueViolation as exc:
            raise DuplicateRecord(str(exc).strip() or "Duplicate record") from exc
        except psycopg2.Error as exc:
            raise StorageError(f"Database error: {str(exc).strip()}") from exc


class PostgresProposalStore(_PostgresBase, ProposalStore):
    def insert(self, proposal: Proposal) -> Proposal:
        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO proposals (
                    proposal_id, contract_address, title, description, creator, transaction_hash,
                    block_number, gas_used, deadline, is_active, vote_count, voters, created_at, updated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {PROPOSAL_COLUMNS}
                """,
                (
                    proposal.proposal_id,
                    proposal.contract_address,
                    proposal.title,
                    proposal.description,
                    proposal.creator,
                    proposal.transaction_hash,
                    proposal.block_number,
                    proposal.gas_used,
                    proposal.deadline,
                    proposal.is_active,
                    proposal.vote_count,
                    list(proposal.voters),
                    proposal.created_at,
                    proposal.updated_at,
                ),
            )
            return _proposal_from_row(cur.fetchone())

    def get(self, contract_address: str, proposal_id: int) -> Proposal | None:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {PROPOSAL_COLUMNS} FROM proposals WHERE contract_address = %s AND proposal_id = %s",
                (contract_address, proposal_id),
            )
            row = cur.fetchone()
            return _proposal_from_row(row) if row else None

    def query(self, contract_address=None, active=None, offset=0, limit=None):
        clauses = []
        params: list[Any] = []
        if contract_address is not None:
            clauses.append("contract_address = %s")
            params.append(contract_address)
        if active is not None:
            clauses.append("is_active = %s")
            params.append(active)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._cursor() as cur:
            cur.execute(f"SELECT COUNT(*) FROM proposals {where}", tuple(params))
            total = int(cur.fetchone()[0])
            if limit == 0:
                return [], total
            cur.execute(
                f"""
                SELECT {PROPOSAL_COLUMNS}
                FROM proposals
                {where}
                ORDER BY created_at DESC
                LIMIT %s OFFSET %s
                """,
                (*params, limit, offset),
            )
            return [_proposal_from_row(r) for r in cur.fetchall()], total

    def update_fields(self, contract_address, proposal_id, **fields):
        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE proposals
                SET title = COALESCE(%s, title),
                    description = COALESCE(%s, description),
                    is_active = COALESCE(%s, is_active),
                    updated_at = NOW()
                WHERE contract_address = %s AND proposal_id = %s
                RETURNING {PROPOSAL_COLUMNS}
                """,
                (
                    fields.get("title"),
                    fields.get("description"),
                    fields.get("is_active"),
                    contract_address,
                    proposal_id,
                ),
            )
            row = cur.fetchone()
            return _proposal_from_row(row) if row else None

    def record_vote(self, contract_address, proposal_id, voter_address):
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE proposals
                SET vote_count = vote_count + 1,
                    voters = array_append(voters, %s),
                    updated_at = NOW()
                WHERE contract_address = %s AND proposal_id = %s
                AND NOT (%s = ANY(voters))
                """,
                (voter_address, contract_address, proposal_id, voter_address),
            )
            return cur.rowcount == 1

    def set_tally(self, contract_address, proposal_id, voters):
        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE proposals
                SET voters = %s, vote_count = %s, updated_at = NOW()
                WHERE contract_address = %s AND proposal_id = %s
                RETURNING {PROPOSAL_COLUMNS}
                """,
                (list(voters), len(voters), contract_address, proposal_id),
            )
            row = cur.fetchone()
            return _proposal_from_row(row) if row else None

    def recount(self, contract_address, proposal_id, votes):
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {PROPOSAL_COLUMNS} FROM proposals
                WHERE contract_address = %s AND proposal_id = %s
                FOR UPDATE
                """,
                (contract_address, proposal_id),
            )
            row = cur.fetchone()
            if row is None:
                return None
            before = _proposal_from_row(row)
            cur.execute(
                f"""
                UPDATE proposals p
                SET voters = COALESCE(
                        (SELECT array_agg(v.voter_address ORDER BY v.timestamp, v.id) FROM votes v
                         WHERE v.contract_address = p.contract_address AND v.proposal_id = p.proposal_id),
                        '{{}}'
                    ),
                    vote_count = (SELECT COUNT(*) FROM votes v
                                  WHERE v.contract_address = p.contract_address AND v.proposal_id = p.proposal_id),
                    updated_at = NOW()
                WHERE p.contract_address = %s AND p.proposal_id = %s
                RETURNING {PROPOSAL_COLUMNS}
                """,
                (contract_address, proposal_id),
            )
            return before, _proposal_from_row(cur.fetchone())

    def delete(self, contract_address, proposal_id):
        with self._cursor() as cur:
            cur.execute(
                "DELETE FROM votes WHERE contract_address = %s AND proposal_id = %s",
                (contract_address, proposal_id),
            )
            cur.execute(
                "DELETE FROM proposals WHERE contract_address = %s AND proposal_id = %s",
                (contract_address, proposal_id),
            )
            return cur.rowcount > 0

    def creation_analytics(self, since: datetime):
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT to_char(date_trunc('day', created_at), 'YYYY-MM-DD') AS day,
                       COUNT(*),
                       COALESCE(SUM(vote_count), 0)
                FROM proposals
                WHERE created_at >= %s
                GROUP BY day
                ORDER BY day
                """,
                (since,),
            )
            return [{"date": r[0], "proposals": int(r[1]), "totalVotes": int(r[2])} for r in cur.fetchall()]


class PostgresVoteStore(_PostgresBase, VoteStore):
    def insert(self, vote: Vote) -> Vote:
        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO votes (
                    id, proposal_id, contract_address, voter_address, transaction_hash, block_number,
                    gas_used, gas_price, timestamp, is_verified, verification_hash
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {VOTE_COLUMNS}
                """,
                (
                    vote.vote_id,
                    vote.proposal_id,
                    vote.contract_address,
                    vote.voter_address,
                    vote.transaction_hash,
                    vote.block_number,
                    vote.gas_used,
                    vote.gas_price,
                    vote.timestamp,
                    vote.is_verified,
                    vote.verification_hash,
                ),
            )
            return _vote_from_row(cur.fetchone())

    def _fetch(self, sql: str, params: tuple) -> list[Vote]:
        with self._cursor() as cur:
            cur.execute(sql, params)
            return [_vote_from_row(r) for r in cur.fetchall()]

    def get(self, vote_id):
        rows = self._fetch(f"SELECT {VOTE_COLUMNS} FROM votes WHERE id = %s", (vote_id,))
        return rows[0] if rows else None

    def find(self, contract_address, proposal_id, voter_address):
        rows = self._fetch(
            f"""
            SELECT {VOTE_COLUMNS} FROM votes
            WHERE contract_address = %s AND proposal_id = %s AND voter_address = %s
            """,
            (contract_address, proposal_id, voter_address),
        )
        return rows[0] if rows else None

    def for_proposal(self, contract_address, proposal_id):
        return self._fetch(
            f"""
            SELECT {VOTE_COLUMNS} FROM votes
            WHERE contract_address = %s AND proposal_id = %s
            ORDER BY timestamp DESC
            """,
            (contract_address, proposal_id),
        )

    def by_voter(self, voter_address, contract_address=None):
        if contract_address is None:
            return self._fetch(
                f"SELECT {VOTE_COLUMNS} FROM votes WHERE voter_address = %s ORDER BY timestamp DESC",
                (voter_address,),
            )
        return self._fetch(
            f"""
            SELECT {VOTE_COLUMNS} FROM votes
            WHERE voter_address = %s AND contract_address = %s
            ORDER BY timestamp DESC
            """,
            (voter_address, contract_address),
        )

    def recent(self, limit):
        return self._fetch(f"SELECT {VOTE_COLUMNS} FROM votes ORDER BY timestamp DESC LIMIT %s", (limit,))

    def delete_for_proposal(self, contract_address, proposal_id):
        with self._cursor() as cur:
            cur.execute(
                "DELETE FROM votes WHERE contract_address = %s AND proposal_id = %s",
                (contract_address, proposal_id),
            )
            return cur.rowcount

    def mark_verified(self, vote_id):
        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE votes
                SET is_verified = TRUE, verification_hash = COALESCE(verification_hash, id)
                WHERE id = %s
                RETURNING {VOTE_COLUMNS}
                """,
                (vote_id,),
            )
            row = cur.fetchone()
            return _vote_from_row(row) if row else None

    def stats(self, contract_address=None):
        where, params = ("WHERE contract_address = %s", (contract_address,)) if contract_address else ("", ())
        with self._cursor() as cur:
            cur.execute(
                f"SELECT COUNT(*), COUNT(DISTINCT voter_address), COALESCE(SUM(gas_used), 0) FROM votes {where}",
                params,
            )
            total, unique_voters, gas = cur.fetchone()
            return {"totalVotes": int(total), "uniqueVoterCount": int(unique_voters), "totalGasUsed": int(gas)}

    def analytics(self, since, contract_address=None):
        scope_clause = "AND contract_address = %s" if contract_address else ""
        params = (since, contract_address) if contract_address else (since,)
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT to_char(date_trunc('day', timestamp), 'YYYY-MM-DD') AS day,
                       COUNT(*),
                       COUNT(DISTINCT voter_address),
                       COALESCE(SUM(gas_used), 0)
                FROM votes
                WHERE timestamp >= %s {scope_clause}
                GROUP BY day
                ORDER BY day
                """,
                params,
            )
            return [
                {"date": r[0], "votes": int(r[1]), "uniqueVoters": int(r[2]), "totalGasUsed": int(r[3])}
                for r in cur.fetchall()
            ]

    def voters_for(self, contract_address, proposal_id):
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT voter_address FROM votes
                WHERE contract_address = %s AND proposal_id = %s
                ORDER BY timestamp, id
                """,
                (contract_address, proposal_id),
            )
            return [r[0] for r in cur.fetchall()]
