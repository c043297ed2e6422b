"""
SQLite commerce store.

Money columns are TEXT holding Decimal strings so no amount ever passes
through a float. Atomic units run in ``BEGIN IMMEDIATE`` transactions: the
write lock is taken up front, so two units cannot both read an escrow as
locked and then both release it.
"""

import contextlib
import json
import logging
import sqlite3
import threading
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterator, List, Optional, Union

from dateutil import parser as date_parser

from agentmarket.commerce.escrow.models import Escrow
from agentmarket.commerce.jobs.models import ACTIVE_STATUSES, Job, JobStateTransition
from agentmarket.commerce.storage.base import DuplicateRecordError
from agentmarket.commerce.wallet.models import Transaction, Wallet

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS wallets (
    user_id TEXT PRIMARY KEY,
    balance TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS escrows (
    job_id TEXT PRIMARY KEY,
    requester_id TEXT NOT NULL,
    amount TEXT NOT NULL,
    platform_fee TEXT NOT NULL,
    worker_payout TEXT NOT NULL,
    status TEXT NOT NULL,
    locked_at TEXT NOT NULL,
    released_at TEXT,
    transfer_reference TEXT
);

CREATE TABLE IF NOT EXISTS transactions (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    user_id TEXT NOT NULL,
    type TEXT NOT NULL,
    amount TEXT NOT NULL,
    balance_after TEXT,
    reference TEXT,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_transactions_user ON transactions(user_id, seq);

CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    requester_id TEXT NOT NULL,
    worker_id TEXT,
    status TEXT NOT NULL,
    timeout_at TEXT,
    created_at TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_jobs_requester ON jobs(requester_id);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);

CREATE TABLE IF NOT EXISTS job_transitions (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    job_id TEXT NOT NULL,
    from_status TEXT,
    to_status TEXT NOT NULL,
    actor_id TEXT,
    reason TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_transitions_job ON job_transitions(job_id, seq);
"""


def _dt(value: Optional[str]) -> Optional[datetime]:
    return date_parser.isoparse(value) if value else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class SQLiteCommerceStore:
    """SQLite-backed ``CommerceStore``.

    Args:
        db_path: Database file. ``":memory:"`` is not supported because every
            operation outside a unit opens its own connection.
    """

    def __init__(self, db_path: Union[str, Path]):
        if str(db_path) == ":memory:":
            raise ValueError("SQLiteCommerceStore needs a file path")
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        # Autocommit mode; transactions are opened explicitly
        conn = sqlite3.connect(self.db_path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    def _init_db(self) -> None:
        with contextlib.closing(self._get_conn()) as conn:
            conn.executescript(SCHEMA)
            conn.execute(
                "INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
            )

    @contextlib.contextmanager
    def atomic(self) -> Iterator[None]:
        """Run the block in one ``BEGIN IMMEDIATE`` transaction (re-entrant per thread)."""
        active = getattr(self._local, "conn", None)
        if active is not None:
            self._local.depth += 1
            try:
                yield
            finally:
                self._local.depth -= 1
            return

        conn = self._get_conn()
        self._local.conn = conn
        self._local.depth = 1
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield
            conn.execute("COMMIT")
        except BaseException as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            self._local.conn = None
            self._local.depth = 0
            conn.close()

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Yield the unit's connection, or a short-lived one that commits on exit."""
        active = getattr(self._local, "conn", None)
        if active is not None:
            yield active
            return

        conn = self._get_conn()
        try:
            conn.execute("BEGIN")
            yield conn
            conn.execute("COMMIT")
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    # === Wallets ===

    def get_wallet(self, user_id: str) -> Optional[Wallet]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM wallets WHERE user_id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return Wallet(
            user_id=row["user_id"],
            balance=Decimal(row["balance"]),
            updated_at=_dt(row["updated_at"]),
        )

    def put_wallet(self, wallet: Wallet) -> None:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO wallets (user_id, balance, updated_at) VALUES (?, ?, ?)
                   ON CONFLICT(user_id) DO UPDATE SET
                       balance = excluded.balance, updated_at = excluded.updated_at""",
                (wallet.user_id, str(wallet.balance), _iso(wallet.updated_at)),
            )

    # === Escrows ===

    def _row_to_escrow(self, row: sqlite3.Row) -> Escrow:
        return Escrow(
            job_id=row["job_id"],
            requester_id=row["requester_id"],
            amount=Decimal(row["amount"]),
            platform_fee=Decimal(row["platform_fee"]),
            worker_payout=Decimal(row["worker_payout"]),
            status=row["status"],
            locked_at=_dt(row["locked_at"]),
            released_at=_dt(row["released_at"]),
            transfer_reference=row["transfer_reference"],
        )

    def insert_escrow(self, escrow: Escrow) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """INSERT INTO escrows (job_id, requester_id, amount, platform_fee,
                           worker_payout, status, locked_at, released_at, transfer_reference)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        escrow.job_id,
                        escrow.requester_id,
                        str(escrow.amount),
                        str(escrow.platform_fee),
                        str(escrow.worker_payout),
                        escrow.status,
                        _iso(escrow.locked_at),
                        _iso(escrow.released_at),
                        escrow.transfer_reference,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateRecordError(f"Escrow already exists for job {escrow.job_id}") from e

    def get_escrow(self, job_id: str) -> Optional[Escrow]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM escrows WHERE job_id = ?", (job_id,)).fetchone()
        return self._row_to_escrow(row) if row else None

    def update_escrow(self, escrow: Escrow) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """UPDATE escrows SET status = ?, released_at = ?, transfer_reference = ?
                   WHERE job_id = ?""",
                (escrow.status, _iso(escrow.released_at), escrow.transfer_reference, escrow.job_id),
            )
        return cursor.rowcount > 0

    # === Ledger ===

    def append_transaction(self, transaction: Transaction) -> str:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO transactions (id, user_id, type, amount, balance_after,
                       reference, metadata, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    transaction.id,
                    transaction.user_id,
                    transaction.type,
                    str(transaction.amount),
                    str(transaction.balance_after) if transaction.balance_after is not None else None,
                    transaction.reference,
                    json.dumps(transaction.metadata, default=str),
                    _iso(transaction.created_at),
                ),
            )
        return transaction.id

    def list_transactions(self, user_id: str, limit: int = 20) -> List[Transaction]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM transactions WHERE user_id = ? ORDER BY seq DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        return [
            Transaction(
                id=row["id"],
                user_id=row["user_id"],
                type=row["type"],
                amount=Decimal(row["amount"]),
                balance_after=Decimal(row["balance_after"]) if row["balance_after"] else None,
                reference=row["reference"],
                metadata=json.loads(row["metadata"] or "{}"),
                created_at=_dt(row["created_at"]),
            )
            for row in rows
        ]

    # === Jobs ===

    def _job_params(self, job: Job) -> tuple:
        return (
            job.requester_id,
            job.worker_id,
            job.status,
            _iso(job.timeout_at),
            _iso(job.created_at),
            json.dumps(job.to_dict(), default=str),
            job.id,
        )

    def save_job(self, job: Job) -> str:
        try:
            with self._connect() as conn:
                conn.execute(
                    """INSERT INTO jobs (requester_id, worker_id, status, timeout_at,
                           created_at, data, id)
                       VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    self._job_params(job),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateRecordError(f"Job already exists: {job.id}") from e
        return job.id

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._connect() as conn:
            row = conn.execute("SELECT data FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return Job.from_dict(json.loads(row["data"])) if row else None

    def update_job(self, job: Job) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """UPDATE jobs SET requester_id = ?, worker_id = ?, status = ?,
                       timeout_at = ?, created_at = ?, data = ?
                   WHERE id = ?""",
                self._job_params(job),
            )
        return cursor.rowcount > 0

    def list_jobs(
        self,
        requester_id: Optional[str] = None,
        worker_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Job]:
        clauses = []
        params: List[Any] = []
        if requester_id is not None:
            clauses.append("requester_id = ?")
            params.append(requester_id)
        if worker_id is not None:
            clauses.append("worker_id = ?")
            params.append(worker_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(getattr(status, "value", status))

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.extend([limit, offset])
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT data FROM jobs {where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
                params,
            ).fetchall()
        return [Job.from_dict(json.loads(row["data"])) for row in rows]

    def list_timed_out_jobs(self, now: datetime) -> List[Job]:
        placeholders = ", ".join("?" for _ in ACTIVE_STATUSES)
        with self._connect() as conn:
            rows = conn.execute(
                f"""SELECT data FROM jobs
                    WHERE status IN ({placeholders}) AND timeout_at IS NOT NULL""",
                tuple(ACTIVE_STATUSES),
            ).fetchall()
        jobs = [Job.from_dict(json.loads(row["data"])) for row in rows]
        return [j for j in jobs if j.timeout_at <= now]

    # === Transitions ===

    def save_transition(self, transition: JobStateTransition) -> str:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO job_transitions (id, job_id, from_status, to_status,
                       actor_id, reason, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    transition.id,
                    transition.job_id,
                    transition.from_status,
                    transition.to_status,
                    transition.actor_id,
                    transition.reason,
                    _iso(transition.created_at),
                ),
            )
        return transition.id

    def get_transitions(self, job_id: str) -> List[JobStateTransition]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM job_transitions WHERE job_id = ? ORDER BY seq ASC", (job_id,)
            ).fetchall()
        return [
            JobStateTransition(
                id=row["id"],
                job_id=row["job_id"],
                from_status=row["from_status"],
                to_status=row["to_status"],
                actor_id=row["actor_id"],
                reason=row["reason"],
                created_at=_dt(row["created_at"]),
            )
            for row in rows
        ]
