"""
Ledger storage backends.

Both backends expose the same contract: accounts and append-only
transactions, point reads, and a single atomic `append` that performs the
idempotency check, the balance check against the latest committed value,
and the account/level update as one indivisible unit.
"""

import json
import logging
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager, ExitStack
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence
from uuid import uuid4

from .errors import (
    AccountNotFoundError,
    IdempotencyConflictError,
    InsufficientCreditsError,
    StorageUnavailableError,
)
from .levels import LevelCalculator
from .models import (
    Account,
    AppendOutcome,
    Transaction,
    TransactionCategory,
    TransactionKind,
    TransactionRequest,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _check_batch(requests: Sequence[TransactionRequest]) -> None:
    if not requests:
        raise ValueError("append needs at least one transaction request")
    seen = set()
    for r in requests:
        key = (r.account_id, r.reference_key)
        if key in seen:
            raise IdempotencyConflictError(f"Reference {r.reference_key} repeated within one append")
        seen.add(key)


class LedgerStorage(ABC):
    @abstractmethod
    def create_account(self, account_id: str, levels: LevelCalculator) -> Account: ...

    @abstractmethod
    def get_account(self, account_id: str) -> Account: ...

    def get_balance(self, account_id: str) -> int:
        return self.get_account(account_id).balance

    @abstractmethod
    def get_cumulative_earned(self, account_id: str, kinds: Iterable[TransactionKind]) -> int: ...

    @abstractmethod
    def ledger_balance(self, account_id: str) -> int:
        """Signed sum of every entry, recomputed from the ledger itself."""

    @abstractmethod
    def append(self, requests: Sequence[TransactionRequest], levels: LevelCalculator) -> list[AppendOutcome]: ...

    @abstractmethod
    def get_transaction(self, account_id: str, reference_key: str) -> Optional[Transaction]: ...

    @abstractmethod
    def list_transactions(
        self,
        account_id: str,
        limit: int = 50,
        offset: int = 0,
        category: Optional[TransactionCategory] = None,
    ) -> tuple[list[Transaction], int]: ...


class InMemoryStorage(LedgerStorage):
    """
    Process-local store. One lock per account; units touching several
    accounts take their locks in sorted id order.
    """

    def __init__(self):
        self.accounts: dict[str, dict] = {}
        self.ledger_entries: dict[str, list[Transaction]] = {}
        self.idempotency_index: dict[tuple[str, str], Transaction] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, account_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = self._locks[account_id] = threading.Lock()
            return lock

    @contextmanager
    def _locked(self, account_ids: Iterable[str], create: bool = False):
        """
        Hold the locks of every given account. Unless `create` is set the
        accounts must already exist, so lookups of unknown ids never add
        a lock. Accounts are never removed, so the check stays valid.
        """
        account_ids = sorted(set(account_ids))
        if not create:
            for account_id in account_ids:
                self._require(account_id)
        with ExitStack() as stack:
            for account_id in account_ids:
                stack.enter_context(self._lock_for(account_id))
            yield

    def _require(self, account_id: str) -> dict:
        data = self.accounts.get(account_id)
        if data is None:
            raise AccountNotFoundError(account_id)
        return data

    def create_account(self, account_id: str, levels: LevelCalculator) -> Account:
        with self._locked([account_id], create=True):
            if account_id not in self.accounts:
                level = levels.compute(0)
                now = _now()
                self.accounts[account_id] = {
                    "id": account_id, "balance": 0,
                    "level_name": level.name, "level_rank": level.rank,
                    "created_at": now, "updated_at": now,
                }
                self.ledger_entries[account_id] = []
                logger.info("Created account %s", account_id)
            return Account(**self.accounts[account_id])

    def get_account(self, account_id: str) -> Account:
        with self._locked([account_id]):
            return Account(**self._require(account_id))

    def _earned(self, account_id: str, kinds: Iterable[TransactionKind]) -> int:
        kinds = frozenset(kinds)
        return sum(t.amount for t in self.ledger_entries[account_id] if t.kind in kinds)

    def get_cumulative_earned(self, account_id: str, kinds: Iterable[TransactionKind]) -> int:
        with self._locked([account_id]):
            return self._earned(account_id, kinds)

    def ledger_balance(self, account_id: str) -> int:
        with self._locked([account_id]):
            return sum(t.signed_amount for t in self.ledger_entries[account_id])

    def append(self, requests: Sequence[TransactionRequest], levels: LevelCalculator) -> list[AppendOutcome]:
        _check_batch(requests)
        with self._locked(r.account_id for r in requests):
            primary = requests[0]
            if (primary.account_id, primary.reference_key) in self.idempotency_index:
                existing = [
                    self.idempotency_index[(r.account_id, r.reference_key)]
                    for r in requests
                    if (r.account_id, r.reference_key) in self.idempotency_index
                ]
                return [
                    AppendOutcome(transaction=t, account=Account(**self.accounts[t.account_id]), created=False)
                    for t in existing
                ]
            for r in requests[1:]:
                if (r.account_id, r.reference_key) in self.idempotency_index:
                    raise IdempotencyConflictError(
                        f"Reference {r.reference_key} already recorded for account {r.account_id}"
                    )

            # Stage everything first so a rejected entry leaves no trace.
            balances = {aid: self.accounts[aid]["balance"] for aid in {r.account_id for r in requests}}
            earned = {aid: self._earned(aid, levels.counted_kinds) for aid in balances}
            now = _now()
            staged: list[Transaction] = []
            for r in requests:
                candidate = balances[r.account_id] + r.signed_amount
                if candidate < 0:
                    raise InsufficientCreditsError(r.account_id, balances[r.account_id], r.amount)
                balances[r.account_id] = candidate
                if levels.counts(r.kind):
                    earned[r.account_id] += r.amount
                staged.append(Transaction(
                    id=uuid4(), account_id=r.account_id, amount=r.amount, kind=r.kind,
                    category=r.category, description=r.description, reference_key=r.reference_key,
                    metadata=dict(r.metadata), balance_after=candidate, created_at=now,
                ))

            for t in staged:
                self.ledger_entries[t.account_id].append(t)
                self.idempotency_index[(t.account_id, t.reference_key)] = t
            previous_ranks = {aid: self.accounts[aid]["level_rank"] for aid in balances}
            for aid, balance in balances.items():
                level = levels.compute(earned[aid])
                self.accounts[aid].update(
                    balance=balance, level_name=level.name, level_rank=level.rank, updated_at=now,
                )
            return [
                AppendOutcome(
                    transaction=t, account=Account(**self.accounts[t.account_id]), created=True,
                    previous_level_rank=previous_ranks[t.account_id],
                )
                for t in staged
            ]

    def get_transaction(self, account_id: str, reference_key: str) -> Optional[Transaction]:
        if account_id not in self.accounts:
            return None
        with self._locked([account_id]):
            return self.idempotency_index.get((account_id, reference_key))

    def list_transactions(
        self,
        account_id: str,
        limit: int = 50,
        offset: int = 0,
        category: Optional[TransactionCategory] = None,
    ) -> tuple[list[Transaction], int]:
        if account_id not in self.accounts:
            return [], 0
        with self._locked([account_id]):
            entries = list(self.ledger_entries[account_id])
        if category is not None:
            entries = [e for e in entries if e.category == category]
        entries.reverse()
        return entries[offset:offset + limit], len(entries)


SCHEMA_V1 = """
CREATE TABLE IF NOT EXISTS accounts (
  id          TEXT PRIMARY KEY,
  balance     INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
  level_name  TEXT NOT NULL,
  level_rank  INTEGER NOT NULL DEFAULT 1 CHECK (level_rank >= 1),
  created_at  TEXT NOT NULL,
  updated_at  TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS credit_transactions (
  id             TEXT PRIMARY KEY,
  account_id     TEXT NOT NULL REFERENCES accounts(id),
  amount         INTEGER NOT NULL CHECK (amount > 0),
  kind           TEXT NOT NULL,
  category       TEXT NOT NULL,
  description    TEXT NOT NULL DEFAULT '',
  reference_key  TEXT NOT NULL,
  metadata       TEXT NOT NULL DEFAULT '{}',
  balance_after  INTEGER NOT NULL,
  created_at     TEXT NOT NULL,
  UNIQUE (account_id, reference_key)
);
CREATE INDEX IF NOT EXISTS idx_credit_tx_account_category ON credit_transactions(account_id, category);
"""

MIGRATIONS = [SCHEMA_V1]


class SQLiteStorage(LedgerStorage):
    """
    SQLite-backed store. Every append runs inside BEGIN IMMEDIATE, so the
    balance it checks is the latest committed one and concurrent writers
    on any account wait their turn. Connections are per thread.
    """

    def __init__(self, db_path: str, timeout: float = 5.0):
        self.db_path = os.path.abspath(db_path)
        os.makedirs(os.path.dirname(self.db_path), exist_ok=True)
        self.timeout = timeout
        self._tls = threading.local()
        self._conns: set[sqlite3.Connection] = set()
        self._conns_lock = threading.Lock()
        self._migrate()

    def _connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None, timeout=self.timeout)
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA journal_mode=WAL;")
        con.execute("PRAGMA foreign_keys=ON;")
        con.execute("PRAGMA synchronous=NORMAL;")
        con.execute(f"PRAGMA busy_timeout={int(self.timeout * 1000)};")
        return con

    def get_conn(self) -> sqlite3.Connection:
        con = getattr(self._tls, "con", None)
        with self._conns_lock:
            if con is not None and con in self._conns:
                return con
            try:
                con = self._connect()
            except sqlite3.Error as e:
                raise StorageUnavailableError(f"Cannot open ledger database: {e}") from e
            self._conns.add(con)
        self._tls.con = con
        return con

    def close(self) -> None:
        """Close every connection this store opened, from any thread. Call once workers are done."""
        with self._conns_lock:
            conns, self._conns = self._conns, set()
        for con in conns:
            con.close()
        self._tls.con = None

    @contextmanager
    def atomic(self):
        con = self.get_conn()
        try:
            con.execute("BEGIN IMMEDIATE;")
        except sqlite3.OperationalError as e:
            raise StorageUnavailableError(f"Ledger database busy: {e}") from e
        try:
            yield con
            con.execute("COMMIT;")
        except sqlite3.OperationalError as e:
            con.execute("ROLLBACK;")
            raise StorageUnavailableError(f"Ledger write failed: {e}") from e
        except Exception:
            con.execute("ROLLBACK;")
            raise

    def _migrate(self) -> None:
        with self.atomic() as con:
            (ver,) = con.execute("PRAGMA user_version").fetchone()
            ver = int(ver or 0)
            for target, ddl in enumerate(MIGRATIONS[ver:], start=ver + 1):
                for statement in filter(str.strip, ddl.split(";")):
                    con.execute(statement)
                con.execute(f"PRAGMA user_version={target}")
                logger.info("Ledger schema migrated to v%d", target)

    def _read(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            return self.get_conn().execute(sql, params).fetchall()
        except sqlite3.OperationalError as e:
            raise StorageUnavailableError(f"Ledger read failed: {e}") from e

    @staticmethod
    def _account_from_row(row: sqlite3.Row) -> Account:
        return Account.model_validate(dict(row))

    @staticmethod
    def _transaction_from_row(row: sqlite3.Row) -> Transaction:
        data = dict(row)
        data["metadata"] = json.loads(data["metadata"] or "{}")
        return Transaction.model_validate(data)

    def create_account(self, account_id: str, levels: LevelCalculator) -> Account:
        level = levels.compute(0)
        now = _now().isoformat()
        with self.atomic() as con:
            cur = con.execute(
                "INSERT OR IGNORE INTO accounts(id, balance, level_name, level_rank, created_at, updated_at) "
                "VALUES(?,?,?,?,?,?)",
                (account_id, 0, level.name, level.rank, now, now),
            )
            if cur.rowcount:
                logger.info("Created account %s", account_id)
            row = con.execute("SELECT * FROM accounts WHERE id=?", (account_id,)).fetchone()
        return self._account_from_row(row)

    def get_account(self, account_id: str) -> Account:
        rows = self._read("SELECT * FROM accounts WHERE id=?", (account_id,))
        if not rows:
            raise AccountNotFoundError(account_id)
        return self._account_from_row(rows[0])

    def get_cumulative_earned(self, account_id: str, kinds: Iterable[TransactionKind]) -> int:
        self.get_account(account_id)
        kinds = [k.value for k in kinds]
        if not kinds:
            return 0
        marks = ",".join("?" * len(kinds))
        (row,) = self._read(
            f"SELECT COALESCE(SUM(amount),0) FROM credit_transactions WHERE account_id=? AND kind IN ({marks})",
            (account_id, *kinds),
        )
        return int(row[0])

    def ledger_balance(self, account_id: str) -> int:
        self.get_account(account_id)
        (row,) = self._read(
            "SELECT COALESCE(SUM(CASE WHEN kind IN ('earn','bonus') THEN amount ELSE -amount END),0) "
            "FROM credit_transactions WHERE account_id=?",
            (account_id,),
        )
        return int(row[0])

    def _earned_in(self, con: sqlite3.Connection, account_id: str, levels: LevelCalculator) -> int:
        kinds = [k.value for k in levels.counted_kinds]
        if not kinds:
            return 0
        marks = ",".join("?" * len(kinds))
        (total,) = con.execute(
            f"SELECT COALESCE(SUM(amount),0) FROM credit_transactions WHERE account_id=? AND kind IN ({marks})",
            (account_id, *kinds),
        ).fetchone()
        return int(total)

    def append(self, requests: Sequence[TransactionRequest], levels: LevelCalculator) -> list[AppendOutcome]:
        _check_batch(requests)
        with self.atomic() as con:
            accounts = {}
            for aid in sorted({r.account_id for r in requests}):
                row = con.execute("SELECT * FROM accounts WHERE id=?", (aid,)).fetchone()
                if row is None:
                    raise AccountNotFoundError(aid)
                accounts[aid] = dict(row)

            existing = {}
            for r in requests:
                row = con.execute(
                    "SELECT * FROM credit_transactions WHERE account_id=? AND reference_key=?",
                    (r.account_id, r.reference_key),
                ).fetchone()
                if row is not None:
                    existing[(r.account_id, r.reference_key)] = self._transaction_from_row(row)

            primary = requests[0]
            if (primary.account_id, primary.reference_key) in existing:
                return [
                    AppendOutcome(transaction=t, account=Account.model_validate(accounts[t.account_id]), created=False)
                    for t in existing.values()
                ]
            if existing:
                aid, key = next(iter(existing))
                raise IdempotencyConflictError(f"Reference {key} already recorded for account {aid}")

            balances = {aid: int(data["balance"]) for aid, data in accounts.items()}
            earned = {aid: self._earned_in(con, aid, levels) for aid in accounts}
            now = _now()
            outcomes_tx: list[Transaction] = []
            for r in requests:
                candidate = balances[r.account_id] + r.signed_amount
                if candidate < 0:
                    raise InsufficientCreditsError(r.account_id, balances[r.account_id], r.amount)
                balances[r.account_id] = candidate
                if levels.counts(r.kind):
                    earned[r.account_id] += r.amount
                t = Transaction(
                    id=uuid4(), account_id=r.account_id, amount=r.amount, kind=r.kind,
                    category=r.category, description=r.description, reference_key=r.reference_key,
                    metadata=dict(r.metadata), balance_after=candidate, created_at=now,
                )
                try:
                    con.execute(
                        "INSERT INTO credit_transactions(id, account_id, amount, kind, category, description, "
                        "reference_key, metadata, balance_after, created_at) VALUES(?,?,?,?,?,?,?,?,?,?)",
                        (str(t.id), t.account_id, t.amount, t.kind.value, t.category.value, t.description,
                         t.reference_key, json.dumps(t.metadata, default=str), t.balance_after,
                         t.created_at.isoformat()),
                    )
                except sqlite3.IntegrityError as e:
                    raise IdempotencyConflictError(
                        f"Reference {r.reference_key} already recorded for account {r.account_id}"
                    ) from e
                outcomes_tx.append(t)

            previous_ranks = {aid: int(data["level_rank"]) for aid, data in accounts.items()}
            for aid, balance in balances.items():
                level = levels.compute(earned[aid])
                con.execute(
                    "UPDATE accounts SET balance=?, level_name=?, level_rank=?, updated_at=? WHERE id=?",
                    (balance, level.name, level.rank, now.isoformat(), aid),
                )
                accounts[aid].update(
                    balance=balance, level_name=level.name, level_rank=level.rank, updated_at=now.isoformat(),
                )

        return [
            AppendOutcome(
                transaction=t, account=Account.model_validate(accounts[t.account_id]), created=True,
                previous_level_rank=previous_ranks[t.account_id],
            )
            for t in outcomes_tx
        ]

    def get_transaction(self, account_id: str, reference_key: str) -> Optional[Transaction]:
        rows = self._read(
            "SELECT * FROM credit_transactions WHERE account_id=? AND reference_key=?",
            (account_id, reference_key),
        )
        return self._transaction_from_row(rows[0]) if rows else None

    def list_transactions(
        self,
        account_id: str,
        limit: int = 50,
        offset: int = 0,
        category: Optional[TransactionCategory] = None,
    ) -> tuple[list[Transaction], int]:
        where, params = "account_id=?", [account_id]
        if category is not None:
            where += " AND category=?"
            params.append(category.value)
        (count,) = self._read(f"SELECT COUNT(*) FROM credit_transactions WHERE {where}", tuple(params))
        rows = self._read(
            f"SELECT * FROM credit_transactions WHERE {where} ORDER BY rowid DESC LIMIT ? OFFSET ?",
            (*params, int(limit), int(offset)),
        )
        return [self._transaction_from_row(r) for r in rows], int(count[0])
