"""
Loan Store Module

Persistence port used by the harmonizer, with an in-memory implementation
(testing) and a SQLite implementation. Rows are kept as JSON payloads with
all monetary values stored as Decimal strings.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Union
from decimal import Decimal
from datetime import date, datetime, timezone
from enum import Enum
from contextlib import contextmanager
from pathlib import Path
import copy
import json
import logging
import sqlite3
import threading
import uuid

from .models import LoanRecord, ScheduleEntry, Payment
from .exceptions import PersistenceError, LoanNotFoundError
from .config import get_config


logger = logging.getLogger("core_lending.storage")


def _serialize_value(value: Any) -> Any:
    """Convert a field value to its JSON storage form"""
    if isinstance(value, Decimal):
        return str(value)
    elif isinstance(value, (date, datetime)):
        return value.isoformat()
    elif isinstance(value, Enum):
        return value.value
    elif isinstance(value, dict):
        return {k: _serialize_value(v) for k, v in value.items()}
    return value


def _serialize_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _serialize_value(value) for key, value in fields.items()}


class LoanStore(ABC):
    """Abstract persistence port for loans, schedules and payments"""

    @abstractmethod
    def save_loan(self, loan: LoanRecord) -> None:
        """Insert or replace a loan row"""
        pass

    @abstractmethod
    def save_payment(self, payment: Payment) -> None:
        """Record a payment"""
        pass

    @abstractmethod
    def fetch_loan(self, loan_id: str) -> Optional[LoanRecord]:
        """Load a loan, or None if it does not exist"""
        pass

    @abstractmethod
    def fetch_loans(self) -> List[LoanRecord]:
        """Load every loan"""
        pass

    @abstractmethod
    def fetch_schedule(self, loan_id: str) -> List[ScheduleEntry]:
        """Schedule entries of a loan ordered by installment number"""
        pass

    @abstractmethod
    def fetch_payments(self, loan_id: str) -> List[Payment]:
        """Payments of a loan ordered by payment date"""
        pass

    @abstractmethod
    def delete_schedule(self, loan_id: str) -> int:
        """Delete every schedule entry of a loan, returning how many were removed"""
        pass

    @abstractmethod
    def insert_schedule_entries(self, entries: Sequence[ScheduleEntry]) -> List[ScheduleEntry]:
        """Insert entries, returning them with their assigned ids"""
        pass

    @abstractmethod
    def update_schedule_entry(self, entry_id: str, fields: Dict[str, Any]) -> None:
        """Update fields of one schedule entry"""
        pass

    @abstractmethod
    def update_loan(self, loan_id: str, fields: Dict[str, Any]) -> None:
        """Update fields of one loan"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close store connection"""
        pass

    def begin_transaction(self) -> None:
        """Start a transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


class InMemoryLoanStore(LoanStore):
    """In-memory store for testing; transactions roll back to a snapshot"""

    def __init__(self):
        self._loans: Dict[str, Dict[str, Any]] = {}
        self._schedules: Dict[str, Dict[str, Any]] = {}
        self._payments: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._snapshot = None

    def save_loan(self, loan: LoanRecord) -> None:
        with self._lock:
            # Round-trip through JSON to prevent external mutation
            self._loans[loan.id] = json.loads(json.dumps(loan.to_dict()))

    def save_payment(self, payment: Payment) -> None:
        with self._lock:
            self._payments[payment.id] = json.loads(json.dumps(payment.to_dict()))

    def fetch_loan(self, loan_id: str) -> Optional[LoanRecord]:
        with self._lock:
            data = self._loans.get(loan_id)
            if data:
                return LoanRecord.from_dict(copy.deepcopy(data))
            return None

    def fetch_loans(self) -> List[LoanRecord]:
        with self._lock:
            return [LoanRecord.from_dict(copy.deepcopy(data)) for data in self._loans.values()]

    def fetch_schedule(self, loan_id: str) -> List[ScheduleEntry]:
        with self._lock:
            entries = [
                ScheduleEntry.from_dict(data) for data in self._schedules.values()
                if data['loan_id'] == loan_id
            ]
        entries.sort(key=lambda entry: entry.installment_number)
        return entries

    def fetch_payments(self, loan_id: str) -> List[Payment]:
        with self._lock:
            payments = [
                Payment.from_dict(data) for data in self._payments.values()
                if data['loan_id'] == loan_id
            ]
        payments.sort(key=lambda payment: payment.payment_date)
        return payments

    def delete_schedule(self, loan_id: str) -> int:
        with self._lock:
            doomed = [entry_id for entry_id, data in self._schedules.items()
                      if data['loan_id'] == loan_id]
            for entry_id in doomed:
                del self._schedules[entry_id]
            return len(doomed)

    def insert_schedule_entries(self, entries: Sequence[ScheduleEntry]) -> List[ScheduleEntry]:
        inserted = []
        with self._lock:
            for entry in entries:
                entry_id = entry.id or str(uuid.uuid4())
                data = entry.to_dict()
                data['id'] = entry_id
                self._schedules[entry_id] = data
                inserted.append(ScheduleEntry.from_dict(data))
        return inserted

    def update_schedule_entry(self, entry_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            if entry_id not in self._schedules:
                raise PersistenceError(f"Schedule entry {entry_id} not found")
            self._schedules[entry_id].update(_serialize_fields(fields))

    def update_loan(self, loan_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            if loan_id not in self._loans:
                raise LoanNotFoundError(f"Loan {loan_id} not found")
            self._loans[loan_id].update(_serialize_fields(fields))

    def begin_transaction(self) -> None:
        with self._lock:
            if self._snapshot is None:
                self._snapshot = copy.deepcopy((self._loans, self._schedules, self._payments))

    def commit(self) -> None:
        with self._lock:
            self._snapshot = None

    def rollback(self) -> None:
        with self._lock:
            if self._snapshot is not None:
                self._loans, self._schedules, self._payments = self._snapshot
                self._snapshot = None

    @contextmanager
    def atomic(self):
        """Transactions hold the store lock; other threads wait until commit or rollback"""
        with self._lock:
            with super().atomic():
                yield

    def close(self) -> None:
        """Close store (no-op for in-memory)"""
        pass


class SQLiteLoanStore(LoanStore):
    """SQLite store for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", timeout: Optional[float] = None):
        self.db_path = str(db_path)
        if timeout is None:
            timeout = get_config().database_timeout
        self._lock = threading.RLock()
        self._in_transaction = False
        try:
            # isolation_level='DEFERRED' lets us control commits manually
            self._connection = sqlite3.connect(
                self.db_path, timeout=timeout, check_same_thread=False, isolation_level='DEFERRED'
            )
            self._connection.row_factory = sqlite3.Row
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
            self._create_tables()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open loan store at {self.db_path}: {e}") from e

    def _create_tables(self) -> None:
        with self._lock:
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS loans (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS loan_schedules (
                    id TEXT PRIMARY KEY,
                    loan_id TEXT NOT NULL,
                    installment_number INTEGER NOT NULL,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._connection.execute("""
                CREATE INDEX IF NOT EXISTS idx_loan_schedules_loan_id
                ON loan_schedules(loan_id, installment_number)
            """)
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS loan_payments (
                    id TEXT PRIMARY KEY,
                    loan_id TEXT NOT NULL,
                    payment_date TEXT NOT NULL,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            self._connection.execute("""
                CREATE INDEX IF NOT EXISTS idx_loan_payments_loan_id
                ON loan_payments(loan_id, payment_date)
            """)
            self._connection.commit()

    @contextmanager
    def _write(self, operation: str):
        """Run a write under the lock, committing unless inside a transaction"""
        with self._lock:
            try:
                yield self._connection
                if not self._in_transaction:
                    self._connection.commit()
            except sqlite3.Error as e:
                if not self._in_transaction:
                    self._connection.rollback()
                raise PersistenceError(f"{operation} failed: {e}") from e

    def _query(self, operation: str, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._connection.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise PersistenceError(f"{operation} failed: {e}") from e

    def save_loan(self, loan: LoanRecord) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._write("save_loan") as conn:
            conn.execute("""
                INSERT OR REPLACE INTO loans (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM loans WHERE id = ?), ?),
                    ?)
            """, (loan.id, json.dumps(loan.to_dict()), loan.id, now, now))

    def save_payment(self, payment: Payment) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._write("save_payment") as conn:
            conn.execute("""
                INSERT INTO loan_payments (id, loan_id, payment_date, data, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (payment.id, payment.loan_id, payment.payment_date.isoformat(),
                  json.dumps(payment.to_dict()), now))

    def fetch_loan(self, loan_id: str) -> Optional[LoanRecord]:
        rows = self._query("fetch_loan", "SELECT data FROM loans WHERE id = ?", (loan_id,))
        if rows:
            return LoanRecord.from_dict(json.loads(rows[0]['data']))
        return None

    def fetch_loans(self) -> List[LoanRecord]:
        rows = self._query("fetch_loans", "SELECT data FROM loans ORDER BY created_at, id")
        return [LoanRecord.from_dict(json.loads(row['data'])) for row in rows]

    def fetch_schedule(self, loan_id: str) -> List[ScheduleEntry]:
        rows = self._query("fetch_schedule", """
            SELECT data FROM loan_schedules WHERE loan_id = ? ORDER BY installment_number
        """, (loan_id,))
        return [ScheduleEntry.from_dict(json.loads(row['data'])) for row in rows]

    def fetch_payments(self, loan_id: str) -> List[Payment]:
        rows = self._query("fetch_payments", """
            SELECT data FROM loan_payments WHERE loan_id = ? ORDER BY payment_date, created_at
        """, (loan_id,))
        return [Payment.from_dict(json.loads(row['data'])) for row in rows]

    def delete_schedule(self, loan_id: str) -> int:
        with self._write("delete_schedule") as conn:
            cursor = conn.execute("DELETE FROM loan_schedules WHERE loan_id = ?", (loan_id,))
            return cursor.rowcount

    def insert_schedule_entries(self, entries: Sequence[ScheduleEntry]) -> List[ScheduleEntry]:
        now = datetime.now(timezone.utc).isoformat()
        inserted = []
        with self._write("insert_schedule_entries") as conn:
            for entry in entries:
                data = entry.to_dict()
                data['id'] = entry.id or str(uuid.uuid4())
                conn.execute("""
                    INSERT INTO loan_schedules
                        (id, loan_id, installment_number, data, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (data['id'], entry.loan_id, entry.installment_number,
                      json.dumps(data), now, now))
                inserted.append(ScheduleEntry.from_dict(data))
        return inserted

    def _merge_update(self, conn, table: str, record_id: str, fields: Dict[str, Any]) -> bool:
        row = conn.execute(f"SELECT data FROM {table} WHERE id = ?", (record_id,)).fetchone()
        if row is None:
            return False
        data = json.loads(row['data'])
        data.update(_serialize_fields(fields))
        conn.execute(f"""
            UPDATE {table} SET data = ?, updated_at = ? WHERE id = ?
        """, (json.dumps(data), datetime.now(timezone.utc).isoformat(), record_id))
        return True

    def update_schedule_entry(self, entry_id: str, fields: Dict[str, Any]) -> None:
        with self._write("update_schedule_entry") as conn:
            if not self._merge_update(conn, "loan_schedules", entry_id, fields):
                raise PersistenceError(f"Schedule entry {entry_id} not found")

    def update_loan(self, loan_id: str, fields: Dict[str, Any]) -> None:
        with self._write("update_loan") as conn:
            if not self._merge_update(conn, "loans", loan_id, fields):
                raise LoanNotFoundError(f"Loan {loan_id} not found")

    @contextmanager
    def atomic(self):
        """Transactions hold the store lock; other threads wait until commit or rollback"""
        with self._lock:
            with super().atomic():
                yield

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        with self._lock:
            if not self._in_transaction:
                # SQLite opens the transaction implicitly on the first write
                self._in_transaction = True

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if self._in_transaction:
                self._in_transaction = False
                try:
                    self._connection.commit()
                except sqlite3.Error as e:
                    raise PersistenceError(f"commit failed: {e}") from e

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            if self._in_transaction:
                self._in_transaction = False
                self._connection.rollback()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_store(database_url: Optional[str] = None) -> LoanStore:
    """
    Build a store from a URL: 'memory://' or 'sqlite:///path/to/file.db'
    (config database_url by default).
    """
    if database_url is None:
        database_url = get_config().database_url

    if database_url.startswith("memory://"):
        return InMemoryLoanStore()
    if database_url.startswith("sqlite:///"):
        path = database_url[len("sqlite:///"):] or ":memory:"
        logger.info(f"Opening SQLite loan store at {path}")
        return SQLiteLoanStore(path)
    raise PersistenceError(f"Unsupported database URL: {database_url}")
