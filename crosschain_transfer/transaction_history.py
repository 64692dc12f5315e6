"""
Transaction History Database

SQLite ledger of every dispatch outcome.

Tables:
- transfers: one row per dispatched transfer (receipt or failure)
- transactions: individual swap / authorization / transfer references
- errors: failed steps with provider error text
"""

import sqlite3
from dataclasses import dataclass, asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from .models import PendingTransfer, Receipt, utc_now


@dataclass
class TransferRecord:
    """One dispatched transfer as stored in the ledger"""
    transfer_id: str
    session_id: str
    provider_id: str
    execution_method: str
    source_network: str
    destination_network: str
    destination_address: str
    asset: str
    amount: float
    fee_usd: float
    success: bool
    transfer_tx: Optional[str]
    authorization_tx: Optional[str]
    failed_step: Optional[str]
    error_message: Optional[str]
    created_at: datetime
    completed_at: Optional[datetime]

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['created_at'] = self.created_at.isoformat()
        if self.completed_at:
            data['completed_at'] = self.completed_at.isoformat()
        return data


class TransactionHistoryDB:
    """
    SQLite history of dispatched transfers

    Features:
    - Receipt and failure logging
    - Per-step transaction references
    - Lookups by transfer id and session
    - Success rate and fee statistics
    """

    def __init__(self, db_path: str = "transfer_history.db"):
        """
        Args:
            db_path: Path to SQLite database (":memory:" for a throwaway ledger)
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self.conn: Optional[sqlite3.Connection] = None
        self._initialize_db()
        logger.info(f"Transfer history database initialized: {self.db_path}")

    def _initialize_db(self):
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self):
        cursor = self.conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS transfers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                transfer_id TEXT UNIQUE NOT NULL,
                session_id TEXT NOT NULL,
                provider_id TEXT NOT NULL,
                execution_method TEXT NOT NULL,
                source_network TEXT NOT NULL,
                destination_network TEXT NOT NULL,
                destination_address TEXT NOT NULL,
                asset TEXT NOT NULL,
                amount REAL NOT NULL,
                fee_usd REAL DEFAULT 0,
                success BOOLEAN DEFAULT 0,
                transfer_tx TEXT,
                authorization_tx TEXT,
                failed_step TEXT,
                error_message TEXT,
                created_at TIMESTAMP NOT NULL,
                completed_at TIMESTAMP,
                CONSTRAINT positive_amount CHECK (amount > 0),
                CONSTRAINT positive_fee CHECK (fee_usd >= 0)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                txid TEXT NOT NULL,
                transfer_id TEXT NOT NULL,
                transaction_type TEXT NOT NULL,
                network TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL,
                FOREIGN KEY (transfer_id) REFERENCES transfers(transfer_id),
                CONSTRAINT valid_type CHECK (transaction_type IN ('swap', 'authorization', 'transfer'))
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS errors (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                transfer_id TEXT,
                step TEXT NOT NULL,
                error_message TEXT NOT NULL,
                occurred_at TIMESTAMP NOT NULL,
                FOREIGN KEY (transfer_id) REFERENCES transfers(transfer_id)
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_transfers_session ON transfers(session_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_transfers_created ON transfers(created_at)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_transactions_transfer ON transactions(transfer_id)")

        self.conn.commit()
        logger.debug("History tables ready")

    def _insert_transfer(self, record: TransferRecord) -> bool:
        try:
            cursor = self.conn.cursor()
            cursor.execute("""
                INSERT INTO transfers (
                    transfer_id, session_id, provider_id, execution_method,
                    source_network, destination_network, destination_address, asset,
                    amount, fee_usd, success, transfer_tx, authorization_tx,
                    failed_step, error_message, created_at, completed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.transfer_id,
                record.session_id,
                record.provider_id,
                record.execution_method,
                record.source_network,
                record.destination_network,
                record.destination_address,
                record.asset,
                record.amount,
                record.fee_usd,
                record.success,
                record.transfer_tx,
                record.authorization_tx,
                record.failed_step,
                record.error_message,
                record.created_at.isoformat(),
                record.completed_at.isoformat() if record.completed_at else None,
            ))
            self.conn.commit()
            return True

        except sqlite3.IntegrityError:
            logger.error(f"✗ Duplicate transfer record: {record.transfer_id}")
            self.conn.rollback()
            return False
        except sqlite3.Error as e:
            logger.error(f"✗ Error recording transfer: {e}")
            self.conn.rollback()
            return False

    def _insert_transaction(self, txid: str, transfer_id: str, transaction_type: str, network: str):
        self.conn.execute("""
            INSERT INTO transactions (txid, transfer_id, transaction_type, network, created_at)
            VALUES (?, ?, ?, ?, ?)
        """, (txid, transfer_id, transaction_type, network, utc_now().isoformat()))

    def _base_record(self, session_id: str, pending: PendingTransfer) -> Dict[str, Any]:
        route = pending.request.route
        return {
            'transfer_id': pending.transfer_id,
            'session_id': session_id,
            'provider_id': pending.quote.provider_id,
            'execution_method': pending.quote.execution_method.value,
            'source_network': route.source_network,
            'destination_network': route.destination_network,
            'destination_address': pending.request.destination_address,
            'asset': route.asset,
            'amount': route.amount,
            'fee_usd': pending.quote.fee_usd,
            'created_at': pending.created_at,
        }

    def record_receipt(self, session_id: str, pending: PendingTransfer, receipt: Receipt) -> bool:
        """
        Record a successful dispatch

        Returns:
            Success status
        """
        if self.conn is None:
            logger.warning(f"⚠️ History database closed, {receipt.transfer_id} not recorded")
            return False

        record = TransferRecord(
            **self._base_record(session_id, pending),
            success=True,
            transfer_tx=receipt.transfer_tx,
            authorization_tx=receipt.authorization_tx,
            failed_step=None,
            error_message=None,
            completed_at=receipt.submitted_at,
        )
        if not self._insert_transfer(record):
            return False

        source = receipt.source_network
        try:
            if receipt.swap_tx:
                self._insert_transaction(receipt.swap_tx, receipt.transfer_id, 'swap', source)
            if receipt.authorization_tx:
                self._insert_transaction(receipt.authorization_tx, receipt.transfer_id, 'authorization', source)
            self._insert_transaction(receipt.transfer_tx, receipt.transfer_id, 'transfer', source)
            self.conn.commit()
        except sqlite3.Error as e:
            logger.error(f"✗ Error recording transactions for {receipt.transfer_id}: {e}")
            self.conn.rollback()
            return False

        logger.info(f"✓ Transfer recorded: {receipt.transfer_id}")
        return True

    def record_failure(self, session_id: str, pending: PendingTransfer, failure) -> bool:
        """
        Record a dispatch that stopped at some step

        Args:
            session_id: Owning session
            pending: The confirmed transfer
            failure: ExecutionFailure from the dispatcher

        Returns:
            Success status
        """
        if self.conn is None:
            logger.warning(f"⚠️ History database closed, {pending.transfer_id} not recorded")
            return False

        step = failure.step.value
        record = TransferRecord(
            **self._base_record(session_id, pending),
            success=False,
            transfer_tx=None,
            authorization_tx=failure.authorization_tx,
            failed_step=step,
            error_message=failure.error_text,
            completed_at=utc_now(),
        )
        if not self._insert_transfer(record):
            return False

        source = pending.request.route.source_network
        try:
            if failure.swap_tx:
                self._insert_transaction(failure.swap_tx, pending.transfer_id, 'swap', source)
            if failure.authorization_tx:
                self._insert_transaction(failure.authorization_tx, pending.transfer_id, 'authorization', source)
            self.conn.execute("""
                INSERT INTO errors (transfer_id, step, error_message, occurred_at)
                VALUES (?, ?, ?, ?)
            """, (pending.transfer_id, step, failure.error_text, utc_now().isoformat()))
            self.conn.commit()
        except sqlite3.Error as e:
            logger.error(f"✗ Error recording failure details for {pending.transfer_id}: {e}")
            self.conn.rollback()
            return False

        logger.info(f"✓ Failed transfer recorded: {pending.transfer_id} ({step})")
        return True

    def get_transfer(self, transfer_id: str) -> Optional[Dict]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM transfers WHERE transfer_id = ?", (transfer_id,))
        row = cursor.fetchone()
        return dict(row) if row else None

    def get_transfers_by_session(self, session_id: str) -> List[Dict]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM transfers WHERE session_id = ? ORDER BY created_at DESC", (session_id,))
        return [dict(row) for row in cursor.fetchall()]

    def get_transactions(self, transfer_id: str) -> List[Dict]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM transactions WHERE transfer_id = ? ORDER BY id", (transfer_id,))
        return [dict(row) for row in cursor.fetchall()]

    def get_errors(self, transfer_id: str) -> List[Dict]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM errors WHERE transfer_id = ? ORDER BY id", (transfer_id,))
        return [dict(row) for row in cursor.fetchall()]

    def get_statistics(self) -> Dict[str, Any]:
        """
        Transfer statistics

        Returns:
            Statistics dictionary
        """
        cursor = self.conn.cursor()

        cursor.execute("SELECT COUNT(*) FROM transfers")
        total_transfers = cursor.fetchone()[0]

        cursor.execute("SELECT COUNT(*) FROM transfers WHERE success = 1")
        successful_transfers = cursor.fetchone()[0]

        cursor.execute("SELECT SUM(amount) FROM transfers WHERE success = 1")
        total_volume = cursor.fetchone()[0] or 0

        cursor.execute("SELECT SUM(fee_usd) FROM transfers WHERE success = 1")
        total_fees = cursor.fetchone()[0] or 0

        cursor.execute("""
            SELECT provider_id, COUNT(*) AS n FROM transfers
            WHERE success = 1 GROUP BY provider_id ORDER BY n DESC
        """)
        by_provider = {row['provider_id']: row['n'] for row in cursor.fetchall()}

        success_rate = (successful_transfers / total_transfers * 100) if total_transfers > 0 else 0

        return {
            'total_transfers': total_transfers,
            'successful_transfers': successful_transfers,
            'failed_transfers': total_transfers - successful_transfers,
            'success_rate': success_rate,
            'total_volume': total_volume,
            'total_fees_usd': total_fees,
            'avg_fee_percent': (total_fees / total_volume * 100) if total_volume > 0 else 0,
            'transfers_by_provider': by_provider,
        }

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("History database closed")
