"""
Transaction History Database

SQLite log of every transfer outcome, used for auditing and for
reconciling broadcasts whose confirmation was never observed.

Tables:
- transfers: one record per row outcome / broadcast
- errors: retryable errors seen while processing a row

Statuses:
- pending: broadcast, confirmation not yet known
- unconfirmed: confirmation wait timed out
- confirmed: included with code 0
- failed: rejected, or failed before broadcast
- skipped: nothing to send
"""

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger


UNRESOLVED_STATUSES = ('pending', 'unconfirmed')


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class TransferHistoryDB:
    """
    SQLite database for transfer history

    Features:
    - Broadcast logging before confirmation
    - Outcome recording
    - Error logging
    - Reconciliation queries
    - Run statistics
    """

    def __init__(self, db_path: str = "transfer_history.db"):
        """
        Initialize database

        Args:
            db_path: Path to SQLite database (":memory:" for tests)
        """
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self._initialize_db()
        logger.info(f"Transfer history database initialized: {self.db_path}")

    def _initialize_db(self):
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self):
        cursor = self.conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS transfers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                request_id TEXT NOT NULL,
                source_address TEXT,
                destination_address TEXT NOT NULL,
                amount INTEGER DEFAULT 0,
                tx_hash TEXT UNIQUE,
                status TEXT NOT NULL,
                reason TEXT,
                created_at TIMESTAMP NOT NULL,
                completed_at TIMESTAMP,
                CONSTRAINT valid_status CHECK (
                    status IN ('pending', 'unconfirmed', 'confirmed', 'failed', 'skipped')
                ),
                CONSTRAINT non_negative_amount CHECK (amount >= 0)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS errors (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                request_id TEXT,
                error_type TEXT NOT NULL,
                error_message TEXT NOT NULL,
                occurred_at TIMESTAMP NOT NULL
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_transfers_pair ON transfers(source_address, destination_address)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_transfers_status ON transfers(status)")

        self.conn.commit()
        logger.debug("Database tables created successfully")

    def record_broadcast(
        self,
        request_id: str,
        source_address: str,
        destination_address: str,
        amount: int,
        tx_hash: str
    ) -> bool:
        """
        Record a broadcast transaction before its confirmation is known

        Returns:
            Success status
        """
        try:
            self.conn.execute("""
                INSERT INTO transfers (
                    request_id, source_address, destination_address, amount,
                    tx_hash, status, created_at
                ) VALUES (?, ?, ?, ?, ?, 'pending', ?)
            """, (request_id, source_address, destination_address, amount, tx_hash, _utcnow()))
            self.conn.commit()
            logger.debug(f"Broadcast recorded: {tx_hash}")
            return True

        except sqlite3.IntegrityError:
            logger.warning(f"Broadcast {tx_hash} already recorded")
            return False
        except sqlite3.Error as e:
            logger.error(f"✗ Error recording broadcast: {e}")
            self.conn.rollback()
            return False

    def update_status(self, tx_hash: str, status: str, reason: Optional[str] = None) -> bool:
        try:
            self.conn.execute("""
                UPDATE transfers
                SET status = ?, reason = COALESCE(?, reason), completed_at = ?
                WHERE tx_hash = ?
            """, (status, reason, _utcnow(), tx_hash))
            self.conn.commit()
            return True

        except sqlite3.Error as e:
            logger.error(f"Error updating transfer {tx_hash}: {e}")
            self.conn.rollback()
            return False

    def mark_confirmed(self, tx_hash: str) -> bool:
        """Mark an earlier broadcast as included in a block"""
        logger.info(f"✓ Transfer {tx_hash} marked as confirmed")
        return self.update_status(tx_hash, 'confirmed')

    def record_outcome(self, request_id: str, outcome) -> bool:
        """
        Record the terminal outcome of a row

        Outcomes with a transaction hash update their broadcast record;
        others (skips, failures before broadcast) get a record of their own.

        Args:
            request_id: Row request ID
            outcome: Sent, Skipped or Failed

        Returns:
            Success status
        """
        tx_hash = getattr(outcome, 'tx_hash', None)
        reason = getattr(outcome, 'reason', None)

        if outcome.status == 'SUCCESS':
            status = 'confirmed'
        elif outcome.status == 'SKIP':
            status = 'skipped'
        elif tx_hash and getattr(outcome, 'rejected_code', None) is None:
            status = 'unconfirmed'
        else:
            status = 'failed'

        if tx_hash and self.get_transfer(tx_hash):
            return self.update_status(tx_hash, status, reason)

        try:
            self.conn.execute("""
                INSERT INTO transfers (
                    request_id, source_address, destination_address, amount,
                    tx_hash, status, reason, created_at, completed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                request_id,
                outcome.from_address,
                outcome.to_address,
                getattr(outcome, 'amount_sent', 0),
                tx_hash,
                status,
                reason,
                outcome.started_at.isoformat(),
                outcome.completed_at.isoformat(),
            ))
            self.conn.commit()
            return True

        except sqlite3.Error as e:
            logger.error(f"✗ Error recording outcome for {request_id}: {e}")
            self.conn.rollback()
            return False

    def record_error(self, request_id: Optional[str], error_type: str, error_message: str) -> bool:
        try:
            self.conn.execute("""
                INSERT INTO errors (request_id, error_type, error_message, occurred_at)
                VALUES (?, ?, ?, ?)
            """, (request_id, error_type, error_message, _utcnow()))
            self.conn.commit()
            return True

        except sqlite3.Error as e:
            logger.error(f"Error recording error: {e}")
            return False

    def get_transfer(self, tx_hash: str) -> Optional[Dict]:
        cursor = self.conn.execute("SELECT * FROM transfers WHERE tx_hash = ?", (tx_hash,))
        row = cursor.fetchone()
        return dict(row) if row else None

    def find_unconfirmed(self, source_address: str, destination_address: str) -> List[Dict]:
        """
        Broadcasts from source to destination whose confirmation is unknown

        Returns:
            Transfer records, newest first
        """
        cursor = self.conn.execute("""
            SELECT * FROM transfers
            WHERE source_address = ? AND destination_address = ?
              AND tx_hash IS NOT NULL
              AND status IN (?, ?)
            ORDER BY id DESC
        """, (source_address, destination_address, *UNRESOLVED_STATUSES))
        return [dict(row) for row in cursor.fetchall()]

    def get_errors(self, request_id: str) -> List[Dict]:
        cursor = self.conn.execute(
            "SELECT * FROM errors WHERE request_id = ? ORDER BY id", (request_id,)
        )
        return [dict(row) for row in cursor.fetchall()]

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get transfer statistics

        Returns:
            Counts per status and total amount confirmed
        """
        cursor = self.conn.execute("SELECT status, COUNT(*) FROM transfers GROUP BY status")
        by_status = {row[0]: row[1] for row in cursor.fetchall()}

        cursor = self.conn.execute("SELECT SUM(amount) FROM transfers WHERE status = 'confirmed'")
        total_sent = cursor.fetchone()[0] or 0

        return {
            'total_transfers': sum(by_status.values()),
            'confirmed': by_status.get('confirmed', 0),
            'failed': by_status.get('failed', 0),
            'skipped': by_status.get('skipped', 0),
            'unresolved': sum(by_status.get(s, 0) for s in UNRESOLVED_STATUSES),
            'total_sent': total_sent,
        }

    def close(self):
        """Close database connection"""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("Database connection closed")
