"""SQLite persistence for members, loans, repayments, contributions and historical interest."""
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from decimal import Decimal

from community_fund.exceptions import (
    ConcurrentModificationError,
    DatabaseError,
    HistoricalInterestNotFoundError,
    LoanNotFoundError,
    MemberNotFoundError,
    TransactionError,
)
from community_fund.logging import get_logger
from community_fund.models import (
    Contribution,
    ContributionStatus,
    HistoricalInterest,
    InterestSource,
    Loan,
    LoanStatus,
    Member,
    PaymentMethod,
    PaymentType,
    Repayment,
)

logger = get_logger(__name__)


def _dec(value):
    if value is None:
        return None
    return Decimal(value)


def _dec_text(value):
    if value is None:
        return None
    return str(value)


def _dt(value):
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _dt_text(value):
    if value is None:
        return None
    return value.isoformat(sep=" ")


class DatabaseManager:
    """Handles all SQLite database operations."""
    
    def __init__(self, db_name="community_fund.db"):
        self.db_name = db_name
        self.conn = sqlite3.connect(db_name)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._closed = False
        self._transaction_depth = 0
        self.create_tables()
    
    def close(self):
        """Close the database connection."""
        if self.conn and not self._closed:
            self.conn.close()
            self._closed = True
    
    def __enter__(self):
        return self
    
    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def _commit(self):
        # writes inside transaction() are committed when the block exits
        if self._transaction_depth == 0:
            self.conn.commit()

    @contextmanager
    def transaction(self):
        """Context manager for database transactions with automatic rollback on failure.
        
        Usage:
            with db.transaction():
                db.save_loan(loan, expected_version)
                db.add_contributions(records)
        
        Nested blocks join the outermost transaction. If any exception occurs,
        the whole transaction is rolled back.
        """
        outermost = self._transaction_depth == 0
        self._transaction_depth += 1
        try:
            yield self
        except sqlite3.Error as e:
            if outermost:
                self.conn.rollback()
            raise TransactionError(f"Transaction failed: {str(e)}")
        except Exception:
            if outermost:
                self.conn.rollback()
            raise
        else:
            if outermost:
                self.conn.commit()
        finally:
            self._transaction_depth -= 1

    def create_tables(self):
        cursor = self.conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS members (
                member_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                join_date TEXT NOT NULL,
                is_active INTEGER DEFAULT 1
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS loans (
                loan_id TEXT PRIMARY KEY,
                member_id TEXT NOT NULL,
                requested_amount TEXT NOT NULL,
                request_date TEXT NOT NULL,
                status TEXT NOT NULL,
                approved_amount TEXT,
                interest_rate TEXT NOT NULL,
                approval_date TEXT,
                approved_by TEXT,
                disbursement_date TEXT,
                actual_repayment_date TEXT,
                last_interest_paid_date TEXT,
                total_amount_due TEXT DEFAULT '0',
                amount_paid TEXT DEFAULT '0',
                remaining_balance TEXT DEFAULT '0',
                purpose TEXT DEFAULT '',
                notes TEXT DEFAULT '',
                rejection_reason TEXT,
                version INTEGER DEFAULT 0,
                FOREIGN KEY(member_id) REFERENCES members(member_id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS repayments (
                repayment_id TEXT PRIMARY KEY,
                loan_id TEXT NOT NULL,
                member_id TEXT NOT NULL,
                amount TEXT NOT NULL,
                payment_date TEXT NOT NULL,
                payment_method TEXT NOT NULL,
                payment_type TEXT NOT NULL,
                principal_amount TEXT NOT NULL,
                interest_amount TEXT NOT NULL,
                remaining_balance TEXT NOT NULL,
                notes TEXT DEFAULT '',
                receipt_number TEXT,
                recorded_by TEXT,
                seq INTEGER NOT NULL,
                FOREIGN KEY(loan_id) REFERENCES loans(loan_id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS contributions (
                contribution_id TEXT PRIMARY KEY,
                member_id TEXT NOT NULL,
                month TEXT NOT NULL,
                year INTEGER NOT NULL,
                amount TEXT NOT NULL,
                paid_status TEXT NOT NULL,
                paid_date TEXT,
                payment_method TEXT,
                recorded_by TEXT,
                notes TEXT DEFAULT '',
                UNIQUE(member_id, month),
                FOREIGN KEY(member_id) REFERENCES members(member_id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS historical_interest (
                record_id TEXT PRIMARY KEY,
                amount TEXT NOT NULL,
                interest_date TEXT NOT NULL,
                source TEXT NOT NULL,
                description TEXT NOT NULL,
                recorded_by TEXT NOT NULL,
                receipt_number TEXT NOT NULL UNIQUE,
                member_id TEXT,
                loan_id TEXT,
                borrower_name TEXT,
                notes TEXT DEFAULT '',
                created_at TEXT NOT NULL,
                FOREIGN KEY(member_id) REFERENCES members(member_id),
                FOREIGN KEY(loan_id) REFERENCES loans(loan_id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_member ON loans(member_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_repayments_loan ON repayments(loan_id)")
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_historical_interest_date ON historical_interest(interest_date)"
        )
        self.conn.commit()

    # --- Members ---

    def add_member(self, member):
        try:
            self.conn.execute(
                "INSERT INTO members (member_id, name, join_date, is_active) VALUES (?, ?, ?, ?)",
                (member.member_id, member.name, _dt_text(member.join_date), int(member.is_active)),
            )
        except sqlite3.IntegrityError as e:
            raise DatabaseError(f"Could not add member: {e}", {"member_id": member.member_id})
        self._commit()
        return member

    def _row_to_member(self, row):
        return Member(
            member_id=row["member_id"],
            name=row["name"],
            join_date=_dt(row["join_date"]),
            is_active=bool(row["is_active"]),
        )

    def get_member(self, member_id):
        row = self.conn.execute(
            "SELECT * FROM members WHERE member_id=?", (member_id,)
        ).fetchone()
        if row is None:
            raise MemberNotFoundError(member_id)
        return self._row_to_member(row)

    def get_members(self, active_only=False):
        query = "SELECT * FROM members"
        if active_only:
            query += " WHERE is_active=1"
        query += " ORDER BY name"
        return [self._row_to_member(r) for r in self.conn.execute(query).fetchall()]

    # --- Loans ---

    def _loan_params(self, loan):
        return (
            loan.member_id,
            _dec_text(loan.requested_amount),
            _dt_text(loan.request_date),
            loan.status.value,
            _dec_text(loan.approved_amount),
            _dec_text(loan.interest_rate),
            _dt_text(loan.approval_date),
            loan.approved_by,
            _dt_text(loan.disbursement_date),
            _dt_text(loan.actual_repayment_date),
            _dt_text(loan.last_interest_paid_date),
            _dec_text(loan.total_amount_due),
            _dec_text(loan.amount_paid),
            _dec_text(loan.remaining_balance),
            loan.purpose,
            loan.notes,
            loan.rejection_reason,
        )

    def _insert_repayments(self, loan):
        """Insert repayments of ``loan`` not yet stored. Repayments are append-only."""
        for seq, r in enumerate(loan.repayments):
            self.conn.execute("""
                INSERT OR IGNORE INTO repayments (
                    repayment_id, loan_id, member_id, amount, payment_date,
                    payment_method, payment_type, principal_amount, interest_amount,
                    remaining_balance, notes, receipt_number, recorded_by, seq
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                r.repayment_id, loan.loan_id, r.member_id, _dec_text(r.amount),
                _dt_text(r.payment_date), r.payment_method.value, r.payment_type.value,
                _dec_text(r.principal_amount), _dec_text(r.interest_amount),
                _dec_text(r.remaining_balance), r.notes, r.receipt_number, r.recorded_by, seq,
            ))

    def add_loan(self, loan):
        """Insert a new loan. Returns the loan as stored (version 0)."""
        loan = replace(loan, version=0)
        try:
            self.conn.execute("""
                INSERT INTO loans (
                    member_id, requested_amount, request_date, status, approved_amount,
                    interest_rate, approval_date, approved_by, disbursement_date,
                    actual_repayment_date, last_interest_paid_date, total_amount_due,
                    amount_paid, remaining_balance, purpose, notes, rejection_reason,
                    loan_id, version
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0)
            """, self._loan_params(loan) + (loan.loan_id,))
        except sqlite3.IntegrityError as e:
            raise DatabaseError(f"Could not add loan: {e}", {"loan_id": loan.loan_id})
        self._insert_repayments(loan)
        self._commit()
        logger.debug("Stored loan %s", loan.loan_id)
        return loan

    def save_loan(self, loan, expected_version):
        """Persist ``loan`` if the stored version still equals ``expected_version``.
        
        Returns:
            The loan with its version incremented.
            
        Raises:
            LoanNotFoundError: If the loan does not exist.
            ConcurrentModificationError: If another writer saved first.
        """
        cursor = self.conn.execute("""
            UPDATE loans SET
                member_id=?, requested_amount=?, request_date=?, status=?, approved_amount=?,
                interest_rate=?, approval_date=?, approved_by=?, disbursement_date=?,
                actual_repayment_date=?, last_interest_paid_date=?, total_amount_due=?,
                amount_paid=?, remaining_balance=?, purpose=?, notes=?, rejection_reason=?,
                version=version + 1
            WHERE loan_id=? AND version=?
        """, self._loan_params(loan) + (loan.loan_id, expected_version))
        if cursor.rowcount == 0:
            row = self.conn.execute(
                "SELECT version FROM loans WHERE loan_id=?", (loan.loan_id,)
            ).fetchone()
            if row is None:
                raise LoanNotFoundError(loan.loan_id)
            raise ConcurrentModificationError(loan.loan_id, expected_version, row["version"])
        self._insert_repayments(loan)
        self._commit()
        return replace(loan, version=expected_version + 1)

    def _get_repayments(self, loan_id):
        rows = self.conn.execute(
            "SELECT * FROM repayments WHERE loan_id=? ORDER BY seq", (loan_id,)
        ).fetchall()
        return tuple(
            Repayment(
                repayment_id=r["repayment_id"],
                loan_id=r["loan_id"],
                member_id=r["member_id"],
                amount=_dec(r["amount"]),
                payment_date=_dt(r["payment_date"]),
                payment_method=PaymentMethod(r["payment_method"]),
                payment_type=PaymentType(r["payment_type"]),
                principal_amount=_dec(r["principal_amount"]),
                interest_amount=_dec(r["interest_amount"]),
                remaining_balance=_dec(r["remaining_balance"]),
                notes=r["notes"] or "",
                receipt_number=r["receipt_number"],
                recorded_by=r["recorded_by"],
            )
            for r in rows
        )

    def _row_to_loan(self, row):
        return Loan(
            loan_id=row["loan_id"],
            member_id=row["member_id"],
            requested_amount=_dec(row["requested_amount"]),
            request_date=_dt(row["request_date"]),
            status=LoanStatus(row["status"]),
            approved_amount=_dec(row["approved_amount"]),
            interest_rate=_dec(row["interest_rate"]),
            approval_date=_dt(row["approval_date"]),
            approved_by=row["approved_by"],
            disbursement_date=_dt(row["disbursement_date"]),
            actual_repayment_date=_dt(row["actual_repayment_date"]),
            last_interest_paid_date=_dt(row["last_interest_paid_date"]),
            total_amount_due=_dec(row["total_amount_due"]),
            amount_paid=_dec(row["amount_paid"]),
            remaining_balance=_dec(row["remaining_balance"]),
            repayments=self._get_repayments(row["loan_id"]),
            purpose=row["purpose"] or "",
            notes=row["notes"] or "",
            rejection_reason=row["rejection_reason"],
            version=row["version"],
        )

    def get_loan(self, loan_id):
        row = self.conn.execute("SELECT * FROM loans WHERE loan_id=?", (loan_id,)).fetchone()
        if row is None:
            raise LoanNotFoundError(loan_id)
        return self._row_to_loan(row)

    def get_loans(self, member_id=None, status=None):
        query = "SELECT * FROM loans WHERE 1=1"
        params = []
        if member_id is not None:
            query += " AND member_id=?"
            params.append(member_id)
        if status is not None:
            query += " AND status=?"
            params.append(LoanStatus(status).value)
        query += " ORDER BY request_date, loan_id"
        return [self._row_to_loan(r) for r in self.conn.execute(query, params).fetchall()]

    # --- Contributions ---

    def _contribution_params(self, c):
        return (
            c.member_id, c.month, c.year, _dec_text(c.amount), c.paid_status.value,
            _dt_text(c.paid_date), c.payment_method.value if c.payment_method else None,
            c.recorded_by, c.notes,
        )

    def add_contributions(self, contributions, skip_existing=False):
        """Insert contribution records. (member, month) must be unique.
        
        With ``skip_existing`` a record whose (member, month) is already stored
        is left out instead of failing the batch.
        
        Returns:
            List of the records actually inserted.
        """
        contributions = list(contributions)
        verb = "INSERT OR IGNORE" if skip_existing else "INSERT"
        inserted = []
        try:
            for c in contributions:
                cursor = self.conn.execute(f"""
                    {verb} INTO contributions (
                        member_id, month, year, amount, paid_status, paid_date,
                        payment_method, recorded_by, notes, contribution_id
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, self._contribution_params(c) + (c.contribution_id,))
                if cursor.rowcount:
                    inserted.append(c)
        except sqlite3.IntegrityError as e:
            raise DatabaseError(f"Could not add contributions: {e}")
        self._commit()
        if len(inserted) < len(contributions):
            logger.info("Skipped %d contribution(s) already on record",
                        len(contributions) - len(inserted))
        return inserted

    def update_contribution(self, contribution):
        cursor = self.conn.execute("""
            UPDATE contributions SET
                member_id=?, month=?, year=?, amount=?, paid_status=?, paid_date=?,
                payment_method=?, recorded_by=?, notes=?
            WHERE contribution_id=?
        """, self._contribution_params(contribution) + (contribution.contribution_id,))
        if cursor.rowcount == 0:
            raise DatabaseError(
                "Contribution not found", {"contribution_id": contribution.contribution_id}
            )
        self._commit()
        return contribution

    def _row_to_contribution(self, row):
        return Contribution(
            contribution_id=row["contribution_id"],
            member_id=row["member_id"],
            month=row["month"],
            year=row["year"],
            amount=_dec(row["amount"]),
            paid_status=ContributionStatus(row["paid_status"]),
            paid_date=_dt(row["paid_date"]),
            payment_method=PaymentMethod(row["payment_method"]) if row["payment_method"] else None,
            recorded_by=row["recorded_by"],
            notes=row["notes"] or "",
        )

    def get_contributions(self, member_id=None, month=None, status=None):
        query = "SELECT * FROM contributions WHERE 1=1"
        params = []
        if member_id is not None:
            query += " AND member_id=?"
            params.append(member_id)
        if month is not None:
            query += " AND month=?"
            params.append(month)
        if status is not None:
            query += " AND paid_status=?"
            params.append(ContributionStatus(status).value)
        query += " ORDER BY month, member_id"
        return [self._row_to_contribution(r) for r in self.conn.execute(query, params).fetchall()]

    def get_contribution(self, member_id, month):
        """Return the member's contribution for ``month`` or None."""
        found = self.get_contributions(member_id=member_id, month=month)
        return found[0] if found else None

    # --- Historical interest ---

    def _historical_interest_params(self, r):
        return (
            _dec_text(r.amount), _dt_text(r.interest_date), r.source.value, r.description,
            r.recorded_by, r.receipt_number, r.member_id, r.loan_id, r.borrower_name,
            r.notes, _dt_text(r.created_at),
        )

    def add_historical_interest(self, record):
        try:
            self.conn.execute("""
                INSERT INTO historical_interest (
                    amount, interest_date, source, description, recorded_by,
                    receipt_number, member_id, loan_id, borrower_name, notes,
                    created_at, record_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, self._historical_interest_params(record) + (record.record_id,))
        except sqlite3.IntegrityError as e:
            raise DatabaseError(
                f"Could not add historical interest: {e}",
                {"receipt_number": record.receipt_number},
            )
        self._commit()
        return record

    def update_historical_interest(self, record):
        try:
            cursor = self.conn.execute("""
                UPDATE historical_interest SET
                    amount=?, interest_date=?, source=?, description=?, recorded_by=?,
                    receipt_number=?, member_id=?, loan_id=?, borrower_name=?, notes=?,
                    created_at=?
                WHERE record_id=?
            """, self._historical_interest_params(record) + (record.record_id,))
        except sqlite3.IntegrityError as e:
            raise DatabaseError(
                f"Could not update historical interest: {e}", {"record_id": record.record_id}
            )
        if cursor.rowcount == 0:
            raise HistoricalInterestNotFoundError(record.record_id)
        self._commit()
        return record

    def delete_historical_interest(self, record_id):
        cursor = self.conn.execute(
            "DELETE FROM historical_interest WHERE record_id=?", (record_id,)
        )
        if cursor.rowcount == 0:
            raise HistoricalInterestNotFoundError(record_id)
        self._commit()

    def _row_to_historical_interest(self, row):
        return HistoricalInterest(
            record_id=row["record_id"],
            amount=_dec(row["amount"]),
            interest_date=_dt(row["interest_date"]),
            source=InterestSource(row["source"]),
            description=row["description"],
            recorded_by=row["recorded_by"],
            receipt_number=row["receipt_number"],
            member_id=row["member_id"],
            loan_id=row["loan_id"],
            borrower_name=row["borrower_name"],
            notes=row["notes"] or "",
            created_at=_dt(row["created_at"]),
        )

    def get_historical_interest_record(self, record_id):
        row = self.conn.execute(
            "SELECT * FROM historical_interest WHERE record_id=?", (record_id,)
        ).fetchone()
        if row is None:
            raise HistoricalInterestNotFoundError(record_id)
        return self._row_to_historical_interest(row)

    def get_historical_interest(self, start_date=None, end_before=None, source=None):
        """Records with ``start_date <= interest_date < end_before``, newest first."""
        query = "SELECT * FROM historical_interest WHERE 1=1"
        params = []
        if start_date is not None:
            query += " AND interest_date >= ?"
            params.append(_dt_text(start_date))
        if end_before is not None:
            query += " AND interest_date < ?"
            params.append(_dt_text(end_before))
        if source is not None:
            query += " AND source=?"
            params.append(InterestSource(source).value)
        query += " ORDER BY interest_date DESC, created_at DESC"
        return [self._row_to_historical_interest(r) for r in self.conn.execute(query, params).fetchall()]

    def count_historical_interest(self):
        return self.conn.execute("SELECT COUNT(*) FROM historical_interest").fetchone()[0]

    # --- Settings ---

    def get_setting(self, key, default=None):
        row = self.conn.execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
        return row["value"] if row else default

    def set_setting(self, key, value):
        self.conn.execute(
            "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, str(value))
        )
        self._commit()
