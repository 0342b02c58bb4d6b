"""
Transaction Records Module

Repayment transactions recorded against loans. A transaction belongs to
exactly one loan; ownership by a user is always checked through that loan.
Deleting a transaction only stamps ``deleted_at``; the row stays in storage.
"""

from decimal import Decimal
from datetime import datetime, date, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Union
import uuid

from .currency import ZERO, AmountLike, to_amount
from .storage import StorageInterface, StorageRecord
from .exceptions import ValidationError, TransactionNotFound


PAYMENT_DATE_FORMATS = ("%Y-%m-%d", "%Y-%m-%dT%H:%M:%S")


@dataclass
class Transaction(StorageRecord):
    """A single repayment against a loan"""
    loan_id: str
    amount: Decimal
    remark: Optional[str] = None
    payment_date: Optional[date] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @classmethod
    def from_dict(cls, data: Dict) -> "Transaction":
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            amount=Decimal(data['amount']),
            remark=data.get('remark'),
            payment_date=date.fromisoformat(data['payment_date']) if data.get('payment_date') else None,
            deleted_at=datetime.fromisoformat(data['deleted_at']) if data.get('deleted_at') else None,
        )


@dataclass(frozen=True)
class OwnedTransaction:
    """A live transaction whose loan belongs to the asking user"""
    transaction_id: str
    loan_id: str
    amount: Decimal


@dataclass
class TransactionView:
    """A transaction with the loan fields shown next to it in listings"""
    transaction: Transaction
    borrower_name: str
    loan_amount: Decimal

    def to_dict(self) -> Dict:
        t = self.transaction
        return {
            "id": t.id,
            "loan_id": t.loan_id,
            "amount": t.amount,
            "remark": t.remark,
            "payment_date": t.payment_date,
            "created_at": t.created_at,
            "updated_at": t.updated_at,
            "borrower_name": self.borrower_name,
            "loan_amount": self.loan_amount,
        }


def parse_payment_date(value: Union[date, str, None]) -> Optional[date]:
    """
    Accept YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS; only the calendar day is kept.
    Empty values mean "no payment date".
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    for fmt in PAYMENT_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValidationError("Invalid payment date format. Use YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS")


def validate_payment_amount(amount: AmountLike) -> Decimal:
    try:
        value = to_amount(amount)
    except ValueError as e:
        raise ValidationError(f"Invalid amount: {e}")
    if value <= ZERO:
        raise ValidationError("Amount must be greater than 0")
    return value


def normalize_remark(remark: Optional[str]) -> Optional[str]:
    if remark is None:
        return None
    remark = remark.strip()
    return remark or None


class TransactionRepository:
    """Owns transaction records"""

    def __init__(self, storage: StorageInterface,
                 table: str = "transactions", loans_table: str = "loans"):
        self.storage = storage
        self.table = table
        self.loans_table = loans_table

    def insert(self, loan_id: str, amount: Decimal, remark: Optional[str] = None,
               payment_date: Optional[date] = None) -> str:
        """Insert a transaction and return its new ID"""
        now = datetime.now(timezone.utc)
        transaction = Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_id=loan_id,
            amount=amount,
            remark=remark,
            payment_date=payment_date,
        )
        self.storage.save(self.table, transaction.id, transaction.to_dict())
        return transaction.id

    def update(self, transaction_id: str, amount: Decimal, remark: Optional[str] = None,
               payment_date: Optional[date] = None) -> Transaction:
        transaction = self.get(transaction_id)
        if transaction is None:
            raise TransactionNotFound(transaction_id)
        transaction.amount = amount
        transaction.remark = remark
        transaction.payment_date = payment_date
        transaction.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.table, transaction.id, transaction.to_dict())
        return transaction

    def soft_delete(self, transaction_id: str) -> None:
        transaction = self.get(transaction_id)
        if transaction is None:
            raise TransactionNotFound(transaction_id)
        now = datetime.now(timezone.utc)
        transaction.deleted_at = now
        transaction.updated_at = now
        self.storage.save(self.table, transaction.id, transaction.to_dict())

    def soft_delete_for_loan(self, loan_id: str) -> int:
        """Soft-delete every live transaction of a loan, returning how many were touched"""
        now = datetime.now(timezone.utc)
        count = 0
        for transaction in self.list_for_loan(loan_id):
            transaction.deleted_at = now
            transaction.updated_at = now
            self.storage.save(self.table, transaction.id, transaction.to_dict())
            count += 1
        return count

    def get(self, transaction_id: str) -> Optional[Transaction]:
        """Get a live transaction by ID"""
        data = self.storage.load(self.table, transaction_id)
        if not data:
            return None
        transaction = Transaction.from_dict(data)
        if transaction.is_deleted:
            return None
        return transaction

    def get_owned(self, transaction_id: str, user_id: str) -> Optional[OwnedTransaction]:
        transaction = self.get(transaction_id)
        if transaction is None:
            return None
        loan = self.storage.load(self.loans_table, transaction.loan_id)
        if not loan or loan.get('deleted_at') or loan['user_id'] != user_id:
            return None
        return OwnedTransaction(
            transaction_id=transaction.id,
            loan_id=transaction.loan_id,
            amount=transaction.amount,
        )

    def get_view(self, transaction_id: str, user_id: str) -> Optional[TransactionView]:
        """A live transaction with its loan fields, if the loan is owned by the user"""
        transaction = self.get(transaction_id)
        if transaction is None:
            return None
        loan = self.storage.load(self.loans_table, transaction.loan_id)
        if not loan or loan.get('deleted_at') or loan['user_id'] != user_id:
            return None
        return TransactionView(
            transaction=transaction,
            borrower_name=loan['borrower_name'],
            loan_amount=Decimal(loan['amount']),
        )

    def list_for_loan(self, loan_id: str) -> List[Transaction]:
        """Live transactions of one loan, newest first"""
        transactions = [Transaction.from_dict(data)
                        for data in self.storage.find(self.table, {"loan_id": loan_id, "deleted_at": None})]
        transactions.sort(key=lambda t: t.created_at, reverse=True)
        return transactions

    def list_for_user(self, user_id: str, loan_id: Optional[str] = None,
                      search: Optional[str] = None) -> List[TransactionView]:
        """
        Live transactions across a user's live loans, newest first.

        ``search`` matches borrower name or remark, case-insensitively.
        """
        loans = {}
        for data in self.storage.find(self.loans_table, {"user_id": user_id}):
            if data.get('deleted_at'):
                continue
            if loan_id is not None and data['id'] != loan_id:
                continue
            loans[data['id']] = data

        needle = search.strip().lower() if search else None
        views = []
        for data in self._live_for_loans(loans):
            loan = loans[data['loan_id']]
            if needle:
                remark = (data.get('remark') or "").lower()
                if needle not in loan['borrower_name'].lower() and needle not in remark:
                    continue
            views.append(TransactionView(
                transaction=Transaction.from_dict(data),
                borrower_name=loan['borrower_name'],
                loan_amount=Decimal(loan['amount']),
            ))

        views.sort(key=lambda v: v.transaction.created_at, reverse=True)
        return views

    def _live_for_loans(self, loan_ids) -> List[Dict]:
        """Live transaction rows of the given loans, one storage query per loan"""
        rows = []
        for loan_id in loan_ids:
            rows.extend(self.storage.find(self.table, {"loan_id": loan_id, "deleted_at": None}))
        return rows
