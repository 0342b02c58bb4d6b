"""
Loan Management Module

Loan records, the repository that owns them, and the manager behind the loan
endpoints. A loan's paid total and remaining debt are never stored; they are
recomputed from the live (non-deleted) transactions every time they are read.
"""

from decimal import Decimal
from datetime import datetime, date, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Union, Iterable
from enum import Enum
import uuid

from .currency import ZERO, AmountLike, to_amount
from .storage import StorageInterface, StorageRecord
from .exceptions import LedgerError, ValidationError, LoanNotFound, StorageError
from .pagination import Page, paginate
from .logging_config import get_logger, log_action


logger = get_logger("loan_ledger.loans")

DateLike = Union[date, str]


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "active"          # Money still owed, not past due
    COMPLETED = "completed"    # Paid in full
    OVERDUE = "overdue"        # Marked past due by the owner

    @classmethod
    def parse(cls, value: Union[str, "LoanStatus"]) -> "LoanStatus":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError("Invalid status. Must be one of: active, completed, overdue")


@dataclass
class Loan(StorageRecord):
    """Money lent by a user to a borrower"""
    user_id: str
    borrower_name: str
    amount: Decimal
    loan_date: date
    due_date: Optional[date] = None
    status: LoanStatus = LoanStatus.ACTIVE
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @classmethod
    def from_dict(cls, data: Dict) -> "Loan":
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            user_id=data['user_id'],
            borrower_name=data['borrower_name'],
            amount=Decimal(data['amount']),
            loan_date=date.fromisoformat(data['loan_date']),
            due_date=date.fromisoformat(data['due_date']) if data.get('due_date') else None,
            status=LoanStatus(data['status']),
            deleted_at=datetime.fromisoformat(data['deleted_at']) if data.get('deleted_at') else None,
        )


@dataclass(frozen=True)
class LoanSnapshot:
    """What the ledger engine needs to know about a loan it is about to touch"""
    loan_id: str
    borrower_name: str
    principal: Decimal
    status: LoanStatus


@dataclass
class LoanView:
    """A loan together with its derived totals"""
    loan: Loan
    total_paid: Decimal
    transaction_count: int = 0

    @property
    def remaining_debt(self) -> Decimal:
        return self.loan.amount - self.total_paid

    def to_dict(self) -> Dict:
        loan = self.loan
        return {
            "id": loan.id,
            "user_id": loan.user_id,
            "borrower_name": loan.borrower_name,
            "amount": loan.amount,
            "status": loan.status.value,
            "loan_date": loan.loan_date,
            "due_date": loan.due_date,
            "created_at": loan.created_at,
            "updated_at": loan.updated_at,
            "total_paid": self.total_paid,
            "remaining_debt": self.remaining_debt,
            "transaction_count": self.transaction_count,
        }


def parse_date(value: Optional[DateLike], field_name: str, required: bool = True) -> Optional[date]:
    """Accept a date or an ISO YYYY-MM-DD string"""
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field_name} is required")
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip(), "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"Invalid {field_name} format. Use YYYY-MM-DD")


def validate_borrower_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if len(name) < 2 or len(name) > 100:
        raise ValidationError("Borrower name must be between 2 and 100 characters")
    return name


def validate_principal(amount: AmountLike) -> Decimal:
    try:
        value = to_amount(amount)
    except ValueError as e:
        raise ValidationError(f"Invalid amount: {e}")
    if value <= ZERO:
        raise ValidationError("Amount must be greater than 0")
    return value


class LoanRepository:
    """
    Owns loan records.

    The paid-total query lives here as well because every caller that asks
    for it is reasoning about a loan, not about individual transactions.
    """

    def __init__(self, storage: StorageInterface,
                 table: str = "loans", transactions_table: str = "transactions"):
        self.storage = storage
        self.table = table
        self.transactions_table = transactions_table

    def lock(self, loan_id: str) -> None:
        """Lock the loan row for the rest of the current unit of work"""
        self.storage.lock_record(self.table, loan_id)

    def insert(self, loan: Loan) -> Loan:
        self.storage.save(self.table, loan.id, loan.to_dict())
        return loan

    def save(self, loan: Loan) -> Loan:
        loan.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.table, loan.id, loan.to_dict())
        return loan

    def get(self, loan_id: str) -> Optional[Loan]:
        """Get a live loan by ID (soft-deleted loans read as missing)"""
        data = self.storage.load(self.table, loan_id)
        if not data:
            return None
        loan = Loan.from_dict(data)
        if loan.is_deleted:
            return None
        return loan

    def get_for_ownership_check(self, loan_id: str, user_id: str) -> Optional[LoanSnapshot]:
        loan = self.get(loan_id)
        if loan is None or loan.user_id != user_id:
            return None
        return LoanSnapshot(
            loan_id=loan.id,
            borrower_name=loan.borrower_name,
            principal=loan.amount,
            status=loan.status,
        )

    def get_total_paid(self, loan_id: str, excluding_transaction_id: Optional[str] = None) -> Decimal:
        """Sum of live transaction amounts for a loan"""
        total = ZERO
        live = {"loan_id": loan_id, "deleted_at": None}
        for data in self.storage.find(self.transactions_table, live):
            if excluding_transaction_id is not None and data['id'] == excluding_transaction_id:
                continue
            total += Decimal(data['amount'])
        return total

    def get_paid_totals(self, loan_ids: Iterable[str]) -> Dict[str, Decimal]:
        """Paid totals for several loans"""
        return {loan_id: self.get_total_paid(loan_id) for loan_id in set(loan_ids)}

    def count_transactions(self, loan_ids: Iterable[str]) -> Dict[str, int]:
        return {
            loan_id: len(self.storage.find(self.transactions_table, {"loan_id": loan_id, "deleted_at": None}))
            for loan_id in set(loan_ids)
        }

    def set_status(self, loan_id: str, new_status: LoanStatus) -> None:
        loan = self.get(loan_id)
        if loan is None:
            raise LoanNotFound(loan_id)
        loan.status = new_status
        self.save(loan)

    def soft_delete(self, loan_id: str) -> None:
        loan = self.get(loan_id)
        if loan is None:
            raise LoanNotFound(loan_id)
        now = datetime.now(timezone.utc)
        loan.deleted_at = now
        loan.updated_at = now
        self.storage.save(self.table, loan.id, loan.to_dict())

    def list_for_user(self, user_id: str) -> List[Loan]:
        """All live loans of a user, newest first"""
        loans = [Loan.from_dict(data) for data in self.storage.find(self.table, {"user_id": user_id})]
        loans = [loan for loan in loans if not loan.is_deleted]
        loans.sort(key=lambda loan: loan.created_at, reverse=True)
        return loans


class LoanManager:
    """
    Loan create, edit, read and listing for the owning user.

    Edits that change the principal reconcile the loan's status in the same
    unit of work, so the completed flag always agrees with the paid total.
    """

    def __init__(self, storage: StorageInterface, loans: LoanRepository,
                 page_size_default: int = 10, page_size_max: int = 100):
        self.storage = storage
        self.loans = loans
        self.page_size_default = page_size_default
        self.page_size_max = page_size_max

    def create_loan(
        self,
        user_id: str,
        borrower_name: str,
        amount: AmountLike,
        loan_date: DateLike,
        due_date: Optional[DateLike] = None
    ) -> LoanView:
        """
        Create a new loan

        Args:
            user_id: ID of the lending user
            borrower_name: Who owes the money
            amount: Principal, must be positive
            loan_date: Date the money was lent
            due_date: Optional repayment deadline

        Returns:
            The new loan with zero paid
        """
        borrower_name = validate_borrower_name(borrower_name)
        principal = validate_principal(amount)
        loan_day = parse_date(loan_date, "loan date")
        due_day = parse_date(due_date, "due date", required=False)

        now = datetime.now(timezone.utc)
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            borrower_name=borrower_name,
            amount=principal,
            loan_date=loan_day,
            due_date=due_day,
        )
        self.loans.insert(loan)

        log_action(logger, "info", "Loan created", user_id=user_id, action="create_loan",
                   resource=f"loan:{loan.id}", extra={"amount": str(principal)})
        return LoanView(loan=loan, total_paid=ZERO)

    def update_loan(
        self,
        user_id: str,
        loan_id: str,
        borrower_name: str,
        amount: AmountLike,
        loan_date: DateLike,
        due_date: Optional[DateLike] = None
    ) -> LoanView:
        """Edit a loan; the new principal may not drop below what has been paid"""
        borrower_name = validate_borrower_name(borrower_name)
        principal = validate_principal(amount)
        loan_day = parse_date(loan_date, "loan date")
        due_day = parse_date(due_date, "due date", required=False)

        try:
            with self.storage.atomic():
                self.loans.lock(loan_id)
                loan = self._get_owned(user_id, loan_id)
                total_paid = self.loans.get_total_paid(loan_id)
                if principal < total_paid:
                    raise ValidationError(
                        f"Loan amount cannot be less than the amount already paid ({total_paid:.2f})"
                    )

                loan.borrower_name = borrower_name
                loan.amount = principal
                loan.loan_date = loan_day
                loan.due_date = due_day
                if total_paid >= principal:
                    loan.status = LoanStatus.COMPLETED
                elif loan.status == LoanStatus.COMPLETED:
                    loan.status = LoanStatus.ACTIVE
                self.loans.save(loan)
        except LedgerError:
            raise
        except Exception as e:
            log_action(logger, "error", "Loan update failed", user_id=user_id,
                       action="update_loan", resource=f"loan:{loan_id}", exc_info=True)
            raise StorageError(f"Failed to update loan: {e}") from e

        log_action(logger, "info", "Loan updated", user_id=user_id, action="update_loan",
                   resource=f"loan:{loan_id}", extra={"status": loan.status.value})
        return LoanView(loan=loan, total_paid=total_paid,
                        transaction_count=self.loans.count_transactions([loan_id])[loan_id])

    def get_loan(self, user_id: str, loan_id: str) -> LoanView:
        loan = self._get_owned(user_id, loan_id)
        total_paid = self.loans.get_total_paid(loan_id)
        count = self.loans.count_transactions([loan_id])[loan_id]
        return LoanView(loan=loan, total_paid=total_paid, transaction_count=count)

    def list_loans(
        self,
        user_id: str,
        page: int = 1,
        limit: Optional[int] = None,
        status: Optional[str] = None,
        search: Optional[str] = None
    ) -> Page:
        """
        List a user's loans, newest first

        Unknown status values are ignored rather than rejected; the search
        term is matched case-insensitively against the borrower name.
        """
        loans = self.loans.list_for_user(user_id)

        if status and status in {s.value for s in LoanStatus}:
            loans = [loan for loan in loans if loan.status.value == status]
        if search:
            needle = search.strip().lower()
            loans = [loan for loan in loans if needle in loan.borrower_name.lower()]

        loan_ids = [loan.id for loan in loans]
        totals = self.loans.get_paid_totals(loan_ids)
        counts = self.loans.count_transactions(loan_ids)
        views = [LoanView(loan=loan, total_paid=totals[loan.id], transaction_count=counts[loan.id])
                 for loan in loans]

        return paginate(views, page, limit,
                        default_limit=self.page_size_default, max_limit=self.page_size_max)

    def update_status(self, user_id: str, loan_id: str, status: Union[str, LoanStatus]) -> LoanView:
        """
        Manually change a loan's status.

        This is the only way into ``overdue``. A status that contradicts the
        paid total is refused.
        """
        new_status = LoanStatus.parse(status)

        try:
            with self.storage.atomic():
                self.loans.lock(loan_id)
                loan = self._get_owned(user_id, loan_id)
                total_paid = self.loans.get_total_paid(loan_id)
                fully_paid = total_paid >= loan.amount

                if new_status == LoanStatus.COMPLETED and not fully_paid:
                    raise ValidationError("Cannot mark a loan as completed while debt remains")
                if new_status != LoanStatus.COMPLETED and fully_paid:
                    raise ValidationError(f"Cannot mark a fully paid loan as {new_status.value}")

                loan.status = new_status
                self.loans.save(loan)
        except LedgerError as e:
            log_action(logger, "warning", f"Status change rejected: {e.message}", user_id=user_id,
                       action="update_loan_status", resource=f"loan:{loan_id}")
            raise
        except Exception as e:
            log_action(logger, "error", "Loan status update failed", user_id=user_id,
                       action="update_loan_status", resource=f"loan:{loan_id}", exc_info=True)
            raise StorageError(f"Failed to update loan status: {e}") from e

        log_action(logger, "info", "Loan status updated", user_id=user_id,
                   action="update_loan_status", resource=f"loan:{loan_id}",
                   extra={"status": new_status.value})
        return LoanView(loan=loan, total_paid=total_paid,
                        transaction_count=self.loans.count_transactions([loan_id])[loan_id])

    def _get_owned(self, user_id: str, loan_id: str) -> Loan:
        loan = self.loans.get(loan_id)
        if loan is None or loan.user_id != user_id:
            raise LoanNotFound(loan_id)
        return loan
