"""
Reporting Engine Module

Read-only dashboard aggregations over a user's live loans and transactions.
Nothing here is cached or stored: every figure is recomputed from the
repositories, and soft-deleted records never count.
"""

from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import calendar

from .currency import ZERO
from .loans import LoanRepository, LoanStatus, LoanView
from .transactions import TransactionRepository, TransactionView


RECENT_TRANSACTIONS_DEFAULT = 5
RECENT_TRANSACTIONS_MAX = 20
LOAN_SUMMARY_DEFAULT = 10
LOAN_SUMMARY_MAX = 50
MONTHLY_WINDOW_MONTHS = 12


@dataclass
class DashboardStats:
    """Headline figures for a user's loan book"""
    total_loans: int = 0
    active_loans: int = 0
    completed_loans: int = 0
    overdue_loans: int = 0
    total_loan_amount: Decimal = ZERO
    total_paid_amount: Decimal = ZERO

    @property
    def total_debt_amount(self) -> Decimal:
        return self.total_loan_amount - self.total_paid_amount

    def to_dict(self) -> Dict:
        return {
            "total_loans": self.total_loans,
            "active_loans": self.active_loans,
            "completed_loans": self.completed_loans,
            "overdue_loans": self.overdue_loans,
            "total_loan_amount": self.total_loan_amount,
            "total_paid_amount": self.total_paid_amount,
            "total_debt_amount": self.total_debt_amount,
        }


@dataclass
class MonthlyBucket:
    month: str  # YYYY-MM
    count: int = 0
    amount: Decimal = ZERO


@dataclass
class MonthlyStats:
    loan_stats: List[MonthlyBucket] = field(default_factory=list)
    payment_stats: List[MonthlyBucket] = field(default_factory=list)


@dataclass
class OverdueLoan:
    view: LoanView
    days_overdue: int


def _clamp(limit: Optional[int], default: int, maximum: int) -> int:
    if limit is None or limit < 1 or limit > maximum:
        return default
    return limit


def months_before(day: date, months: int) -> date:
    """Same day of month ``months`` earlier, clamped to the month's length"""
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


class ReportingEngine:
    """Dashboard reports for one user at a time"""

    def __init__(self, loans: LoanRepository, transactions: TransactionRepository):
        self.loans = loans
        self.transactions = transactions

    def dashboard_stats(self, user_id: str) -> DashboardStats:
        loans = self.loans.list_for_user(user_id)
        totals = self.loans.get_paid_totals([loan.id for loan in loans])

        stats = DashboardStats(total_loans=len(loans))
        for loan in loans:
            if loan.status == LoanStatus.ACTIVE:
                stats.active_loans += 1
            elif loan.status == LoanStatus.COMPLETED:
                stats.completed_loans += 1
            elif loan.status == LoanStatus.OVERDUE:
                stats.overdue_loans += 1
            stats.total_loan_amount += loan.amount
            stats.total_paid_amount += totals[loan.id]
        return stats

    def recent_transactions(self, user_id: str, limit: Optional[int] = None) -> List[TransactionView]:
        limit = _clamp(limit, RECENT_TRANSACTIONS_DEFAULT, RECENT_TRANSACTIONS_MAX)
        return self.transactions.list_for_user(user_id)[:limit]

    def loan_summary(self, user_id: str, limit: Optional[int] = None,
                     status: Optional[str] = None) -> List[LoanView]:
        """Newest loans with their paid totals, optionally filtered by status"""
        limit = _clamp(limit, LOAN_SUMMARY_DEFAULT, LOAN_SUMMARY_MAX)
        loans = self.loans.list_for_user(user_id)
        if status and status in {s.value for s in LoanStatus}:
            loans = [loan for loan in loans if loan.status.value == status]
        loans = loans[:limit]

        loan_ids = [loan.id for loan in loans]
        totals = self.loans.get_paid_totals(loan_ids)
        counts = self.loans.count_transactions(loan_ids)
        return [LoanView(loan=loan, total_paid=totals[loan.id], transaction_count=counts[loan.id])
                for loan in loans]

    def monthly_stats(self, user_id: str, today: Optional[date] = None) -> MonthlyStats:
        """
        Loans grouped by loan month and payments grouped by the month they
        were recorded, over the last twelve months, newest month first.
        """
        today = today or datetime.now(timezone.utc).date()
        cutoff = months_before(today, MONTHLY_WINDOW_MONTHS)

        loan_buckets: Dict[str, MonthlyBucket] = {}
        for loan in self.loans.list_for_user(user_id):
            if loan.loan_date < cutoff:
                continue
            key = loan.loan_date.strftime("%Y-%m")
            bucket = loan_buckets.setdefault(key, MonthlyBucket(month=key))
            bucket.count += 1
            bucket.amount += loan.amount

        payment_buckets: Dict[str, MonthlyBucket] = {}
        for view in self.transactions.list_for_user(user_id):
            created = view.transaction.created_at.date()
            if created < cutoff:
                continue
            key = created.strftime("%Y-%m")
            bucket = payment_buckets.setdefault(key, MonthlyBucket(month=key))
            bucket.count += 1
            bucket.amount += view.transaction.amount

        return MonthlyStats(
            loan_stats=sorted(loan_buckets.values(), key=lambda b: b.month, reverse=True),
            payment_stats=sorted(payment_buckets.values(), key=lambda b: b.month, reverse=True),
        )

    def overdue_loans(self, user_id: str, today: Optional[date] = None) -> List[OverdueLoan]:
        """Unpaid loans past their due date, oldest due date first"""
        today = today or datetime.now(timezone.utc).date()
        candidates = [
            loan for loan in self.loans.list_for_user(user_id)
            if loan.status in (LoanStatus.ACTIVE, LoanStatus.OVERDUE)
            and loan.due_date is not None and loan.due_date < today
        ]
        loan_ids = [loan.id for loan in candidates]
        totals = self.loans.get_paid_totals(loan_ids)
        counts = self.loans.count_transactions(loan_ids)

        overdue = []
        for loan in candidates:
            view = LoanView(loan=loan, total_paid=totals[loan.id], transaction_count=counts[loan.id])
            if view.remaining_debt <= ZERO:
                continue
            overdue.append(OverdueLoan(view=view, days_overdue=(today - loan.due_date).days))

        overdue.sort(key=lambda o: o.view.loan.due_date)
        return overdue
