"""
Tests for dashboard reporting
"""

from decimal import Decimal
from datetime import date, datetime, timezone

from loan_ledger.storage import InMemoryStorage
from loan_ledger.loans import LoanRepository, LoanManager, LoanStatus
from loan_ledger.transactions import TransactionRepository
from loan_ledger.ledger import LedgerEngine
from loan_ledger.reporting import ReportingEngine, months_before


class TestReportingEngine:
    """Test dashboard aggregations"""

    def setup_method(self):
        """Set up test environment"""
        self.storage = InMemoryStorage()
        self.loans = LoanRepository(self.storage)
        self.transactions = TransactionRepository(self.storage)
        self.manager = LoanManager(self.storage, self.loans)
        self.ledger = LedgerEngine(self.storage, self.loans, self.transactions)
        self.reporting = ReportingEngine(self.loans, self.transactions)

    def _loan(self, amount, name="Alice", loan_date="2024-01-01", due_date=None, user_id="user_1"):
        return self.manager.create_loan(user_id, name, amount, loan_date, due_date).loan.id

    def test_dashboard_stats(self):
        completed = self._loan("1000.00", "Alice")
        active = self._loan("500.00", "Bob")
        overdue = self._loan("300.00", "Carol")
        removed = self._loan("999.00", "Dave")
        self._loan("5000.00", "Other", user_id="user_2")

        self.ledger.record_payment("user_1", completed, "1000.00")
        self.ledger.record_payment("user_1", active, "200.00")
        revoked = self.ledger.record_payment("user_1", active, "50.00")
        self.ledger.revoke_payment("user_1", revoked.transaction.id)
        self.manager.update_status("user_1", overdue, "overdue")
        self.ledger.record_payment("user_1", removed, "100.00")
        self.ledger.remove_loan("user_1", removed)

        stats = self.reporting.dashboard_stats("user_1")

        assert stats.total_loans == 3
        assert stats.active_loans == 1
        assert stats.completed_loans == 1
        assert stats.overdue_loans == 1
        assert stats.total_loan_amount == Decimal('1800.00')
        assert stats.total_paid_amount == Decimal('1200.00')
        assert stats.total_debt_amount == Decimal('600.00')

    def test_dashboard_stats_empty(self):
        stats = self.reporting.dashboard_stats("nobody")
        assert stats.total_loans == 0
        assert stats.total_debt_amount == Decimal('0.00')

    def test_recent_transactions_limit(self):
        loan_id = self._loan("1000.00")
        for _ in range(8):
            self.ledger.record_payment("user_1", loan_id, "10.00")

        assert len(self.reporting.recent_transactions("user_1")) == 5
        assert len(self.reporting.recent_transactions("user_1", 7)) == 7
        # Out of range falls back to the default
        assert len(self.reporting.recent_transactions("user_1", 21)) == 5
        assert len(self.reporting.recent_transactions("user_1", 0)) == 5

    def test_loan_summary(self):
        paid = self._loan("100.00", "Alice")
        self._loan("200.00", "Bob")
        self.ledger.record_payment("user_1", paid, "100.00")

        summary = self.reporting.loan_summary("user_1")
        assert len(summary) == 2

        completed = self.reporting.loan_summary("user_1", status="completed")
        assert [view.loan.id for view in completed] == [paid]
        assert completed[0].remaining_debt == Decimal('0.00')

        assert len(self.reporting.loan_summary("user_1", limit=1)) == 1
        assert len(self.reporting.loan_summary("user_1", limit=51)) == 2

    def test_monthly_stats(self):
        today = date(2024, 6, 15)
        self._loan("100.00", loan_date="2024-06-01")
        self._loan("200.00", loan_date="2024-06-20")
        self._loan("300.00", loan_date="2024-03-10")
        self._loan("400.00", loan_date="2023-05-01")  # outside the window

        stats = self.reporting.monthly_stats("user_1", today=today)

        assert [b.month for b in stats.loan_stats] == ["2024-06", "2024-03"]
        assert stats.loan_stats[0].count == 2
        assert stats.loan_stats[0].amount == Decimal('300.00')

    def test_monthly_payment_stats_use_recording_month(self):
        loan_id = self._loan("1000.00")
        self.ledger.record_payment("user_1", loan_id, "100.00", payment_date="2020-01-01")
        self.ledger.record_payment("user_1", loan_id, "50.00")

        stats = self.reporting.monthly_stats("user_1")

        this_month = datetime.now(timezone.utc).strftime("%Y-%m")
        assert len(stats.payment_stats) == 1
        assert stats.payment_stats[0].month == this_month
        assert stats.payment_stats[0].count == 2
        assert stats.payment_stats[0].amount == Decimal('150.00')

    def test_overdue_loans(self):
        today = date(2024, 6, 15)
        late = self._loan("500.00", "Late", due_date="2024-06-01")
        later = self._loan("500.00", "Later", due_date="2024-05-01")
        marked = self._loan("500.00", "Marked", due_date="2024-06-10")
        paid = self._loan("500.00", "Paid", due_date="2024-06-01")
        self._loan("500.00", "Future", due_date="2024-07-01")
        self._loan("500.00", "No due date")

        self.manager.update_status("user_1", marked, "overdue")
        self.ledger.record_payment("user_1", paid, "500.00")
        self.ledger.record_payment("user_1", late, "100.00")

        overdue = self.reporting.overdue_loans("user_1", today=today)

        assert [item.view.loan.id for item in overdue] == [later, late, marked]
        assert overdue[0].days_overdue == 45
        assert overdue[1].days_overdue == 14
        assert overdue[1].view.remaining_debt == Decimal('400.00')
        assert overdue[2].view.loan.status == LoanStatus.OVERDUE


class TestMonthsBefore:
    def test_simple(self):
        assert months_before(date(2024, 6, 15), 12) == date(2023, 6, 15)

    def test_crosses_year(self):
        assert months_before(date(2024, 2, 10), 3) == date(2023, 11, 10)

    def test_clamps_day(self):
        assert months_before(date(2024, 3, 31), 1) == date(2024, 2, 29)
        assert months_before(date(2025, 3, 31), 1) == date(2025, 2, 28)
