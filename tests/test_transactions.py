"""
Tests for transaction records and the transaction repository
"""

import pytest
from decimal import Decimal
from datetime import date, datetime

from loan_ledger.storage import InMemoryStorage
from loan_ledger.loans import LoanRepository, LoanManager
from loan_ledger.transactions import (
    TransactionRepository, Transaction, parse_payment_date,
    validate_payment_amount, normalize_remark
)
from loan_ledger.exceptions import ValidationError, TransactionNotFound


class TestTransactionRepository:
    """Test transaction persistence and ownership lookups"""

    def setup_method(self):
        """Set up test environment"""
        self.storage = InMemoryStorage()
        self.loans = LoanRepository(self.storage)
        self.transactions = TransactionRepository(self.storage)
        manager = LoanManager(self.storage, self.loans)
        self.alice_loan = manager.create_loan("user_1", "Alice", 1000, "2024-01-01").loan.id
        self.bob_loan = manager.create_loan("user_1", "Bob", 500, "2024-01-01").loan.id
        self.other_loan = manager.create_loan("user_2", "Carol", 500, "2024-01-01").loan.id

    def test_insert_and_get(self):
        transaction_id = self.transactions.insert(
            self.alice_loan, Decimal('250.00'), "first installment", date(2024, 2, 1)
        )

        transaction = self.transactions.get(transaction_id)
        assert transaction.loan_id == self.alice_loan
        assert transaction.amount == Decimal('250.00')
        assert transaction.remark == "first installment"
        assert transaction.payment_date == date(2024, 2, 1)
        assert not transaction.is_deleted

    def test_update_replaces_remark_and_date(self):
        transaction_id = self.transactions.insert(
            self.alice_loan, Decimal('250.00'), "note", date(2024, 2, 1)
        )

        updated = self.transactions.update(transaction_id, Decimal('300.00'))

        assert updated.amount == Decimal('300.00')
        assert updated.remark is None
        assert updated.payment_date is None
        assert self.transactions.get(transaction_id).amount == Decimal('300.00')

    def test_soft_delete_keeps_row(self):
        transaction_id = self.transactions.insert(self.alice_loan, Decimal('100.00'))

        self.transactions.soft_delete(transaction_id)

        assert self.transactions.get(transaction_id) is None
        raw = self.storage.load("transactions", transaction_id)
        assert raw is not None
        assert raw["deleted_at"] is not None

        with pytest.raises(TransactionNotFound):
            self.transactions.soft_delete(transaction_id)

    def test_get_owned(self):
        transaction_id = self.transactions.insert(self.alice_loan, Decimal('100.00'))

        owned = self.transactions.get_owned(transaction_id, "user_1")
        assert owned.loan_id == self.alice_loan
        assert owned.amount == Decimal('100.00')

        assert self.transactions.get_owned(transaction_id, "user_2") is None
        assert self.transactions.get_owned("missing", "user_1") is None

    def test_get_owned_hides_transactions_of_deleted_loans(self):
        transaction_id = self.transactions.insert(self.alice_loan, Decimal('100.00'))
        self.loans.soft_delete(self.alice_loan)

        assert self.transactions.get_owned(transaction_id, "user_1") is None
        assert self.transactions.get_view(transaction_id, "user_1") is None

    def test_soft_delete_for_loan(self):
        self.transactions.insert(self.alice_loan, Decimal('100.00'))
        self.transactions.insert(self.alice_loan, Decimal('200.00'))
        kept = self.transactions.insert(self.bob_loan, Decimal('50.00'))

        assert self.transactions.soft_delete_for_loan(self.alice_loan) == 2
        assert self.transactions.list_for_loan(self.alice_loan) == []
        assert self.transactions.get(kept) is not None

    def test_list_for_user_filters(self):
        self.transactions.insert(self.alice_loan, Decimal('100.00'), "cash")
        self.transactions.insert(self.bob_loan, Decimal('50.00'), "bank transfer")
        self.transactions.insert(self.other_loan, Decimal('10.00'), "cash")
        deleted = self.transactions.insert(self.alice_loan, Decimal('5.00'), "cash")
        self.transactions.soft_delete(deleted)

        views = self.transactions.list_for_user("user_1")
        assert len(views) == 2
        assert {v.borrower_name for v in views} == {"Alice", "Bob"}

        by_loan = self.transactions.list_for_user("user_1", loan_id=self.bob_loan)
        assert [v.transaction.amount for v in by_loan] == [Decimal('50.00')]
        assert by_loan[0].loan_amount == Decimal('500.00')

        # Search matches remark or borrower name
        assert len(self.transactions.list_for_user("user_1", search="CASH")) == 1
        assert len(self.transactions.list_for_user("user_1", search="bob")) == 1
        assert self.transactions.list_for_user("user_1", search="nothing") == []

        # Another user's loan id yields nothing
        assert self.transactions.list_for_user("user_1", loan_id=self.other_loan) == []

    def test_transaction_round_trips_through_storage(self):
        transaction_id = self.transactions.insert(self.alice_loan, Decimal('12.34'), None, date(2024, 1, 2))
        transaction = self.transactions.get(transaction_id)
        assert Transaction.from_dict(transaction.to_dict()) == transaction


class TestPaymentInput:
    """Test validation helpers for payment input"""

    def test_payment_date_formats(self):
        assert parse_payment_date("2024-03-05") == date(2024, 3, 5)
        assert parse_payment_date("2024-03-05T14:30:00") == date(2024, 3, 5)
        assert parse_payment_date(datetime(2024, 3, 5, 9, 0)) == date(2024, 3, 5)
        assert parse_payment_date(None) is None
        assert parse_payment_date("") is None

    def test_payment_date_invalid(self):
        with pytest.raises(ValidationError, match="YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS"):
            parse_payment_date("05/03/2024")

    def test_amount_must_be_positive(self):
        assert validate_payment_amount("10") == Decimal('10.00')
        with pytest.raises(ValidationError):
            validate_payment_amount(0)
        with pytest.raises(ValidationError):
            validate_payment_amount(Decimal('-1'))
        with pytest.raises(ValidationError):
            validate_payment_amount("ten")

    def test_amount_rounding_to_zero_is_rejected(self):
        with pytest.raises(ValidationError):
            validate_payment_amount(Decimal('0.004'))

    def test_normalize_remark(self):
        assert normalize_remark("  hello ") == "hello"
        assert normalize_remark("   ") is None
        assert normalize_remark(None) is None
