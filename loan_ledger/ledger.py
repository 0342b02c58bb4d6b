"""
Loan Ledger Consistency Engine

Applies every mutation that can change what a loan has been paid: recording,
amending and revoking repayments, and removing a loan with its repayments.

For every loan at every committed point:
    sum(live transaction amounts) <= loan amount
    loan.status == completed  iff  that sum >= loan amount

Each operation reads the principal and the paid total, validates, writes and
repairs the loan's status inside a single storage unit of work, so either all
of it is applied or none of it is. The engine moves loans into ``completed``
and back out of it to ``active``; it never enters ``overdue``.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from contextlib import contextmanager
from typing import Dict, Optional, Union

from .currency import ZERO, AmountLike, format_amount
from .storage import StorageInterface
from .loans import LoanRepository, LoanSnapshot, LoanStatus
from .transactions import (
    Transaction, OwnedTransaction, TransactionRepository, parse_payment_date,
    validate_payment_amount, normalize_remark
)
from .exceptions import (
    LedgerError, AlreadyPaid, ExceedsRemaining, LoanNotFound,
    TransactionNotFound, StorageError
)
from .logging_config import get_logger, log_action


logger = get_logger("loan_ledger.ledger")

PaymentDateLike = Union[date, str, None]


@dataclass
class LoanBalance:
    """A loan's status and derived totals right after a ledger mutation"""
    loan_id: str
    status: LoanStatus
    principal: Decimal
    total_paid: Decimal

    @property
    def remaining_debt(self) -> Decimal:
        return self.principal - self.total_paid


@dataclass
class PaymentReceipt:
    """Result of recording or amending a payment"""
    transaction: Transaction
    borrower_name: str
    balance: LoanBalance

    @property
    def loan_amount(self) -> Decimal:
        return self.balance.principal

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
            "loan_status": self.balance.status.value,
            "remaining_debt": self.balance.remaining_debt,
        }


def status_after_payment(current: LoanStatus, total_paid: Decimal, principal: Decimal) -> LoanStatus:
    """A new payment can only complete a loan; below principal the status is left alone"""
    if total_paid >= principal:
        return LoanStatus.COMPLETED
    return current


def status_after_change(current: LoanStatus, total_paid: Decimal, principal: Decimal) -> LoanStatus:
    """After an amend or revoke: completed iff covered, a stale completed reverts to active"""
    if total_paid >= principal:
        return LoanStatus.COMPLETED
    if current == LoanStatus.COMPLETED:
        return LoanStatus.ACTIVE
    return current


class LedgerEngine:
    """
    Keeps loan status and paid totals consistent across transaction writes.

    Repositories are injected; the engine holds no other state.
    """

    def __init__(self, storage: StorageInterface, loans: LoanRepository,
                 transactions: TransactionRepository, currency_symbol: str = "฿"):
        self.storage = storage
        self.loans = loans
        self.transactions = transactions
        self.currency_symbol = currency_symbol

    def record_payment(
        self,
        user_id: str,
        loan_id: str,
        amount: AmountLike,
        remark: Optional[str] = None,
        payment_date: PaymentDateLike = None
    ) -> PaymentReceipt:
        """
        Record a repayment against a loan

        Args:
            user_id: Caller; must own the loan
            loan_id: Loan being repaid
            amount: Repayment, must be positive and not exceed the remaining debt
            remark: Optional free-text note
            payment_date: Optional YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS

        Returns:
            PaymentReceipt with the new transaction and the loan's new balance

        Raises:
            ValidationError: Bad amount or date (nothing was read or written)
            LoanNotFound: Loan missing, deleted, or owned by someone else
            AlreadyPaid: Nothing left to pay
            ExceedsRemaining: Amount larger than the remaining debt
            StorageError: The unit of work failed and was rolled back
        """
        amount = validate_payment_amount(amount)
        remark = normalize_remark(remark)
        paid_on = parse_payment_date(payment_date)

        with self._unit_of_work("record_payment", user_id, f"loan:{loan_id}"):
            self.loans.lock(loan_id)
            snapshot = self._owned_loan(loan_id, user_id)
            total_paid = self.loans.get_total_paid(loan_id)
            self._check_remaining(loan_id, snapshot.principal, total_paid, amount)

            transaction_id = self.transactions.insert(loan_id, amount, remark, paid_on)

            new_total = total_paid + amount
            status = status_after_payment(snapshot.status, new_total, snapshot.principal)
            if status != snapshot.status:
                self.loans.set_status(loan_id, status)

            transaction = self.transactions.get(transaction_id)

        log_action(logger, "info", "Payment recorded", user_id=user_id, action="record_payment",
                   resource=f"transaction:{transaction_id}",
                   extra={"loan_id": loan_id, "amount": str(amount), "status": status.value})

        return PaymentReceipt(
            transaction=transaction,
            borrower_name=snapshot.borrower_name,
            balance=LoanBalance(loan_id, status, snapshot.principal, new_total),
        )

    def amend_payment(
        self,
        user_id: str,
        transaction_id: str,
        new_amount: AmountLike,
        new_remark: Optional[str] = None,
        new_payment_date: PaymentDateLike = None
    ) -> PaymentReceipt:
        """
        Replace the amount, remark and payment date of a live transaction.

        The transaction stays on its loan. Remark and payment date are
        overwritten with what is passed, so None clears them.
        """
        new_amount = validate_payment_amount(new_amount)
        new_remark = normalize_remark(new_remark)
        paid_on = parse_payment_date(new_payment_date)

        with self._unit_of_work("amend_payment", user_id, f"transaction:{transaction_id}"):
            loan_id = self._owned_transaction(transaction_id, user_id).loan_id
            self.loans.lock(loan_id)
            # Re-read under the loan lock; a concurrent unit may have changed it
            owned = self._owned_transaction(transaction_id, user_id)
            snapshot = self._owned_loan(loan_id, user_id)
            total_excl = self.loans.get_total_paid(loan_id, excluding_transaction_id=transaction_id)
            self._check_remaining(loan_id, snapshot.principal, total_excl, new_amount)

            transaction = self.transactions.update(transaction_id, new_amount, new_remark, paid_on)

            new_total = total_excl + new_amount
            status = status_after_change(snapshot.status, new_total, snapshot.principal)
            if status != snapshot.status:
                self.loans.set_status(loan_id, status)

        log_action(logger, "info", "Payment amended", user_id=user_id, action="amend_payment",
                   resource=f"transaction:{transaction_id}",
                   extra={"loan_id": loan_id, "old_amount": str(owned.amount),
                          "amount": str(new_amount), "status": status.value})

        return PaymentReceipt(
            transaction=transaction,
            borrower_name=snapshot.borrower_name,
            balance=LoanBalance(loan_id, status, snapshot.principal, new_total),
        )

    def revoke_payment(self, user_id: str, transaction_id: str) -> LoanBalance:
        """Soft-delete a transaction and repair its loan's status"""
        with self._unit_of_work("revoke_payment", user_id, f"transaction:{transaction_id}"):
            loan_id = self._owned_transaction(transaction_id, user_id).loan_id
            self.loans.lock(loan_id)
            # Re-read under the loan lock; a concurrent unit may have changed it
            owned = self._owned_transaction(transaction_id, user_id)
            snapshot = self._owned_loan(loan_id, user_id)
            total_paid = self.loans.get_total_paid(loan_id)

            self.transactions.soft_delete(transaction_id)

            new_total = total_paid - owned.amount
            status = status_after_change(snapshot.status, new_total, snapshot.principal)
            if status != snapshot.status:
                self.loans.set_status(loan_id, status)

        log_action(logger, "info", "Payment revoked", user_id=user_id, action="revoke_payment",
                   resource=f"transaction:{transaction_id}",
                   extra={"loan_id": loan_id, "amount": str(owned.amount), "status": status.value})

        return LoanBalance(loan_id, status, snapshot.principal, new_total)

    def remove_loan(self, user_id: str, loan_id: str) -> int:
        """
        Soft-delete a loan together with all of its live transactions.

        Returns the number of transactions removed.
        """
        with self._unit_of_work("remove_loan", user_id, f"loan:{loan_id}"):
            self.loans.lock(loan_id)
            self._owned_loan(loan_id, user_id)
            removed = self.transactions.soft_delete_for_loan(loan_id)
            self.loans.soft_delete(loan_id)

        log_action(logger, "info", "Loan removed", user_id=user_id, action="remove_loan",
                   resource=f"loan:{loan_id}", extra={"transactions_removed": removed})
        return removed

    def _owned_transaction(self, transaction_id: str, user_id: str) -> OwnedTransaction:
        owned = self.transactions.get_owned(transaction_id, user_id)
        if owned is None:
            raise TransactionNotFound(transaction_id)
        return owned

    def _owned_loan(self, loan_id: str, user_id: str) -> LoanSnapshot:
        snapshot = self.loans.get_for_ownership_check(loan_id, user_id)
        if snapshot is None:
            raise LoanNotFound(loan_id)
        return snapshot

    def _check_remaining(self, loan_id: str, principal: Decimal,
                         total_paid: Decimal, amount: Decimal) -> None:
        remaining = principal - total_paid
        if remaining <= ZERO:
            raise AlreadyPaid(loan_id)
        if amount > remaining:
            raise ExceedsRemaining(
                amount, remaining,
                f"Payment amount ({format_amount(amount, self.currency_symbol)}) exceeds "
                f"remaining debt ({format_amount(remaining, self.currency_symbol)})"
            )

    @contextmanager
    def _unit_of_work(self, action: str, user_id: str, resource: str):
        """
        Run the body as one atomic storage unit.

        Business-rule failures propagate unchanged; anything else coming out
        of the unit is reported as StorageError after the rollback.
        """
        try:
            with self.storage.atomic():
                yield
        except LedgerError as e:
            log_action(logger, "warning", f"Ledger mutation rejected: {e.message}",
                       user_id=user_id, action=action, resource=resource)
            raise
        except Exception as e:
            log_action(logger, "error", "Ledger mutation failed and was rolled back",
                       user_id=user_id, action=action, resource=resource, exc_info=True)
            raise StorageError(f"Failed to apply {action.replace('_', ' ')}: {e}") from e
