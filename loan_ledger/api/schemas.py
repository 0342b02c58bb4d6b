"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from datetime import date, datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from ..currency import quantize_amount
from ..loans import LoanView
from ..transactions import TransactionView
from ..ledger import PaymentReceipt, LoanBalance
from ..pagination import Page
from ..reporting import DashboardStats, MonthlyBucket, MonthlyStats, OverdueLoan
from ..users import User


def amount_str(value: Decimal) -> str:
    return str(quantize_amount(value))


# Auth and profile schemas
class RegisterRequest(BaseModel):
    username: str
    password: str
    full_name: Optional[str] = None


class LoginRequest(BaseModel):
    username: str
    password: str


class UpdateProfileRequest(BaseModel):
    full_name: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class UserResponse(BaseModel):
    id: str
    username: str
    full_name: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_user(cls, user: User) -> 'UserResponse':
        return cls(**user.to_public_dict())


class AuthResponse(BaseModel):
    token: str
    user: UserResponse


class MessageResponse(BaseModel):
    message: str


# Loan schemas
class CreateLoanRequest(BaseModel):
    borrower_name: str
    amount: Decimal = Field(..., description="Principal, e.g. 1000.00")
    loan_date: str = Field(..., description="ISO date YYYY-MM-DD")
    due_date: Optional[str] = Field(None, description="ISO date YYYY-MM-DD")


class UpdateLoanRequest(CreateLoanRequest):
    pass


class UpdateLoanStatusRequest(BaseModel):
    status: str = Field(..., description="active, completed or overdue")


class PaginationModel(BaseModel):
    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def from_page(cls, page: Page) -> 'PaginationModel':
        return cls(**page.to_dict())


class LoanResponse(BaseModel):
    id: str
    user_id: str
    borrower_name: str
    amount: str
    status: str
    loan_date: date
    due_date: Optional[date] = None
    created_at: datetime
    updated_at: datetime
    total_paid: str
    remaining_debt: str
    transaction_count: int = 0

    @classmethod
    def from_view(cls, view: LoanView) -> 'LoanResponse':
        data = view.to_dict()
        for key in ("amount", "total_paid", "remaining_debt"):
            data[key] = amount_str(data[key])
        return cls(**data)


class LoanListResponse(BaseModel):
    loans: List[LoanResponse]
    pagination: PaginationModel


# Transaction schemas
class CreateTransactionRequest(BaseModel):
    loan_id: str
    amount: Decimal = Field(..., description="Repayment amount, e.g. 250.00")
    remark: Optional[str] = None
    payment_date: Optional[str] = Field(None, description="YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS")


class UpdateTransactionRequest(BaseModel):
    amount: Decimal
    remark: Optional[str] = None
    payment_date: Optional[str] = None


class TransactionResponse(BaseModel):
    id: str
    loan_id: str
    amount: str
    remark: Optional[str] = None
    payment_date: Optional[date] = None
    created_at: datetime
    updated_at: datetime
    borrower_name: str
    loan_amount: str

    @classmethod
    def from_view(cls, view: TransactionView) -> 'TransactionResponse':
        data = view.to_dict()
        data["amount"] = amount_str(data["amount"])
        data["loan_amount"] = amount_str(data["loan_amount"])
        return cls(**data)


class PaymentResponse(TransactionResponse):
    loan_status: str
    remaining_debt: str

    @classmethod
    def from_receipt(cls, receipt: PaymentReceipt) -> 'PaymentResponse':
        data = receipt.to_dict()
        for key in ("amount", "loan_amount", "remaining_debt"):
            data[key] = amount_str(data[key])
        return cls(**data)


class TransactionListResponse(BaseModel):
    transactions: List[TransactionResponse]
    pagination: PaginationModel


class RevokeResponse(BaseModel):
    message: str
    loan_id: str
    loan_status: str
    remaining_debt: str

    @classmethod
    def from_balance(cls, balance: LoanBalance) -> 'RevokeResponse':
        return cls(
            message="Transaction deleted successfully",
            loan_id=balance.loan_id,
            loan_status=balance.status.value,
            remaining_debt=amount_str(balance.remaining_debt),
        )


# Dashboard schemas
class DashboardStatsResponse(BaseModel):
    total_loans: int
    active_loans: int
    completed_loans: int
    overdue_loans: int
    total_loan_amount: str
    total_paid_amount: str
    total_debt_amount: str

    @classmethod
    def from_stats(cls, stats: DashboardStats) -> 'DashboardStatsResponse':
        data = stats.to_dict()
        for key in ("total_loan_amount", "total_paid_amount", "total_debt_amount"):
            data[key] = amount_str(data[key])
        return cls(**data)


class RecentTransactionsResponse(BaseModel):
    transactions: List[TransactionResponse]
    count: int


class LoanSummaryResponse(BaseModel):
    loans: List[LoanResponse]
    count: int


class MonthlyBucketModel(BaseModel):
    month: str
    count: int
    amount: str

    @classmethod
    def from_bucket(cls, bucket: MonthlyBucket) -> 'MonthlyBucketModel':
        return cls(month=bucket.month, count=bucket.count, amount=amount_str(bucket.amount))


class MonthlyStatsResponse(BaseModel):
    loan_stats: List[MonthlyBucketModel]
    payment_stats: List[MonthlyBucketModel]

    @classmethod
    def from_stats(cls, stats: MonthlyStats) -> 'MonthlyStatsResponse':
        return cls(
            loan_stats=[MonthlyBucketModel.from_bucket(b) for b in stats.loan_stats],
            payment_stats=[MonthlyBucketModel.from_bucket(b) for b in stats.payment_stats],
        )


class OverdueLoanModel(BaseModel):
    loan: LoanResponse
    days_overdue: int

    @classmethod
    def from_overdue(cls, overdue: OverdueLoan) -> 'OverdueLoanModel':
        return cls(loan=LoanResponse.from_view(overdue.view), days_overdue=overdue.days_overdue)


class OverdueLoansResponse(BaseModel):
    overdue_loans: List[OverdueLoanModel]
    count: int
