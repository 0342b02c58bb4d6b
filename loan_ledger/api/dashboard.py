"""
Dashboard endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends

from .auth import LedgerSystem, get_ledger_system, get_current_user
from .schemas import (
    DashboardStatsResponse, RecentTransactionsResponse, LoanSummaryResponse,
    MonthlyStatsResponse, OverdueLoansResponse, TransactionResponse, LoanResponse,
    OverdueLoanModel
)
from ..tokens import AuthenticatedPrincipal


router = APIRouter()


@router.get("/stats", response_model=DashboardStatsResponse)
def get_dashboard_stats(
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Loan counts and money totals"""
    return DashboardStatsResponse.from_stats(system.reporting_engine.dashboard_stats(principal.user_id))


@router.get("/recent-transactions", response_model=RecentTransactionsResponse)
def get_recent_transactions(
    limit: Optional[int] = None,
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    views = system.reporting_engine.recent_transactions(principal.user_id, limit)
    return RecentTransactionsResponse(
        transactions=[TransactionResponse.from_view(view) for view in views],
        count=len(views)
    )


@router.get("/loan-summary", response_model=LoanSummaryResponse)
def get_loan_summary(
    limit: Optional[int] = None,
    status: Optional[str] = None,
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    views = system.reporting_engine.loan_summary(principal.user_id, limit, status)
    return LoanSummaryResponse(
        loans=[LoanResponse.from_view(view) for view in views],
        count=len(views)
    )


@router.get("/monthly-stats", response_model=MonthlyStatsResponse)
def get_monthly_stats(
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Loans and payments per month over the last year"""
    return MonthlyStatsResponse.from_stats(system.reporting_engine.monthly_stats(principal.user_id))


@router.get("/overdue-loans", response_model=OverdueLoansResponse)
def get_overdue_loans(
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    overdue = system.reporting_engine.overdue_loans(principal.user_id)
    return OverdueLoansResponse(
        overdue_loans=[OverdueLoanModel.from_overdue(item) for item in overdue],
        count=len(overdue)
    )
