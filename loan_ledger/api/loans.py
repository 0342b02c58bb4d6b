"""
Loan endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from .auth import LedgerSystem, get_ledger_system, get_current_user
from .errors import to_http_exception
from .schemas import (
    CreateLoanRequest, UpdateLoanRequest, UpdateLoanStatusRequest,
    LoanResponse, LoanListResponse, TransactionResponse, TransactionListResponse,
    PaginationModel, MessageResponse
)
from ..pagination import paginate
from ..tokens import AuthenticatedPrincipal
from ..exceptions import LedgerError


router = APIRouter()


@router.get("", response_model=LoanListResponse)
def list_loans(
    page: int = 1,
    limit: Optional[int] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List the caller's loans, newest first"""
    result = system.loan_manager.list_loans(
        principal.user_id, page=page, limit=limit, status=status, search=search
    )
    return LoanListResponse(
        loans=[LoanResponse.from_view(view) for view in result.items],
        pagination=PaginationModel.from_page(result)
    )


@router.post("", response_model=LoanResponse, status_code=status.HTTP_201_CREATED)
def create_loan(
    request: CreateLoanRequest,
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Record money lent to a borrower"""
    try:
        view = system.loan_manager.create_loan(
            user_id=principal.user_id,
            borrower_name=request.borrower_name,
            amount=request.amount,
            loan_date=request.loan_date,
            due_date=request.due_date
        )
    except LedgerError as e:
        raise to_http_exception(e)
    return LoanResponse.from_view(view)


@router.get("/{loan_id}", response_model=LoanResponse)
def get_loan(
    loan_id: str,
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get loan details with paid and remaining totals"""
    try:
        return LoanResponse.from_view(system.loan_manager.get_loan(principal.user_id, loan_id))
    except LedgerError as e:
        raise to_http_exception(e)


@router.patch("/{loan_id}", response_model=LoanResponse)
def update_loan(
    loan_id: str,
    request: UpdateLoanRequest,
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        view = system.loan_manager.update_loan(
            user_id=principal.user_id,
            loan_id=loan_id,
            borrower_name=request.borrower_name,
            amount=request.amount,
            loan_date=request.loan_date,
            due_date=request.due_date
        )
    except LedgerError as e:
        raise to_http_exception(e)
    return LoanResponse.from_view(view)


@router.delete("/{loan_id}", response_model=MessageResponse)
def delete_loan(
    loan_id: str,
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Delete a loan and all of its transactions"""
    try:
        system.ledger.remove_loan(principal.user_id, loan_id)
    except LedgerError as e:
        raise to_http_exception(e)
    return MessageResponse(message="Loan deleted successfully")


@router.patch("/{loan_id}/status", response_model=LoanResponse)
def update_loan_status(
    loan_id: str,
    request: UpdateLoanStatusRequest,
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        view = system.loan_manager.update_status(principal.user_id, loan_id, request.status)
    except LedgerError as e:
        raise to_http_exception(e)
    return LoanResponse.from_view(view)


@router.get("/{loan_id}/transactions", response_model=TransactionListResponse)
def list_loan_transactions(
    loan_id: str,
    page: int = 1,
    limit: Optional[int] = None,
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List the live transactions of one loan"""
    try:
        system.loan_manager.get_loan(principal.user_id, loan_id)
    except LedgerError as e:
        raise to_http_exception(e)

    views = system.transaction_repository.list_for_user(principal.user_id, loan_id=loan_id)
    result = paginate(views, page, limit,
                      default_limit=system.config.page_size_default,
                      max_limit=system.config.page_size_max)
    return TransactionListResponse(
        transactions=[TransactionResponse.from_view(view) for view in result.items],
        pagination=PaginationModel.from_page(result)
    )
