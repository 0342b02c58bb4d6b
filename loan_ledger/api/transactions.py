"""
Transaction endpoints

Writes go through the ledger engine so loan status stays consistent with
the paid total; reads come straight from the transaction repository.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, status

from .auth import LedgerSystem, get_ledger_system, get_current_user
from .errors import to_http_exception
from .schemas import (
    CreateTransactionRequest, UpdateTransactionRequest, TransactionResponse,
    TransactionListResponse, PaymentResponse, RevokeResponse, PaginationModel
)
from ..pagination import paginate
from ..tokens import AuthenticatedPrincipal
from ..exceptions import LedgerError


router = APIRouter()


@router.get("", response_model=TransactionListResponse)
def list_transactions(
    page: int = 1,
    limit: Optional[int] = None,
    loan_id: Optional[str] = None,
    search: Optional[str] = None,
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List the caller's transactions, newest first"""
    views = system.transaction_repository.list_for_user(
        principal.user_id, loan_id=loan_id or None, search=search
    )
    result = paginate(views, page, limit,
                      default_limit=system.config.page_size_default,
                      max_limit=system.config.page_size_max)
    return TransactionListResponse(
        transactions=[TransactionResponse.from_view(view) for view in result.items],
        pagination=PaginationModel.from_page(result)
    )


@router.post("", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
def create_transaction(
    request: CreateTransactionRequest,
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Record a repayment"""
    try:
        receipt = system.ledger.record_payment(
            user_id=principal.user_id,
            loan_id=request.loan_id,
            amount=request.amount,
            remark=request.remark,
            payment_date=request.payment_date
        )
    except LedgerError as e:
        raise to_http_exception(e)
    return PaymentResponse.from_receipt(receipt)


@router.get("/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: str,
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    view = system.transaction_repository.get_view(transaction_id, principal.user_id)
    if view is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return TransactionResponse.from_view(view)


@router.patch("/{transaction_id}", response_model=PaymentResponse)
def update_transaction(
    transaction_id: str,
    request: UpdateTransactionRequest,
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Amend a repayment"""
    try:
        receipt = system.ledger.amend_payment(
            user_id=principal.user_id,
            transaction_id=transaction_id,
            new_amount=request.amount,
            new_remark=request.remark,
            new_payment_date=request.payment_date
        )
    except LedgerError as e:
        raise to_http_exception(e)
    return PaymentResponse.from_receipt(receipt)


@router.delete("/{transaction_id}", response_model=RevokeResponse)
def delete_transaction(
    transaction_id: str,
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Revoke a repayment (soft delete)"""
    try:
        balance = system.ledger.revoke_payment(principal.user_id, transaction_id)
    except LedgerError as e:
        raise to_http_exception(e)
    return RevokeResponse.from_balance(balance)
