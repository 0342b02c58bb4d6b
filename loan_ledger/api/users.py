"""
Registration, login and profile endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import LedgerSystem, get_ledger_system, get_current_user
from .errors import to_http_exception
from .schemas import (
    RegisterRequest, LoginRequest, UpdateProfileRequest, ChangePasswordRequest,
    AuthResponse, UserResponse, MessageResponse
)
from ..tokens import AuthenticatedPrincipal
from ..exceptions import LedgerError


router = APIRouter()


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    request: RegisterRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Create an account and return a token for it"""
    try:
        user = system.user_manager.register(
            username=request.username,
            password=request.password,
            full_name=request.full_name
        )
    except LedgerError as e:
        raise to_http_exception(e)

    return AuthResponse(token=system.token_service.issue_token(user), user=UserResponse.from_user(user))


@router.post("/login", response_model=AuthResponse)
def login(
    request: LoginRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Exchange credentials for a token"""
    try:
        user = system.user_manager.authenticate(request.username, request.password)
    except LedgerError as e:
        raise to_http_exception(e)

    return AuthResponse(token=system.token_service.issue_token(user), user=UserResponse.from_user(user))


@router.get("/profile", response_model=UserResponse)
def get_profile(
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        return UserResponse.from_user(system.user_manager.get_user(principal.user_id))
    except LedgerError as e:
        raise to_http_exception(e)


@router.patch("/profile", response_model=UserResponse)
def update_profile(
    request: UpdateProfileRequest,
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        user = system.user_manager.update_profile(principal.user_id, request.full_name)
    except LedgerError as e:
        raise to_http_exception(e)
    return UserResponse.from_user(user)


@router.patch("/change-password", response_model=MessageResponse)
def change_password(
    request: ChangePasswordRequest,
    principal: AuthenticatedPrincipal = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    try:
        system.user_manager.change_password(
            principal.user_id, request.current_password, request.new_password
        )
    except LedgerError as e:
        raise to_http_exception(e)
    return MessageResponse(message="Password changed successfully")
