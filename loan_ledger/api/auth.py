"""
Service container and authentication dependencies
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..config import LoanLedgerConfig, get_config
from ..storage import StorageInterface, create_storage
from ..loans import LoanRepository, LoanManager
from ..transactions import TransactionRepository
from ..ledger import LedgerEngine
from ..users import UserManager
from ..tokens import TokenService, AuthenticatedPrincipal
from ..reporting import ReportingEngine
from ..exceptions import AuthenticationError


security = HTTPBearer(auto_error=False)


class LedgerSystem:
    """Loan ledger service with all components wired to one storage backend"""

    def __init__(self, storage: StorageInterface, config: Optional[LoanLedgerConfig] = None):
        self.config = config or get_config()
        self.storage = storage

        self.loan_repository = LoanRepository(self.storage)
        self.transaction_repository = TransactionRepository(self.storage)

        self.ledger = LedgerEngine(
            self.storage, self.loan_repository, self.transaction_repository,
            currency_symbol=self.config.currency_symbol
        )
        self.loan_manager = LoanManager(
            self.storage, self.loan_repository,
            page_size_default=self.config.page_size_default,
            page_size_max=self.config.page_size_max
        )
        self.user_manager = UserManager(
            self.storage, password_min_length=self.config.password_min_length
        )
        self.token_service = TokenService(
            secret=self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            expiry_hours=self.config.jwt_expiry_hours,
            issuer=self.config.jwt_issuer
        )
        self.reporting_engine = ReportingEngine(self.loan_repository, self.transaction_repository)

    @classmethod
    def from_config(cls, config: Optional[LoanLedgerConfig] = None) -> 'LedgerSystem':
        config = config or get_config()
        return cls(create_storage(config.database_url, pool_size=config.database_pool_size), config)

    def close(self) -> None:
        self.storage.close()


# Dependency to get the ledger system bound to the running app
def get_ledger_system(request: Request) -> LedgerSystem:
    return request.app.state.system


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: LedgerSystem = Depends(get_ledger_system)
) -> AuthenticatedPrincipal:
    """Dependency that validates the bearer token and returns the caller"""
    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authorization header required")
    try:
        return system.token_service.decode_token(credentials.credentials)
    except AuthenticationError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.message)
