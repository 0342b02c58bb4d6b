"""
JWT issue and validation.
"""

from datetime import datetime, timedelta, timezone
from dataclasses import dataclass

import jwt

from .exceptions import AuthenticationError
from .users import User


@dataclass(frozen=True)
class AuthenticatedPrincipal:
    """The caller identity carried by a valid token"""
    user_id: str
    username: str


class TokenService:
    """Issues and validates HS256 bearer tokens"""

    def __init__(self, secret: str, algorithm: str = "HS256",
                 expiry_hours: int = 24, issuer: str = "loan-ledger-api"):
        self.secret = secret
        self.algorithm = algorithm
        self.expiry_hours = expiry_hours
        self.issuer = issuer

    def issue_token(self, user: User) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "user_id": user.id,
            "username": user.username,
            "exp": now + timedelta(hours=self.expiry_hours),
            "iat": now,
            "nbf": now,
            "iss": self.issuer,
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def decode_token(self, token: str) -> AuthenticatedPrincipal:
        try:
            payload = jwt.decode(
                token, self.secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={"require": ["exp", "iat", "user_id"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token expired")
        except jwt.InvalidTokenError:
            raise AuthenticationError("Invalid token")

        user_id = payload.get("user_id")
        if not user_id:
            raise AuthenticationError("Invalid token")
        return AuthenticatedPrincipal(user_id=user_id, username=payload.get("username", ""))
