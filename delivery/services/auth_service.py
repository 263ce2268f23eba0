"""Bearer-token identity: resolves a request to an acting user and role."""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import jwt

from ..db.session import get_session
from ..models.user import User
from ..utils.clock import utcnow
from .errors import NotAuthenticated
from .order_state import ROLES


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class AuthService:
    """Issues and verifies HS256 JWTs whose ``sub`` claim is the user id."""

    ALGORITHM = "HS256"

    def __init__(self, secret: str, session_factory=get_session, token_ttl_minutes: int = 60 * 24 * 7):
        self._secret = secret
        self._session_factory = session_factory
        self._token_ttl = timedelta(minutes=token_ttl_minutes)

    def issue_token(self, user_id: str) -> str:
        now = utcnow()
        payload = {"sub": user_id, "iat": now, "exp": now + self._token_ttl}
        return jwt.encode(payload, self._secret, algorithm=self.ALGORITHM)

    def authenticate(self, authorization_header: Optional[str]) -> Actor:
        if not authorization_header or not authorization_header.startswith("Bearer "):
            raise NotAuthenticated("Not authorized, no token provided")
        token = authorization_header.split(" ", 1)[1].strip()
        try:
            claims = jwt.decode(token, self._secret, algorithms=[self.ALGORITHM])
        except jwt.PyJWTError:
            raise NotAuthenticated("Not authorized, token failed")
        with self._session_factory() as session:
            user = session.get(User, claims.get("sub"))
            if user is None:
                raise NotAuthenticated("Not authorized, user not found")
            if not user.is_active:
                raise NotAuthenticated("Account has been deactivated")
            if user.role not in ROLES:
                raise NotAuthenticated("Not authorized, unknown role")
            return Actor(user_id=user.id, role=user.role)
