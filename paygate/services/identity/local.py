"""
Database-backed identity provider.
Accounts live in the accounts table; session tokens are signed with itsdangerous
(URLSafeTimedSerializer, separate salts for access and refresh tokens).
"""
import hashlib
import logging
import secrets
from typing import Any
from uuid import uuid4

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from paygate.core.config import settings
from paygate.core.errors import AuthenticationError, UpstreamError
from paygate.models.account import Account
from paygate.services.identity.base import IdentityAccount, IdentityProvider, SessionTokens

logger = logging.getLogger(__name__)

ACCESS_SALT = "access-token"
REFRESH_SALT = "refresh-token"


def _to_identity(account: Account) -> IdentityAccount:
    return IdentityAccount(
        id=account.id,
        email=account.email,
        full_name=account.full_name,
        metadata=dict(account.metadata_ or {}),
    )


class LocalIdentityProvider(IdentityProvider):
    def __init__(self, db: Session) -> None:
        self.db = db
        self._access = URLSafeTimedSerializer(settings.session_secret, salt=ACCESS_SALT)
        self._refresh = URLSafeTimedSerializer(settings.session_secret, salt=REFRESH_SALT)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def get_account_by_email(self, email: str) -> IdentityAccount | None:
        account = self.db.query(Account).filter(Account.email == email).one_or_none()
        return _to_identity(account) if account else None

    def create_account(
        self,
        email: str,
        full_name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> IdentityAccount:
        # Opaque credential: hashed and dropped, the customer never logs in with it.
        credential = secrets.token_urlsafe(32)
        account = Account(
            id=str(uuid4()),
            email=email,
            credential_hash=hashlib.sha256(credential.encode("utf-8")).hexdigest(),
            full_name=full_name,
            metadata_=metadata or {},
        )
        try:
            with self.db.begin_nested():
                self.db.add(account)
        except IntegrityError:
            # Another request created it first (unique email).
            existing = self.get_account_by_email(email)
            if existing is not None:
                logger.info("account_created_concurrently", extra={"account_id": existing.id})
                return existing
            raise UpstreamError("Account creation failed", context={"step": "create_account"})
        except SQLAlchemyError as e:
            raise UpstreamError(f"Account creation failed: {e}", context={"step": "create_account"}) from e
        logger.info("account_created", extra={"account_id": account.id, "source": (metadata or {}).get("created_via")})
        return _to_identity(account)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def issue_session(self, account_id: str) -> SessionTokens:
        session_id = str(uuid4())
        return SessionTokens(
            access_token=self._access.dumps({"sub": account_id, "sid": session_id}),
            refresh_token=self._refresh.dumps({"sub": account_id, "sid": session_id}),
            expires_in=settings.access_token_ttl,
        )

    def verify_access_token(self, token: str) -> str:
        return self._load(self._access, token, settings.access_token_ttl)

    def refresh_session(self, refresh_token: str) -> SessionTokens:
        account_id = self._load(self._refresh, refresh_token, settings.refresh_token_ttl)
        exists = self.db.query(Account.id).filter(Account.id == account_id).first()
        if not exists:
            raise AuthenticationError("Account not found")
        return self.issue_session(account_id)

    @staticmethod
    def _load(serializer: URLSafeTimedSerializer, token: str, max_age: int) -> str:
        try:
            data = serializer.loads(token, max_age=max_age)
        except SignatureExpired:
            raise AuthenticationError("Token expired")
        except BadSignature:
            raise AuthenticationError("Invalid token")
        if not isinstance(data, dict) or not data.get("sub"):
            raise AuthenticationError("Invalid token")
        return data["sub"]


def get_identity_provider(db: Session) -> IdentityProvider:
    return LocalIdentityProvider(db)
