"""
Shared FastAPI dependencies: processor clients, notifier and the bearer session.
"""
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from paygate.core.errors import AuthenticationError
from paygate.db.session import get_db
from paygate.services.identity.local import get_identity_provider
from paygate.services.notifications.service import FulfillmentNotifier
from paygate.services.processors.kiwify import KiwifyClient
from paygate.services.processors.mercadopago import MercadoPagoClient

bearer_scheme = HTTPBearer(auto_error=False)


def get_mercadopago_client():
    client = MercadoPagoClient()
    try:
        yield client
    finally:
        client.close()


def get_kiwify_client():
    client = KiwifyClient()
    try:
        yield client
    finally:
        client.close()


def get_notifier() -> FulfillmentNotifier:
    return FulfillmentNotifier()


def get_current_account_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> str:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Missing bearer token")
    return get_identity_provider(db).verify_access_token(credentials.credentials)
