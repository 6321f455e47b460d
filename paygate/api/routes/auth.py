"""
Session refresh for accounts provisioned after a purchase.
"""
from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from paygate.db.session import get_db
from paygate.schemas.access import RefreshIn, TokenPairOut
from paygate.services.identity.local import get_identity_provider

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/refresh", response_model=TokenPairOut)
def refresh(body: RefreshIn = Body(...), db: Session = Depends(get_db)) -> TokenPairOut:
    tokens = get_identity_provider(db).refresh_session(body.refresh_token)
    return TokenPairOut(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.expires_in,
        token_type=tokens.token_type,
    )
