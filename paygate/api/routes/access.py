from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from paygate.api.deps import get_current_account_id, get_kiwify_client
from paygate.core.errors import UpstreamError
from paygate.db.session import get_db
from paygate.schemas.access import VerifyAccessIn, VerifyAccessOut
from paygate.services.access.service import AccessVerificationService
from paygate.services.kiwify_purchases.service import KiwifyPurchaseService
from paygate.services.processors.kiwify import KiwifyClient
from paygate.services.subscriptions.service import SubscriptionService
from paygate.utils.metrics import access_checks_total

router = APIRouter(tags=["access"])


@router.post("/verify-payment-access", response_model=VerifyAccessOut, response_model_exclude_none=True)
def verify_payment_access(
    body: VerifyAccessIn = Body(...),
    db: Session = Depends(get_db),
    kiwify_client: KiwifyClient = Depends(get_kiwify_client),
):
    service = AccessVerificationService(db, kiwify=KiwifyPurchaseService(db, kiwify_client))
    try:
        return service.verify(body.email).to_response()
    except UpstreamError as e:
        db.rollback()
        access_checks_total.labels(result="error").inc()
        return JSONResponse(status_code=500, content={"hasValidPayment": False, "error": e.message})


@router.post("/verify-kiwify-purchase")
def verify_kiwify_purchase(
    body: VerifyAccessIn = Body(...),
    db: Session = Depends(get_db),
    kiwify_client: KiwifyClient = Depends(get_kiwify_client),
) -> dict:
    """Purchase check against Kiwify orders, local approvals when Kiwify is unreachable."""
    check = KiwifyPurchaseService(db, kiwify_client).verify(body.email)
    db.commit()
    return check.to_response()


@router.get("/subscription")
def get_subscription(
    account_id: str = Depends(get_current_account_id),
    db: Session = Depends(get_db),
) -> dict:
    """Entitlement read model of the current session's account (camelCase keys)."""
    view = SubscriptionService(db).access_view(account_id)
    return view.model_dump(mode="json", by_alias=True)
