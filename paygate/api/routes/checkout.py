from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from paygate.api.deps import get_mercadopago_client
from paygate.db.session import get_db
from paygate.schemas.checkout import CheckoutIn, CheckoutOut
from paygate.services.checkout.service import CheckoutService
from paygate.services.processors.mercadopago import MercadoPagoClient

router = APIRouter(tags=["checkout"])


@router.post("/checkout", response_model=CheckoutOut)
def create_checkout(
    body: CheckoutIn = Body(...),
    db: Session = Depends(get_db),
    client: MercadoPagoClient = Depends(get_mercadopago_client),
) -> CheckoutOut:
    session = CheckoutService(db, client=client).start(body.plan_type, email=body.email)
    return CheckoutOut(
        intent_id=session.intent_id,
        preference_id=session.preference_id,
        init_point=session.init_point,
        external_reference=session.external_reference,
    )
