from pydantic import BaseModel, field_validator

from paygate.models.subscription_record import PLAN_LIFETIME, PLAN_TYPES


class CheckoutIn(BaseModel):
    email: str | None = None
    plan_type: str = PLAN_LIFETIME

    @field_validator("plan_type")
    @classmethod
    def validate_plan_type(cls, v: str) -> str:
        if v not in PLAN_TYPES:
            raise ValueError(f"plan_type must be one of {', '.join(PLAN_TYPES)}")
        return v


class CheckoutOut(BaseModel):
    intent_id: str
    preference_id: str
    init_point: str | None = None
    external_reference: str
