from pydantic import BaseModel, Field


# Input schema for starting an online payment for the caller's cart
class CheckoutSessionCreate(BaseModel):
    restaurant_id: int
    delivery_address: str = Field(min_length=1)


class CheckoutSessionOut(BaseModel):
    session_id: str
    total: float


# Client-side confirmation after the redirect back from Stripe
class PaymentSuccessPayload(BaseModel):
    session_id: str = Field(min_length=1)


class PaymentSuccessOut(BaseModel):
    order_id: int
    status: str
