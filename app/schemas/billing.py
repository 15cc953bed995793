"""
Pydantic schemas for the payments API.

Fields are snake_case in Python and camelCase on the wire.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema with camelCase aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Requests ---

class SubscriptionSessionRequest(CamelModel):
    """Request to prepare a PaymentSheet session."""
    plan_id: Optional[str] = Field(None, description="Configured plan: monthly, yearly")
    price_id: Optional[str] = Field(None, description="Explicit Stripe price id, overrides planId")
    user_id: Optional[str] = None
    email: Optional[str] = None
    user_name: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class CreateSubscriptionRequest(CamelModel):
    """Request to create a Stripe subscription for a customer."""
    customer_id: Optional[str] = None
    plan_id: Optional[str] = None
    price_id: Optional[str] = None
    user_id: Optional[str] = None
    email: Optional[str] = None
    setup_intent_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class CardRequest(CamelModel):
    """Payment method operation for a user's customer."""
    payment_method_id: Optional[str] = None
    make_default: bool = False


# --- Responses ---

class ErrorResponse(CamelModel):
    error: str
    message: Optional[str] = None


class SubscriptionSessionResponse(CamelModel):
    customer_id: str
    customer_email: Optional[str] = None
    customer_ephemeral_key_secret: str
    setup_intent_client_secret: str
    price_id: str
    plan_id: Optional[str] = None


class CreateSubscriptionResponse(CamelModel):
    subscription_id: str
    subscription_status: Optional[str] = None
    customer_id: str
    plan_id: Optional[str] = None
    price_id: str
    latest_invoice_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    payment_intent_status: Optional[str] = None
    payment_intent_client_secret: Optional[str] = None
    requires_action: bool = False
    customer_ephemeral_key_secret: str
    invoice_status: Optional[str] = None


class SubscriptionStatusResponse(CamelModel):
    has_subscription: bool
    message: Optional[str] = None
    subscription_id: Optional[str] = None
    status: Optional[str] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False
    subscription: Optional[Dict[str, Any]] = None
    stripe_customer_id: Optional[str] = None


class CancelSubscriptionResponse(CamelModel):
    message: str
    subscription: Dict[str, Any]


class CardResponse(CamelModel):
    success: bool = True
    payment_method: Dict[str, Any]


class CardListResponse(CamelModel):
    customer_id: str
    default_payment_method_id: Optional[str] = None
    cards: List[Dict[str, Any]]


class DefaultCardResponse(CamelModel):
    success: bool = True
    default_payment_method_id: str


class WebhookResponse(BaseModel):
    received: bool = True


class SyncResponse(BaseModel):
    message: str
    updated: int
    errors: int
    total: int
