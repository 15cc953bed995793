# Pydantic schemas
from app.schemas.billing import (
    CancelSubscriptionResponse,
    CardListResponse,
    CardRequest,
    CardResponse,
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    DefaultCardResponse,
    ErrorResponse,
    SubscriptionSessionRequest,
    SubscriptionSessionResponse,
    SubscriptionStatusResponse,
    SyncResponse,
    WebhookResponse,
)

__all__ = [
    # Requests
    "SubscriptionSessionRequest",
    "CreateSubscriptionRequest",
    "CardRequest",
    # Responses
    "ErrorResponse",
    "SubscriptionSessionResponse",
    "CreateSubscriptionResponse",
    "SubscriptionStatusResponse",
    "CancelSubscriptionResponse",
    "CardResponse",
    "CardListResponse",
    "DefaultCardResponse",
    "WebhookResponse",
    "SyncResponse",
]
