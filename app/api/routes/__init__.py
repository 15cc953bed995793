"""API routes package."""
from app.api.routes import cards, payments, webhook

__all__ = ["cards", "payments", "webhook"]
