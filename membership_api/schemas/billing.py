"""
Pydantic schemas for billing endpoints.
"""
from typing import Optional
from pydantic import BaseModel, Field


class CheckoutRequest(BaseModel):
    """Request schema for creating a checkout session."""
    price_id: Optional[str] = Field(None, description="Stripe price id of the plan to subscribe to")
    promo_code: Optional[str] = Field(None, description="Optional promo code")
    return_path: Optional[str] = Field(None, description="Site-relative path to return to after checkout")

    class Config:
        json_schema_extra = {
            "example": {
                "price_id": "price_1SIh2kDeP9jkhS2kYQeMv3Zp",
                "promo_code": "SPRING25",
                "return_path": "/membership"
            }
        }


class CheckoutResponse(BaseModel):
    """Response schema for checkout session creation."""
    url: str = Field(..., description="Stripe hosted checkout URL")

    class Config:
        json_schema_extra = {
            "example": {
                "url": "https://checkout.stripe.com/c/pay/cs_test_..."
            }
        }


class SubscriptionStatusResponse(BaseModel):
    """Response schema for GET /billing/status."""
    subscribed: bool = Field(..., description="Whether the user has an active subscription")
    product_id: Optional[str] = Field(None, description="Stripe product id of the active subscription")
    subscription_end: Optional[str] = Field(None, description="ISO timestamp the current period ends")

    class Config:
        json_schema_extra = {
            "example": {
                "subscribed": True,
                "product_id": "prod_TF4zr2EcShQH1M",
                "subscription_end": "2027-10-19T00:00:00+00:00"
            }
        }


class PortalRequest(BaseModel):
    """Request schema for creating a portal session."""
    return_path: Optional[str] = Field(None, description="Site-relative path to return to after the portal")


class PortalResponse(BaseModel):
    """Response schema for portal session creation."""
    url: str = Field(..., description="Stripe customer portal URL")

    class Config:
        json_schema_extra = {
            "example": {
                "url": "https://billing.stripe.com/p/session/..."
            }
        }


class BillingErrorResponse(BaseModel):
    """Error response schema for billing operations."""
    error: str = Field(..., description="Message safe to show the user")
    error_type: str = Field(..., description="Error classification the UI branches on")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "This plan is not available for purchase.",
                "error_type": "invalid_price"
            }
        }


class WebhookResponse(BaseModel):
    """Acknowledgement returned to Stripe."""
    received: bool = True
    processed: bool = Field(..., description="False only for duplicate deliveries")
    event_id: Optional[str] = None
    event_type: Optional[str] = None
