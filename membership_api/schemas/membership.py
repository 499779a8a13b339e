"""
Pydantic schemas for membership and admin endpoints.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class MembershipSummaryResponse(BaseModel):
    """Response schema for GET /membership/me."""
    plan: str = Field(..., description="Plan name (free, pro_monthly, championship_yearly, ...)")
    tier: str = Field(..., description="Entitlement tier (free, premium, college_scout)")
    status: str = Field(..., description="Membership status")
    end_date: Optional[datetime] = Field(None, description="End of the current paid period")
    days_until_renewal: Optional[int] = None
    needs_renewal: bool = Field(..., description="Renewal due within 30 days")
    is_urgent: bool = Field(..., description="Renewal due within 7 days")
    is_critical: bool = Field(..., description="Renewal due within 3 days")
    payment_failed: bool
    has_archived_data: bool = Field(..., description="Premium data is archived and restorable on upgrade")

    class Config:
        json_schema_extra = {
            "example": {
                "plan": "championship_yearly",
                "tier": "premium",
                "status": "active",
                "end_date": "2026-11-01T00:00:00+00:00",
                "days_until_renewal": 12,
                "needs_renewal": True,
                "is_urgent": False,
                "is_critical": False,
                "payment_failed": False,
                "has_archived_data": False
            }
        }


class AdminCancelRequest(BaseModel):
    subscription_id: str = Field(..., description="Stripe subscription id to cancel at period end")


class AdminCancelResponse(BaseModel):
    subscription_id: str
    status: Optional[str] = None
    cancel_at_period_end: bool
