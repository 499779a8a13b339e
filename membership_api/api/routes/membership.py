"""
Membership endpoints for the account screen.
"""
import logging
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from membership_api.core.auth_dependency import get_current_user_obj, get_db
from membership_api.db.models.user import User
from membership_api.schemas.membership import MembershipSummaryResponse
from membership_api.services.membership_service import get_current_membership, membership_summary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/membership", tags=["Membership"])


@router.get("/me", response_model=MembershipSummaryResponse, status_code=status.HTTP_200_OK)
def get_my_membership(
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    """
    Membership summary for the authenticated user.

    Reads the local record only. Users without a record are reported as free.
    Renewal flags are set for paid plans ending within 30 / 7 / 3 days.
    """
    membership = get_current_membership(db, user.id)
    summary = membership_summary(membership)
    logger.debug(f"Membership summary requested: user_id={user.id}, plan={summary['plan']}")
    return summary
