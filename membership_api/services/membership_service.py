"""
Membership store.

All reads and writes of membership rows go through this module: resolving the
current record, asserting paid or free state, archiving premium data on
downgrade, restoring it on upgrade, and purging archives whose restore window
has closed.

Functions here flush but do not commit; the caller owns the transaction.
``purge_expired_archives`` is the exception since it runs standalone.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime
from sqlalchemy.orm import Session

from membership_api.core import config
from membership_api.core.catalog import FREE, PLAN_TIERS, TIER_FREE, is_paid_plan, plan_tier
from membership_api.db.models.membership import Membership
from membership_api.db.models.profile_view import ProfileView
from membership_api.db.models.saved_match import SavedMatch

logger = logging.getLogger(__name__)

# Archive key -> model. Order is the restore order.
ARCHIVED_MODELS = {
    "saved_matches": SavedMatch,
    "profile_views": ProfileView,
}

RENEWAL_NOTICE_DAYS = 30
RENEWAL_URGENT_DAYS = 7
RENEWAL_CRITICAL_DAYS = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        logger.warning(f"Unparseable timestamp in membership data: {value!r}")
        return None


def effective_plan(membership: Optional[Membership]) -> str:
    """Stored plan, or free when the record is missing or the plan is no longer recognised."""
    if membership is None or membership.plan not in PLAN_TIERS:
        return FREE
    return membership.plan


def get_current_membership(db: Session, user_id: int) -> Optional[Membership]:
    """Latest active membership for a user. Latest wins."""
    return (
        db.query(Membership)
        .filter(Membership.user_id == user_id, Membership.status == "active")
        .order_by(Membership.created_at.desc(), Membership.id.desc())
        .first()
    )


def _current_or_latest(db: Session, user_id: int) -> Optional[Membership]:
    membership = get_current_membership(db, user_id)
    if membership is not None:
        return membership
    return (
        db.query(Membership)
        .filter(Membership.user_id == user_id)
        .order_by(Membership.created_at.desc(), Membership.id.desc())
        .first()
    )


def ensure_membership(db: Session, user_id: int) -> Membership:
    """
    Return the row to write to for a user, creating a free membership if none exists.

    Also used at onboarding.
    """
    membership = _current_or_latest(db, user_id)
    if membership is None:
        membership = Membership(
            user_id=user_id,
            plan=FREE,
            tier=TIER_FREE,
            status="active",
            start_date=utcnow(),
        )
        db.add(membership)
        db.flush()
        logger.info(f"Created free membership: user_id={user_id}")
    return membership


# Archive / restore

def _serialize_row(row) -> Dict[str, Any]:
    data = {}
    for column in row.__table__.columns:
        value = getattr(row, column.name)
        if isinstance(value, datetime):
            value = as_utc(value).isoformat()
        data[column.name] = value
    return data


def _row_from_snapshot(model, data: Dict[str, Any]):
    values = {}
    for column in model.__table__.columns:
        if column.name not in data:
            continue
        value = data[column.name]
        if isinstance(column.type, DateTime):
            value = parse_timestamp(value)
        values[column.name] = value
    return model(**values)


def archive_user_data(db: Session, membership: Membership, now: datetime) -> Dict[str, Any]:
    """
    Snapshot premium data into membership.archived_data and remove the live rows.

    An existing archive is kept as is: a repeated downgrade must not replace
    the original snapshot or extend its restore window.
    """
    if membership.archived_data:
        logger.info(
            f"Archive already present, not re-archiving: user_id={membership.user_id}, "
            f"restore_until={membership.archived_data.get('restore_until')}"
        )
        return membership.archived_data

    snapshot: Dict[str, Any] = {}
    counts = {}
    for key, model in ARCHIVED_MODELS.items():
        rows: List = db.query(model).filter(model.user_id == membership.user_id).all()
        snapshot[key] = [_serialize_row(row) for row in rows]
        counts[key] = len(rows)
        for row in rows:
            db.delete(row)

    snapshot["archived_at"] = now.isoformat()
    snapshot["restore_until"] = (now + timedelta(days=config.ARCHIVE_RESTORE_DAYS)).isoformat()
    membership.archived_data = snapshot
    db.flush()

    logger.info(f"Archived user data: user_id={membership.user_id}, counts={counts}, restore_until={snapshot['restore_until']}")
    return snapshot


def restore_archived_data(db: Session, membership: Membership, now: datetime) -> bool:
    """
    Replay an unexpired archive into the live tables, then discard it.

    Expired archives are discarded without restoring. Rows whose primary key
    already exists for this user are skipped, so a retried restore does not
    duplicate data. A snapshot whose id now belongs to another user is
    reinserted under a fresh id.

    Returns:
        True if rows were restored
    """
    archive = membership.archived_data
    if not archive:
        return False

    restore_until = parse_timestamp(archive.get("restore_until"))
    restored = False

    if restore_until is not None and now < restore_until:
        counts = {}
        for key, model in ARCHIVED_MODELS.items():
            inserted = 0
            for data in archive.get(key) or []:
                row_id = data.get("id")
                existing = db.get(model, row_id) if row_id is not None else None
                if existing is not None:
                    if existing.user_id == membership.user_id:
                        continue
                    # Id was reused by another user's row; let the database assign a new one.
                    data = {k: v for k, v in data.items() if k != "id"}
                db.add(_row_from_snapshot(model, data))
                inserted += 1
            counts[key] = inserted
        restored = True
        logger.info(f"Restored archived data: user_id={membership.user_id}, counts={counts}")
    else:
        logger.info(
            f"Archive expired, discarding without restore: user_id={membership.user_id}, "
            f"restore_until={archive.get('restore_until')}"
        )

    membership.archived_data = None
    db.flush()
    return restored


def purge_expired_archives(db: Session, now: Optional[datetime] = None) -> int:
    """
    Clear archives whose restore window has passed.

    Returns:
        Number of memberships purged
    """
    now = now or utcnow()
    purged = 0
    candidates = db.query(Membership).filter(Membership.archived_data.isnot(None)).all()
    for membership in candidates:
        if not membership.archived_data:
            continue
        restore_until = parse_timestamp(membership.archived_data.get("restore_until"))
        if restore_until is None or restore_until <= now:
            logger.info(f"Purging expired archive: user_id={membership.user_id}, restore_until={restore_until}")
            membership.archived_data = None
            purged += 1

    db.commit()
    logger.info(f"Archive purge complete: purged={purged}, scanned={len(candidates)}")
    return purged


# State assertions

def activate_paid_plan(
    db: Session,
    membership: Membership,
    plan: str,
    subscription_id: Optional[str],
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    now: datetime,
) -> bool:
    """
    Put a membership into the paid state described by a subscription.

    Coming from free, an unexpired archive is restored first. Every field is
    assigned from the arguments, so applying the same subscription twice
    yields the same row.

    Returns:
        True if archived data was restored
    """
    restored = False
    if effective_plan(membership) == FREE and is_paid_plan(plan):
        restored = restore_archived_data(db, membership, now)

    membership.plan = plan
    membership.tier = plan_tier(plan)
    membership.status = "active"
    membership.stripe_subscription_id = subscription_id
    if start_date is not None:
        membership.start_date = start_date
    membership.end_date = end_date
    membership.payment_failed_at = None
    db.flush()
    return restored


def downgrade_to_free(
    db: Session,
    membership: Membership,
    now: datetime,
    payment_failed: bool = False,
    effective_at: Optional[datetime] = None,
) -> None:
    """
    Put a membership into the free state, archiving premium data first.

    ``effective_at`` is when the downgrade happened at the source (the Stripe
    event time); it is recorded as ``downgraded_at`` so later-arriving events
    created before it can be recognised as stale.
    """
    was_paid = effective_plan(membership) != FREE

    archive_user_data(db, membership, now)

    membership.plan = FREE
    membership.tier = TIER_FREE
    membership.status = "active"
    membership.stripe_subscription_id = None
    membership.end_date = None
    if payment_failed:
        membership.payment_failed_at = membership.payment_failed_at or now
    else:
        membership.payment_failed_at = None
    if was_paid:
        membership.downgraded_at = effective_at or now
    db.flush()


def membership_summary(membership: Optional[Membership], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Renewal-oriented view of a membership for the account screen."""
    now = now or utcnow()
    plan = effective_plan(membership)
    end_date = as_utc(membership.end_date) if membership else None

    days_until_renewal = None
    if end_date is not None:
        days_until_renewal = max((end_date - now).days, 0)

    paid = plan != FREE
    return {
        "plan": plan,
        "tier": plan_tier(plan),
        "status": membership.status if membership else "active",
        "end_date": end_date,
        "days_until_renewal": days_until_renewal,
        "needs_renewal": paid and days_until_renewal is not None and days_until_renewal <= RENEWAL_NOTICE_DAYS,
        "is_urgent": paid and days_until_renewal is not None and days_until_renewal <= RENEWAL_URGENT_DAYS,
        "is_critical": paid and days_until_renewal is not None and days_until_renewal <= RENEWAL_CRITICAL_DAYS,
        "payment_failed": bool(membership and membership.payment_failed_at),
        "has_archived_data": bool(membership and membership.archived_data),
    }
