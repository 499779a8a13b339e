"""
Tests for Stripe webhook reconciliation and POST /billing/webhook.
"""
import json
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from membership_api.core.environment import Environment
from membership_api.core.errors import NetworkError
from membership_api.db.models.membership import Membership
from membership_api.db.models.profile_view import ProfileView
from membership_api.db.models.saved_match import SavedMatch
from membership_api.db.models.webhook_event import WebhookEvent
from membership_api.services.membership_service import activate_paid_plan, ensure_membership, get_current_membership
from membership_api.services.status_service import status_cache_key
from membership_api.services.webhook_service import WebhookProcessingError, WebhookReconciler
from tests.stripe_fakes import (
    SANDBOX_CHAMPIONSHIP,
    SANDBOX_PRO,
    FixedClock,
    make_event,
    make_subscription,
    utc,
)

T0 = utc(2026, 2, 1, 12, 0, 0)


@pytest.fixture
def clock():
    return FixedClock(T0)


@pytest.fixture
def reconciler(catalog, status_reader, clock):
    return WebhookReconciler(catalog=catalog, cache=status_reader.cache, now=clock)


@pytest.fixture
def customer(gateway, test_user):
    return gateway.add_customer(test_user.email, "cus_athlete")


@pytest.fixture
def paid_member(db_session, test_user):
    membership = ensure_membership(db_session, test_user.id)
    activate_paid_plan(db_session, membership, "championship_yearly", "sub_old",
                       T0 - timedelta(days=300), T0 + timedelta(days=65), T0 - timedelta(days=300))
    db_session.add_all([
        SavedMatch(user_id=test_user.id, school_id="michigan", match_score=0.88),
        SavedMatch(user_id=test_user.id, school_id="ucla", match_score=0.74),
        ProfileView(user_id=test_user.id, viewer_id="scout-3", viewer_type="recruiter", viewed_at=T0),
    ])
    db_session.commit()
    return membership


def _deleted(event_id, subscription_id="sub_old", created=T0):
    sub = make_subscription(subscription_id, "cus_athlete", SANDBOX_CHAMPIONSHIP, status="canceled")
    return make_event(event_id, "customer.subscription.deleted", sub, created)


def _updated(event_id, subscription_id="sub_new", product_id=SANDBOX_CHAMPIONSHIP, created=T0, status="active",
             period_end=None):
    sub = make_subscription(subscription_id, "cus_athlete", product_id, status=status,
                            period_start=created, period_end=period_end or created + timedelta(days=365))
    return make_event(event_id, "customer.subscription.updated", sub, created)


def _membership_state(db, user_id):
    m = get_current_membership(db, user_id)
    db.refresh(m)
    return (m.plan, m.tier, m.status, m.stripe_subscription_id, m.end_date, m.payment_failed_at, m.archived_data)


def test_subscription_deleted_archives_and_downgrades(db_session, gateway, reconciler, customer, test_user, paid_member):
    result = reconciler.handle(db_session, _deleted("evt_del"), gateway)

    assert result["processed"] is True
    assert result["plan"] == "free"
    membership = get_current_membership(db_session, test_user.id)
    assert membership.plan == "free"
    assert membership.tier == "free"
    assert membership.status == "active"
    assert membership.stripe_subscription_id is None
    assert membership.end_date is None
    assert membership.payment_failed_at is None
    assert len(membership.archived_data["saved_matches"]) == 2
    assert db_session.query(SavedMatch).count() == 0
    assert db_session.query(WebhookEvent).filter_by(event_id="evt_del").one().user_id == test_user.id


def test_payment_failed_downgrades_and_stamps(db_session, gateway, reconciler, customer, test_user, paid_member):
    invoice = {"id": "in_1", "object": "invoice", "customer": "cus_athlete", "subscription": "sub_old"}
    reconciler.handle(db_session, make_event("evt_fail", "invoice.payment_failed", invoice, T0), gateway)

    membership = get_current_membership(db_session, test_user.id)
    assert membership.plan == "free"
    assert membership.payment_failed_at is not None
    assert membership.archived_data is not None


def test_payment_failed_reads_new_invoice_shape(db_session, gateway, reconciler, customer, test_user, paid_member):
    invoice = {
        "id": "in_2",
        "customer": "cus_athlete",
        "parent": {"subscription_details": {"subscription": "sub_other"}},
    }
    result = reconciler.handle(db_session, make_event("evt_fail2", "invoice.payment_failed", invoice, T0), gateway)

    # Failure on a subscription the member no longer holds
    assert result["stale"] is True
    assert get_current_membership(db_session, test_user.id).plan == "championship_yearly"


def test_upgrade_within_window_restores_archive(db_session, gateway, reconciler, clock, customer, test_user, paid_member):
    reconciler.handle(db_session, _deleted("evt_del"), gateway)

    clock.now = T0 + timedelta(days=90)
    result = reconciler.handle(db_session, _updated("evt_up", created=clock.now), gateway)

    assert result["plan"] == "championship_yearly"
    assert result["restored"] is True
    membership = get_current_membership(db_session, test_user.id)
    assert membership.plan == "championship_yearly"
    assert membership.tier == "premium"
    assert membership.stripe_subscription_id == "sub_new"
    assert membership.archived_data is None
    assert sorted(m.school_id for m in db_session.query(SavedMatch).all()) == ["michigan", "ucla"]
    assert db_session.query(ProfileView).count() == 1


def test_upgrade_after_window_does_not_restore(db_session, gateway, reconciler, clock, customer, test_user, paid_member):
    reconciler.handle(db_session, _deleted("evt_del"), gateway)

    clock.now = T0 + timedelta(days=181)
    result = reconciler.handle(db_session, _updated("evt_up", created=clock.now), gateway)

    assert result["restored"] is False
    membership = get_current_membership(db_session, test_user.id)
    assert membership.plan == "championship_yearly"
    assert membership.archived_data is None
    assert db_session.query(SavedMatch).count() == 0


def test_duplicate_event_is_skipped(db_session, gateway, reconciler, customer, test_user):
    event = _updated("evt_dup", product_id=SANDBOX_PRO)

    first = reconciler.handle(db_session, event, gateway)
    state = _membership_state(db_session, test_user.id)
    second = reconciler.handle(db_session, event, gateway)

    assert first["processed"] is True
    assert second == {"processed": False, "duplicate": True, "event_id": "evt_dup", "event_type": "customer.subscription.updated"}
    assert _membership_state(db_session, test_user.id) == state


def test_same_state_redelivered_under_new_id_converges(db_session, gateway, reconciler, customer, test_user):
    reconciler.handle(db_session, _updated("evt_a", product_id=SANDBOX_PRO), gateway)
    state = _membership_state(db_session, test_user.id)

    reconciler.handle(db_session, _updated("evt_b", product_id=SANDBOX_PRO), gateway)

    assert _membership_state(db_session, test_user.id) == state
    assert db_session.query(Membership).count() == 1


def test_repeated_deletion_keeps_original_archive(db_session, gateway, reconciler, clock, customer, test_user, paid_member):
    reconciler.handle(db_session, _deleted("evt_del_1"), gateway)
    archive = dict(get_current_membership(db_session, test_user.id).archived_data)

    clock.now = T0 + timedelta(days=3)
    reconciler.handle(db_session, _deleted("evt_del_2", subscription_id="sub_old", created=clock.now), gateway)

    membership = get_current_membership(db_session, test_user.id)
    db_session.refresh(membership)
    assert membership.archived_data["restore_until"] == archive["restore_until"]
    assert len(membership.archived_data["saved_matches"]) == 2


def test_stale_deletion_of_replaced_subscription_ignored(db_session, gateway, reconciler, customer, test_user, paid_member):
    reconciler.handle(db_session, _updated("evt_up", subscription_id="sub_new", created=T0), gateway)

    result = reconciler.handle(db_session, _deleted("evt_del_old", subscription_id="sub_old", created=T0 + timedelta(seconds=5)), gateway)

    assert result["stale"] is True
    membership = get_current_membership(db_session, test_user.id)
    assert membership.plan == "championship_yearly"
    assert membership.stripe_subscription_id == "sub_new"


def test_upgrade_older_than_downgrade_ignored(db_session, gateway, reconciler, customer, test_user, paid_member):
    reconciler.handle(db_session, _deleted("evt_del", created=T0), gateway)

    late = _updated("evt_old_update", subscription_id="sub_old", created=T0 - timedelta(hours=1))
    result = reconciler.handle(db_session, late, gateway)

    assert result["stale"] is True
    assert get_current_membership(db_session, test_user.id).plan == "free"


def test_non_active_update_is_noop(db_session, gateway, reconciler, customer, test_user, paid_member):
    result = reconciler.handle(db_session, _updated("evt_pd", subscription_id="sub_old", status="past_due"), gateway)

    assert result["handled"] is False
    assert get_current_membership(db_session, test_user.id).plan == "championship_yearly"


def test_unknown_event_type_acknowledged(db_session, gateway, reconciler):
    event = make_event("evt_misc", "charge.refunded", {"id": "ch_1", "customer": "cus_athlete"}, T0)

    result = reconciler.handle(db_session, event, gateway)

    assert result["handled"] is False
    assert gateway.calls == []
    assert db_session.query(WebhookEvent).count() == 0


def test_unknown_customer_acknowledged(db_session, gateway, reconciler):
    gateway.add_customer("stranger@example.com", "cus_athlete")

    result = reconciler.handle(db_session, _updated("evt_nobody"), gateway)

    assert result["matched_user"] is False
    assert db_session.query(Membership).count() == 0


def test_processing_failure_rolls_back_and_allows_retry(db_session, gateway, reconciler, customer, test_user, paid_member):
    gateway.fail_with = NetworkError("customer lookup timed out")

    with pytest.raises(WebhookProcessingError) as exc_info:
        reconciler.handle(db_session, _deleted("evt_retry"), gateway)

    assert exc_info.value.event_id == "evt_retry"
    assert db_session.query(WebhookEvent).count() == 0
    assert get_current_membership(db_session, test_user.id).plan == "championship_yearly"

    gateway.fail_with = None
    result = reconciler.handle(db_session, _deleted("evt_retry"), gateway)
    assert result["plan"] == "free"


def _commit_raising_integrity_error(db, monkeypatch, competing_event_id=None):
    """Make the next commit fail, optionally after another delivery records the event."""
    real_commit = db.commit

    def failing_commit():
        db.rollback()
        if competing_event_id:
            db.add(WebhookEvent(event_id=competing_event_id, event_type="customer.subscription.deleted",
                                environment="sandbox"))
            real_commit()
        monkeypatch.setattr(db, "commit", real_commit)
        raise IntegrityError("INSERT", {}, Exception("constraint failed"))

    monkeypatch.setattr(db, "commit", failing_commit)


def test_integrity_error_from_concurrent_delivery_is_duplicate(db_session, gateway, reconciler, customer,
                                                               test_user, paid_member, monkeypatch):
    _commit_raising_integrity_error(db_session, monkeypatch, competing_event_id="evt_race")

    result = reconciler.handle(db_session, _deleted("evt_race"), gateway)

    assert result["duplicate"] is True
    assert result["processed"] is False


def test_integrity_error_without_recorded_event_is_processing_failure(db_session, gateway, reconciler, customer,
                                                                      test_user, paid_member, monkeypatch):
    _commit_raising_integrity_error(db_session, monkeypatch)

    with pytest.raises(WebhookProcessingError) as exc_info:
        reconciler.handle(db_session, _deleted("evt_conflict"), gateway)

    assert isinstance(exc_info.value.__cause__, IntegrityError)
    assert db_session.query(WebhookEvent).count() == 0
    assert get_current_membership(db_session, test_user.id).plan == "championship_yearly"
    assert db_session.query(SavedMatch).count() == 2

    result = reconciler.handle(db_session, _deleted("evt_conflict"), gateway)
    assert result["plan"] == "free"


def test_reconciled_user_status_cache_invalidated(db_session, gateway, reconciler, status_reader, customer, test_user):
    for environment in Environment:
        status_reader.cache.set(status_cache_key(environment, test_user.id), "stale snapshot")

    reconciler.handle(db_session, _updated("evt_up", product_id=SANDBOX_PRO), gateway)

    assert len(status_reader.cache) == 0


# Endpoint

def test_webhook_endpoint_bad_signature(client, gateway):
    response = client.post(
        "/billing/webhook",
        content=json.dumps(_deleted("evt_x")),
        headers={"stripe-signature": "forged"},
    )

    assert response.status_code == 400
    assert response.json()["error_type"] == "invalid_signature"


def test_webhook_endpoint_processes_event(client, gateway, customer, test_user, paid_member, db_session):
    response = client.post(
        "/billing/webhook?environment=production",
        content=json.dumps(_deleted("evt_http")),
        headers={"stripe-signature": "valid-signature"},
    )

    assert response.status_code == 200
    assert response.json()["processed"] is True
    assert gateway.requested_environments == [Environment.PRODUCTION]
    db_session.expire_all()
    assert get_current_membership(db_session, test_user.id).plan == "free"


def test_webhook_endpoint_duplicate_is_200(client, gateway, customer, test_user):
    body = json.dumps(_updated("evt_twice", product_id=SANDBOX_PRO))
    headers = {"stripe-signature": "valid-signature"}

    client.post("/billing/webhook", content=body, headers=headers)
    response = client.post("/billing/webhook", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json()["processed"] is False


def test_webhook_endpoint_processing_failure_is_500(client, gateway, customer, test_user, paid_member):
    body = json.dumps(_deleted("evt_500"))
    gateway.construct_event = lambda payload, sig: json.loads(payload)
    gateway.fail_with = NetworkError("stripe down")

    response = client.post("/billing/webhook", content=body, headers={"stripe-signature": "valid-signature"})

    assert response.status_code == 500
    assert response.json()["event_id"] == "evt_500"
