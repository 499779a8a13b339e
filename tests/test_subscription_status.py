"""
Tests for the subscription status reader and GET /billing/status.
"""
import logging
from datetime import timedelta

from membership_api.core.cache import StatusCache
from membership_api.core.environment import Environment
from membership_api.core.errors import NetworkError
from membership_api.db.models.membership import Membership
from membership_api.services.membership_service import ensure_membership, get_current_membership
from membership_api.services.status_service import SubscriptionStatusReader, status_cache_key
from tests.stripe_fakes import SANDBOX_CHAMPIONSHIP, SANDBOX_PRO, FixedClock, utc

NOW = utc(2026, 6, 1, 9, 0, 0)


def _reader(catalog):
    return SubscriptionStatusReader(cache=StatusCache(ttl_seconds=300), catalog=catalog, now=FixedClock(NOW))


def test_no_customer_is_not_subscribed(db_session, gateway, catalog, test_user):
    status = _reader(catalog).status_for(db_session, test_user, gateway, Environment.SANDBOX)

    assert status.as_response() == {"subscribed": False, "product_id": None, "subscription_end": None}
    assert get_current_membership(db_session, test_user.id) is None


def test_active_subscription_writes_through(db_session, gateway, catalog, test_user):
    gateway.add_customer(test_user.email, "cus_1")
    gateway.add_subscription("cus_1", SANDBOX_CHAMPIONSHIP, "sub_42",
                             period_start=NOW - timedelta(days=10), period_end=NOW + timedelta(days=355))

    status = _reader(catalog).status_for(db_session, test_user, gateway, Environment.SANDBOX)

    assert status.subscribed is True
    assert status.product_id == SANDBOX_CHAMPIONSHIP
    assert status.valid_until == NOW + timedelta(days=355)
    assert status.used_fallback_end is False

    membership = get_current_membership(db_session, test_user.id)
    assert membership.plan == "championship_yearly"
    assert membership.tier == "premium"
    assert membership.stripe_subscription_id == "sub_42"


def test_stale_membership_corrected_by_one_status_call(db_session, gateway, catalog, test_user):
    membership = ensure_membership(db_session, test_user.id)
    db_session.commit()
    assert membership.plan == "free"

    gateway.add_customer(test_user.email, "cus_1")
    gateway.add_subscription("cus_1", SANDBOX_PRO, "sub_missed", period_end=NOW + timedelta(days=20))

    _reader(catalog).status_for(db_session, test_user, gateway, Environment.SANDBOX)

    db_session.refresh(membership)
    assert membership.plan == "pro_monthly"
    assert membership.stripe_subscription_id == "sub_missed"


def test_period_end_from_items(db_session, gateway, catalog, test_user):
    gateway.add_customer(test_user.email, "cus_1")
    subscription = gateway.add_subscription("cus_1", SANDBOX_PRO, "sub_items")
    end = NOW + timedelta(days=30)
    subscription["items"]["data"][0]["current_period_end"] = int(end.timestamp())

    status = _reader(catalog).status_for(db_session, test_user, gateway, Environment.SANDBOX)

    assert status.valid_until == end
    assert status.used_fallback_end is False


def test_missing_period_end_uses_flagged_fallback(db_session, gateway, catalog, test_user, caplog):
    gateway.add_customer(test_user.email, "cus_1")
    gateway.add_subscription("cus_1", SANDBOX_PRO, "sub_no_end")

    with caplog.at_level(logging.WARNING):
        status = _reader(catalog).status_for(db_session, test_user, gateway, Environment.SANDBOX)

    assert status.used_fallback_end is True
    assert status.valid_until == NOW + timedelta(days=365)
    assert any("FALLBACK" in record.getMessage() for record in caplog.records)


def test_cache_hit_skips_stripe(db_session, gateway, catalog, test_user):
    reader = _reader(catalog)
    gateway.add_customer(test_user.email, "cus_1")
    gateway.add_subscription("cus_1", SANDBOX_PRO, "sub_1", period_end=NOW + timedelta(days=20))

    first = reader.status_for(db_session, test_user, gateway, Environment.SANDBOX)
    calls_after_first = len(gateway.calls)
    second = reader.status_for(db_session, test_user, gateway, Environment.SANDBOX)

    assert second == first
    assert len(gateway.calls) == calls_after_first


def test_cached_sandbox_status_does_not_answer_production(db_session, gateway, catalog, test_user):
    reader = _reader(catalog)
    gateway.add_customer(test_user.email, "cus_1")
    gateway.add_subscription("cus_1", SANDBOX_PRO, "sub_1", period_end=NOW + timedelta(days=20))
    assert reader.status_for(db_session, test_user, gateway, Environment.SANDBOX).subscribed is True
    calls_after_sandbox = len(gateway.calls)

    gateway.subscriptions.clear()
    production = reader.status_for(db_session, test_user, gateway, Environment.PRODUCTION)

    assert production.subscribed is False
    assert len(gateway.calls) > calls_after_sandbox
    assert reader.cache.get(status_cache_key(Environment.SANDBOX, test_user.id)).subscribed is True


def test_unmapped_product_is_reported_but_not_written(db_session, gateway, catalog, test_user):
    gateway.add_customer(test_user.email, "cus_1")
    gateway.add_subscription("cus_1", "prod_some_donation", "sub_other", period_end=NOW + timedelta(days=20))

    status = _reader(catalog).status_for(db_session, test_user, gateway, Environment.SANDBOX)

    assert status.subscribed is True
    assert db_session.query(Membership).count() == 0


def test_status_endpoint_anonymous(client, gateway):
    response = client.get("/billing/status")

    assert response.status_code == 200
    assert response.json() == {"subscribed": False, "product_id": None, "subscription_end": None}
    assert gateway.calls == []


def test_status_endpoint_no_customer(client, gateway, auth_headers):
    response = client.get("/billing/status", headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {"subscribed": False, "product_id": None, "subscription_end": None}


def test_status_endpoint_subscribed(client, gateway, auth_headers, test_user):
    end = utc(2027, 1, 1)
    gateway.add_customer(test_user.email, "cus_1")
    gateway.add_subscription("cus_1", SANDBOX_CHAMPIONSHIP, "sub_1", period_end=end)

    response = client.get("/billing/status", headers={**auth_headers, "Origin": "http://localhost:5173"})

    assert response.status_code == 200
    assert response.json() == {
        "subscribed": True,
        "product_id": SANDBOX_CHAMPIONSHIP,
        "subscription_end": end.isoformat(),
    }
    assert gateway.requested_environments == [Environment.SANDBOX]


def test_status_endpoint_network_error(client, gateway, auth_headers):
    gateway.fail_with = NetworkError("read timeout")

    response = client.get("/billing/status", headers=auth_headers)

    assert response.status_code == 502
    assert response.json()["error_type"] == "network_error"
