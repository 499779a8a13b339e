"""
Integration tests for GET /membership/me, the admin membership routes and /health.
"""
from datetime import datetime, timedelta, timezone

from membership_api.core.environment import Environment
from membership_api.db.models.membership import Membership
from membership_api.services.membership_service import get_current_membership
from membership_api.services.status_service import status_cache_key
from tests.stripe_fakes import SANDBOX_PRO


def test_membership_me_requires_auth(client):
    response = client.get("/membership/me")
    assert response.status_code == 401


def test_membership_me_without_record_is_free(client, auth_headers):
    response = client.get("/membership/me", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["plan"] == "free"
    assert data["tier"] == "free"
    assert data["needs_renewal"] is False
    assert data["has_archived_data"] is False


def test_membership_me_renewal_flags(client, auth_headers, db_session, test_user):
    db_session.add(Membership(
        user_id=test_user.id,
        plan="pro_monthly",
        tier="premium",
        status="active",
        end_date=datetime.now(timezone.utc) + timedelta(days=2, hours=12),
    ))
    db_session.commit()

    data = client.get("/membership/me", headers=auth_headers).json()

    assert data["plan"] == "pro_monthly"
    assert data["days_until_renewal"] == 2
    assert data["needs_renewal"] is True
    assert data["is_urgent"] is True
    assert data["is_critical"] is True


def test_admin_routes_forbidden_for_members(client, auth_headers, test_user):
    response = client.post(f"/admin/memberships/{test_user.id}/sync", headers=auth_headers)
    assert response.status_code == 403


def test_admin_sync_bypasses_cache(client, gateway, status_reader, admin_headers, test_user, db_session):
    status_reader.cache.set(status_cache_key(Environment.SANDBOX, test_user.id), "cached")
    status_reader.cache.set(status_cache_key(Environment.PRODUCTION, test_user.id), "cached")
    gateway.add_customer(test_user.email, "cus_1")
    gateway.add_subscription("cus_1", SANDBOX_PRO, "sub_sync", period_end=datetime(2027, 1, 1, tzinfo=timezone.utc))

    response = client.post(f"/admin/memberships/{test_user.id}/sync", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["subscribed"] is True
    assert get_current_membership(db_session, test_user.id).stripe_subscription_id == "sub_sync"
    assert status_reader.cache.get(status_cache_key(Environment.PRODUCTION, test_user.id)) is None


def test_admin_sync_unknown_user(client, admin_headers):
    response = client.post("/admin/memberships/9999/sync", headers=admin_headers)
    assert response.status_code == 404


def test_admin_cancel_at_period_end(client, gateway, admin_headers, test_user):
    gateway.add_customer(test_user.email, "cus_1")
    gateway.add_subscription("cus_1", SANDBOX_PRO, "sub_cancel")

    response = client.post(
        f"/admin/memberships/{test_user.id}/cancel",
        json={"subscription_id": "sub_cancel"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.json() == {"subscription_id": "sub_cancel", "status": "active", "cancel_at_period_end": True}
    assert gateway.canceled == ["sub_cancel"]


def test_admin_cancel_rejects_foreign_subscription(client, gateway, admin_headers, test_user):
    gateway.add_customer(test_user.email, "cus_1")
    gateway.add_customer("someone@example.com", "cus_2")
    gateway.add_subscription("cus_2", SANDBOX_PRO, "sub_not_theirs")

    response = client.post(
        f"/admin/memberships/{test_user.id}/cancel",
        json={"subscription_id": "sub_not_theirs"},
        headers=admin_headers,
    )

    assert response.status_code == 404
    assert gateway.canceled == []


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] in ("healthy", "degraded")
