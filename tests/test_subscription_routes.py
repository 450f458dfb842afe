from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from app.models import AccountStatus, ProviderSubscriptionStatus
from app.utils.timestamps import utcnow

WEEKLY = "price_1RbijS4JrlJotBXLm4zsLCC8"


class TestSubscriptionStatus:

    def test_trialing_account(self, client):
        body = client.get("/subscription/status").json()
        assert body["has_access"] is True
        assert body["is_trialing"] is True
        assert body["trial_days_left"] == 2
        assert body["state"] == "trialing"
        assert body["poll_interval_seconds"] == 60

    def test_expired_account_is_blocked_and_marked(self, client, db, signed_in, make_account):
        user = make_account(trial_ended_days_ago=2)
        signed_in["user"] = user

        body = client.get("/subscription/status").json()
        assert body["access_blocked"] is True
        assert body["is_expired"] is True
        assert body["state"] == "expired_unpaid"
        db.refresh(user)
        assert user.subscription_status == AccountStatus.EXPIRED

    def test_subscriber(self, client, signed_in, make_account):
        signed_in["user"] = make_account(
            trial_ended_days_ago=30,
            status=AccountStatus.ACTIVE,
            subscription_status=ProviderSubscriptionStatus.ACTIVE,
        )
        body = client.get("/subscription/status").json()
        assert body["is_active"] is True
        assert body["state"] == "active"


class TestCheckout:

    def test_products(self, client):
        products = client.get("/subscription/products").json()["products"]
        assert [p["interval"] for p in products] == ["week", "month", "year"]

    def test_unknown_plan(self, client):
        response = client.post("/subscription/create-checkout-session", json={"price_id": "price_nope"})
        assert response.status_code == 400

    def test_already_subscribed(self, client, signed_in, make_account):
        signed_in["user"] = make_account(subscription_status=ProviderSubscriptionStatus.ACTIVE)
        response = client.post("/subscription/create-checkout-session", json={"price_id": WEEKLY})
        assert response.status_code == 400

    def test_creates_session(self, client, signed_in):
        with patch("stripe.Customer.create", return_value=MagicMock(id="cus_new")) as create_customer, \
                patch("stripe.checkout.Session.create",
                      return_value=MagicMock(id="cs_1", url="https://checkout.stripe.com/c/cs_1")) as create_session:
            response = client.post("/subscription/create-checkout-session", json={"price_id": WEEKLY})

        assert response.status_code == 200
        assert response.json() == {"checkout_url": "https://checkout.stripe.com/c/cs_1", "session_id": "cs_1"}
        create_customer.assert_called_once()
        kwargs = create_session.call_args.kwargs
        assert kwargs["customer"] == "cus_new"
        assert kwargs["metadata"] == {"user_id": str(signed_in["user"].id)}

    def test_verify_activates_subscription(self, client, signed_in):
        user = signed_in["user"]
        checkout_session = MagicMock(metadata={"user_id": str(user.id)}, payment_status="paid", subscription="sub_42")
        stripe_sub = {
            "id": "sub_42",
            "customer": "cus_42",
            "status": "active",
            "metadata": {"user_id": str(user.id)},
            "current_period_end": int((utcnow() + timedelta(days=30)).timestamp()),
            "items": {"data": [{"price": {"id": WEEKLY}}]},
        }
        with patch("stripe.checkout.Session.retrieve", return_value=checkout_session), \
                patch("stripe.Subscription.retrieve", return_value=stripe_sub):
            response = client.post("/subscription/verify-checkout-session", json={"session_id": "cs_42"})

        assert response.status_code == 200
        assert response.json()["status"] == "active"
        assert client.get("/subscription/status").json()["state"] == "active"

    def test_verify_rejects_foreign_session(self, client):
        checkout_session = MagicMock(metadata={"user_id": "99999"}, payment_status="paid", subscription="sub_1")
        with patch("stripe.checkout.Session.retrieve", return_value=checkout_session):
            response = client.post("/subscription/verify-checkout-session", json={"session_id": "cs_x"})
        assert response.status_code == 403

    @pytest.mark.parametrize("metadata", [{"user_id": "not-a-number"}, {}, None])
    def test_verify_rejects_unreadable_owner(self, client, metadata):
        checkout_session = MagicMock(metadata=metadata, payment_status="paid", subscription="sub_1")
        with patch("stripe.checkout.Session.retrieve", return_value=checkout_session):
            response = client.post("/subscription/verify-checkout-session", json={"session_id": "cs_x"})
        assert response.status_code == 403
