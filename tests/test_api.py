"""
API tests for BloomFund endpoints.

Tests:
- Health and info endpoints
- Payout request / eligibility / history
- Stripe webhook delivery
- Donation checkout and Connect onboarding
- Public campaign page
"""

import json

import pytest

from bloomfund.routers.deps import get_stripe_service
from database.models import AccountStatus, Payment, RewardTier


@pytest.fixture
def creator(make_user):
    return make_user()


class TestHealthEndpoints:
    """Test basic health and info endpoints."""

    def test_root_endpoint(self, client):
        """Test root endpoint returns welcome message."""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert "BloomFund" in data["message"]

    def test_health_check(self, client):
        """Test health endpoint returns healthy status."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "BloomFund API"
        assert data["version"] == "1.0.0"
        assert data["stripe_mode"] == "mock"


class TestPayoutRequestEndpoint:
    """POST /payouts/request"""

    def test_successful_request(self, client, auth_header, creator, make_campaign, db):
        """Eligible campaign is paid out net of fees."""
        campaign = make_campaign(creator)

        response = client.post(
            "/payouts/request", json={"campaign_id": campaign.id}, headers=auth_header(creator)
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["amount"] == 189970
        assert data["amount_display"] == "$1,899.70"
        assert data["transfer_id"].startswith("tr_mock_")

        db.refresh(campaign)
        assert campaign.payout_status == "processing"
        assert campaign.stripe_transfer_id == data["transfer_id"]

    def test_requires_authentication(self, client, creator, make_campaign):
        campaign = make_campaign(creator)

        response = client.post("/payouts/request", json={"campaign_id": campaign.id})

        assert response.status_code == 401
        assert response.json() == {"error": "Authentication required"}

    def test_rejects_bad_token(self, client, creator, make_campaign):
        campaign = make_campaign(creator)

        response = client.post(
            "/payouts/request",
            json={"campaign_id": campaign.id},
            headers={"Authorization": "Bearer not-a-token"},
        )

        assert response.status_code == 401

    def test_not_owner(self, client, auth_header, make_user, creator, make_campaign):
        """Only the campaign owner may request a payout."""
        campaign = make_campaign(creator)
        stranger = make_user(stripe_account_id="acct_stranger")

        response = client.post(
            "/payouts/request", json={"campaign_id": campaign.id}, headers=auth_header(stranger)
        )

        assert response.status_code == 403
        assert response.json() == {"error": "Unauthorized"}

    def test_campaign_not_found(self, client, auth_header, creator):
        response = client.post("/payouts/request", json={"campaign_id": 424242}, headers=auth_header(creator))

        assert response.status_code == 404
        assert response.json() == {"error": "Campaign not found"}

    def test_invalid_campaign_id(self, client, auth_header, creator):
        response = client.post("/payouts/request", json={"campaign_id": 0}, headers=auth_header(creator))

        assert response.status_code == 422

    def test_cooldown(self, client, auth_header, creator, make_campaign):
        campaign = make_campaign(creator, ended_days_ago=3)

        response = client.post(
            "/payouts/request", json={"campaign_id": campaign.id}, headers=auth_header(creator)
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Payout available in 4 days"}

    def test_connect_account_required(self, client, auth_header, make_user, make_campaign):
        """Creators without Connect are told how to fix it."""
        creator = make_user(stripe_account_id=None, status=AccountStatus.NOT_SETUP.value)
        campaign = make_campaign(creator)

        response = client.post(
            "/payouts/request", json={"campaign_id": campaign.id}, headers=auth_header(creator)
        )

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "Stripe Connect account required"
        assert data["action"] == "setup_connect_account"

    def test_already_in_progress(self, client, auth_header, creator, make_campaign):
        campaign = make_campaign(creator)
        headers = auth_header(creator)

        first = client.post("/payouts/request", json={"campaign_id": campaign.id}, headers=headers)
        second = client.post("/payouts/request", json={"campaign_id": campaign.id}, headers=headers)

        assert first.status_code == 200
        assert second.status_code == 409

    def test_transfer_failure(self, app, client, auth_header, failing_transfers, creator, make_campaign, db):
        """Stripe outage surfaces as 502 and leaves a failed record behind."""
        app.dependency_overrides[get_stripe_service] = lambda: failing_transfers
        campaign = make_campaign(creator)

        response = client.post(
            "/payouts/request", json={"campaign_id": campaign.id}, headers=auth_header(creator)
        )

        assert response.status_code == 502
        assert response.json() == {"error": "Stripe is down"}
        db.refresh(campaign)
        assert campaign.payout_status == "failed"


class TestPayoutQueries:
    """GET /payouts/eligibility/{id} and /payouts/campaign/{id}"""

    def test_eligibility(self, client, auth_header, creator, make_campaign):
        campaign = make_campaign(creator, ended_days_ago=10)

        response = client.get(f"/payouts/eligibility/{campaign.id}", headers=auth_header(creator))

        assert response.status_code == 200
        data = response.json()
        assert data["eligible"] is True
        assert data["payout_status"] == "eligible"
        assert data["days_remaining"] == 27
        assert data["fees"]["net_amount"] == 189970
        assert data["has_payout_account"] is True

    def test_eligibility_not_owner(self, client, auth_header, make_user, creator, make_campaign):
        campaign = make_campaign(creator)
        stranger = make_user(stripe_account_id="acct_stranger")

        response = client.get(f"/payouts/eligibility/{campaign.id}", headers=auth_header(stranger))

        assert response.status_code == 403

    def test_history(self, client, auth_header, creator, make_campaign):
        campaign = make_campaign(creator)
        headers = auth_header(creator)
        client.post("/payouts/request", json={"campaign_id": campaign.id}, headers=headers)

        response = client.get(f"/payouts/campaign/{campaign.id}", headers=headers)

        assert response.status_code == 200
        history = response.json()
        assert len(history) == 1
        assert history[0]["status"] == "processing"
        assert history[0]["amount"] == 189970
        assert history[0]["destination_account"] == "acct_creator"


class TestStripeWebhook:
    """POST /webhooks/stripe"""

    def _post(self, client, body, path="/webhooks/stripe"):
        return client.post(
            path,
            content=json.dumps(body),
            headers={"stripe-signature": "t=0,v1=mock", "content-type": "application/json"},
        )

    def _donation(self, campaign_id, intent_id="pi_1", amount=1080, original_amount="1000"):
        return {
            "id": f"evt_{intent_id}",
            "type": "payment_intent.succeeded",
            "data": {"object": {
                "id": intent_id,
                "amount": amount,
                "currency": "usd",
                "metadata": {"campaign_id": str(campaign_id), "original_amount": original_amount},
            }},
        }

    def test_missing_signature(self, client):
        response = client.post("/webhooks/stripe", content=b"{}")

        assert response.status_code == 400
        assert response.json() == {"error": "Missing stripe-signature header"}

    def test_malformed_event(self, client):
        response = self._post(client, {"id": "evt_1", "type": "payment_intent.succeeded", "data": {}})

        assert response.status_code == 400

    def test_donation_is_credited_once(self, client, db, creator, make_campaign):
        campaign = make_campaign(creator, ended_days_ago=-5, current_funding=0)
        body = self._donation(campaign.id)

        first = self._post(client, body)
        second = self._post(client, body)

        assert first.status_code == 200
        assert first.json() == {"received": True}
        assert second.status_code == 200
        assert db.query(Payment).count() == 1
        db.refresh(campaign)
        assert campaign.current_funding == 1000

    def test_transfer_events_path(self, client, db, creator, make_campaign, auth_header):
        """Transfer webhooks may also be delivered to /webhooks/transfer-events."""
        campaign = make_campaign(creator)
        payout = client.post(
            "/payouts/request", json={"campaign_id": campaign.id}, headers=auth_header(creator)
        ).json()

        response = self._post(client, {
            "id": "evt_paid",
            "type": "transfer.paid",
            "data": {"object": {"id": payout["transfer_id"], "amount": payout["amount"], "currency": "usd"}},
        }, path="/webhooks/transfer-events")

        assert response.status_code == 200
        db.refresh(campaign)
        assert campaign.payout_status == "paid"

    def test_unhandled_event_type(self, client):
        response = self._post(client, {"id": "evt_1", "type": "customer.created", "data": {"object": {}}})

        assert response.status_code == 200

    def test_donation_for_unknown_campaign_asks_for_redelivery(self, client, db):
        response = self._post(client, self._donation(987654))

        assert response.status_code == 500
        assert response.json() == {"error": "Webhook handler failed"}
        assert db.query(Payment).count() == 0

    def test_charge_without_campaign_metadata_is_acknowledged(self, client, db):
        body = self._donation(1)
        body["data"]["object"]["metadata"] = {}

        response = self._post(client, body)

        assert response.status_code == 200
        assert db.query(Payment).count() == 0

    def test_unparseable_campaign_id_is_rejected(self, client, db):
        response = self._post(client, self._donation("not-a-number"))

        assert response.status_code == 400
        assert db.query(Payment).count() == 0

    def test_retried_payment_is_credited(self, client, db, creator, make_campaign):
        campaign = make_campaign(creator, ended_days_ago=-5, current_funding=0)
        failed = self._donation(campaign.id, intent_id="pi_retry")
        failed["id"] = "evt_failed"
        failed["type"] = "payment_intent.payment_failed"

        self._post(client, failed)
        response = self._post(client, self._donation(campaign.id, intent_id="pi_retry"))

        assert response.status_code == 200
        assert db.query(Payment).one().status == "succeeded"
        db.refresh(campaign)
        assert campaign.current_funding == 1000


class TestDonationCheckout:
    """POST /payments/create-intent"""

    def _body(self, campaign_id, **overrides):
        body = {
            "amount": 2500,
            "campaign_id": campaign_id,
            "donor_name": "Sarah Johnson",
            "donor_email": "sarah@example.com",
        }
        body.update(overrides)
        return body

    def test_create_intent(self, client, creator, make_campaign):
        campaign = make_campaign(creator, ended_days_ago=-5)

        response = client.post("/payments/create-intent", json=self._body(campaign.id))

        assert response.status_code == 200
        data = response.json()
        assert data["total_amount"] == 2500 + 155
        assert data["platform_fee"] == 155
        assert data["payment_intent_id"].startswith("pi_mock_")

    def test_minimum_donation(self, client, creator, make_campaign):
        campaign = make_campaign(creator, ended_days_ago=-5)

        response = client.post("/payments/create-intent", json=self._body(campaign.id, amount=999))

        assert response.status_code == 422

    def test_closed_campaign(self, client, creator, make_campaign):
        campaign = make_campaign(creator, status="completed")

        response = client.post("/payments/create-intent", json=self._body(campaign.id))

        assert response.status_code == 400
        assert response.json() == {"error": "Campaign is not accepting donations"}

    def test_unknown_campaign(self, client):
        response = client.post("/payments/create-intent", json=self._body(555))

        assert response.status_code == 404

    def test_reward_tier_minimum(self, client, db, creator, make_campaign):
        campaign = make_campaign(creator, ended_days_ago=-5)
        tier = RewardTier(campaign_id=campaign.id, title="Mug", amount=5000)
        db.add(tier)
        db.commit()

        too_low = client.post("/payments/create-intent", json=self._body(campaign.id, reward_tier_id=tier.id))
        enough = client.post(
            "/payments/create-intent", json=self._body(campaign.id, amount=5000, reward_tier_id=tier.id)
        )

        assert too_low.status_code == 400
        assert enough.status_code == 200

    def test_create_checkout(self, client, creator, make_campaign):
        campaign = make_campaign(creator, ended_days_ago=-5)

        response = client.post("/payments/create-checkout", json=self._body(campaign.id))

        assert response.status_code == 200
        data = response.json()
        assert data["session_id"].startswith("cs_mock_")
        assert f"/campaigns/{campaign.id}?success=true" in data["url"]
        assert data["total_amount"] == 2500 + 155
        assert data["platform_fee"] == 155

    def test_checkout_closed_campaign(self, client, creator, make_campaign):
        campaign = make_campaign(creator, status="completed")

        response = client.post("/payments/create-checkout", json=self._body(campaign.id))

        assert response.status_code == 400
        assert response.json() == {"error": "Campaign is not accepting donations"}

    def test_checkout_metadata_carries_tier(self, stripe_service):
        session = stripe_service.create_checkout_session(
            amount=5000,
            currency="usd",
            campaign_id=7,
            campaign_title="Cozy Corner Coffee House",
            donor_name="Sarah Johnson",
            donor_email="sarah@example.com",
            reward_tier_id=3,
            reward_tier_title="Mug",
        )

        assert session["metadata"]["campaign_id"] == "7"
        assert session["metadata"]["original_amount"] == "5000"
        assert session["metadata"]["reward_tier_title"] == "Mug"
        assert session["amount"] == 5000 + 280


class TestCampaignPage:
    """GET /campaigns/{id}"""

    def test_campaign_with_stats(self, client, db, creator, make_campaign):
        campaign = make_campaign(creator, ended_days_ago=-2.5, current_funding=150000, funding_goal=200000)
        db.add_all([
            RewardTier(campaign_id=campaign.id, title="Mug", amount=5000),
            RewardTier(campaign_id=campaign.id, title="Sticker", amount=1000),
            Payment(campaign_id=campaign.id, amount=100000, status="succeeded", transaction_id="pi_a"),
            Payment(campaign_id=campaign.id, amount=50000, status="succeeded", transaction_id="pi_b"),
            Payment(campaign_id=campaign.id, amount=0, status="failed", transaction_id="pi_c"),
            Payment(campaign_id=campaign.id, amount=2000, status="refunded", transaction_id="pi_d"),
        ])
        db.commit()

        response = client.get(f"/campaigns/{campaign.id}")

        assert response.status_code == 200
        data = response.json()
        assert data["title"] == "Cozy Corner Coffee House"
        assert data["current_funding"] == 150000
        assert data["total_backers"] == 2
        assert data["days_remaining"] == 3
        assert data["funding_percentage"] == 75
        assert [tier["title"] for tier in data["reward_tiers"]] == ["Sticker", "Mug"]

    def test_overfunded_and_ended(self, client, creator, make_campaign):
        campaign = make_campaign(creator, ended_days_ago=4, current_funding=300000, funding_goal=200000)

        data = client.get(f"/campaigns/{campaign.id}").json()

        assert data["funding_percentage"] == 100
        assert data["days_remaining"] == 0
        assert data["total_backers"] == 0

    def test_unknown_campaign(self, client):
        response = client.get("/campaigns/999")

        assert response.status_code == 404
        assert response.json() == {"error": "Campaign not found"}


class TestConnectOnboarding:
    """POST /stripe/connect/create"""

    def _body(self):
        return {
            "email": "sarah@example.com",
            "business_name": "Cozy Corner Coffee House",
            "first_name": "Sarah",
            "last_name": "Johnson",
        }

    def test_create_account(self, client, auth_header, make_user, db):
        user = make_user(stripe_account_id=None, status=AccountStatus.NOT_SETUP.value)

        response = client.post("/stripe/connect/create", json=self._body(), headers=auth_header(user))

        assert response.status_code == 200
        data = response.json()
        assert data["account_id"].startswith("acct_mock_")
        assert "onboarding_url" in data

        db.refresh(user)
        assert user.stripe_account_id == data["account_id"]
        assert user.stripe_account_status == "pending"

    def test_account_already_exists(self, client, auth_header, creator):
        response = client.post("/stripe/connect/create", json=self._body(), headers=auth_header(creator))

        assert response.status_code == 400
        assert response.json() == {"error": "Stripe Connect account already exists"}
