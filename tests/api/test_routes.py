"""HTTP tests for the FastAPI app: status codes, error bodies, CORS / OPTIONS."""
import pytest
from fastapi.testclient import TestClient

from paygate.api.deps import get_kiwify_client, get_mercadopago_client, get_notifier
from paygate.db.session import get_db
from paygate.main import app


@pytest.fixture
def client(db, mp_client, kiwify_client, notifier):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_mercadopago_client] = lambda: mp_client
    app.dependency_overrides[get_kiwify_client] = lambda: kiwify_client
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class TestWebhookRoutes:
    def test_mercadopago_processed(self, client, mp_client, make_intent, make_payment):
        make_intent(processor_reference_id="pref_1")
        mp_client.add_payment(make_payment("pay_1", "approved", email="a@b.com", preference_id="pref_1"))

        response = client.post("/webhooks/mercadopago", json={"type": "payment", "data": {"id": "pay_1"}})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "processed"
        assert body["intent_status"] == "approved"
        assert body["provisioned"] is True
        assert body["account_id"]

    def test_mercadopago_ignored_is_200(self, client):
        response = client.post("/webhooks/mercadopago", json={"type": "subscription", "data": {"id": "1"}})

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"

    def test_mercadopago_not_found_is_200(self, client, mp_client, make_payment):
        mp_client.add_payment(make_payment("pay_1", "approved", preference_id="pref_x"))

        response = client.post("/webhooks/mercadopago", json={"type": "payment", "data": {"id": "pay_1"}})

        assert response.status_code == 200
        assert response.json() == {"status": "order_not_found"}

    def test_mercadopago_upstream_failure_is_500(self, client):
        response = client.post("/webhooks/mercadopago", json={"type": "payment", "data": {"id": "missing"}})

        assert response.status_code == 500
        assert "error" in response.json()

    def test_mercadopago_bad_shape_is_400(self, client):
        response = client.post("/webhooks/mercadopago", json={"type": "payment", "data": {}})

        assert response.status_code == 400
        assert "error" in response.json()

    def test_invalid_json_is_400(self, client):
        response = client.post(
            "/webhooks/kiwify", content=b"not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert "error" in response.json()

    def test_kiwify_missing_email_is_400(self, client):
        response = client.post("/webhooks/kiwify", json={"event": "order.paid", "data": {"id": "1", "customer": {}}})

        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid kiwify notification")

    def test_kiwify_processed(self, client):
        response = client.post(
            "/webhooks/kiwify",
            json={"event": "order.paid", "data": {"id": "kw_1", "customer": {"email": "c@b.com"}}},
        )

        assert response.status_code == 200
        assert response.json()["intent_status"] == "approved"


class TestAccessRoutes:
    def test_verify_without_payment(self, client):
        response = client.post("/verify-payment-access", json={"email": "nobody@b.com"})

        assert response.status_code == 200
        body = response.json()
        assert body["hasValidPayment"] is False
        assert body["email"] == "nobody@b.com"
        assert set(body) == {"hasValidPayment", "email", "message"}

    def test_verify_missing_email_is_400(self, client):
        response = client.post("/verify-payment-access", json={})

        assert response.status_code == 400
        assert response.json() == {"error": "Email is required"}

    def test_verify_then_subscription_then_refresh(self, client, make_intent):
        make_intent(email="a@b.com", status="approved", plan_type="lifetime")

        verified = client.post("/verify-payment-access", json={"email": "a@b.com"}).json()
        assert verified["hasValidPayment"] is True

        subscription = client.get(
            "/subscription", headers={"Authorization": f"Bearer {verified['access_token']}"}
        )
        assert subscription.status_code == 200
        view = subscription.json()
        assert view["isPremium"] is True
        assert view["hasAccess"] is True
        assert view["subscriptionStatus"] == "active"
        assert view["planType"] == "lifetime"
        assert view["subscriptionDaysLeft"] is None

        refreshed = client.post("/auth/refresh", json={"refresh_token": verified["refresh_token"]})
        assert refreshed.status_code == 200
        assert refreshed.json()["token_type"] == "bearer"

    def test_verify_recovers_kiwify_order(self, client, kiwify_client):
        kiwify_client.add_order("kw_9", "k@b.com")

        response = client.post("/verify-payment-access", json={"email": "k@b.com"})

        assert response.status_code == 200
        assert response.json()["hasValidPayment"] is True
        assert response.json()["access_token"]

    def test_verify_kiwify_purchase(self, client, kiwify_client):
        kiwify_client.add_order("kw_9", "k@b.com", name="Karla")

        response = client.post("/verify-kiwify-purchase", json={"email": "k@b.com"})

        assert response.status_code == 200
        body = response.json()
        assert body["hasValidPurchase"] is True
        assert body["customerData"]["order_id"] == "kw_9"
        assert body["customerData"]["name"] == "Karla"
        assert body["customerData"]["source"] == "kiwify"

    def test_verify_kiwify_purchase_without_order(self, client):
        response = client.post("/verify-kiwify-purchase", json={"email": "k@b.com"})

        assert response.json() == {"hasValidPurchase": False, "customerData": None}

    def test_verify_kiwify_purchase_missing_email_is_400(self, client):
        response = client.post("/verify-kiwify-purchase", json={})

        assert response.status_code == 400

    def test_subscription_requires_token(self, client):
        response = client.get("/subscription")

        assert response.status_code == 401
        assert "error" in response.json()

    def test_refresh_with_bad_token_is_401(self, client):
        response = client.post("/auth/refresh", json={"refresh_token": "garbage"})

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid token"}


class TestCheckoutRoute:
    def test_checkout(self, client, mp_client):
        response = client.post("/checkout", json={"email": "a@b.com", "plan_type": "yearly"})

        assert response.status_code == 200
        body = response.json()
        assert body["external_reference"].startswith("dindin_")
        assert body["preference_id"] == "pref_1"

    def test_checkout_unknown_plan_is_400(self, client):
        response = client.post("/checkout", json={"plan_type": "weekly"})

        assert response.status_code == 400

    def test_checkout_processor_failure_is_500(self, client, mp_client):
        mp_client.fail_preference = True

        response = client.post("/checkout", json={"email": "a@b.com"})

        assert response.status_code == 500
        assert "error" in response.json()


class TestCrossCutting:
    @pytest.mark.parametrize(
        "path", ["/webhooks/mercadopago", "/webhooks/kiwify", "/verify-payment-access", "/verify-kiwify-purchase"]
    )
    def test_options_empty_200(self, client, path):
        response = client.options(path)

        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["access-control-allow-origin"] == "*"
        assert "content-type" in response.headers["access-control-allow-headers"]
        assert "POST" in response.headers["access-control-allow-methods"]

    def test_cors_preflight(self, client):
        response = client.options(
            "/verify-payment-access",
            headers={"Origin": "https://app.example.com", "Access-Control-Request-Method": "POST"},
        )

        assert response.status_code == 200
        assert "access-control-allow-origin" in response.headers

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_metrics(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert b"webhooks_received_total" in response.content

    def test_unknown_route_error_body(self, client):
        response = client.get("/nope")

        assert response.status_code == 404
        assert "error" in response.json()
