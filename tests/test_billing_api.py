import json

from conftest import OTHER_USER_ID, PREMIUM_USER_ID, USER_ID, WEBHOOK_SECRET, compute_signature, sign

API = "/api/v1/billing"


def upgrade(client, plan_type="premium_monthly"):
    return client.post(f"{API}/upgrade", json={"planType": plan_type})


def webhook(client, event, headers=None, secret=WEBHOOK_SECRET):
    body = json.dumps(event).encode()
    all_headers = {"Content-Type": "application/json", "X-Razorpay-Signature": compute_signature(body, secret)}
    all_headers.update(headers or {})
    return client.post(f"{API}/webhook", content=body, headers=all_headers)


def test_health(client):
    assert client.get("/api/v1/health").json() == {"status": "ok"}


def test_plans(client):
    response = client.get(f"{API}/plans")
    assert response.status_code == 200
    plans = response.json()["data"]
    assert plans[0] == {
        "planId": "premium_monthly",
        "amount": 99900,
        "currency": "INR",
        "description": "Premium Monthly Subscription",
        "duration": 30,
        "formattedAmount": "₹999.00",
    }


def test_upgrade_and_verify_flow(client):
    response = upgrade(client)
    assert response.status_code == 201
    order = response.json()["data"]
    assert order["amount"] == 99900
    assert order["gatewayKeyId"] == "rzp_test_key"
    assert order["user"] == {"name": "Asha Rao", "email": "asha@example.com"}

    response = client.post(f"{API}/verify", json={
        "razorpay_order_id": order["orderId"],
        "razorpay_payment_id": "pay_1",
        "razorpay_signature": sign(order["orderId"], "pay_1"),
    })
    assert response.status_code == 200
    assert response.json()["data"] == {
        "success": True,
        "paymentId": "pay_1",
        "orderId": order["orderId"],
        "planType": "premium_monthly",
        "amount": 99900,
        "currency": "INR",
    }

    status = client.get(f"{API}/status").json()["data"]
    assert status["user"]["isPremium"] is True
    assert status["stats"]["completedPayments"] == 1

    # premium users cannot buy again
    assert upgrade(client).status_code == 409


def test_upgrade_errors(client, as_user, gateway):
    assert upgrade(client, "premium_lifetime").status_code == 400

    as_user(PREMIUM_USER_ID)
    response = upgrade(client)
    assert response.status_code == 409
    assert response.json()["detail"] == "User is already premium"

    as_user("ghost")
    assert upgrade(client).status_code == 404


def test_upgrade_gateway_failure(client, gateway):
    from app.core.exceptions import GatewayError

    gateway.error = GatewayError("Razorpay is down")
    response = upgrade(client)
    assert response.status_code == 502
    assert "Razorpay is down" in response.json()["detail"]


def test_verify_errors(client):
    order = upgrade(client).json()["data"]

    missing = client.post(f"{API}/verify", json={
        "razorpay_order_id": "order_unknown",
        "razorpay_payment_id": "pay_1",
        "razorpay_signature": "abc",
    })
    assert missing.status_code == 400
    assert missing.json()["detail"] == "Payment record not found"

    forged = client.post(f"{API}/verify", json={
        "razorpay_order_id": order["orderId"],
        "razorpay_payment_id": "pay_1",
        "razorpay_signature": sign(order["orderId"], "pay_1", secret="wrong"),
    })
    assert forged.status_code == 400

    history = client.get(f"{API}/history").json()["data"]
    assert history["records"][0]["status"] == "failed"
    assert history["records"][0]["failure_reason"] == "Invalid payment signature"


def test_verify_requires_fields(client):
    response = client.post(f"{API}/verify", json={"razorpay_order_id": "order_1"})
    assert response.status_code == 422


def test_payment_failure_endpoint(client):
    order = upgrade(client).json()["data"]

    response = client.post(f"{API}/failure", json={"orderId": order["orderId"], "reason": "User closed checkout"})
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "failed"

    assert client.post(f"{API}/failure", json={"orderId": "order_unknown", "reason": "x"}).status_code == 404
    assert client.post(f"{API}/failure", json={"orderId": order["orderId"], "reason": "x" * 501}).status_code == 422


def test_payment_failure_on_someone_elses_order(client, as_user):
    order = upgrade(client).json()["data"]

    as_user(OTHER_USER_ID)
    response = client.post(f"{API}/failure", json={"orderId": order["orderId"], "reason": "User closed checkout"})
    assert response.status_code == 404

    as_user(USER_ID)
    assert client.get(f"{API}/history").json()["data"]["records"][0]["status"] == "pending"


def test_cancel(client, as_user):
    order = upgrade(client).json()["data"]

    as_user(OTHER_USER_ID)
    assert client.post(f"{API}/cancel/{order['orderId']}").status_code == 404

    as_user(USER_ID)
    response = client.post(f"{API}/cancel/{order['orderId']}")
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "cancelled"

    again = client.post(f"{API}/cancel/{order['orderId']}")
    assert again.status_code == 404
    assert again.json()["detail"] == "Pending payment not found"


def test_history_pagination_and_cap(client):
    for _ in range(12):
        upgrade(client)

    page = client.get(f"{API}/history", params={"page": 2, "limit": 5}).json()["data"]
    assert len(page["records"]) == 5
    assert page["pagination"] == {"currentPage": 2, "totalPages": 3, "totalItems": 12, "itemsPerPage": 5}

    capped = client.get(f"{API}/history", params={"limit": 500}).json()["data"]
    assert capped["pagination"]["itemsPerPage"] == 50

    assert client.get(f"{API}/history", params={"page": 0}).status_code == 422
    assert client.get(f"{API}/history", params={"status": "refunded"}).status_code == 422


def test_admin_endpoints_require_admin(client):
    assert client.get(f"{API}/admin/stats").status_code == 403
    assert client.get(f"{API}/admin/payments").status_code == 403


def test_admin_payments_and_stats(client, as_user):
    upgrade(client)
    as_user(OTHER_USER_ID)
    upgrade(client, "premium_yearly")

    as_user("admin-1", role="admin")
    stats = client.get(f"{API}/admin/stats").json()["data"]
    assert stats["totalPayments"] == 2
    assert stats["totalAmount"] == 99900 + 999900
    assert stats["pendingPayments"] == 2

    everyone = client.get(f"{API}/admin/payments").json()["data"]
    assert everyone["pagination"]["totalItems"] == 2
    assert everyone["pagination"]["itemsPerPage"] == 20

    yearly = client.get(f"{API}/admin/payments", params={"planType": "premium_yearly"}).json()["data"]
    assert [r["user_id"] for r in yearly["records"]] == [OTHER_USER_ID]

    one_user = client.get(f"{API}/admin/payments", params={"userId": USER_ID}).json()["data"]
    assert one_user["pagination"]["totalItems"] == 1

    bad_range = client.get(f"{API}/admin/payments", params={"minAmount": 500, "maxAmount": 100})
    assert bad_range.status_code == 422


def test_webhook_captured(client):
    order = upgrade(client).json()["data"]

    response = webhook(client, {
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": "pay_9", "order_id": order["orderId"]}}},
        "created_at": 1700000000,
    })
    assert response.status_code == 200
    assert response.json() == {"success": True, "data": {"processed": True, "paymentId": "pay_9"}}
    assert client.get(f"{API}/status").json()["data"]["user"]["isPremium"] is True


def test_webhook_unknown_event(client):
    response = webhook(client, {"event": "invoice.paid", "payload": {}})
    assert response.status_code == 200
    assert response.json()["data"] == {"processed": False, "event": "invoice.paid"}


def test_webhook_bad_signature_rejected(client):
    order = upgrade(client).json()["data"]
    response = webhook(client, {
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": "pay_9", "order_id": order["orderId"]}}},
    }, secret="forged")
    assert response.status_code == 400
    assert client.get(f"{API}/status").json()["data"]["user"]["isPremium"] is False


def test_webhook_malformed_body_is_acknowledged(client):
    body = b"{not json"
    response = client.post(f"{API}/webhook", content=body, headers={
        "X-Razorpay-Signature": compute_signature(body, WEBHOOK_SECRET),
    })
    assert response.status_code == 200
    assert response.json()["data"]["processed"] is False


def test_callback_form_post(client):
    order = upgrade(client).json()["data"]

    response = client.post("/", data={
        "razorpay_order_id": order["orderId"],
        "razorpay_payment_id": "pay_cb",
        "razorpay_signature": sign(order["orderId"], "pay_cb"),
    })
    assert response.status_code == 200
    assert response.json()["status"] == "verified"

    missing = client.post("/", data={"razorpay_order_id": order["orderId"]})
    assert missing.status_code == 400
