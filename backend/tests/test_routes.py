from unittest.mock import patch

import requests

from tutorpay import escrow
from tutorpay.models import PaymentIntent
from tutorpay.utils.gateway_client import API_KEY_HEADER

POST = "tutorpay.utils.gateway_client.requests.post"


def _open(client, auth_headers, student, tutor, aid="asg-r1", amount=1000):
    r = client.post("/api/escrow", json={"assignment_id": aid, "tutor_id": tutor.id, "amount": amount}, headers=auth_headers(student))
    assert r.status_code == 201
    return r.get_json()["escrow"]


def _checkout_body(invoice):
    return {"status": "success", "payment_url": f"https://pay.test/checkout?invoice_id={invoice}"}


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.get_json()["db"] == "ok"


def test_endpoints_require_auth(client):
    assert client.get("/api/wallet").status_code == 401
    assert client.post("/api/payments/checkout", json={"assignment_id": "x"}).status_code == 401
    assert client.post("/api/admin/disputes/x/resolve", json={"resolution_type": "refund"}).status_code == 403


def test_full_payment_and_delivery_flow(client, auth_headers, student, tutor, platform, admin, gateway_response, set_fees):
    set_fees("0.05", 50)
    _open(client, auth_headers, student, tutor, amount=500)

    with patch(POST, return_value=gateway_response(200, _checkout_body("INV-R1"))):
        r = client.post("/api/payments/checkout", json={"assignment_id": "asg-r1"}, headers=auth_headers(student))
    assert r.status_code == 201
    assert r.get_json()["data"]["checkout_url"].endswith("invoice_id=INV-R1")

    verified = {"status": "COMPLETED", "amount": "500", "metadata": {"assignment_id": "asg-r1"}}
    with patch(POST, return_value=gateway_response(200, verified)):
        r = client.post("/api/payments/webhook", json={"invoice_id": "INV-R1"}, headers={API_KEY_HEADER: "test-webhook-key"})
    assert r.status_code == 200
    assert r.get_json()["data"]["applied"] is True

    r = client.post("/api/escrow/asg-r1/accept-delivery", headers=auth_headers(tutor))
    assert r.status_code == 403

    r = client.post("/api/escrow/asg-r1/accept-delivery", headers=auth_headers(student))
    assert r.status_code == 200
    assert r.get_json()["settlement"] == {
        "resolution_type": "release",
        "escrow_amount": 500.0,
        "student_amount": 0.0,
        "tutor_amount": 450.0,
        "platform_fee": 50.0,
    }

    wallet = client.get("/api/wallet", headers=auth_headers(tutor)).get_json()["wallet"]
    assert wallet["available_balance"] == 450.0
    assert wallet["total_earnings"] == 450.0

    entries = client.get("/api/wallet/ledger", headers=auth_headers(tutor)).get_json()
    assert [e["type"] for e in entries] == ["escrow_release"]


def test_checkout_only_by_assignment_student(client, auth_headers, student, tutor, make_user):
    _open(client, auth_headers, student, tutor)
    stranger = make_user("student")
    r = client.post("/api/payments/checkout", json={"assignment_id": "asg-r1"}, headers=auth_headers(stranger))
    assert r.status_code == 403


def test_checkout_idempotency_key_replays_response(client, auth_headers, student, tutor, gateway_response):
    _open(client, auth_headers, student, tutor)
    headers = {**auth_headers(student), "Idempotency-Key": "k-1"}
    with patch(POST, return_value=gateway_response(200, _checkout_body("INV-K1"))) as post:
        first = client.post("/api/payments/checkout", json={"assignment_id": "asg-r1"}, headers=headers)
        second = client.post("/api/payments/checkout", json={"assignment_id": "asg-r1"}, headers=headers)
        conflict = client.post("/api/payments/checkout", json={"assignment_id": "asg-r1", "amount": 5}, headers=headers)
    assert first.status_code == second.status_code == 201
    assert first.get_json() == second.get_json()
    assert conflict.status_code == 409
    assert post.call_count == 1
    assert PaymentIntent.query.count() == 1


def test_gateway_timeout_maps_to_504_retryable(client, auth_headers, student, tutor):
    _open(client, auth_headers, student, tutor)
    with patch(POST, side_effect=requests.Timeout("slow")):
        r = client.post("/api/payments/checkout", json={"assignment_id": "asg-r1"}, headers=auth_headers(student))
    assert r.status_code == 504
    body = r.get_json()
    assert body["status"] == "failed"
    assert body["retryable"] is True


def test_webhook_rejects_bad_key(client):
    r = client.post("/api/payments/webhook", json={"invoice_id": "INV-X"}, headers={API_KEY_HEADER: "wrong"})
    assert r.status_code == 401
    assert r.get_json()["code"] == "WEBHOOK_UNAUTHORIZED"


def test_verify_requires_invoice(client):
    r = client.get("/api/payments/verify")
    assert r.status_code == 400


def test_callback_redirects_to_frontend(client, auth_headers, student, tutor, gateway_response):
    _open(client, auth_headers, student, tutor)
    with patch(POST, return_value=gateway_response(200, _checkout_body("INV-C1"))):
        client.post("/api/payments/checkout", json={"assignment_id": "asg-r1"}, headers=auth_headers(student))
    verified = {"status": "pending", "metadata": {"assignment_id": "asg-r1"}}
    with patch(POST, return_value=gateway_response(200, verified)):
        r = client.get("/api/payments/callback?invoice_id=INV-C1&assignment_id=asg-r1")
    assert r.status_code == 302
    assert r.headers["Location"] == "http://app.test/user/assignments/view-details/asg-r1?payment=pending&invoice_id=INV-C1"

    r = client.get("/api/payments/cancel?invoice_id=INV-C1&assignment_id=asg-r1")
    assert r.status_code == 302
    assert "payment=cancelled" in r.headers["Location"]


def test_admin_dispute_detail_and_resolution(client, auth_headers, admin, student, held_escrow, set_fees):
    set_fees("0.1", 20)
    record = held_escrow(1000)
    aid = record.assignment_id

    r = client.get(f"/api/admin/disputes/{aid}", headers=auth_headers(admin))
    body = r.get_json()
    assert body["financially_actionable"] is True
    assert body["escrow_amount"] == 1000.0
    assert body["previews"]["split"]["student_amount"] == 500.0

    r = client.get(f"/api/admin/disputes/{aid}?resolution_type=split&student_percent=30", headers=auth_headers(admin))
    assert r.get_json()["preview"]["tutor_amount"] == 630.0

    r = client.post(f"/api/admin/disputes/{aid}/resolve", json={"resolution_type": "split", "student_percent": 30}, headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.get_json()["data"]["platform_fee"] == 70.0

    r = client.post(f"/api/admin/disputes/{aid}/resolve", json={"resolution_type": "refund"}, headers=auth_headers(admin))
    assert r.status_code == 409
    assert r.get_json()["code"] == "ESCROW_NOT_HELD"
    assert "already" in r.get_json()["message"]

    r = client.post(f"/api/admin/disputes/{aid}/resolve", json={"resolution_type": "bogus"}, headers=auth_headers(admin))
    assert r.status_code == 400

    assert client.post(f"/api/admin/disputes/{aid}/resolve", json={"resolution_type": "refund"}, headers=auth_headers(student)).status_code == 403


def test_unknown_dispute_is_404(client, auth_headers, admin):
    r = client.post("/api/admin/disputes/missing/resolve", json={"resolution_type": "refund"}, headers=auth_headers(admin))
    assert r.status_code == 404


def test_admin_cancel_refunds_held_escrow(client, auth_headers, admin, student, held_escrow):
    record = held_escrow(300)
    r = client.post(f"/api/escrow/{record.assignment_id}/cancel", json={"reason": "tutor unavailable"}, headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.get_json()["settlement"]["student_amount"] == 300.0
    assert escrow.require_escrow(record.assignment_id).state == "refunded"


def test_fee_settings_round_trip(client, auth_headers, admin, student):
    assert client.get("/api/admin/settings/fees", headers=auth_headers(student)).status_code == 403
    r = client.put("/api/admin/settings/fees", json={"platform_fee_rate": 0.12, "min_transaction_fee": 15}, headers=auth_headers(admin))
    assert r.status_code == 200
    settings = client.get("/api/admin/settings/fees", headers=auth_headers(admin)).get_json()["settings"]
    assert settings["platform_fee_rate"] == 0.12
    assert settings["min_transaction_fee"] == 15.0
    assert client.put("/api/admin/settings/fees", json={"platform_fee_rate": 2}, headers=auth_headers(admin)).status_code == 400


def test_withdrawal_endpoints(client, auth_headers, admin, tutor, student, held_escrow):
    escrow.release(held_escrow(400, tutor_user=tutor))
    bank = {
        "account_name": "Tutor",
        "account_number": "99887766",
        "bank_name": "BRAC Bank",
        "branch_name": "Dhanmondi",
        "routing_number": "060261234",
    }
    r = client.post("/api/wallet/withdrawals", json={"amount": 150, "bank_details": bank}, headers=auth_headers(tutor))
    assert r.status_code == 201
    body = r.get_json()
    assert body["wallet"]["available_balance"] == 250.0
    assert body["withdrawal"]["account_last4"] == "7766"
    txn = body["withdrawal"]["transaction_id"]

    assert client.post("/api/wallet/withdrawals", json={"amount": 150, "bank_details": bank}, headers=auth_headers(student)).status_code == 403
    assert client.post(f"/api/admin/withdrawals/{txn}/complete", headers=auth_headers(tutor)).status_code == 403

    pending = client.get("/api/admin/withdrawals", headers=auth_headers(admin)).get_json()
    assert [w["transaction_id"] for w in pending] == [txn]

    r = client.post(f"/api/admin/withdrawals/{txn}/complete", headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.get_json()["withdrawal"]["status"] == "COMPLETED"
    assert client.post(f"/api/admin/withdrawals/{txn}/complete", headers=auth_headers(admin)).status_code == 409


def test_reconcile_endpoint(client, auth_headers, admin, held_escrow):
    held_escrow(50)
    assert client.post("/api/admin/reconcile", headers=auth_headers(admin)).get_json()["anomalies"] == 0
