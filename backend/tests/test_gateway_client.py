import hmac
from unittest.mock import patch

import pytest
import requests

from tutorpay.errors import GatewayNotConfiguredError, GatewayTimeoutError, GatewayUnavailableError
from tutorpay.utils import gateway_client as gc


@pytest.mark.parametrize("raw, expected", [
    ("COMPLETED", "completed"),
    (" paid ", "completed"),
    ("Success", "completed"),
    ("succeeded", "completed"),
    ("processing", "pending"),
    ("declined", "failed"),
    ("error", "failed"),
    ("canceled", "cancelled"),
    ("refunded", "refunded"),
    ("chargeback", "unknown"),
    ("", "unknown"),
    (None, "unknown"),
    (True, "completed"),
    (False, "failed"),
    (1, "unknown"),
])
def test_status_vocabulary_is_closed(raw, expected):
    assert gc.normalize_payment_status(raw) == expected


@pytest.mark.parametrize("value, expected", [
    ("abc123", "abc123"),
    ("https://pay.test/checkout?invoice_id=INV9", "INV9"),
    ("https://pay.test/checkout?invoiceId=INV8", "INV8"),
    ({"invoice_id": "INV7"}, "INV7"),
    ({"payment_url": "https://pay.test/p?invoice_id=INV6"}, "INV6"),
    ({"data": {"invoiceId": "INV5"}}, "INV5"),
    ({"nothing": True}, ""),
    (None, ""),
])
def test_extract_invoice_id(value, expected):
    assert gc.extract_invoice_id(value) == expected


def test_normalize_base_url():
    assert gc.normalize_base_url("pay.example.com//") == "https://pay.example.com"
    assert gc.normalize_base_url("http://localhost:8000/") == "http://localhost:8000"
    assert gc.normalize_base_url("  ") == ""


@pytest.mark.parametrize("resp, ok", [
    ({"status": True}, True),
    ({"status": "success"}, True),
    ({"status": "1"}, True),
    ({"status": False}, False),
    ({"status": "error"}, False),
    ({}, False),
])
def test_checkout_success_detection(resp, ok):
    assert gc.is_successful_checkout_response(resp) is ok


def test_verify_posts_invoice_with_api_key_and_timeout(app, gateway_response):
    with patch("tutorpay.utils.gateway_client.requests.post", return_value=gateway_response(200, {"status": "COMPLETED"})) as post:
        data = gc.verify_payment("INV-1")
    assert data["status"] == "COMPLETED"
    args, kwargs = post.call_args
    assert args[0] == "https://sandbox.gateway.test/api/verify-payment"
    assert kwargs["json"] == {"invoice_id": "INV-1"}
    assert kwargs["headers"][gc.API_KEY_HEADER] == "test-api-key"
    assert kwargs["timeout"] == 5.0


def test_timeout_is_retryable(app):
    with patch("tutorpay.utils.gateway_client.requests.post", side_effect=requests.Timeout("slow")):
        with pytest.raises(GatewayTimeoutError) as exc:
            gc.verify_payment("INV-1")
    assert exc.value.retryable is True
    assert exc.value.status_code == 504


def test_connection_errors_and_bad_status_are_unavailable(app, gateway_response):
    with patch("tutorpay.utils.gateway_client.requests.post", side_effect=requests.ConnectionError("down")):
        with pytest.raises(GatewayUnavailableError):
            gc.verify_payment("INV-1")
    with patch("tutorpay.utils.gateway_client.requests.post", return_value=gateway_response(503, {"message": "maintenance"})):
        with pytest.raises(GatewayUnavailableError, match="maintenance"):
            gc.create_checkout({"amount": 10})


def test_unconfigured_gateway_is_not_called(app):
    app.config["UDDOKTAPAY_API_KEY"] = ""
    with patch("tutorpay.utils.gateway_client.requests.post") as post:
        with pytest.raises(GatewayNotConfiguredError):
            gc.verify_payment("INV-1")
    post.assert_not_called()


def test_webhook_key_check(app):
    assert gc.is_valid_webhook_request({gc.API_KEY_HEADER: "test-webhook-key"}) is True
    assert gc.is_valid_webhook_request({gc.API_KEY_HEADER: "test-api-key"}) is False
    assert gc.is_valid_webhook_request({}) is False


def test_webhook_key_falls_back_to_api_key(app):
    app.config["UDDOKTAPAY_WEBHOOK_API_KEY"] = ""
    assert gc.is_valid_webhook_request({gc.API_KEY_HEADER: "test-api-key"}) is True


def test_missing_webhook_key_is_compared_like_a_wrong_one(app):
    with patch("tutorpay.utils.gateway_client.hmac.compare_digest", wraps=hmac.compare_digest) as cmp:
        assert gc.is_valid_webhook_request({}) is False
        assert gc.is_valid_webhook_request({gc.API_KEY_HEADER: "wrong"}) is False
    assert cmp.call_count == 2


def test_unconfigured_webhook_key_rejects_empty_header(app):
    app.config["UDDOKTAPAY_WEBHOOK_API_KEY"] = ""
    app.config["UDDOKTAPAY_API_KEY"] = ""
    assert gc.is_valid_webhook_request({gc.API_KEY_HEADER: ""}) is False
