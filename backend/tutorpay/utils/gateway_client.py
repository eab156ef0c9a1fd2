from __future__ import annotations

import hashlib
import hmac
from typing import Any
from urllib.parse import parse_qs, urlparse

import requests
from flask import current_app

from tutorpay.errors import GatewayNotConfiguredError, GatewayTimeoutError, GatewayUnavailableError

API_KEY_HEADER = "RT-UDDOKTAPAY-API-KEY"

CHECKOUT_PATH = "/api/checkout-v2"
VERIFY_PATH = "/api/verify-payment"

_STATUS_ALIASES = {
    "completed": "completed",
    "paid": "completed",
    "success": "completed",
    "succeeded": "completed",
    "pending": "pending",
    "processing": "pending",
    "failed": "failed",
    "error": "failed",
    "declined": "failed",
    "cancelled": "cancelled",
    "canceled": "cancelled",
    "refunded": "refunded",
}


def normalize_base_url(value: str | None) -> str:
    raw = (value or "").strip()
    if not raw:
        return ""
    if not raw.startswith(("http://", "https://")):
        raw = f"https://{raw}"
    return raw.rstrip("/")


def _api_key() -> str:
    return (current_app.config.get("UDDOKTAPAY_API_KEY") or "").strip()


def _webhook_key() -> str:
    return (current_app.config.get("UDDOKTAPAY_WEBHOOK_API_KEY") or "").strip() or _api_key()


def _post(path: str, payload: dict) -> dict:
    base = normalize_base_url(current_app.config.get("UDDOKTAPAY_BASE_URL"))
    key = _api_key()
    if not base or not key:
        raise GatewayNotConfiguredError("Payment gateway is not configured")

    url = f"{base}{path}"
    headers = {
        API_KEY_HEADER: key,
        "Accept": "application/json",
        "Content-Type": "application/json",
    }
    timeout = float(current_app.config.get("GATEWAY_TIMEOUT_SECONDS") or 30.0)
    try:
        r = requests.post(url, headers=headers, json=payload, timeout=timeout)
    except requests.Timeout:
        current_app.logger.warning("Gateway timeout after %ss calling %s", timeout, path)
        raise GatewayTimeoutError("Payment gateway did not respond in time") from None
    except requests.RequestException as e:
        current_app.logger.warning("Gateway request to %s failed: %s", path, e)
        raise GatewayUnavailableError("Payment gateway is unavailable") from e

    try:
        j = r.json() if r.content else {}
    except ValueError:
        j = {}
    if not isinstance(j, dict):
        j = {"data": j}
    if not (200 <= r.status_code < 300):
        message = j.get("message") or j.get("error") or f"HTTP {r.status_code}"
        current_app.logger.warning("Gateway %s returned %s: %s", path, r.status_code, message)
        raise GatewayUnavailableError(str(message))
    return j


def create_checkout(payload: dict) -> dict:
    return _post(CHECKOUT_PATH, payload)


def verify_payment(invoice_id: str) -> dict:
    return _post(VERIFY_PATH, {"invoice_id": invoice_id})


def normalize_payment_status(value: Any) -> str:
    if value is True:
        return "completed"
    if value is False:
        return "failed"
    if not isinstance(value, str):
        return "unknown"
    return _STATUS_ALIASES.get(value.strip().lower(), "unknown")


def is_successful_checkout_response(resp: dict | None) -> bool:
    status = (resp or {}).get("status")
    if isinstance(status, bool):
        return status
    return str(status or "").strip().lower() in ("success", "true", "1")


def _invoice_from_url(value: str) -> str:
    try:
        qs = parse_qs(urlparse(value).query)
    except ValueError:
        return ""
    for key in ("invoice_id", "invoiceId"):
        if qs.get(key):
            return qs[key][0].strip()
    return ""


def extract_invoice_id(value: Any) -> str:
    """Pull an invoice id out of a raw id, a checkout URL, or a gateway response body."""
    if value is None:
        return ""
    if isinstance(value, str):
        raw = value.strip()
        if raw.startswith(("http://", "https://")):
            return _invoice_from_url(raw)
        return raw
    if isinstance(value, dict):
        for key in ("invoice_id", "invoiceId"):
            direct = value.get(key)
            if isinstance(direct, (str, int)) and str(direct).strip():
                return str(direct).strip()
        url = value.get("payment_url")
        if isinstance(url, str) and url.strip():
            found = _invoice_from_url(url.strip())
            if found:
                return found
        data = value.get("data")
        if data is not None and data is not value:
            return extract_invoice_id(data)
    return ""


def is_valid_webhook_request(headers) -> bool:
    expected = _webhook_key()
    received = (headers.get(API_KEY_HEADER) or "").strip() if headers is not None else ""
    # equal-length digests; compare_digest on raw keys is length-dependent.
    # A missing key goes through the same comparison as a wrong one.
    matches = hmac.compare_digest(
        hashlib.sha256(received.encode("utf-8")).digest(),
        hashlib.sha256(expected.encode("utf-8")).digest(),
    )
    return matches and bool(expected and received)
