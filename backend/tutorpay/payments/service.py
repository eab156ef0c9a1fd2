"""Gateway checkout and payment reconciliation.

Network calls to the gateway always happen outside any open database
transaction. A verified completed payment is handed to ``escrow.hold`` which
applies it at most once per invoice id.
"""

from __future__ import annotations

import json
from datetime import datetime
from urllib.parse import urlencode

from flask import current_app

from tutorpay import escrow
from tutorpay.errors import (
    EscrowNotFoundError,
    GatewayUnavailableError,
    InvalidAmountError,
    InvalidReferenceError,
    InvalidTransitionError,
    WebhookAuthenticationError,
)
from tutorpay.extensions import db
from tutorpay.models import EscrowRecord, PaymentIntent, User
from tutorpay.models.escrow_record import UNPAID
from tutorpay.utils import gateway_client, ledger
from tutorpay.utils.money import positive_money, to_decimal

PROVIDER = "uddoktapay"


def _backend_url() -> str:
    return (current_app.config.get("BACKEND_URL") or "").rstrip("/")


def frontend_redirect_url(assignment_id: str | None, payment_state: str | None, invoice_id: str | None = None) -> str:
    base = (current_app.config.get("FRONTEND_URL") or "").rstrip("/")
    path = f"/user/assignments/view-details/{assignment_id}" if assignment_id else "/user/assignments"
    params = {}
    if payment_state:
        params["payment"] = payment_state
    if invoice_id:
        params["invoice_id"] = invoice_id
    return f"{base}{path}" + (f"?{urlencode(params)}" if params else "")


def create_checkout(record: EscrowRecord, payer: User, *, amount=None, method: str = "") -> dict:
    if record.state != UNPAID:
        raise InvalidTransitionError("Payment has already been completed", state=record.state)
    if not record.tutor_id:
        raise InvalidTransitionError("Please accept a proposal before paying", state=record.state)
    amt = positive_money(amount if amount not in (None, "") else record.amount)
    currency = current_app.config.get("PAYMENT_CURRENCY", "BDT")

    backend = _backend_url()
    query = urlencode({"assignment_id": record.assignment_id})
    payload = {
        "full_name": payer.name or "Student",
        "email": payer.email or "",
        "amount": float(amt),
        "currency": currency,
        "metadata": {
            "assignment_id": record.assignment_id,
            "student_id": str(record.student_id),
            "method": (method or "").strip() or PROVIDER,
            "currency": currency,
        },
        "redirect_url": f"{backend}/api/payments/callback?{query}",
        "cancel_url": f"{backend}/api/payments/cancel?{query}",
        "webhook_url": f"{backend}/api/payments/webhook",
        "return_type": "GET",
    }

    resp = gateway_client.create_checkout(payload)
    checkout_url = str(resp.get("payment_url") or "").strip()
    if not gateway_client.is_successful_checkout_response(resp) or not checkout_url:
        raise GatewayUnavailableError(str(resp.get("message") or "Unable to initialize payment"))

    invoice_id = (
        gateway_client.extract_invoice_id(resp.get("invoice_id"))
        or gateway_client.extract_invoice_id(resp.get("data"))
        or gateway_client.extract_invoice_id(checkout_url)
    )
    if not invoice_id:
        raise GatewayUnavailableError("Gateway did not return an invoice id")

    intent = PaymentIntent(
        user_id=int(payer.id),
        assignment_id=record.assignment_id,
        provider=PROVIDER,
        reference=invoice_id,
        amount=amt,
        currency=currency,
        checkout_url=checkout_url,
        status="pending",
        meta=json.dumps({"method": payload["metadata"]["method"]}),
    )
    try:
        db.session.add(intent)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Checkout created assignment=%s invoice=%s amount=%s", record.assignment_id, invoice_id, amt)
    return {
        "assignment_id": record.assignment_id,
        "invoice_id": invoice_id,
        "checkout_url": checkout_url,
        "amount": float(amt),
        "currency": currency,
        "payment_status": "pending",
    }


def _assignment_for(invoice_id: str, verify_data: dict) -> tuple[str | None, PaymentIntent | None]:
    meta = verify_data.get("metadata")
    meta = meta if isinstance(meta, dict) else {}
    intent = PaymentIntent.query.filter_by(reference=invoice_id).first()
    aid = str(meta.get("assignment_id") or meta.get("assignmentId") or "").strip()
    if not aid and intent:
        aid = intent.assignment_id
    return (aid or None), intent


def _verified_amount(verify_data: dict, intent: PaymentIntent | None, record: EscrowRecord | None):
    for candidate in (verify_data.get("amount"), intent.amount if intent else None, record.amount if record else None):
        if candidate in (None, ""):
            continue
        try:
            value = to_decimal(candidate)
        except InvalidAmountError:
            continue
        if value > 0:
            return value
    return None


def verify_and_apply(invoice_id: str, *, source: str = "manual_verify") -> dict:
    ref = gateway_client.extract_invoice_id(invoice_id)
    if not ref:
        raise InvalidReferenceError("Invoice ID is required")

    prior = ledger.find_by_gateway_reference(ref)
    if prior:
        return {"assignment_id": prior.related_assignment_id, "payment_state": "completed", "applied": False, "replayed": True}

    data = gateway_client.verify_payment(ref)
    payment_state = gateway_client.normalize_payment_status(data.get("status"))
    assignment_id, intent = _assignment_for(ref, data)
    if not assignment_id:
        raise EscrowNotFoundError("Unable to map invoice to assignment")
    record = escrow.get_escrow(assignment_id)

    if payment_state == "completed":
        amount = _verified_amount(data, intent, record)
        if amount is None:
            current_app.logger.warning("Completed payment %s carried no usable amount", ref)
            return {"assignment_id": assignment_id, "payment_state": "failed", "applied": False, "replayed": False}
        result = escrow.hold(
            assignment_id=assignment_id,
            amount=amount,
            reference=ref,
            student_id=intent.user_id if intent else None,
            source=source,
        )
        return {
            "assignment_id": assignment_id,
            "payment_state": payment_state,
            "applied": result["applied"],
            "replayed": result["replayed"],
            "already_paid": result["already_paid"],
            "needs_refund": result["needs_refund"],
        }

    if intent and intent.status == "pending" and payment_state in ("failed", "cancelled", "refunded"):
        intent.status = payment_state
        intent.verified_at = datetime.utcnow()
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
    current_app.logger.info("Payment %s for assignment %s is %s (source=%s)", ref, assignment_id, payment_state, source)
    return {"assignment_id": assignment_id, "payment_state": payment_state, "applied": False, "replayed": False}


def handle_webhook(headers, payload: dict | None) -> dict:
    if not gateway_client.is_valid_webhook_request(headers):
        current_app.logger.warning("Rejected webhook with missing or invalid API key")
        raise WebhookAuthenticationError("Invalid webhook signature")
    payload = payload or {}
    invoice_id = (
        gateway_client.extract_invoice_id(payload.get("invoice_id"))
        or gateway_client.extract_invoice_id(payload.get("invoiceId"))
        or gateway_client.extract_invoice_id(payload.get("data"))
    )
    if not invoice_id:
        raise InvalidReferenceError("Invoice ID missing in webhook payload")
    # The body is only a hint; the gateway is asked again for the real status.
    return verify_and_apply(invoice_id, source="gateway_webhook")


def mark_cancelled(invoice_id: str | None, assignment_id: str | None = None) -> str | None:
    """Mark a pending checkout as cancelled by the payer. Returns the assignment id if known."""
    ref = gateway_client.extract_invoice_id(invoice_id)
    if not ref:
        return assignment_id
    q = PaymentIntent.query.filter_by(reference=ref, status="pending")
    if assignment_id:
        q = q.filter_by(assignment_id=str(assignment_id))
    intent = q.first()
    if not intent:
        found = PaymentIntent.query.filter_by(reference=ref).first()
        return assignment_id or (found.assignment_id if found else None)
    intent.status = "cancelled"
    intent.verified_at = datetime.utcnow()
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    current_app.logger.info("Checkout %s cancelled by payer", ref)
    return intent.assignment_id
