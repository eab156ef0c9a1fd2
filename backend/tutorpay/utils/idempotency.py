from __future__ import annotations

import hashlib
import json
from typing import Any

from flask import request
from sqlalchemy.exc import IntegrityError

from tutorpay.extensions import db
from tutorpay.models import IdempotencyKey


def _hash_request(payload: Any) -> str:
    raw = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def get_idempotency_key() -> str | None:
    k = request.headers.get("Idempotency-Key") or request.headers.get("X-Idempotency-Key")
    if not k or not k.strip():
        return None
    return k.strip()[:128]


def _replay(row: IdempotencyKey, request_hash: str):
    if row.request_hash and row.request_hash != request_hash:
        return ("conflict", {"status": "failed", "code": "IDEMPOTENCY_CONFLICT", "message": "Idempotency key reuse with different payload"}, 409)
    if not row.completed:
        return ("conflict", {"status": "failed", "code": "IDEMPOTENCY_IN_PROGRESS", "message": "A request with this key is still in progress"}, 409)
    return ("hit", json.loads(row.response_json or "{}"), int(row.status_code))


def lookup_response(user_id: int | None, route: str, payload: Any):
    """Returns None without a key, else ("hit"|"conflict", body, status) or ("miss", row, 0)."""
    k = get_idempotency_key()
    if not k:
        return None

    rh = _hash_request({"route": route, "payload": payload})
    row = IdempotencyKey.query.filter_by(user_id=user_id, key=k).first()
    if row:
        return _replay(row, rh)

    row = IdempotencyKey(key=k, user_id=int(user_id) if user_id is not None else None, route=route, request_hash=rh)
    try:
        db.session.add(row)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        row = IdempotencyKey.query.filter_by(user_id=user_id, key=k).first()
        if not row:
            raise
        return _replay(row, rh)
    return ("miss", row, 0)


def store_response(row: IdempotencyKey, response_json: Any, status_code: int) -> None:
    row.response_json = json.dumps(response_json, default=str)
    row.status_code = int(status_code)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def release_key(row: IdempotencyKey) -> None:
    """Forget a key whose request failed, so the client can retry with it."""
    try:
        db.session.delete(row)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
