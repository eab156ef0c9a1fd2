from __future__ import annotations

from flask import request

from tutorpay.extensions import db
from tutorpay.models import User
from tutorpay.utils.jwt_utils import decode_token, get_bearer_token


def current_user() -> User | None:
    token = get_bearer_token(request.headers.get("Authorization", ""))
    if not token:
        return None
    payload = decode_token(token)
    if not payload or payload.get("type") != "access":
        return None
    sub = payload.get("sub")
    if not sub:
        return None
    try:
        uid = int(sub)
    except (TypeError, ValueError):
        return None
    return db.session.get(User, uid)


def is_admin(u: User | None) -> bool:
    return bool(u and u.is_admin)
