import os
import tempfile
from decimal import Decimal
from itertools import count
from unittest.mock import MagicMock

import pytest

from tutorpay import create_app, escrow
from tutorpay.extensions import db
from tutorpay.models import User, Wallet
from tutorpay.utils.jwt_utils import create_access_token
from tutorpay.utils.platform_settings import update_fee_settings

_emails = count(1)


@pytest.fixture
def app():
    """Create and configure a new app instance for each test."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "SECRET_KEY": "test-secret-key-0123456789",
        "UDDOKTAPAY_BASE_URL": "sandbox.gateway.test/",
        "UDDOKTAPAY_API_KEY": "test-api-key",
        "UDDOKTAPAY_WEBHOOK_API_KEY": "test-webhook-key",
        "GATEWAY_TIMEOUT_SECONDS": 5.0,
        "BACKEND_URL": "http://api.test",
        "FRONTEND_URL": "http://app.test",
        "PAYMENT_CURRENCY": "BDT",
        "PLATFORM_FEE_RATE": 0.0,
        "PLATFORM_USER_ID": "",
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make(role="student", name=None):
        n = next(_emails)
        u = User(name=name or f"{role.title()} {n}", email=f"{role}{n}@example.test", role=role)
        db.session.add(u)
        db.session.commit()
        return u

    return _make


@pytest.fixture
def student(make_user):
    return make_user("student")


@pytest.fixture
def tutor(make_user):
    return make_user("tutor")


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def platform(make_user):
    return make_user("platform")


@pytest.fixture
def auth_headers(app):
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(int(user.id))}"}

    return _headers


@pytest.fixture
def set_fees(app):
    def _set(rate, min_fee=0):
        return update_fee_settings(platform_fee_rate=rate, min_transaction_fee=min_fee)

    return _set


@pytest.fixture
def held_escrow(app, student, tutor, platform):
    """Factory for an escrow already funded through a confirmed payment."""
    refs = count(1)

    def _make(amount, assignment_id=None, tutor_user=None):
        n = next(refs)
        aid = assignment_id or f"asg-{n}"
        escrow.open_escrow(assignment_id=aid, student_id=student.id, tutor_id=(tutor_user or tutor).id, amount=amount)
        escrow.hold(assignment_id=aid, amount=amount, reference=f"INV-{aid}", source="test")
        return escrow.require_escrow(aid)

    return _make


@pytest.fixture
def balances(app):
    def _balances(user):
        w = Wallet.query.filter_by(user_id=int(user.id)).first()
        if w is None:
            return {"available": Decimal("0.00"), "escrow": Decimal("0.00"), "earnings": Decimal("0.00")}
        db.session.refresh(w)
        return {
            "available": Decimal(w.available_balance).quantize(Decimal("0.01")),
            "escrow": Decimal(w.escrow_balance).quantize(Decimal("0.01")),
            "earnings": Decimal(w.total_earnings).quantize(Decimal("0.01")),
        }

    return _balances


@pytest.fixture
def gateway_response():
    def _response(status_code=200, body=None):
        resp = MagicMock()
        resp.status_code = status_code
        resp.content = b"{}" if body is not None else b""
        resp.json.return_value = body if body is not None else {}
        return resp

    return _response
