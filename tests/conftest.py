import hashlib
import hmac
import json
import os
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# Must be set before the app (and its engine) is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTH_JWT_SECRET"] = "test-secret"
os.environ["AUTH_JWT_AUDIENCE"] = "authenticated"
os.environ["WAVE_WEBHOOK_SECRET"] = "wave-webhook-secret"
os.environ["RESEND_API_KEY"] = ""

import httpx
import jwt
import pytest
from fastapi.testclient import TestClient

from app.db.base import Base
from app.db.session import SessionLocal, engine, get_db
from app.dependencies.wave import get_wave_client_factory
from app.main import app
from app.models import Invoice, User
from app.services.documents import next_invoice_number
from app.services.wave_client import WaveClient


class FakeWave:
    """Scripted stand-in for the Wave API, served through httpx.MockTransport."""

    def __init__(self):
        self.sessions = {}
        self.expired = []
        self.payouts = {}
        self.reverse_calls = []
        self.checkout_error = None  # (status_code, body) returned by the next checkout creations
        self.reverse_error = None
        self.reverse_body = b""  # raw body of a successful reversal reply
        self.reverse_crash = False  # reverse at Wave, then lose the connection
        self.payout_error = None
        self.payout_requests = []
        self._counter = 0

    def add_payout(self, payout_id, status="succeeded", age=timedelta(hours=1), receive_amount="10000", fee="100"):
        timestamp = datetime.now(timezone.utc) - age
        self.payouts[payout_id] = {
            "id": payout_id,
            "currency": "XOF",
            "receive_amount": receive_amount,
            "fee": fee,
            "mobile": "+221761110001",
            "status": status,
            "timestamp": timestamp.isoformat().replace("+00:00", "Z"),
        }
        return self.payouts[payout_id]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path

        if request.method == "POST" and path == "/v1/checkout/sessions":
            if self.checkout_error:
                status_code, body = self.checkout_error
                return httpx.Response(status_code, json=body)
            payload = json.loads(request.content)
            self._counter += 1
            checkout_id = f"cos-{self._counter}"
            session = {
                "id": checkout_id,
                "wave_launch_url": f"https://pay.wave.com/c/{checkout_id}",
                "checkout_status": "open",
                **payload,
            }
            self.sessions[checkout_id] = session
            return httpx.Response(200, json=session)

        match = re.fullmatch(r"/v1/checkout/sessions/([^/]+)/expire", path)
        if match and request.method == "POST":
            checkout_id = match.group(1)
            if checkout_id not in self.sessions:
                return httpx.Response(404, json={"message": "Checkout session not found"})
            self.expired.append(checkout_id)
            self.sessions[checkout_id]["checkout_status"] = "expired"
            return httpx.Response(200, content=b"")

        if request.method == "POST" and path == "/v1/payout":
            self.payout_requests.append((request.headers.get("Idempotency-Key"), json.loads(request.content)))
            if self.payout_error:
                return httpx.Response(400, json={"error_code": self.payout_error, "message": self.payout_error})
            payload = json.loads(request.content)
            self._counter += 1
            payout = self.add_payout(
                f"pt-{self._counter:03d}",
                age=timedelta(0),
                receive_amount=payload["receive_amount"],
                fee="150",
            )
            return httpx.Response(200, json={**payout, "mobile": payload["mobile"]})

        match = re.fullmatch(r"/v1/payout/([^/]+)/reverse", path)
        if match and request.method == "POST":
            payout_id = match.group(1)
            self.reverse_calls.append(payout_id)
            if self.reverse_error:
                return httpx.Response(400, json={"error_code": self.reverse_error, "message": self.reverse_error})
            self.payouts[payout_id]["status"] = "reversed"
            if self.reverse_crash:
                raise RuntimeError("connection reset after the reversal was applied")
            return httpx.Response(200, content=self.reverse_body)

        match = re.fullmatch(r"/v1/payout/([^/]+)", path)
        if match and request.method == "GET":
            payout = self.payouts.get(match.group(1))
            if payout is None:
                return httpx.Response(404, json={"error_code": "not-found", "message": "Payout not found"})
            return httpx.Response(200, json=payout)

        return httpx.Response(404, json={"message": f"No route for {request.method} {path}"})


@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def fake_wave():
    return FakeWave()


@pytest.fixture()
def wave_factory(fake_wave):
    def _factory(api_key):
        return WaveClient(api_key, transport=httpx.MockTransport(fake_wave.handler))
    return _factory


@pytest.fixture()
def client(db, wave_factory):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_wave_client_factory] = lambda: wave_factory
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def user(db):
    owner = User(
        email="awa@example.com",
        auth_subject="sub-awa",
        first_name="Awa",
        currency="FCFA",
        wave_api_key="wave_sn_prod_test",
    )
    db.add(owner)
    db.commit()
    db.refresh(owner)
    return owner


@pytest.fixture()
def other_user(db):
    someone = User(email="moussa@example.com", auth_subject="sub-moussa", wave_api_key="wave_sn_prod_other")
    db.add(someone)
    db.commit()
    db.refresh(someone)
    return someone


@pytest.fixture()
def token_for():
    def _token(sub, email, secret="test-secret", audience="authenticated", expires_in=3600):
        now = datetime.now(timezone.utc)
        claims = {
            "sub": sub,
            "email": email,
            "aud": audience,
            "iat": now,
            "exp": now + timedelta(seconds=expires_in),
        }
        return jwt.encode(claims, secret, algorithm="HS256")
    return _token


@pytest.fixture()
def auth_headers(user, token_for):
    return {"Authorization": f"Bearer {token_for(user.auth_subject, user.email)}"}


@pytest.fixture()
def other_headers(other_user, token_for):
    return {"Authorization": f"Bearer {token_for(other_user.auth_subject, other_user.email)}"}


@pytest.fixture()
def make_document(db, user):
    def _make(doc_type="PROFORMA", status="PENDING", amount="100000", owner=None, **fields):
        owner = owner or user
        document = Invoice(
            user_id=owner.id,
            invoice_number=next_invoice_number(db, owner.id, doc_type),
            type=doc_type,
            status=status,
            amount=Decimal(amount),
            **fields,
        )
        db.add(document)
        db.commit()
        db.refresh(document)
        return document
    return _make


@pytest.fixture()
def sign_webhook():
    def _sign(body: bytes, secret="wave-webhook-secret"):
        return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return _sign
