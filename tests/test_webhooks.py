import json
from decimal import Decimal

import pytest

from app.models import Expense, Project


def _post(client, sign_webhook, event):
    body = json.dumps(event).encode()
    return client.post(
        "/webhooks/wave",
        content=body,
        headers={"Content-Type": "application/json", "X-Wave-Signature": sign_webhook(body)},
    )


@pytest.fixture()
def project(db, user):
    project = Project(user_id=user.id, name="Site vitrine")
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


class TestWaveWebhook:
    def test_completed_checkout_marks_invoice_paid(self, client, db, sign_webhook, make_document, project):
        invoice = make_document(doc_type="INVOICE", amount="50000", wave_checkout_id="cos-42", project_id=project.id)

        response = _post(client, sign_webhook, {
            "id": "EV_1",
            "type": "checkout.session.completed",
            "data": {
                "id": "cos-42",
                "client_reference": invoice.invoice_number,
                "amount": "50000",
                "currency": "XOF",
                "when_completed": "2024-03-10T09:15:00Z",
            },
        })

        assert response.status_code == 200
        assert response.json()["handled"] is True
        db.refresh(invoice)
        assert invoice.status == "PAID"
        assert invoice.payment_method == "WAVE"
        assert str(invoice.paid_date) == "2024-03-10"
        received = db.query(Expense).filter(Expense.category == "PAYMENT_RECEIVED").one()
        assert received.amount == Decimal("50000")
        assert received.project_id == project.id

    def test_replayed_event_is_acknowledged_once(self, client, db, sign_webhook, make_document, project):
        invoice = make_document(doc_type="INVOICE", wave_checkout_id="cos-43", project_id=project.id)
        event = {"type": "payment.completed", "data": {"id": "cos-43", "amount": "100000"}}

        _post(client, sign_webhook, event)
        response = _post(client, sign_webhook, event)

        assert response.status_code == 200
        assert response.json()["alreadyPaid"] is True
        assert db.query(Expense).filter(Expense.category == "PAYMENT_RECEIVED").count() == 1

    def test_match_by_invoice_number(self, client, db, sign_webhook, make_document):
        invoice = make_document(doc_type="INVOICE")

        _post(client, sign_webhook, {
            "type": "payment.success",
            "data": {"id": "cos-77", "client_reference": invoice.invoice_number},
        })

        db.refresh(invoice)
        assert invoice.status == "PAID"
        assert invoice.wave_checkout_id == "cos-77"

    def test_failed_payment_marks_overdue(self, client, db, sign_webhook, make_document):
        invoice = make_document(doc_type="INVOICE", wave_checkout_id="cos-44")

        _post(client, sign_webhook, {"type": "payment.failed", "data": {"id": "cos-44"}})

        db.refresh(invoice)
        assert invoice.status == "OVERDUE"

    def test_cancelled_payment_marks_cancelled(self, client, db, sign_webhook, make_document):
        invoice = make_document(doc_type="INVOICE", wave_checkout_id="cos-45")

        _post(client, sign_webhook, {"type": "payment.cancelled", "data": {"id": "cos-45"}})

        db.refresh(invoice)
        assert invoice.status == "CANCELLED"

    def test_failure_does_not_touch_paid_invoice(self, client, db, sign_webhook, make_document):
        invoice = make_document(doc_type="INVOICE", status="PAID", wave_checkout_id="cos-46")

        _post(client, sign_webhook, {"type": "payment.failed", "data": {"id": "cos-46"}})

        db.refresh(invoice)
        assert invoice.status == "PAID"

    def test_invalid_signature(self, client, db, sign_webhook, make_document):
        invoice = make_document(doc_type="INVOICE", wave_checkout_id="cos-47")
        body = json.dumps({"type": "payment.completed", "data": {"id": "cos-47"}}).encode()

        response = client.post(
            "/webhooks/wave",
            content=body,
            headers={"X-Wave-Signature": sign_webhook(body, secret="not-the-secret")},
        )

        assert response.status_code == 400
        assert response.json() == {"message": "Signature invalide"}
        db.refresh(invoice)
        assert invoice.status == "PENDING"

    def test_unknown_event_is_acknowledged(self, client, sign_webhook):
        response = _post(client, sign_webhook, {"type": "merchant.payment_received", "data": {}})

        assert response.status_code == 200
        assert response.json()["handled"] is False

    def test_unknown_checkout(self, client, sign_webhook):
        response = _post(client, sign_webhook, {"type": "payment.completed", "data": {"id": "cos-nope"}})

        assert response.status_code == 200
        assert response.json() == {"received": True, "handled": False, "reason": "invoice_not_found"}

    def test_signed_body_that_is_not_an_object(self, client, sign_webhook):
        body = b'["checkout.session.completed"]'

        response = client.post(
            "/webhooks/wave",
            content=body,
            headers={"Content-Type": "application/json", "X-Wave-Signature": sign_webhook(body)},
        )

        assert response.status_code == 400
        assert response.json()["message"] == "JSON invalide"
