from decimal import Decimal

from app.models import Client, Invoice, Project


class TestPartialConversion:
    def test_partial_amount_leaves_proforma_pending(self, client, db, auth_headers, make_document):
        proforma = make_document(amount="100000")

        response = client.post(
            f"/invoices/{proforma.id}/partial-convert",
            json={"amount": "40000"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert Decimal(body["invoice"]["amount"]) == Decimal("40000")
        assert body["invoice"]["parentProformaId"] == proforma.id
        assert Decimal(body["totalInvoicedAmount"]) == Decimal("40000")
        assert Decimal(body["remainingAmount"]) == Decimal("60000")
        assert body["isFullyConverted"] is False
        db.refresh(proforma)
        assert proforma.status == "PENDING"

    def test_proforma_converted_once_fully_invoiced(self, client, db, auth_headers, make_document):
        proforma = make_document(amount="100000")
        client.post(f"/invoices/{proforma.id}/partial-convert", json={"amount": "40000"}, headers=auth_headers)

        response = client.post(
            f"/invoices/{proforma.id}/partial-convert",
            json={"amount": "60000"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["isFullyConverted"] is True
        db.refresh(proforma)
        assert proforma.status == "CONVERTED"

        third = client.post(f"/invoices/{proforma.id}/partial-convert", json={"amount": "1000"}, headers=auth_headers)
        assert third.status_code == 409

    def test_overshoot_is_reported_not_refused(self, client, db, auth_headers, make_document):
        proforma = make_document(amount="100000")
        client.post(f"/invoices/{proforma.id}/partial-convert", json={"amount": "70000"}, headers=auth_headers)

        response = client.post(
            f"/invoices/{proforma.id}/partial-convert",
            json={"amount": "50000"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["isFullyConverted"] is True
        assert "dépasse" in body["warning"]
        assert Decimal(body["remainingAmount"]) == Decimal("-20000")

    def test_amount_must_be_positive(self, client, auth_headers, make_document):
        proforma = make_document(amount="100000")

        response = client.post(f"/invoices/{proforma.id}/partial-convert", json={"amount": "0"}, headers=auth_headers)

        assert response.status_code == 400

    def test_amount_cannot_exceed_proforma(self, client, db, auth_headers, make_document):
        proforma = make_document(amount="100000")

        response = client.post(
            f"/invoices/{proforma.id}/partial-convert",
            json={"amount": "100001"},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert db.query(Invoice).filter(Invoice.parent_proforma_id == proforma.id).count() == 0

    def test_amount_or_services_required(self, client, auth_headers, make_document):
        proforma = make_document()

        response = client.post(f"/invoices/{proforma.id}/partial-convert", json={}, headers=auth_headers)

        assert response.status_code == 400

    def test_selected_services_define_amount_and_items(self, client, auth_headers, make_document):
        proforma = make_document(amount="100000")

        response = client.post(
            f"/invoices/{proforma.id}/partial-convert",
            json={
                "selectedServices": [
                    {"name": "Maquettes", "unitPrice": "15000", "quantity": "2"},
                    {"name": "Intégration", "unitPrice": "20000", "quantity": "1"},
                ],
                "amount": "99999",
            },
            headers=auth_headers,
        )

        assert response.status_code == 200
        invoice = response.json()["invoice"]
        assert Decimal(invoice["amount"]) == Decimal("50000")
        assert [i["name"] for i in invoice["items"]] == ["Maquettes", "Intégration"]

    def test_client_info_takes_priority(self, client, db, auth_headers, user, make_document):
        customer = Client(user_id=user.id, name="Orange SN", email="compta@orange.sn")
        db.add(customer)
        db.commit()
        project = Project(user_id=user.id, client_id=customer.id, name="Application mobile")
        db.add(project)
        db.commit()
        proforma = make_document(amount="100000", project_id=project.id, client_name="Ancien nom", client_phone="+221770000000")

        response = client.post(
            f"/invoices/{proforma.id}/partial-convert",
            json={"amount": "10000", "clientInfo": {"name": "Orange Sénégal"}},
            headers=auth_headers,
        )

        invoice = response.json()["invoice"]
        assert invoice["clientName"] == "Orange Sénégal"
        assert invoice["clientEmail"] == "compta@orange.sn"
        assert invoice["clientPhone"] == "+221770000000"
        assert invoice["projectId"] == project.id


class TestConversionStatus:
    def test_status_summarises_child_invoices(self, client, auth_headers, make_document):
        proforma = make_document(amount="200000")
        client.post(f"/invoices/{proforma.id}/partial-convert", json={"amount": "50000"}, headers=auth_headers)
        client.post(f"/invoices/{proforma.id}/partial-convert", json={"amount": "30000"}, headers=auth_headers)

        response = client.get(f"/invoices/{proforma.id}/conversion-status", headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        stats = body["conversionStats"]
        assert Decimal(stats["totalAmount"]) == Decimal("200000")
        assert Decimal(stats["invoicedAmount"]) == Decimal("80000")
        assert Decimal(stats["remainingAmount"]) == Decimal("120000")
        assert stats["conversionPercentage"] == 40.0
        assert stats["isFullyConverted"] is False
        assert stats["numberOfConversions"] == 2
        assert len(body["conversions"]) == 2

    def test_status_of_an_invoice_is_not_found(self, client, auth_headers, make_document):
        invoice = make_document(doc_type="INVOICE")

        response = client.get(f"/invoices/{invoice.id}/conversion-status", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["message"] == "Proforma non trouvée"
