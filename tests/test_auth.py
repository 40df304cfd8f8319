from app.models import User


class TestBearerAuth:
    def test_missing_header(self, client, db):
        response = client.get("/invoices")

        assert response.status_code == 401
        assert response.json() == {"error": "Non autorisé"}

    def test_every_protected_route_requires_session(self, client, db):
        calls = [
            ("post", "/invoices/1/convert"),
            ("post", "/invoices/1/payment-link"),
            ("delete", "/invoices/1/payment-link"),
            ("put", "/invoices/1/mark-paid"),
            ("post", "/wave/payout/pt-1/reverse"),
        ]
        for method, path in calls:
            response = getattr(client, method)(path)
            assert response.status_code == 401, path
            assert response.json() == {"error": "Non autorisé"}

    def test_placeholder_token(self, client, db):
        response = client.get("/invoices", headers={"Authorization": "Bearer undefined"})

        assert response.status_code == 401

    def test_wrong_secret(self, client, user, token_for):
        token = token_for(user.auth_subject, user.email, secret="someone-else")

        response = client.get("/invoices", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json() == {"error": "Non autorisé"}

    def test_wrong_audience(self, client, user, token_for):
        token = token_for(user.auth_subject, user.email, audience="anon")

        response = client.get("/invoices", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_expired_token(self, client, user, token_for):
        token = token_for(user.auth_subject, user.email, expires_in=-60)

        response = client.get("/invoices", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_valid_token(self, client, auth_headers):
        response = client.get("/invoices", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == []


class TestUserResolution:
    def test_unknown_subject_creates_user(self, client, db, token_for):
        token = token_for("sub-new", "Fatou@Example.com")

        response = client.get("/invoices", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        created = db.query(User).filter(User.auth_subject == "sub-new").one()
        assert created.email == "fatou@example.com"
        assert created.currency == "XOF"

    def test_email_match_heals_subject(self, client, db, token_for):
        legacy = User(email="ibrahima@example.com")
        db.add(legacy)
        db.commit()
        token = token_for("sub-ibrahima", "IBRAHIMA@example.com")

        response = client.get("/invoices", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        db.refresh(legacy)
        assert legacy.auth_subject == "sub-ibrahima"
        assert db.query(User).count() == 1
