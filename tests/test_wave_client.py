import asyncio
import json

import httpx
import pytest

from app.services.wave_client import WaveAPIError, WaveClient, describe_reversal_error


def _client(handler):
    return WaveClient("  wave_sn_key  ", base_url="https://api.wave.test", transport=httpx.MockTransport(handler))


class TestWaveClient:
    def test_checkout_request(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "cos-1", "wave_launch_url": "https://pay.wave.com/c/cos-1"})

        result = asyncio.run(_client(handler).create_checkout_session(
            amount="5000", currency="XOF", client_reference="INV-2024-001",
            success_url="https://app/ok", error_url="https://app/ko",
        ))

        assert result["id"] == "cos-1"
        assert seen["auth"] == "Bearer wave_sn_key"
        assert seen["url"] == "https://api.wave.test/v1/checkout/sessions"
        assert seen["body"]["client_reference"] == "INV-2024-001"

    def test_error_reply_raises(self):
        def handler(request):
            return httpx.Response(400, json={"error_code": "insufficient-funds", "message": "Not enough funds"})

        with pytest.raises(WaveAPIError) as exc:
            asyncio.run(_client(handler).reverse_payout("pt-1"))

        assert exc.value.status_code == 400
        assert exc.value.error_code == "insufficient-funds"
        assert exc.value.message == "Not enough funds"

    def test_timeout_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(WaveAPIError) as exc:
            asyncio.run(_client(handler).get_payout("pt-1"))

        assert exc.value.error_code == "transport-error"
        assert len(calls) == 1


    def test_non_json_success_body_is_accepted(self):
        def handler(request):
            return httpx.Response(200, content=b"OK")

        result = asyncio.run(_client(handler).reverse_payout("pt-1"))

        assert result == {}

    def test_payout_sends_idempotency_key(self):
        seen = {}

        def handler(request):
            seen["key"] = request.headers.get("Idempotency-Key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "pt-9", "status": "processing"})

        result = asyncio.run(_client(handler).create_payout(
            {"currency": "XOF", "receive_amount": "15000", "mobile": "+221770000000"},
            idempotency_key="key-123",
        ))

        assert result["id"] == "pt-9"
        assert seen["key"] == "key-123"
        assert seen["body"]["receive_amount"] == "15000"

class TestReversalErrorMessages:
    def test_known_codes_are_translated(self):
        message, details = describe_reversal_error(WaveAPIError(400, "x", error_code="payout-reversal-account-terminated"))
        assert message == "Compte destinataire terminé"

    def test_unknown_code_keeps_gateway_text(self):
        message, details = describe_reversal_error(WaveAPIError(400, "Something odd", error_code="weird"))
        assert message == "Erreur Wave: weird"
        assert details == "Something odd"
