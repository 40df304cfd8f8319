"""
Wave business API client.

Every call is bounded by WAVE_TIMEOUT_SECONDS and is never retried here: a
timeout or a non-2xx reply is surfaced to the caller as WaveAPIError.
"""
import logging
import os
from typing import Any, Callable, Dict, Optional

import httpx

from app.core.errors import ValidationError

logger = logging.getLogger(__name__)

WAVE_API_URL = os.getenv("WAVE_API_URL", "https://api.wave.com").rstrip("/")
WAVE_TIMEOUT_SECONDS = float(os.getenv("WAVE_TIMEOUT_SECONDS", "15"))

# Wave error codes we can explain to the user, as (message, details)
REVERSAL_ERROR_MESSAGES = {
    "insufficient-funds": (
        "Fonds insuffisants",
        "Le destinataire n'a pas suffisamment de solde pour couvrir l'annulation",
    ),
    "payout-reversal-time-limit-exceeded": (
        "Délai d'annulation dépassé",
        "Le délai de 72 heures pour annuler ce paiement est écoulé",
    ),
    "payout-reversal-account-terminated": (
        "Compte destinataire terminé",
        "Le compte Wave du destinataire a été fermé",
    ),
    "not-found": (
        "Paiement non trouvé",
        "Ce paiement n'existe pas ou n'appartient pas à votre compte",
    ),
}


class WaveAPIError(Exception):
    def __init__(
        self,
        status_code: int,
        message: str,
        error_code: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.error_code = error_code
        self.payload = payload or {}


class WaveClient:
    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key.strip()
        self.base_url = (base_url or WAVE_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else WAVE_TIMEOUT_SECONDS
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            **(extra_headers or {}),
        }
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                r = await client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("[Wave] Timeout on %s %s: %s", method, path, e)
            raise WaveAPIError(504, "Délai d'attente dépassé lors de l'appel à Wave", error_code="transport-error")
        except httpx.RequestError as e:
            logger.warning("[Wave] Request error on %s %s: %s", method, path, e)
            raise WaveAPIError(502, f"Requête Wave échouée: {e}", error_code="transport-error")

        logger.info("[Wave] %s %s -> %s", method, path, r.status_code)

        if r.status_code >= 400:
            try:
                data = r.json()
            except ValueError:
                data = {}
            if not isinstance(data, dict):
                data = {}
            message = (
                data.get("message")
                or data.get("error_message")
                or data.get("error")
                or r.text
                or f"HTTP {r.status_code}"
            )
            logger.warning("[Wave] Error response %s: %s", r.status_code, r.text[:500] if r.text else "NO_BODY")
            raise WaveAPIError(r.status_code, message, error_code=data.get("error_code"), payload=data)

        if not r.content:
            return {}
        # A 2xx is an accepted call even when the body is not the JSON we expect
        try:
            data = r.json()
        except ValueError:
            logger.warning("[Wave] Non-JSON body on %s %s: %s", method, path, r.text[:200])
            return {}
        return data if isinstance(data, dict) else {}

    async def create_checkout_session(
        self,
        amount: str,
        currency: str,
        client_reference: str,
        success_url: str,
        error_url: str,
    ) -> Dict[str, Any]:
        payload = {
            "amount": amount,
            "currency": currency,
            "client_reference": client_reference,
            "success_url": success_url,
            "error_url": error_url,
        }
        logger.info("[Wave] Creating checkout session for %s (%s %s)", client_reference, amount, currency)
        return await self._request("POST", "/v1/checkout/sessions", json=payload)

    async def expire_checkout_session(self, checkout_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/v1/checkout/sessions/{checkout_id}/expire")

    async def create_payout(self, payload: Dict[str, Any], idempotency_key: str) -> Dict[str, Any]:
        logger.info("[Wave] Sending payout of %s %s", payload.get("receive_amount"), payload.get("currency"))
        return await self._request(
            "POST", "/v1/payout", json=payload, extra_headers={"Idempotency-Key": idempotency_key},
        )

    async def get_payout(self, payout_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/v1/payout/{payout_id}")

    async def reverse_payout(self, payout_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/v1/payout/{payout_id}/reverse")


WaveClientFactory = Callable[[str], WaveClient]


def client_for_user(user, factory: WaveClientFactory = WaveClient) -> WaveClient:
    """Build a client with the user's own Wave key, or fail with a configuration hint."""
    if user is None or not (user.wave_api_key or "").strip():
        raise ValidationError(
            "Configuration Wave manquante. Veuillez configurer vos clés API Wave dans les paramètres."
        )
    return factory(user.wave_api_key)


def describe_reversal_error(error: WaveAPIError):
    """Translate a Wave reversal failure into (message, details)."""
    if error.error_code in REVERSAL_ERROR_MESSAGES:
        return REVERSAL_ERROR_MESSAGES[error.error_code]
    if error.error_code:
        return f"Erreur Wave: {error.error_code}", error.message
    return "Erreur lors de l'annulation du paiement", error.message
