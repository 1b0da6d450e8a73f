"""Wompi API client: merchant info, payment sources, transactions and signatures."""
import hashlib
import hmac
import logging
import time
from typing import Any, Dict, Optional

import requests
from flask import current_app

from stockflow.exceptions import (
    ConfigurationError,
    GatewayConnectionError,
    GatewayResponseError,
    GatewayTimeoutError,
)

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://sandbox.wompi.co/v1"
PRODUCTION_URL = "https://production.wompi.co/v1"


class CachedValue:
    """A value with a wall-clock expiry, owned by one client instance."""

    def __init__(self, value: Any, expires_at: float):
        self.value = value
        self.expires_at = expires_at

    def is_fresh(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) < self.expires_at


class WompiClient:
    """Cliente para interactuar con la API de Wompi."""

    def __init__(
        self,
        public_key: str = '',
        private_key: str = '',
        event_secret: str = '',
        integrity_secret: str = '',
        timeout: float = 15,
        merchant_cache_ttl: float = 300,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize Wompi client.

        Args:
            public_key: Merchant public key (pub_test_... / pub_prod_...)
            private_key: Private key. The client is disabled without it.
            event_secret: Secret used to verify webhook checksums
            integrity_secret: Secret used for checkout integrity hashes
            timeout: Per-request timeout in seconds
            merchant_cache_ttl: Seconds to keep merchant acceptance tokens
            base_url: Override the API URL (otherwise inferred from the keys)
            session: requests.Session to use (tests inject a mock)
        """
        self.public_key = public_key or ''
        self.private_key = private_key or ''
        self.event_secret = event_secret or ''
        self.integrity_secret = integrity_secret or ''
        self.timeout = timeout
        self.merchant_cache_ttl = merchant_cache_ttl
        self.session = session or requests.Session()
        self._merchant_cache: Optional[CachedValue] = None

        is_production = (
            self.public_key.startswith('pub_prod_') or self.private_key.startswith('prv_prod_')
        )
        self.base_url = base_url or (PRODUCTION_URL if is_production else SANDBOX_URL)

        if self.enabled:
            logger.info(f"[WOMPI] Client ready ({'production' if is_production else 'sandbox'})")
        else:
            logger.warning("[WOMPI] WOMPI_PRIVATE_KEY not set, payment features disabled")

    @classmethod
    def from_config(cls, config) -> 'WompiClient':
        """Build a client from a Flask config mapping."""
        return cls(
            public_key=config.get('WOMPI_PUBLIC_KEY', ''),
            private_key=config.get('WOMPI_PRIVATE_KEY', ''),
            event_secret=config.get('WOMPI_EVENT_SECRET', ''),
            integrity_secret=config.get('WOMPI_INTEGRITY_SECRET', ''),
            timeout=config.get('WOMPI_TIMEOUT_SECONDS', 15),
            merchant_cache_ttl=config.get('WOMPI_MERCHANT_CACHE_TTL', 300),
            base_url=config.get('WOMPI_BASE_URL'),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.private_key)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None,
                 use_public_key: bool = False) -> Dict[str, Any]:
        key = self.public_key if use_public_key else self.private_key
        if not key:
            raise ConfigurationError(
                "WOMPI_PUBLIC_KEY is not configured" if use_public_key
                else "WOMPI_PRIVATE_KEY is not configured"
            )

        url = f"{self.base_url}{path}"
        headers = {
            'Authorization': f'Bearer {key}',
            'Content-Type': 'application/json'
        }

        try:
            response = self.session.request(method, url, json=body, headers=headers, timeout=self.timeout)
        except requests.Timeout as e:
            logger.error(f"[WOMPI] Request timeout: {method} {path}")
            raise GatewayTimeoutError(f"Wompi request timeout: {method} {path}") from e
        except requests.RequestException as e:
            logger.error(f"[WOMPI] Connection error on {method} {path}: {e}")
            raise GatewayConnectionError(f"Wompi connection error: {method} {path}") from e

        if not response.ok:
            logger.error(f"[WOMPI] API error {response.status_code} on {method} {path}: {response.text}")
            raise GatewayResponseError(response.status_code, response.reason, response.text)

        return response.json()

    # ------------------------------------------------------------------
    # Merchant
    # ------------------------------------------------------------------

    def get_public_key(self) -> str:
        return self.public_key

    def get_merchant_info(self) -> Dict[str, Any]:
        """Merchant data including presigned acceptance tokens (cached)."""
        if self._merchant_cache and self._merchant_cache.is_fresh():
            return self._merchant_cache.value

        data = self._request('GET', f"/merchants/{self.public_key}", use_public_key=True)
        self._merchant_cache = CachedValue(data, time.time() + self.merchant_cache_ttl)
        return data

    def get_acceptance_tokens(self) -> Dict[str, Optional[str]]:
        """
        Terms-of-service and personal data acceptance tokens.

        Returns:
            Dict with acceptance_token and personal_data_auth_token
        """
        merchant = self.get_merchant_info().get('data') or {}
        acceptance = merchant.get('presigned_acceptance') or {}
        personal = merchant.get('presigned_personal_data_auth') or {}
        return {
            'acceptance_token': acceptance.get('acceptance_token'),
            'personal_data_auth_token': personal.get('acceptance_token'),
        }

    # ------------------------------------------------------------------
    # Payment sources
    # ------------------------------------------------------------------

    def create_payment_source(
        self,
        token: str,
        customer_email: str,
        acceptance_token: str,
        personal_auth_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Tokenize a card into a reusable payment source.

        Args:
            token: Card token obtained by the browser widget
            customer_email: Email of the card holder
            acceptance_token: Presigned acceptance token
            personal_auth_token: Presigned personal data token (optional)

        Returns:
            The payment source object (``data`` of the response)
        """
        body = {
            'type': 'CARD',
            'token': token,
            'customer_email': customer_email,
            'acceptance_token': acceptance_token,
        }
        if personal_auth_token:
            body['accept_personal_auth'] = personal_auth_token

        logger.info(f"[WOMPI] Creating payment source for {customer_email}")
        result = self._request('POST', '/payment_sources', body)
        return result['data']

    def void_payment_source(self, payment_source_id) -> None:
        logger.info(f"[WOMPI] Voiding payment source {payment_source_id}")
        self._request('PUT', f"/payment_sources/{payment_source_id}/void")

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def create_transaction(
        self,
        amount_in_cents: int,
        currency: str,
        customer_email: str,
        reference: str,
        acceptance_token: str,
        payment_source_id: Optional[int] = None,
        recurrent: Optional[bool] = None,
        redirect_url: Optional[str] = None,
        personal_auth_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create a transaction, one-time or against a stored payment source.

        Returns:
            The transaction object (``data`` of the response)
        """
        body = {
            'amount_in_cents': amount_in_cents,
            'currency': currency,
            'customer_email': customer_email,
            'reference': reference,
            'acceptance_token': acceptance_token,
        }
        if payment_source_id is not None:
            body['payment_source_id'] = payment_source_id
        if recurrent is not None:
            body['recurrent'] = recurrent
        if redirect_url:
            body['redirect_url'] = redirect_url
        if personal_auth_token:
            body['accept_personal_auth'] = personal_auth_token

        logger.info(f"[WOMPI] Creating transaction {reference} for {amount_in_cents} {currency}")
        result = self._request('POST', '/transactions', body)
        data = result['data']
        logger.info(f"[WOMPI] Transaction {data.get('id')} status: {data.get('status')}")
        return data

    def get_transaction(self, transaction_id: str) -> Dict[str, Any]:
        result = self._request('GET', f"/transactions/{transaction_id}")
        return result['data']

    # ------------------------------------------------------------------
    # Signatures
    # ------------------------------------------------------------------

    def generate_integrity_hash(
        self,
        reference: str,
        amount_in_cents: int,
        currency: str,
        expiration_time: Optional[str] = None
    ) -> str:
        """
        SHA256 hex of reference + amount + currency [+ expiration] + integrity secret.

        Binds the checkout widget parameters so the browser cannot alter them.
        """
        if not self.integrity_secret:
            raise ConfigurationError("WOMPI_INTEGRITY_SECRET is not configured")
        concatenated = f"{reference}{amount_in_cents}{currency}{expiration_time or ''}{self.integrity_secret}"
        return hashlib.sha256(concatenated.encode('utf-8')).hexdigest()

    def verify_webhook_signature(self, body: Any) -> bool:
        """
        Verify an event checksum. Never raises; malformed input is invalid.

        The checksum is SHA256 of the values named by signature.properties
        (resolved against ``data``), then the timestamp, then the event secret.
        """
        try:
            if not self.event_secret:
                logger.error("[WOMPI] WOMPI_EVENT_SECRET not set, rejecting webhook")
                return False

            if not isinstance(body, dict):
                logger.warning("[WOMPI] Webhook body is not an object")
                return False

            signature = body.get('signature')
            data = body.get('data')
            timestamp = body.get('timestamp')
            if not isinstance(signature, dict) or not data or timestamp is None:
                logger.warning("[WOMPI] Webhook missing signature, data or timestamp")
                return False

            properties = signature.get('properties')
            checksum = signature.get('checksum')
            if not properties or not isinstance(properties, list) or not checksum or not isinstance(checksum, str):
                logger.warning("[WOMPI] Webhook signature missing properties or checksum")
                return False

            values = ''.join(self.resolve_property_path(data, prop) for prop in properties)
            concatenated = f"{values}{_to_text(timestamp)}{self.event_secret}"
            computed = hashlib.sha256(concatenated.encode('utf-8')).hexdigest()

            if len(computed) != len(checksum):
                logger.warning("[WOMPI] Webhook checksum length mismatch")
                return False

            is_valid = hmac.compare_digest(computed.encode('utf-8'), checksum.encode('utf-8'))
            if not is_valid:
                logger.warning("[WOMPI] Webhook checksum mismatch")
            return is_valid
        except Exception as e:
            logger.error(f"[WOMPI] Error verifying webhook signature: {e}")
            return False

    @staticmethod
    def resolve_property_path(data: Any, path: str) -> str:
        """
        Resolve a dot path like ``transaction.amount_in_cents`` inside data.

        Missing or null nodes anywhere along the path resolve to ''.
        """
        current = data
        for part in str(path).split('.'):
            if current is None:
                return ''
            if isinstance(current, dict):
                current = current.get(part)
            elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
                current = current[int(part)]
            else:
                return ''
        return _to_text(current)


def _to_text(value: Any) -> str:
    """String form used by the gateway when it computes checksums."""
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def init_wompi(app):
    """Create the app-wide client so the merchant cache survives across requests."""
    app.extensions['wompi'] = WompiClient.from_config(app.config)


def get_wompi_client() -> WompiClient:
    return current_app.extensions['wompi']
