"""
M-Pesa Daraja STK push adapter.

Two operations: `initiate` (STK push) and `query` (STK push status).
Both return a result object or a GatewayFailure; transport and provider
errors never propagate out of this module.

One MpesaGateway instance owns the OAuth token cache; it is handed to the
services through the `get_gateway` dependency.
"""
import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Any, Callable, Optional, Union

import httpx

from mobipay.config import Settings, get_settings

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_URL = "https://api.safaricom.co.ke"

DEFAULT_TOKEN_LIFETIME = 3600

RESULT_MESSAGES: dict[str, str] = {
    "0": "Success",
    "1": "Insufficient Funds",
    "17": "User cancelled transaction",
    "26": "Invalid business number",
    "1001": "Unable to lock subscriber, a transaction is already in process for the current subscriber",
    "1019": "Transaction expired",
    "1032": "Request cancelled by user",
    "1037": "DS timeout user cannot be reached",
    "2001": "Invalid Pin Entered",
    "2006": "Transaction failed",
    "SFC_IC0003": "Invalid Paybill Number",
}


def normalize_result_code(value: Any) -> Optional[str]:
    """Daraja sends ResultCode as int in callbacks and as str in queries."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return str(int(value))
    return str(value).strip()


def result_message(code: Any) -> str:
    key = normalize_result_code(code)
    return RESULT_MESSAGES.get(key, f"Transaction failed with code {key}")


# ---------------------------------------------------------------------------
# Result objects
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GatewayFailure:
    error: str
    error_code: str = "UNKNOWN_ERROR"

    success = False


@dataclass(frozen=True)
class InitiateResult:
    merchant_request_id: str
    checkout_request_id: str
    response_code: Optional[str] = None
    response_description: Optional[str] = None
    customer_message: Optional[str] = None

    success = True


@dataclass(frozen=True)
class QueryResult:
    result_code: Optional[str]
    result_desc: Optional[str] = None
    merchant_request_id: Optional[str] = None
    checkout_request_id: Optional[str] = None

    success = True

    @property
    def is_final(self) -> bool:
        return self.result_code is not None

    @property
    def is_paid(self) -> bool:
        return self.result_code == "0"

    @property
    def message(self) -> str:
        return result_message(self.result_code)


class _TokenError(Exception):
    pass


# ---------------------------------------------------------------------------
# Token cache
# ---------------------------------------------------------------------------

class AccessTokenCache:
    """
    Holds one bearer token. A token is served until `safety_margin` seconds
    before the provider-stated expiry, then refetched.
    """

    def __init__(self, safety_margin: int = 300, clock: Callable[[], float] = time.monotonic):
        self._safety_margin = safety_margin
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: float = 0.0
        self.lock = asyncio.Lock()

    def get(self) -> Optional[str]:
        if self._token and self._clock() < self._expires_at:
            return self._token
        return None

    def store(self, token: str, expires_in: int) -> None:
        lifetime = max(expires_in - self._safety_margin, 0)
        self._token = token
        self._expires_at = self._clock() + lifetime

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class MpesaGateway:
    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        shortcode: str,
        passkey: str,
        callback_url: str,
        environment: str = "sandbox",
        timeout: float = 30,
        token_safety_margin: int = 300,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = shortcode
        self.passkey = passkey
        self.callback_url = callback_url
        self.base_url = PRODUCTION_URL if environment == "production" else SANDBOX_URL
        self.timeout = timeout
        self.tokens = AccessTokenCache(token_safety_margin, clock=clock)
        self._transport = transport
        self._now = now

    @classmethod
    def from_settings(cls, settings: Settings) -> "MpesaGateway":
        return cls(
            consumer_key=settings.mpesa_consumer_key,
            consumer_secret=settings.mpesa_consumer_secret,
            shortcode=settings.mpesa_shortcode,
            passkey=settings.mpesa_passkey,
            callback_url=settings.mpesa_callback_url,
            environment=settings.mpesa_environment,
            timeout=settings.mpesa_timeout_seconds,
            token_safety_margin=settings.mpesa_token_safety_margin_seconds,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    # -- credentials --------------------------------------------------------

    async def access_token(self, client: httpx.AsyncClient) -> str:
        token = self.tokens.get()
        if token:
            return token

        async with self.tokens.lock:
            # Another request may have refreshed while we waited
            token = self.tokens.get()
            if token:
                return token

            try:
                resp = await client.get(
                    "/oauth/v1/generate",
                    params={"grant_type": "client_credentials"},
                    auth=(self.consumer_key, self.consumer_secret),
                )
            except httpx.HTTPError as exc:
                raise _TokenError(f"OAuth request failed: {exc}") from exc
            if resp.status_code != 200:
                raise _TokenError(f"OAuth error: status={resp.status_code}, body={resp.text}")
            try:
                data = resp.json()
            except ValueError as exc:
                raise _TokenError(f"OAuth returned non-JSON body: {resp.text}") from exc
            if "access_token" not in data:
                raise _TokenError(f"OAuth JSON missing access_token: {data}")

            try:
                expires_in = int(data.get("expires_in", DEFAULT_TOKEN_LIFETIME))
            except (TypeError, ValueError):
                expires_in = DEFAULT_TOKEN_LIFETIME
            self.tokens.store(data["access_token"], expires_in)
            logger.info("M-Pesa access token refreshed (expires_in=%ss)", expires_in)
            return data["access_token"]

    def timestamp(self) -> str:
        return self._now().strftime("%Y%m%d%H%M%S")

    def password(self, timestamp: str) -> str:
        raw = f"{self.shortcode}{self.passkey}{timestamp}".encode("utf-8")
        return base64.b64encode(raw).decode("utf-8")

    # -- operations ---------------------------------------------------------

    async def initiate(
        self,
        phone: str,
        amount: int,
        reference: str,
        description: str,
    ) -> Union[InitiateResult, GatewayFailure]:
        """Send an STK push prompt to `phone` for `amount`."""
        async with self._client() as client:
            try:
                token = await self.access_token(client)
            except _TokenError as exc:
                logger.error("STK push aborted, no access token: %s", exc)
                return GatewayFailure("Failed to generate M-Pesa access token", "AUTH_ERROR")

            timestamp = self.timestamp()
            payload = {
                "BusinessShortCode": self.shortcode,
                "Password": self.password(timestamp),
                "Timestamp": timestamp,
                "TransactionType": "CustomerPayBillOnline",
                "Amount": int(amount),
                "PartyA": phone,
                "PartyB": self.shortcode,
                "PhoneNumber": phone,
                "CallBackURL": self.callback_url,
                "AccountReference": reference,
                "TransactionDesc": description or "MOBIPAY Payment",
            }
            data = await self._post(client, "/mpesa/stkpush/v1/processrequest", payload, token)

        if isinstance(data, GatewayFailure):
            logger.error("STK push error ref=%s: %s (%s)", reference, data.error, data.error_code)
            return data
        if str(data.get("ResponseCode", "0")) != "0" or not data.get("CheckoutRequestID"):
            logger.error("STK push rejected ref=%s: %s", reference, data)
            return GatewayFailure(
                data.get("ResponseDescription") or "STK Push request failed",
                str(data.get("ResponseCode") or "UNKNOWN_ERROR"),
            )

        logger.info("STK push sent ref=%s checkout=%s", reference, data["CheckoutRequestID"])
        return InitiateResult(
            merchant_request_id=data.get("MerchantRequestID"),
            checkout_request_id=data["CheckoutRequestID"],
            response_code=normalize_result_code(data.get("ResponseCode")),
            response_description=data.get("ResponseDescription"),
            customer_message=data.get("CustomerMessage"),
        )

    async def query(self, checkout_request_id: str) -> Union[QueryResult, GatewayFailure]:
        """Ask the provider for the outcome of an earlier STK push."""
        async with self._client() as client:
            try:
                token = await self.access_token(client)
            except _TokenError as exc:
                logger.error("STK query aborted, no access token: %s", exc)
                return GatewayFailure("Failed to generate M-Pesa access token", "AUTH_ERROR")

            timestamp = self.timestamp()
            payload = {
                "BusinessShortCode": self.shortcode,
                "Password": self.password(timestamp),
                "Timestamp": timestamp,
                "CheckoutRequestID": checkout_request_id,
            }
            data = await self._post(client, "/mpesa/stkpushquery/v1/query", payload, token)

        if isinstance(data, GatewayFailure):
            logger.warning(
                "STK query error checkout=%s: %s (%s)", checkout_request_id, data.error, data.error_code
            )
            return data

        return QueryResult(
            result_code=normalize_result_code(data.get("ResultCode")),
            result_desc=data.get("ResultDesc"),
            merchant_request_id=data.get("MerchantRequestID"),
            checkout_request_id=data.get("CheckoutRequestID"),
        )

    async def _post(
        self,
        client: httpx.AsyncClient,
        path: str,
        payload: dict,
        token: str,
    ) -> Union[dict, GatewayFailure]:
        try:
            resp = await client.post(
                path,
                json=payload,
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            return GatewayFailure(f"M-Pesa request failed: {exc.__class__.__name__}", "NETWORK_ERROR")

        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            data = {}

        if resp.status_code == 401:
            self.tokens.invalidate()
        if resp.status_code >= 400 or "errorCode" in data:
            return GatewayFailure(
                data.get("errorMessage") or f"M-Pesa returned HTTP {resp.status_code}",
                str(data.get("errorCode") or "UNKNOWN_ERROR"),
            )
        if not data:
            return GatewayFailure("M-Pesa returned an unexpected response", "UNKNOWN_ERROR")
        return data


@lru_cache
def get_gateway() -> MpesaGateway:
    """Process-wide gateway; tests swap it through app.dependency_overrides."""
    return MpesaGateway.from_settings(get_settings())
