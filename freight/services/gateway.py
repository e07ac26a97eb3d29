"""
M-Pesa (Daraja) STK push adapter.

The core only needs two things from the gateway: start a payment and, later,
learn its outcome through the callback. Without credentials the adapter runs
in stub mode and returns a synthetic checkout id so local flows still work.
"""
import asyncio
import base64
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

import httpx

from freight.config import Settings, get_settings
from freight.errors import DependencyError, ValidationError

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r"^254\d{9}$")


class GatewayError(Exception):
    pass


@dataclass(frozen=True)
class GatewayReceipt:
    external_request_id: str
    merchant_request_id: Optional[str] = None
    customer_message: Optional[str] = None


@dataclass(frozen=True)
class CallbackResult:
    reference: Optional[str]
    # True = paid, False = failed/cancelled by payer, None = outcome still unknown
    succeeded: Optional[bool]
    transaction_reference: Optional[str] = None


def normalize_phone(phone: str) -> str:
    """Convert 07XXXXXXXX / 7XXXXXXXX / +2547XXXXXXXX into 2547XXXXXXXX."""
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith("0"):
        digits = "254" + digits[1:]
    elif not digits.startswith("254"):
        digits = "254" + digits
    if not PHONE_PATTERN.match(digits):
        raise ValidationError(
            "Invalid phone number format. Please use format: 0712345678 or 254712345678",
            received=phone,
        )
    return digits


def parse_stk_callback(body: dict) -> CallbackResult:
    """Extract (checkout id, outcome, receipt) from a Daraja stkCallback payload."""
    try:
        result = body["Body"]["stkCallback"]
    except (KeyError, TypeError):
        return CallbackResult(reference=None, succeeded=None)

    code = result.get("ResultCode")
    succeeded: Optional[bool]
    if code is None:
        succeeded = None
    else:
        succeeded = str(code) == "0"

    receipt = None
    items = (result.get("CallbackMetadata") or {}).get("Item") or []
    for item in items:
        if item.get("Name") == "MpesaReceiptNumber":
            receipt = item.get("Value")
    return CallbackResult(
        reference=result.get("CheckoutRequestID"),
        succeeded=succeeded,
        transaction_reference=receipt or result.get("MerchantRequestID"),
    )


class MpesaGateway:
    def __init__(self, client: Optional[httpx.AsyncClient] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.client = client

    @property
    def configured(self) -> bool:
        s = self.settings
        return bool(s.mpesa_consumer_key and s.mpesa_consumer_secret and s.mpesa_shortcode and s.mpesa_passkey)

    async def initiate(self, amount: Decimal, payer_phone: str, reference: str) -> GatewayReceipt:
        """
        Sends an STK push with up to `mpesa_max_attempts` tries (exponential backoff).
        Raises DependencyError when the gateway cannot accept the request.
        """
        if amount <= 0:
            raise ValidationError("Amount must be positive")

        attempts = self.settings.mpesa_max_attempts
        for attempt in range(1, attempts + 1):
            try:
                receipt = await self._stk_push(amount, payer_phone, reference)
                logger.info("STK push accepted: checkout=%s amount=%s", receipt.external_request_id, amount)
                return receipt
            except (GatewayError, httpx.HTTPError) as e:
                if attempt == attempts:
                    logger.error("STK push failed after %d attempts: %s", attempts, e)
                    raise DependencyError(f"Payment gateway unavailable: {e}") from e
                await asyncio.sleep(2 ** attempt)

        raise DependencyError("Payment gateway unavailable")

    async def _stk_push(self, amount: Decimal, payer_phone: str, reference: str) -> GatewayReceipt:
        if not self.configured:
            # Stub: accepts every request
            return GatewayReceipt(
                external_request_id=f"ws_CO_{uuid.uuid4().hex[:20].upper()}",
                merchant_request_id=uuid.uuid4().hex[:12],
                customer_message="Success. Request accepted for processing",
            )

        s = self.settings
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        password = base64.b64encode(f"{s.mpesa_shortcode}{s.mpesa_passkey}{timestamp}".encode()).decode()
        payload = {
            "BusinessShortCode": str(s.mpesa_shortcode),
            "Password": password,
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(amount),
            "PartyA": payer_phone,
            "PartyB": str(s.mpesa_shortcode),
            "PhoneNumber": payer_phone,
            "CallBackURL": s.mpesa_callback_url.strip(),
            "AccountReference": reference,
            "TransactionDesc": "Freight Booking Payment",
        }
        token = await self._access_token()
        resp = await self._request(
            "POST",
            f"{s.mpesa_base_url}/mpesa/stkpush/v1/processrequest",
            headers={"Authorization": f"Bearer {token}"},
            json=payload,
        )
        if resp.status_code >= 400:
            raise GatewayError(f"STK push error {resp.status_code}: {resp.text}")
        data = resp.json()
        if str(data.get("ResponseCode")) != "0" or not data.get("CheckoutRequestID"):
            raise GatewayError(data.get("CustomerMessage") or data.get("errorMessage") or "STK push rejected")
        return GatewayReceipt(
            external_request_id=data["CheckoutRequestID"],
            merchant_request_id=data.get("MerchantRequestID"),
            customer_message=data.get("CustomerMessage"),
        )

    async def _access_token(self) -> str:
        s = self.settings
        creds = base64.b64encode(
            f"{s.mpesa_consumer_key.strip()}:{s.mpesa_consumer_secret.strip()}".encode()
        ).decode()
        resp = await self._request(
            "GET",
            f"{s.mpesa_base_url}/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            headers={"Authorization": f"Basic {creds}"},
        )
        if resp.status_code >= 400:
            raise GatewayError(f"M-Pesa authentication failed ({resp.status_code})")
        token = resp.json().get("access_token")
        if not token:
            raise GatewayError("M-Pesa authentication returned no access token")
        return token

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self.client is not None:
            return await self.client.request(method, url, timeout=self.settings.mpesa_timeout_seconds, **kwargs)
        async with httpx.AsyncClient(timeout=self.settings.mpesa_timeout_seconds) as client:
            return await client.request(method, url, **kwargs)
