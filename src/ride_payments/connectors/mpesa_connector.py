"""Safaricom Daraja (M-Pesa Express / STK push) connector."""

import base64
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx

from ..config import MpesaConfig
from ..errors import GatewayError, InvalidRequest
from ..phone import normalize_phone
from .base import ConnectorBase, StkPushResponse

logger = logging.getLogger(__name__)

# Daraja timestamps are East Africa Time, which has no DST
EAT = timezone(timedelta(hours=3), name="EAT")

TRANSACTION_TYPE = "CustomerPayBillOnline"


def format_timestamp(now: Optional[datetime] = None) -> str:
    """Render ``now`` (default: current EAT time) as YYYYMMDDHHmmss."""
    now = now or datetime.now(EAT)
    return now.strftime("%Y%m%d%H%M%S")


def build_password(shortcode: str, passkey: str, timestamp: str) -> str:
    """STK push password: base64 of short code + passkey + timestamp."""
    raw = f"{shortcode}{passkey}{timestamp}"
    return base64.b64encode(raw.encode()).decode()


class MpesaConnector(ConnectorBase):
    """
    Daraja connector using httpx. Every ``stk_push`` fetches its own access
    token; credentials are not cached between initiations.

    Pass ``transport`` (e.g. ``httpx.MockTransport``) to route requests
    somewhere other than the network.
    """

    def __init__(
        self,
        config: Optional[MpesaConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or MpesaConfig.from_env()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.request_timeout, transport=self._transport)

    def _basic_auth(self) -> str:
        credentials = f"{self.config.consumer_key}:{self.config.consumer_secret}"
        return base64.b64encode(credentials.encode()).decode()

    @staticmethod
    def _response_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    async def get_access_token(self) -> str:
        if not self.config.consumer_key or not self.config.consumer_secret:
            logger.error("M-Pesa consumer key/secret are not configured")
            raise GatewayError("Failed to generate token", details="M-Pesa credentials are not configured")

        try:
            async with self._client() as client:
                response = await client.get(
                    self.config.token_url,
                    headers={"Authorization": f"Basic {self._basic_auth()}"},
                )
        except httpx.HTTPError as e:
            logger.error(f"Token request failed: {type(e).__name__}: {e}")
            raise GatewayError("Failed to generate token", details=str(e) or type(e).__name__) from e

        body = self._response_body(response)
        if response.status_code >= 400 or not isinstance(body, dict) or not body.get("access_token"):
            logger.error(f"Token error ({response.status_code}): {body}")
            raise GatewayError("Failed to generate token", details=body)

        return body["access_token"]

    def build_stk_payload(
        self,
        phone: str,
        amount: int,
        timestamp: str,
        account_reference: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Request body for ``/mpesa/stkpush/v1/processrequest``."""
        shortcode = self.config.shortcode
        return {
            "BusinessShortCode": shortcode,
            "Password": build_password(shortcode, self.config.passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": TRANSACTION_TYPE,
            "Amount": amount,
            "PartyA": phone,
            "PartyB": shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.config.callback_url,
            "AccountReference": account_reference or self.config.account_reference,
            "TransactionDesc": description or self.config.transaction_desc,
        }

    async def stk_push(
        self,
        phone: str,
        amount: int,
        account_reference: Optional[str] = None,
        description: Optional[str] = None,
    ) -> StkPushResponse:
        if not phone or not amount:
            raise InvalidRequest("Phone number and amount are required")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidRequest("Amount must be a positive whole number", details={"amount": amount})
        phone = normalize_phone(phone)

        access_token = await self.get_access_token()
        payload = self.build_stk_payload(
            phone=phone,
            amount=amount,
            timestamp=format_timestamp(),
            account_reference=account_reference,
            description=description,
        )

        try:
            async with self._client() as client:
                response = await client.post(
                    self.config.stk_push_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as e:
            logger.error(f"STK push request failed: {type(e).__name__}: {e}")
            raise GatewayError("STK push failed", details=str(e) or type(e).__name__) from e

        body = self._response_body(response)
        if response.status_code >= 400 or not isinstance(body, dict):
            logger.error(f"STK push error ({response.status_code}): {body}")
            raise GatewayError("STK push failed", details=body)

        response_code = body.get("ResponseCode")
        if response_code is not None and str(response_code) != "0":
            logger.error(f"STK push rejected with ResponseCode {response_code}: {body}")
            raise GatewayError("STK push failed", details=body)
        if not body.get("CheckoutRequestID"):
            logger.error(f"STK push response without CheckoutRequestID: {body}")
            raise GatewayError("STK push failed", details=body)

        logger.info(
            f"STK push sent to {phone} for KES {amount}: "
            f"checkout={body['CheckoutRequestID']}"
        )
        return StkPushResponse(
            checkout_request_id=body["CheckoutRequestID"],
            merchant_request_id=body.get("MerchantRequestID", ""),
            response_code=str(response_code) if response_code is not None else None,
            response_description=body.get("ResponseDescription"),
            customer_message=body.get("CustomerMessage"),
            raw_provider_response=body,
        )
