"""Simulator connector for exercising STK push flows without calling Daraja."""

import asyncio
import uuid
import random
import string
import logging
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..errors import GatewayError, InvalidRequest
from ..phone import normalize_phone
from .base import ConnectorBase, StkPushResponse

logger = logging.getLogger(__name__)


class SimulatorScenario(str, Enum):
    """Predefined outcomes for simulated pushes."""
    SUCCESS = "success"
    CANCELLED_BY_USER = "cancelled_by_user"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    GATEWAY_ERROR = "gateway_error"


# Daraja result codes reported in the callback for each scenario
SCENARIO_RESULTS = {
    SimulatorScenario.SUCCESS: (0, "The service request is processed successfully."),
    SimulatorScenario.CANCELLED_BY_USER: (1032, "Request cancelled by user"),
    SimulatorScenario.INSUFFICIENT_FUNDS: (1, "The balance is insufficient for the transaction"),
}


@dataclass
class SimulatedPush:
    """In-memory record of a simulated STK push."""
    checkout_request_id: str
    merchant_request_id: str
    phone: str
    amount: int
    scenario: SimulatorScenario
    created_at: datetime = field(default_factory=datetime.now)
    receipt: Optional[str] = None


@dataclass
class SimulatorConfig:
    """Configuration for simulator behavior."""
    scenario: SimulatorScenario = SimulatorScenario.SUCCESS
    delay_ms: int = 0  # Simulated response delay in ms
    seed: Optional[int] = None  # Random seed for reproducible receipts


class SimulatorConnector(ConnectorBase):
    """
    Gateway stand-in that accepts pushes, remembers them, and builds the
    callback envelope Daraja would later POST for each one.
    """

    def __init__(self, config: Optional[SimulatorConfig] = None):
        self.config = config or SimulatorConfig()
        self._pushes: Dict[str, SimulatedPush] = {}
        self._rng = random.Random(self.config.seed)
        self.token_requests = 0
        logger.info("SimulatorConnector initialized")

    async def _apply_delay(self) -> None:
        if self.config.delay_ms > 0:
            await asyncio.sleep(self.config.delay_ms / 1000.0)

    def _generate_receipt(self) -> str:
        alphabet = string.ascii_uppercase + string.digits
        return "S" + "".join(self._rng.choice(alphabet) for _ in range(9))

    async def get_access_token(self) -> str:
        await self._apply_delay()
        if self.config.scenario == SimulatorScenario.GATEWAY_ERROR:
            raise GatewayError("Failed to generate token", details={"errorMessage": "Simulated outage"})
        self.token_requests += 1
        return f"sim_token_{uuid.uuid4().hex[:16]}"

    async def stk_push(
        self,
        phone: str,
        amount: int,
        account_reference: Optional[str] = None,
        description: Optional[str] = None,
    ) -> StkPushResponse:
        if not phone or not amount:
            raise InvalidRequest("Phone number and amount are required")
        if not isinstance(amount, int) or amount <= 0:
            raise InvalidRequest("Amount must be a positive whole number", details={"amount": amount})
        phone = normalize_phone(phone)

        await self.get_access_token()

        push = SimulatedPush(
            checkout_request_id=f"ws_CO_{uuid.uuid4().hex[:20]}",
            merchant_request_id=f"sim-{uuid.uuid4().hex[:12]}",
            phone=phone,
            amount=amount,
            scenario=self.config.scenario,
        )
        self._pushes[push.checkout_request_id] = push

        raw = {
            "MerchantRequestID": push.merchant_request_id,
            "CheckoutRequestID": push.checkout_request_id,
            "ResponseCode": "0",
            "ResponseDescription": "Success. Request accepted for processing",
            "CustomerMessage": "Success. Request accepted for processing",
            "simulator": True,
        }
        return StkPushResponse(
            checkout_request_id=push.checkout_request_id,
            merchant_request_id=push.merchant_request_id,
            response_code="0",
            response_description=raw["ResponseDescription"],
            customer_message=raw["CustomerMessage"],
            raw_provider_response=raw,
        )

    def build_callback(self, checkout_request_id: str) -> Dict[str, Any]:
        """Build the ``Body.stkCallback`` envelope for a previous push.

        Raises:
            KeyError: If no push with that checkout request id was made.
        """
        push = self._pushes[checkout_request_id]
        result_code, result_desc = SCENARIO_RESULTS[push.scenario]

        stk_callback: Dict[str, Any] = {
            "MerchantRequestID": push.merchant_request_id,
            "CheckoutRequestID": push.checkout_request_id,
            "ResultCode": result_code,
            "ResultDesc": result_desc,
        }
        if result_code == 0:
            if push.receipt is None:
                push.receipt = self._generate_receipt()
            stk_callback["CallbackMetadata"] = {
                "Item": [
                    {"Name": "Amount", "Value": push.amount},
                    {"Name": "MpesaReceiptNumber", "Value": push.receipt},
                    {"Name": "TransactionDate", "Value": int(push.created_at.strftime("%Y%m%d%H%M%S"))},
                    {"Name": "PhoneNumber", "Value": int(push.phone)},
                ]
            }
        return {"Body": {"stkCallback": stk_callback}}

    def get_push(self, checkout_request_id: str) -> Optional[SimulatedPush]:
        """Get a push from in-memory storage (for testing)."""
        return self._pushes.get(checkout_request_id)

    def get_all_pushes(self) -> List[SimulatedPush]:
        return list(self._pushes.values())

    def clear(self) -> None:
        """Clear all stored pushes (for test cleanup)."""
        self._pushes.clear()

    def health_check(self) -> Dict[str, Any]:
        """Return health status of the simulator."""
        return {
            "ok": True,
            "provider": "simulator",
            "push_count": len(self._pushes),
            "scenario": self.config.scenario.value,
        }
