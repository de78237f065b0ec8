from abc import ABC, abstractmethod
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field

# Canonical models
class StkPushResponse(BaseModel):
    checkout_request_id: str
    merchant_request_id: str
    response_code: Optional[str] = None
    response_description: Optional[str] = None
    customer_message: Optional[str] = None
    raw_provider_response: Dict[str, Any] = Field(default_factory=dict)

class ConnectorBase(ABC):
    """
    Push-payment gateway interface. Implementations make no local state
    changes; the gateway reports the outcome later through the callback URL.
    """

    @abstractmethod
    async def get_access_token(self) -> str:
        """
        Fetch a short-lived bearer credential from the gateway.
        """
        raise NotImplementedError

    @abstractmethod
    async def stk_push(
        self,
        phone: str,
        amount: int,
        account_reference: Optional[str] = None,
        description: Optional[str] = None,
    ) -> StkPushResponse:
        """
        Ask the gateway to prompt ``phone`` for ``amount``. Returns the gateway
        request identifiers; raises InvalidRequest or GatewayError.
        """
        raise NotImplementedError

    def health_check(self) -> Dict[str, Any]:
        return {"ok": True}
