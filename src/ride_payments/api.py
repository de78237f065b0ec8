"""HTTP surface: M-Pesa token/STK/callback/status endpoints and booking submission."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from slowapi.errors import RateLimitExceeded

from .auth import limiter, verify_api_key, verify_callback_source
from .bookings import (
    BookingCreate,
    BookingStore,
    JsonFileBookingStore,
    MANUAL_PAYMENT_CODE,
)
from .config import MpesaConfig, get_bookings_json_path
from .connectors.base import ConnectorBase
from .connectors.mpesa_connector import MpesaConnector
from .database import SqlBookingStore
from .errors import InvalidCallback, InvalidRequest, RidePaymentsError
from .reconciliation import CALLBACK_ACKNOWLEDGEMENT
from .services import PaymentAttempt, PaymentService

logger = logging.getLogger(__name__)

STK_RATE_LIMIT = "20/minute"


class StkPushBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone: Optional[str] = None
    amount: Optional[int] = None
    booking_id: Optional[str] = Field(default=None, alias="bookingId")

    @field_validator("phone", mode="before")
    @classmethod
    def phone_as_text(cls, value):
        # MSISDN sent as a JSON number
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class MarkPaidBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mpesa_code: str = Field(default=MANUAL_PAYMENT_CODE, alias="mpesaCode", min_length=1)


def _default_store() -> BookingStore:
    json_path = get_bookings_json_path()
    if json_path:
        return JsonFileBookingStore(json_path)
    return SqlBookingStore()


def _attempt_to_dict(attempt: PaymentAttempt) -> dict:
    return {
        "initiated": attempt.initiated,
        "checkoutRequestID": attempt.checkout_request_id,
        "merchantRequestID": attempt.merchant_request_id,
        "error": attempt.error,
        "details": attempt.details,
    }


async def ride_payments_error_handler(request: Request, exc: RidePaymentsError) -> JSONResponse:
    """Translate domain errors into the ``{success: false, error, details}`` envelope."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message} details={exc.details}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
    content = {"success": False, "error": exc.message}
    if exc.details is not None:
        content["details"] = jsonable_encoder(exc.details)
    return JSONResponse(status_code=exc.status_code, content=content)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handle rate limit exceeded errors."""
    logger.warning(f"Rate limit exceeded for {request.client.host if request.client else 'unknown'}")
    return JSONResponse(
        status_code=429,
        content={"success": False, "error": "Rate limit exceeded. Please try again later."},
    )


def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payment_service


def get_config(request: Request) -> MpesaConfig:
    return request.app.state.config


router = APIRouter()


@router.get("/health")
async def health(request: Request):
    return {"status": "healthy", "gateway": request.app.state.connector.health_check()}


@router.get("/mpesa/token")
async def mpesa_token(service: PaymentService = Depends(get_payment_service)):
    access_token = await service.get_access_token()
    return {"success": True, "access_token": access_token}


@router.post("/mpesa/stk")
@limiter.limit(STK_RATE_LIMIT)
async def mpesa_stk_push(
    request: Request,
    body: StkPushBody,
    service: PaymentService = Depends(get_payment_service),
):
    if not body.phone or not body.amount:
        raise InvalidRequest("Phone number and amount are required")

    response = await service.initiate_payment(
        phone=body.phone,
        amount=body.amount,
        booking_id=body.booking_id,
    )
    return {
        "success": True,
        "message": "STK push initiated successfully",
        "checkoutRequestID": response.checkout_request_id,
        "merchantRequestID": response.merchant_request_id,
        "response": response.raw_provider_response,
    }


@router.post("/mpesa/callback")
async def mpesa_callback(
    request: Request,
    token: Optional[str] = Query(default=None),
    service: PaymentService = Depends(get_payment_service),
    config: MpesaConfig = Depends(get_config),
):
    verify_callback_source(request, config, token)
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Callback body is not valid JSON")
        raise InvalidCallback("Invalid callback format")

    outcome = await service.reconciliation.handle_callback(payload)
    logger.info(
        f"Callback for checkout {outcome.checkout_request_id} handled: {outcome.status.value}"
    )
    return CALLBACK_ACKNOWLEDGEMENT


@router.get("/mpesa/status/{phone}")
async def mpesa_status(phone: str, service: PaymentService = Depends(get_payment_service)):
    bookings = await service.payment_status(phone)
    return {"success": True, "bookings": [b.to_dict() for b in bookings]}


@router.post("/bookings", status_code=201)
@limiter.limit(STK_RATE_LIMIT)
async def submit_booking(
    request: Request,
    body: BookingCreate,
    service: PaymentService = Depends(get_payment_service),
):
    booking, attempt = await service.submit_booking(body)
    return {"success": True, "booking": booking.to_dict(), "payment": _attempt_to_dict(attempt)}


@router.post("/bookings/{booking_id}/mark-paid")
async def mark_booking_paid(
    booking_id: str,
    body: Optional[MarkPaidBody] = None,
    service: PaymentService = Depends(get_payment_service),
    api_key: str = Depends(verify_api_key),
):
    mpesa_code = body.mpesa_code if body else MANUAL_PAYMENT_CODE
    booking = await service.mark_paid(booking_id, mpesa_code)
    return {"success": True, "booking": booking.to_dict()}


def create_app(
    store: Optional[BookingStore] = None,
    connector: Optional[ConnectorBase] = None,
    config: Optional[MpesaConfig] = None,
) -> FastAPI:
    """Build the API application.

    Args:
        store: Booking store. Defaults to the JSON store when BOOKINGS_JSON_PATH
            is set, otherwise the SQL store on DATABASE_URL.
        connector: Gateway connector. Defaults to MpesaConnector(config).
        config: Gateway configuration. Defaults to MpesaConfig.from_env().
    """
    config = config or MpesaConfig.from_env()
    store = store or _default_store()
    connector = connector or MpesaConnector(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await store.initialize()
        if not config.callback_url:
            logger.warning("Callback URL: Not configured!")
        else:
            logger.info(f"Callback URL: {config.callback_url}")
        yield
        await store.close()

    app = FastAPI(title="Ride Payments - M-Pesa API", lifespan=lifespan)
    app.state.config = config
    app.state.store = store
    app.state.connector = connector
    app.state.payment_service = PaymentService(store, connector)
    app.state.limiter = limiter

    app.add_exception_handler(RidePaymentsError, ride_payments_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.include_router(router)
    return app


app = create_app()
