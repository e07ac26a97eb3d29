"""
Payments router: escrow initiation, gateway callback, release and refund.
"""
import logging

from fastapi import APIRouter, Depends, Header, Request, status

from freight.dependencies import get_ledger
from freight.middleware.auth import get_current_actor
from freight.middleware.idempotency import check_idempotency, store_idempotency_result
from freight.redis_client import get_redis
from freight.schemas.schemas import (
    Actor,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentResponse,
    RefundRequest,
)
from freight.services.escrow import EscrowLedger
from freight.services.gateway import parse_stk_callback

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/payments", tags=["Payments"])

CALLBACK_ACK = {"ResultCode": 0, "ResultDesc": "Accepted"}


@router.post("/initiate", status_code=status.HTTP_201_CREATED, response_model=PaymentInitiateResponse)
async def initiate_payment(
    payload: PaymentInitiateRequest,
    actor: Actor = Depends(get_current_actor),
    ledger: EscrowLedger = Depends(get_ledger),
    redis=Depends(get_redis),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    """
    Start an STK push for the booking's estimated amount and hold it in escrow.
    - Idempotent: repeated calls with the same key return the same result.
    - Amount is always taken from the booking, never from the client.
    """
    cached = await check_idempotency(redis, actor.id, idempotency_key)
    if cached:
        return cached

    payment, receipt = await ledger.initiate(actor, payload.booking_id, payload.phone_number)
    response = PaymentInitiateResponse(
        payment_id=payment.id,
        checkout_request_id=receipt.external_request_id,
        customer_message=receipt.customer_message,
        status=payment.status,
        amount=float(payment.amount),
        currency=payment.currency,
    )
    await store_idempotency_result(
        redis, actor.id, idempotency_key, status.HTTP_201_CREATED, response.model_dump(mode="json")
    )
    return response


@router.post("/callback")
async def gateway_callback(request: Request, ledger: EscrowLedger = Depends(get_ledger)):
    """
    Daraja result notification. Always acknowledged with 200 so the gateway
    does not keep retrying; processing errors are logged.
    """
    try:
        body = await request.json()
    except ValueError:
        logger.warning("Gateway callback with unreadable body ignored")
        return CALLBACK_ACK

    result = parse_stk_callback(body)
    try:
        await ledger.confirm_external_result(result.reference, result.succeeded, result.transaction_reference)
    except Exception as exc:
        logger.error("Gateway callback processing error for %s: %s", result.reference, exc, exc_info=True)
    return CALLBACK_ACK


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: str,
    actor: Actor = Depends(get_current_actor),
    ledger: EscrowLedger = Depends(get_ledger),
):
    return PaymentResponse.from_payment(await ledger.get_payment(actor, payment_id))


@router.post("/{payment_id}/release", response_model=PaymentResponse)
async def release_payment(
    payment_id: str,
    actor: Actor = Depends(get_current_actor),
    ledger: EscrowLedger = Depends(get_ledger),
):
    return PaymentResponse.from_payment(await ledger.release(actor, payment_id))


@router.post("/{payment_id}/refund", response_model=PaymentResponse)
async def refund_payment(
    payment_id: str,
    payload: RefundRequest,
    actor: Actor = Depends(get_current_actor),
    ledger: EscrowLedger = Depends(get_ledger),
):
    # A refund after release surfaces as ManualInterventionRequired (202).
    return PaymentResponse.from_payment(await ledger.request_refund(actor, payment_id, payload.reason))
