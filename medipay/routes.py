from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from medipay import payments
from medipay.auth import verify_token
from medipay.config import Settings
from medipay.dependencies import get_gateway, get_notifier, get_store, settings_dependency
from medipay.exceptions import SignatureMismatch
from medipay.gateway import GatewayClient
from medipay.logging_config import get_logger
from medipay.notifications import Notifier
from medipay.store import PaymentOrderStore

router = APIRouter(prefix="/payment")

logger = get_logger(__name__)


class DeliveryAddress(BaseModel):
    model_config = ConfigDict(extra="allow")

    city: Optional[str] = None
    state: Optional[str] = None


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: Optional[int] = None
    currency: Optional[str] = None
    receipt: Optional[str] = None
    user_id: Optional[str] = Field(None, alias="userId")
    user_email: Optional[str] = Field(None, alias="userEmail")
    items: Optional[list] = None
    delivery_address: Optional[DeliveryAddress] = Field(None, alias="deliveryAddress")


class VerifyRequest(BaseModel):
    order_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("externalOrderId", "razorpay_order_id")
    )
    payment_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("externalPaymentId", "razorpay_payment_id")
    )
    signature: Optional[str] = Field(
        None, validation_alias=AliasChoices("clientSignature", "razorpay_signature")
    )


@router.get("/config")
def payment_config(settings: Settings = Depends(settings_dependency)):
    has_key_id = bool(settings.key_id)
    has_key_secret = bool(settings.key_secret)
    if not (has_key_id and has_key_secret):
        logger.warning("gateway_config_incomplete", has_key_id=has_key_id, has_key_secret=has_key_secret)

    return {
        "success": True,
        "hasKeyId": has_key_id,
        "hasKeySecret": has_key_secret,
        "hasWebhookSecret": bool(settings.webhook_secret),
        "keyIdPreview": settings.key_id_preview,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/create-order")
def create_order_api(
    request: CreateOrderRequest,
    gateway: GatewayClient = Depends(get_gateway),
    store: PaymentOrderStore = Depends(get_store),
):
    address = request.delivery_address.model_dump() if request.delivery_address else None
    order = payments.create_order(
        gateway,
        store,
        amount=request.amount,
        currency=request.currency,
        receipt=request.receipt,
        user_id=request.user_id,
        user_email=request.user_email,
        items=request.items,
        delivery_address=address,
    )
    return {"success": True, "order": order}


@router.post("/verify")
def verify_payment_api(
    request: VerifyRequest,
    background_tasks: BackgroundTasks,
    gateway: GatewayClient = Depends(get_gateway),
    store: PaymentOrderStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
):
    result = payments.verify_payment(
        gateway,
        store,
        notifier,
        order_id=request.order_id,
        payment_id=request.payment_id,
        signature=request.signature,
        schedule=background_tasks.add_task,
    )
    return result.to_dict()


@router.get("/payment/{payment_id}")
def get_payment_api(payment_id: str, gateway: GatewayClient = Depends(get_gateway)):
    return {"success": True, "payment": payments.get_payment(gateway, payment_id)}


@router.get("/orders/{order_id}")
def get_order_api(
    order_id: str,
    store: PaymentOrderStore = Depends(get_store),
    auth=Depends(verify_token),
):
    return {"success": True, "order": payments.get_order(store, order_id)}


@router.post("/webhook")
async def gateway_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_razorpay_signature: str = Header(None),
    x_razorpay_event_id: str = Header(None),
    settings: Settings = Depends(settings_dependency),
    store: PaymentOrderStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
):
    payload = await request.body()

    try:
        outcome = await run_in_threadpool(
            payments.handle_webhook,
            store,
            notifier,
            raw_body=payload,
            signature_header=x_razorpay_signature,
            secret=settings.signing_secret,
            event_id=x_razorpay_event_id,
            schedule=background_tasks.add_task,
        )
    except SignatureMismatch:
        raise HTTPException(status_code=400, detail="Invalid signature")

    logger.debug("webhook_acknowledged", event_type=outcome.event_type, duplicate=outcome.duplicate)
    return {"status": "ok"}
