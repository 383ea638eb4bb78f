import hashlib
import hmac
import json
from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest
from fastapi.testclient import TestClient
import httpx
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from medipay import payments
from medipay.config import Settings
from medipay.database import Base
from medipay.dependencies import get_gateway, get_notifier, get_store, settings_dependency
from medipay.main import app as fastapi_app
from medipay.models import OrderStatus, PaymentOrder, WebhookEvent
from medipay.store import PaymentOrderStore

KEY_SECRET = "integration_key_secret"
WEBHOOK_SECRET = "integration_webhook_secret"

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_integration.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False, "timeout": 30})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    # Setup: Create the tables
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def notifier(mocker):
    return mocker.Mock()


@pytest.fixture
def client(fake_gateway, notifier):
    gateway = fake_gateway.client(key_id="rzp_test_integration", key_secret=KEY_SECRET)
    store = PaymentOrderStore(TestingSessionLocal)
    settings = Settings(
        database_url=SQLALCHEMY_DATABASE_URL,
        key_id="rzp_test_integration",
        key_secret=KEY_SECRET,
        webhook_secret=WEBHOOK_SECRET,
        gateway_timeout=5.0,
        jwt_secret=None,
        frontend_url="http://localhost:3000",
        debug=False,
    )
    fastapi_app.dependency_overrides[get_gateway] = lambda: gateway
    fastapi_app.dependency_overrides[get_store] = lambda: store
    fastapi_app.dependency_overrides[get_notifier] = lambda: notifier
    fastapi_app.dependency_overrides[settings_dependency] = lambda: settings

    with TestClient(fastapi_app) as c:
        yield c

    # Cleanup dependencies
    fastapi_app.dependency_overrides.clear()


def hexdigest(secret, message):
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def test_full_payment_lifecycle_integration(client, fake_gateway, notifier):
    """
    Test the full lifecycle:
    1. Create order (API -> gateway mocked -> DB)
    2. Client callback verified (API -> DB)
    3. Gateway webhook arrives afterwards and is a no-op
    """

    # --- 1. CREATE ORDER ---
    fake_gateway.respond("POST", "/orders", {
        "id": "order_int_001",
        "amount": 50000,
        "currency": "INR",
        "receipt": "rcpt_int_001",
        "status": "created",
        "created_at": 1700000000,
    })

    response = client.post(
        "/payment/create-order",
        json={"amount": 50000, "currency": "INR", "receipt": "rcpt_int_001", "userId": "user_7"},
    )

    assert response.status_code == 200
    assert response.json()["order"]["amount"] == 50000

    db = TestingSessionLocal()
    order = db.get(PaymentOrder, "order_int_001")
    assert order is not None
    assert order.status == "created"
    assert order.user_id == "user_7"
    assert order.unseen is False
    db.close()

    # --- 2. VERIFY ---
    fake_gateway.respond("GET", "/payments/pay_int_001", {
        "id": "pay_int_001", "amount": 50000, "currency": "INR",
        "status": "captured", "method": "card", "created_at": 1700000050,
    })
    signature = hexdigest(KEY_SECRET, b"order_int_001|pay_int_001")

    verify_response = client.post("/payment/verify", json={
        "externalOrderId": "order_int_001",
        "externalPaymentId": "pay_int_001",
        "clientSignature": signature,
    })

    assert verify_response.status_code == 200
    assert verify_response.json()["success"] is True

    # --- 3. WEBHOOK ---
    payload = json.dumps({
        "event": "payment.captured",
        "payload": {"payment": {"entity": {
            "id": "pay_int_001", "order_id": "order_int_001",
            "amount": 50000, "currency": "INR",
        }}},
    }).encode()

    webhook_response = client.post(
        "/payment/webhook",
        content=payload,
        headers={
            "X-Razorpay-Signature": hexdigest(WEBHOOK_SECRET, payload),
            "X-Razorpay-Event-Id": "evt_int_001",
        },
    )

    assert webhook_response.status_code == 200
    assert webhook_response.json() == {"status": "ok"}

    db = TestingSessionLocal()
    final_order = db.get(PaymentOrder, "order_int_001")
    assert final_order.status == "paid"
    assert final_order.payment_id == "pay_int_001"
    events = db.query(WebhookEvent).filter_by(payment_id="pay_int_001").all()
    assert [e.event_id for e in events] == ["evt_int_001"]
    db.close()

    # The order was paid once, so the customer hears about it once.
    notifier.notify.assert_called_once_with("order_int_001", "paid", "pay_int_001")


def test_webhook_before_client_callback(client, fake_gateway, notifier):
    """Browser closed before the callback: the webhook alone settles the order."""
    db = TestingSessionLocal()
    db.add(PaymentOrder(order_id="order_int_002", receipt="rcpt_2", amount=1000,
                        currency="INR", status="created"))
    db.commit()
    db.close()

    payload = json.dumps({
        "event": "payment.failed",
        "payload": {"payment": {"entity": {"id": "pay_int_002", "order_id": "order_int_002"}}},
    }).encode()

    response = client.post(
        "/payment/webhook",
        content=payload,
        headers={"X-Razorpay-Signature": hexdigest(WEBHOOK_SECRET, payload)},
    )

    assert response.status_code == 200
    db = TestingSessionLocal()
    assert db.get(PaymentOrder, "order_int_002").status == "failed"
    db.close()
    notifier.notify.assert_called_once_with("order_int_002", "failed", "pay_int_002")


def test_create_order_gateway_failure_leaves_no_record(client, fake_gateway):
    """If the gateway fails, no local order is stored and the call is not retried."""
    fake_gateway.respond("POST", "/orders", httpx.ConnectError("gateway unreachable"))

    response = client.post(
        "/payment/create-order",
        json={"amount": 2500, "currency": "INR", "receipt": "rcpt_fail"},
    )

    assert response.status_code == 500
    assert len(fake_gateway.calls("POST", "/orders")) == 1
    db = TestingSessionLocal()
    assert db.query(PaymentOrder).count() == 0
    db.close()


def test_concurrent_verify_and_webhook_settle_once(mocker, fake_gateway):
    """Racing terminal signals for one order: exactly one wins, the order ends terminal."""
    store = PaymentOrderStore(TestingSessionLocal)
    notifier = mocker.Mock()
    gateway = fake_gateway.client(key_secret=KEY_SECRET)

    for i in range(5):
        order_id = f"order_race_{i}"
        store.add(PaymentOrder(order_id=order_id, receipt=f"rcpt_{i}", amount=100,
                               currency="INR", status="created"))

        payload = json.dumps({
            "event": "payment.failed",
            "payload": {"payment": {"entity": {"id": f"pay_race_{i}", "order_id": order_id}}},
        }).encode()
        signature = hexdigest(KEY_SECRET, f"{order_id}|pay_race_{i}".encode())
        barrier = Barrier(2)

        def verify():
            barrier.wait()
            return payments.verify_payment(
                gateway, store, notifier,
                order_id=order_id, payment_id=f"pay_race_{i}", signature=signature,
            )

        def webhook():
            barrier.wait()
            return payments.handle_webhook(
                store, notifier,
                raw_body=payload,
                signature_header=hexdigest(WEBHOOK_SECRET, payload),
                secret=WEBHOOK_SECRET,
            )

        with ThreadPoolExecutor(max_workers=2) as pool:
            verify_future = pool.submit(verify)
            webhook_future = pool.submit(webhook)
            verify_future.result()
            webhook_future.result()

        final = store.get(order_id)
        assert OrderStatus(final.status).is_terminal
        settled = [c for c in notifier.notify.call_args_list if c.args[0] == order_id]
        assert len(settled) == 1
        assert settled[0].args[1] == final.status
