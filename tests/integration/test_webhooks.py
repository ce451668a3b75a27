import json
from uuid import UUID

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import update

from app.crud.order import OrderCRUD
from app.db.enums import OrderStatus, PaymentStatus
from app.main import app
from app.models.order import Order
from app.services.settlement_service import SettlementService


def _event_body(event: str, razorpay_order_id: str, payment_id: str = "pay_hook_001") -> bytes:
    return json.dumps(
        {
            "entity": "event",
            "event": event,
            "contains": ["payment"],
            "payload": {
                "payment": {
                    "entity": {
                        "id": payment_id,
                        "entity": "payment",
                        "order_id": razorpay_order_id,
                        "status": "captured" if event == "payment.captured" else "failed",
                    }
                }
            },
        }
    ).encode()


@pytest.fixture
async def payable_order(client, customer_token, products, address, add_to_cart, place_order):
    """A pending order with an open payment session."""
    await add_to_cart(customer_token, products["mug"], 2)
    order = (await place_order(customer_token, address)).json()
    intent = (
        await client.post(f"/api/v1/payments/orders/{order['id']}/intent", headers=customer_token)
    ).json()
    return {"id": order["id"], "razorpay_order_id": intent["razorpay_order_id"]}


@pytest.fixture
def deliver(client, sign_webhook):
    async def _deliver(body: bytes, signature: str | None = None, event_id: str | None = None):
        headers = {
            "content-type": "application/json",
            "x-razorpay-signature": signature if signature is not None else sign_webhook(body),
        }
        if event_id:
            headers["x-razorpay-event-id"] = event_id
        return await client.post("/api/v1/payments/webhooks/razorpay", content=body, headers=headers)

    return _deliver


@pytest.fixture
def settlement(db_session, gateway, mock_redis):
    return SettlementService(db_session, gateway, mock_redis)


async def _reload(db_session, order_id) -> Order:
    return await db_session.get(Order, UUID(order_id), populate_existing=True)


# --------------------------------------------------
# HTTP ENDPOINT
# --------------------------------------------------
@pytest.mark.asyncio
async def test_captured_event_settles_order(deliver, payable_order, db_session):
    body = _event_body("payment.captured", payable_order["razorpay_order_id"])

    response = await deliver(body, event_id="evt_001")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}

    order = await _reload(db_session, payable_order["id"])
    assert order.status == OrderStatus.CONFIRMED
    assert order.payment_status == PaymentStatus.PAID
    assert order.payment_id == "pay_hook_001"
    assert order.paid_at is not None


@pytest.mark.asyncio
async def test_invalid_signature_is_acknowledged_but_ignored(deliver, payable_order, db_session):
    body = _event_body("payment.captured", payable_order["razorpay_order_id"])

    response = await deliver(body, signature="0" * 64)

    assert response.status_code == 200
    order = await _reload(db_session, payable_order["id"])
    assert order.payment_status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_missing_signature_is_acknowledged_but_ignored(client, payable_order, db_session):
    body = _event_body("payment.captured", payable_order["razorpay_order_id"])

    response = await client.post(
        "/api/v1/payments/webhooks/razorpay",
        content=body,
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 200
    order = await _reload(db_session, payable_order["id"])
    assert order.payment_status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_replayed_capture_applies_once(deliver, payable_order, db_session):
    body = _event_body("payment.captured", payable_order["razorpay_order_id"])

    await deliver(body)
    paid_at = (await _reload(db_session, payable_order["id"])).paid_at
    response = await deliver(body)

    assert response.status_code == 200
    order = await _reload(db_session, payable_order["id"])
    assert order.payment_status == PaymentStatus.PAID
    assert order.paid_at == paid_at


@pytest.mark.asyncio
async def test_failed_then_captured(deliver, payable_order, db_session):
    rzp_order_id = payable_order["razorpay_order_id"]

    await deliver(_event_body("payment.failed", rzp_order_id, "pay_declined"))

    order = await _reload(db_session, payable_order["id"])
    assert order.status == OrderStatus.PENDING
    assert order.payment_status == PaymentStatus.FAILED
    assert order.payment_id == "pay_declined"

    # A retry on the same session can still succeed
    await deliver(_event_body("payment.captured", rzp_order_id, "pay_retry"))

    order = await _reload(db_session, payable_order["id"])
    assert order.status == OrderStatus.CONFIRMED
    assert order.payment_status == PaymentStatus.PAID
    assert order.payment_id == "pay_retry"


@pytest.mark.asyncio
async def test_failure_after_payment_does_not_regress(deliver, payable_order, db_session):
    rzp_order_id = payable_order["razorpay_order_id"]

    await deliver(_event_body("payment.captured", rzp_order_id, "pay_ok"))
    await deliver(_event_body("payment.failed", rzp_order_id, "pay_late_failure"))

    order = await _reload(db_session, payable_order["id"])
    assert order.payment_status == PaymentStatus.PAID
    assert order.payment_id == "pay_ok"


@pytest.mark.asyncio
async def test_capture_after_refund_does_not_reopen(deliver, payable_order, db_session):
    order_id = UUID(payable_order["id"])
    await db_session.execute(
        update(Order)
        .where(Order.id == order_id)
        .values(payment_status=PaymentStatus.REFUNDED, status=OrderStatus.CANCELLED)
    )
    await db_session.commit()

    body = _event_body("payment.captured", payable_order["razorpay_order_id"], "pay_replayed")
    response = await deliver(body)

    assert response.status_code == 200
    order = await _reload(db_session, payable_order["id"])
    assert order.payment_status == PaymentStatus.REFUNDED
    assert order.status == OrderStatus.CANCELLED
    assert order.payment_id is None
    assert order.paid_at is None


@pytest.mark.asyncio
async def test_webhook_acknowledged_without_gateway(deliver, payable_order, db_session):
    app.state.payment_gateway = None
    body = _event_body("payment.captured", payable_order["razorpay_order_id"])

    response = await deliver(body)

    assert response.status_code == 200
    order = await _reload(db_session, payable_order["id"])
    assert order.payment_status == PaymentStatus.PENDING


# --------------------------------------------------
# SETTLEMENT OUTCOMES
# --------------------------------------------------
@pytest.mark.asyncio
async def test_outcome_invalid_signature(settlement, payable_order):
    body = _event_body("payment.captured", payable_order["razorpay_order_id"])

    assert await settlement.handle_webhook(body=body, signature="bad") == "invalid_signature"
    assert await settlement.handle_webhook(body=body, signature=None) == "invalid_signature"


@pytest.mark.asyncio
async def test_outcome_unknown_order(settlement, sign_webhook, payable_order):
    body = _event_body("payment.captured", "order_doesnotexist")

    assert await settlement.handle_webhook(body=body, signature=sign_webhook(body)) == "unknown_order"


@pytest.mark.asyncio
async def test_outcome_unhandled_event(settlement, sign_webhook, payable_order):
    body = _event_body("refund.processed", payable_order["razorpay_order_id"])

    assert await settlement.handle_webhook(body=body, signature=sign_webhook(body)) == "ignored"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        b"[1, 2, 3]",
        json.dumps({"event": "payment.captured", "payload": {"payment": {}}}).encode(),
        json.dumps({"event": "payment.captured", "payload": "oops"}).encode(),
    ],
)
async def test_outcome_invalid_payload(settlement, sign_webhook, body):
    assert await settlement.handle_webhook(body=body, signature=sign_webhook(body)) == "invalid_payload"


@pytest.mark.asyncio
async def test_outcome_settled_then_already_paid(settlement, sign_webhook, payable_order):
    body = _event_body("payment.captured", payable_order["razorpay_order_id"])
    signature = sign_webhook(body)

    assert await settlement.handle_webhook(body=body, signature=signature) == "settled"
    assert await settlement.handle_webhook(body=body, signature=signature) == "already_paid"


@pytest.mark.asyncio
@pytest.mark.parametrize("payment_status", [PaymentStatus.PAID, PaymentStatus.REFUNDED])
async def test_settled_order_rejects_any_later_result(payable_order, db_session, payment_status):
    order_id = UUID(payable_order["id"])
    await db_session.execute(
        update(Order).where(Order.id == order_id).values(payment_status=payment_status)
    )
    await db_session.commit()

    for late_result in (PaymentStatus.PAID, PaymentStatus.FAILED):
        applied = await OrderCRUD(db_session).apply_payment_result(
            order_id=order_id,
            payment_status=late_result,
            razorpay_order_id=payable_order["razorpay_order_id"],
            payment_id="pay_late",
        )
        assert applied is False
    await db_session.commit()

    order = await _reload(db_session, payable_order["id"])
    assert order.payment_status == payment_status
    assert order.payment_id is None


@pytest.mark.asyncio
async def test_duplicate_event_id_is_skipped(settlement, sign_webhook, payable_order, mock_redis):
    rzp_order_id = payable_order["razorpay_order_id"]
    failed = _event_body("payment.failed", rzp_order_id)

    first = await settlement.handle_webhook(
        body=failed, signature=sign_webhook(failed), event_id="evt_dup"
    )
    second = await settlement.handle_webhook(
        body=failed, signature=sign_webhook(failed), event_id="evt_dup"
    )

    assert first == "settled"
    assert second == "duplicate"
    assert "webhook:event:evt_dup" in mock_redis.storage
    _, kwargs = mock_redis.set.call_args
    assert kwargs["nx"] is True
    assert kwargs["ex"] == 60 * 60 * 24


@pytest.mark.asyncio
async def test_redis_outage_falls_back_to_status_guard(
    settlement, sign_webhook, payable_order, mock_redis, db_session
):
    mock_redis.set.side_effect = RedisConnectionError("redis down")
    body = _event_body("payment.captured", payable_order["razorpay_order_id"])

    outcome = await settlement.handle_webhook(
        body=body, signature=sign_webhook(body), event_id="evt_outage"
    )

    assert outcome == "settled"
    order = await _reload(db_session, payable_order["id"])
    assert order.payment_status == PaymentStatus.PAID


@pytest.mark.asyncio
async def test_processing_error_releases_event_id(
    settlement, sign_webhook, payable_order, mock_redis, monkeypatch
):
    async def explode(self, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr("app.crud.order.OrderCRUD.apply_payment_result", explode)
    body = _event_body("payment.captured", payable_order["razorpay_order_id"])

    outcome = await settlement.handle_webhook(
        body=body, signature=sign_webhook(body), event_id="evt_retry_me"
    )

    assert outcome == "error"
    # The provider's retry must not be mistaken for a duplicate
    assert "webhook:event:evt_retry_me" not in mock_redis.storage
