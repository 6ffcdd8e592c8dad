import asyncio
from unittest.mock import patch

import httpx
import pytest
from pydantic import ValidationError

from motorconnect.core.config import settings
from motorconnect.schemas.payments import PaymentState, TIMEOUT_FAILURE_REASON
from motorconnect.utils.payment_service import PAYMENT_TIMEOUT_MESSAGE, PaymentService, PaymentServiceError


def payment_status(transaction_id="tx-1", status="PENDING", **extra):
    data = {
        "transactionId": transaction_id,
        "status": status,
        "provider": "mpesa",
        "amount": 1500,
        "createdAt": "2024-05-01T10:00:00Z",
    }
    data.update(extra)
    return data


def fast_service(api, timeout=0.2):
    return PaymentService(api, poll_interval=0.01, poll_timeout=timeout)


# Initiation

def test_initiate_mpesa_payment_sends_normalized_phone(make_api, marketplace):
    marketplace.add("POST", "/api/payments/initiate", (200, {
        "success": True,
        "provider": "mpesa",
        "transactionId": "tx-1",
        "checkoutRequestId": "ws_CO_123",
        "message": "STK push sent",
    }))

    async def run():
        service = PaymentService(make_api())
        transaction = await service.initiate_payment("og-1", "mpesa", "0712 345 678")
        return service, transaction

    service, transaction = asyncio.run(run())

    assert transaction.transaction_id == "tx-1"
    assert transaction.checkout_request_id == "ws_CO_123"
    assert service.current_transaction is transaction
    assert marketplace.body(marketplace.requests[0]) == {
        "orderGroupId": "og-1",
        "paymentMethod": "mpesa",
        "phoneNumber": "0712345678",
    }


def test_card_payment_drops_phone_number(make_api, marketplace):
    marketplace.add("POST", "/api/payments/initiate", (200, {
        "provider": "stripe",
        "transactionId": "pi_1",
        "clientSecret": "pi_1_secret",
        "publishableKey": "pk_test_1",
    }))

    async def run():
        service = PaymentService(make_api())
        return await service.initiate_payment("og-1", "stripe", "0712345678")

    transaction = asyncio.run(run())

    assert transaction.client_secret == "pi_1_secret"
    assert "phoneNumber" not in marketplace.body(marketplace.requests[0])


def test_paystack_public_key_falls_back_to_settings(make_api, marketplace):
    marketplace.add("POST", "/api/payments/initiate", (200, {
        "provider": "paystack",
        "transactionId": "ps-1",
        "reference": "ref-1",
    }))

    async def run():
        return await PaymentService(make_api()).initiate_payment("og-1", "paystack")

    with patch.object(settings, "PAYSTACK_PUBLIC_KEY", "pk_test_local"):
        transaction = asyncio.run(run())

    assert transaction.public_key == "pk_test_local"


@pytest.mark.parametrize("phone", [None, "", "0812345678", "071234567", "+254712345678"])
def test_invalid_mpesa_phone_never_reaches_api(make_api, marketplace, phone):
    async def run():
        service = PaymentService(make_api())
        try:
            await service.initiate_payment("og-1", "mpesa", phone)
        finally:
            assert "valid phone number" in service.error

    with pytest.raises(ValidationError):
        asyncio.run(run())
    assert marketplace.requests == []


def test_initiate_failure_uses_api_message(make_api, marketplace):
    marketplace.add("POST", "/api/payments/initiate", (400, {"error": "Order already paid"}))

    async def run():
        service = PaymentService(make_api())
        try:
            await service.initiate_payment("og-1", "paystack")
        finally:
            assert service.error == "Order already paid"

    with pytest.raises(PaymentServiceError, match="Order already paid"):
        asyncio.run(run())


def test_initiate_failure_without_message_uses_fallback(make_api, marketplace):
    marketplace.add("POST", "/api/payments/initiate", (500, {}))

    async def run():
        await PaymentService(make_api()).initiate_payment("og-1", "paystack")

    with pytest.raises(PaymentServiceError, match="Failed to initiate payment"):
        asyncio.run(run())


# Polling

def test_polling_times_out_with_failed_status(make_api, marketplace):
    marketplace.add("GET", "/api/payments/tx-1/status", (200, payment_status()))

    async def run():
        completions = []
        service = fast_service(make_api())
        handle = service.start_polling("tx-1", completions.append)
        assert service.is_polling
        final = await handle.wait()
        return service, completions, final

    service, completions, final = asyncio.run(run())

    assert len(completions) == 1
    assert completions[0] is final
    assert final.status == PaymentState.FAILED
    assert final.failure_reason == TIMEOUT_FAILURE_REASON
    assert final.amount == 1500
    assert service.error == PAYMENT_TIMEOUT_MESSAGE
    assert service.is_polling is False
    assert len(marketplace.requests) > 1


def test_polling_stops_at_first_terminal_status(make_api, marketplace):
    marketplace.add(
        "GET",
        "/api/payments/tx-1/status",
        (200, payment_status()),
        (200, payment_status(status="PAID", mpesaReceiptNumber="QWE123XYZ")),
    )

    async def run():
        completions = []

        async def on_complete(status):
            completions.append(status)

        service = fast_service(make_api(), timeout=5)
        await service.start_polling("tx-1", on_complete).wait()
        # no further ticks after completion
        await asyncio.sleep(0.05)
        return service, completions

    service, completions = asyncio.run(run())

    assert len(marketplace.requests) == 2
    assert [s.status for s in completions] == [PaymentState.PAID]
    assert completions[0].mpesa_receipt_number == "QWE123XYZ"
    assert service.payment_status.status == PaymentState.PAID
    assert service.error is None


def test_new_poll_cancels_previous_one(make_api, marketplace):
    marketplace.add("GET", "/api/payments/tx-1/status", (200, payment_status()))
    marketplace.add("GET", "/api/payments/tx-2/status", (200, payment_status("tx-2", status="PAID")))

    async def run():
        first_completions, second_completions = [], []
        service = fast_service(make_api(), timeout=5)
        first = service.start_polling("tx-1", first_completions.append)
        await asyncio.sleep(0.03)
        second = service.start_polling("tx-2", second_completions.append)
        await second.wait()
        await asyncio.sleep(0.03)
        return first, first_completions, second_completions

    first, first_completions, second_completions = asyncio.run(run())

    assert first.task.cancelled()
    assert not first.active
    assert first_completions == []
    assert [s.transaction_id for s in second_completions] == ["tx-2"]


def test_stop_polling_is_idempotent(make_api, marketplace):
    marketplace.add("GET", "/api/payments/tx-1/status", (200, payment_status()))

    async def run():
        completions = []
        service = fast_service(make_api(), timeout=5)
        handle = service.start_polling("tx-1", completions.append)
        await asyncio.sleep(0.03)
        service.stop_polling()
        service.stop_polling()
        requests_at_stop = len(marketplace.requests)
        await asyncio.sleep(0.05)
        return service, handle, completions, requests_at_stop

    service, handle, completions, requests_at_stop = asyncio.run(run())

    assert service.is_polling is False
    assert not handle.active
    assert completions == []
    assert len(marketplace.requests) == requests_at_stop


def test_polling_retries_after_tick_errors(make_api, marketplace):
    marketplace.add(
        "GET",
        "/api/payments/tx-1/status",
        httpx.ConnectError("offline"),
        (500, {"error": "db down"}),
        (200, payment_status(status="FAILED", failureReason="Insufficient funds")),
    )

    async def run():
        service = fast_service(make_api(), timeout=5)
        return await service.wait_for_completion("tx-1")

    final = asyncio.run(run())

    assert final.status == PaymentState.FAILED
    assert final.failure_reason == "Insufficient funds"
    assert len(marketplace.requests) == 3


def test_polling_by_order_id_reads_order_payment_status(make_api, marketplace):
    marketplace.add(
        "GET",
        "/api/orders/og-1",
        (200, {"order": {"id": "og-1", "paymentStatus": "PENDING", "totalAmount": 2500}}),
        (200, {"order": {"id": "og-1", "paymentStatus": "PAID", "totalAmount": 2500, "orderNumber": "MC-0001"}}),
    )

    async def run():
        service = fast_service(make_api(), timeout=5)
        return await service.wait_for_completion("og-1", is_order_id=True)

    final = asyncio.run(run())

    assert final.status == PaymentState.PAID
    assert final.amount == 2500
    assert final.order_group.order_number == "MC-0001"


# Order status

def test_order_status_falls_back_to_public_endpoint(make_api, marketplace, token_store):
    token_store.set_token("expired")
    marketplace.add("GET", "/api/orders/og-1", (401, {"error": "jwt expired"}))
    marketplace.add("GET", "/api/orders/group/og-1", (200, {"orderGroup": {
        "id": "og-1",
        "paymentStatus": "PAID",
        "total": 4200,
        "paymentReference": "QWE123XYZ",
    }}))

    async def run():
        return await PaymentService(make_api()).check_order_status("og-1")

    status = asyncio.run(run())

    assert status.status == PaymentState.PAID
    assert status.amount == 4200
    assert status.order_group.payment_reference == "QWE123XYZ"
    public_request = marketplace.calls("GET", "/api/orders/group/og-1")[0]
    assert "Authorization" not in public_request.headers


def test_order_status_failure_reads_as_pending(make_api, marketplace):
    marketplace.add("GET", "/api/orders/og-1", (500, {"error": "db down"}))

    async def run():
        service = PaymentService(make_api())
        status = await service.check_order_status("og-1")
        return service, status

    service, status = asyncio.run(run())

    assert status.status == PaymentState.PENDING
    assert status.transaction_id == "og-1"
    assert status.amount == 0
    assert service.error == "db down"


# Paystack / simulation

def test_verify_paystack_payment(make_api, marketplace):
    marketplace.add("GET", "/api/payments/paystack/verify/ref-1", (200, {
        "success": True,
        "status": "success",
        "orderGroupId": "og-1",
    }))

    async def run():
        return await PaymentService(make_api()).verify_paystack_payment("ref-1")

    verification = asyncio.run(run())

    assert verification.success is True
    assert verification.reference == "ref-1"
    assert verification.order_group_id == "og-1"


def test_simulate_mpesa_payment(make_api, marketplace):
    marketplace.add("POST", "/api/payments/mpesa/simulate", (200, {"success": True}))

    async def run():
        return await PaymentService(make_api()).simulate_mpesa_payment("tx-1")

    assert asyncio.run(run()) == {"success": True}
    assert marketplace.body(marketplace.requests[0]) == {"transactionId": "tx-1"}


def test_simulate_refused_in_production(make_api, marketplace):
    async def run():
        await PaymentService(make_api()).simulate_mpesa_payment("tx-1")

    with patch.object(settings, "ENVIRONMENT", "production"):
        with pytest.raises(PaymentServiceError, match="not available in production"):
            asyncio.run(run())
    assert marketplace.requests == []


def test_reset_clears_state(make_api, marketplace):
    marketplace.add("GET", "/api/payments/tx-1/status", (200, payment_status()))

    async def run():
        service = fast_service(make_api(), timeout=5)
        await service.check_payment_status("tx-1")
        handle = service.start_polling("tx-1", lambda status: None)
        service.error = "stale"
        service.reset()
        await asyncio.sleep(0.02)
        return service, handle

    service, handle = asyncio.run(run())

    assert service.payment_status is None
    assert service.current_transaction is None
    assert service.error is None
    assert service.is_polling is False
    assert not handle.active


def test_timeout_reports_the_polled_transaction(make_api, marketplace):
    marketplace.add("GET", "/api/payments/tx-A/status", (200, payment_status("tx-A", status="PAID", amount=999)))
    marketplace.add("GET", "/api/payments/tx-B/status", (500, {"error": "db down"}))

    async def run():
        service = fast_service(make_api(), timeout=0.1)
        first = await service.wait_for_completion("tx-A")
        second = await service.wait_for_completion("tx-B")
        return first, second

    first, second = asyncio.run(run())

    assert first.status == PaymentState.PAID
    assert second.transaction_id == "tx-B"
    assert second.status == PaymentState.FAILED
    assert second.failure_reason == TIMEOUT_FAILURE_REASON
    assert second.amount == 0


def test_polling_keeps_a_fixed_cadence_with_slow_status_calls(make_api, marketplace):
    started = []

    async def slow_status(request):
        started.append(asyncio.get_running_loop().time())
        await asyncio.sleep(0.03)
        return httpx.Response(200, json=payment_status())

    marketplace.add("GET", "/api/payments/tx-1/status", slow_status)

    async def run():
        service = PaymentService(make_api(), poll_interval=0.05, poll_timeout=0.33)
        return await service.wait_for_completion("tx-1")

    final = asyncio.run(run())

    assert final.status == PaymentState.FAILED
    # ticks start every 0.05s, not every 0.05s plus the 0.03s request time
    assert len(started) >= 6
    average_gap = (started[-1] - started[0]) / (len(started) - 1)
    assert average_gap < 0.07


def test_failing_completion_callback_does_not_fail_polling(make_api, marketplace):
    marketplace.add("GET", "/api/payments/tx-1/status", (200, payment_status(status="PAID")))

    def on_complete(status):
        raise RuntimeError("page already closed")

    async def run():
        service = fast_service(make_api(), timeout=5)
        handle = service.start_polling("tx-1", on_complete)
        final = await handle.wait()
        return service, handle, final

    service, handle, final = asyncio.run(run())

    assert final.status == PaymentState.PAID
    assert handle.task.exception() is None
    assert service.is_polling is False


@pytest.mark.parametrize("body", [{"order": "x"}, {"orderGroup": ["og-1"]}, ["og-1"], "og-1"])
def test_order_status_with_unexpected_body_reads_as_pending(make_api, marketplace, body):
    marketplace.add("GET", "/api/orders/og-1", (200, body))

    async def run():
        service = PaymentService(make_api())
        status = await service.check_order_status("og-1")
        return service, status

    service, status = asyncio.run(run())

    assert status.status == PaymentState.PENDING
    assert service.error == "Order not found"
