"""
Gateway client and webhook signature tests.

Validates resilience against provider failures.
"""

import asyncio
import json

import httpx
import pytest

from dinetrack.app.core.reliability import CircuitBreaker, CircuitOpenError
from dinetrack.app.domain.payments.gateway import PayChanguGateway, PaymentGatewayError
from dinetrack.app.domain.payments.signature import compute_signature, verify_signature

BASE_URL = "https://api.paychangu.test/v1"


def make_gateway(handler, breaker=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PayChanguGateway(BASE_URL, "sk_test_123", client=client, breaker=breaker)


@pytest.mark.asyncio
async def test_create_payment_sends_auth_and_idempotency_key():
    seen = {}

    def handler(request: httpx.Request):
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["key"] = request.headers["Idempotency-Key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"id": "pc_1", "status": "pending", "checkout_url": "https://pay/pc_1"})

    gateway = make_gateway(handler)
    data = await gateway.create_payment({"amount": 1000, "currency": "MWK"}, idempotency_key="abc")
    await gateway.close()

    assert data["id"] == "pc_1"
    assert seen == {
        "method": "POST",
        "url": f"{BASE_URL}/payments",
        "auth": "Bearer sk_test_123",
        "key": "abc",
        "body": {"amount": 1000, "currency": "MWK"},
    }


@pytest.mark.asyncio
async def test_get_payment():
    def handler(request: httpx.Request):
        assert request.url.path.endswith("/payments/pc_9")
        assert "Idempotency-Key" not in request.headers
        return httpx.Response(200, json={"transaction_id": "pc_9", "state": "successful"})

    gateway = make_gateway(handler)

    assert await gateway.get_payment("pc_9") == {"transaction_id": "pc_9", "state": "successful"}


@pytest.mark.asyncio
async def test_rejection_carries_status_and_body():
    gateway = make_gateway(lambda request: httpx.Response(422, json={"message": "Invalid phone"}))

    with pytest.raises(PaymentGatewayError) as exc_info:
        await gateway.create_payment({}, idempotency_key="k")

    assert exc_info.value.status_code == 422
    assert exc_info.value.body == {"message": "Invalid phone"}
    assert exc_info.value.is_rejection is True


@pytest.mark.asyncio
async def test_transport_error_is_gateway_error():
    def handler(request):
        raise httpx.ConnectError("connection refused")

    gateway = make_gateway(handler)

    with pytest.raises(PaymentGatewayError) as exc_info:
        await gateway.get_payment("pc_1")

    assert exc_info.value.status_code is None
    assert exc_info.value.is_rejection is False


@pytest.mark.asyncio
async def test_non_json_body_is_gateway_error():
    gateway = make_gateway(lambda request: httpx.Response(200, text="<html>maintenance</html>"))

    with pytest.raises(PaymentGatewayError):
        await gateway.get_payment("pc_1")


@pytest.mark.asyncio
async def test_server_errors_open_the_circuit():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        return httpx.Response(503, text="unavailable")

    gateway = make_gateway(handler, breaker=CircuitBreaker(
        failure_threshold=2,
        reset_timeout=60,
        counts_as_failure=lambda exc: isinstance(exc, PaymentGatewayError) and not exc.is_rejection,
    ))

    for _ in range(3):
        with pytest.raises(PaymentGatewayError):
            await gateway.get_payment("pc_1")

    assert calls["n"] == 2
    assert gateway.breaker.state == "OPEN"


@pytest.mark.asyncio
async def test_rejections_do_not_open_the_circuit():
    gateway = make_gateway(lambda request: httpx.Response(400, json={"message": "bad"}))

    for _ in range(6):
        with pytest.raises(PaymentGatewayError):
            await gateway.create_payment({}, idempotency_key="k")

    assert gateway.breaker.state == "CLOSED"


@pytest.mark.asyncio
async def test_circuit_breaker_half_open_recovers():
    """Test that circuit breaker lets a trial call through after the timeout."""
    cb = CircuitBreaker(failure_threshold=1, reset_timeout=0.01)

    async def failing_func():
        raise ValueError("Boom")

    async def ok_func():
        return "ok"

    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert cb.state == "OPEN"

    await asyncio.sleep(0.02)
    assert await cb.call(ok_func) == "ok"
    assert cb.state == "CLOSED"
    assert cb.failures == 0


@pytest.mark.asyncio
async def test_circuit_breaker_rejects_while_open():
    cb = CircuitBreaker(failure_threshold=1, reset_timeout=60)

    async def failing_func():
        raise ValueError("Boom")

    with pytest.raises(ValueError):
        await cb.call(failing_func)

    with pytest.raises(CircuitOpenError):
        await cb.call(failing_func)


# Webhook signatures

def test_signature_round_trip_with_prefix():
    body = b'{"id": "pc_1", "status": "successful"}'
    signature = compute_signature(body, "s3cret")

    assert verify_signature(body, signature, "s3cret")
    assert verify_signature(body, f"sha256={signature}", "s3cret")
    assert verify_signature(body, signature.upper(), "s3cret")


def test_tampered_body_fails_signature():
    signature = compute_signature(b'{"amount": 100}', "s3cret")

    assert not verify_signature(b'{"amount": 999}', signature, "s3cret")


def test_missing_signature_or_secret():
    body = b"{}"

    assert not verify_signature(body, None, "s3cret")
    assert not verify_signature(body, "abc", None)
    assert verify_signature(body, None, None, allow_unsigned=True)


def test_non_ascii_signature_is_rejected():
    body = b'{"id": "pc_1", "status": "successful"}'

    assert not verify_signature(body, "caf\xe9", "s3cret")
    assert not verify_signature(body, "sha256=\xe9" + compute_signature(body, "s3cret")[1:], "s3cret")
