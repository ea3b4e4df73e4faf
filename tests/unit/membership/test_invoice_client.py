"""
Unit Tests for InvoiceServiceClient

HTTP calls are served by an httpx.MockTransport.
"""

import json

import httpx
import pytest

from microservices.membership_service.clients.invoice_client import InvoiceServiceClient
from microservices.membership_service.money import Money


def make_client(handler) -> InvoiceServiceClient:
    transport = httpx.MockTransport(handler)
    return InvoiceServiceClient(
        base_url="http://invoice.test/",
        client=httpx.AsyncClient(transport=transport),
    )


class TestInvoiceServiceClient:
    """Tests for charge and credit requests"""

    @pytest.mark.asyncio
    async def test_charge_payload(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202, json={"accepted": True})

        client = make_client(handler)
        ok = await client.request_charge("mbr_1", "sub_1", Money.of("96.77", "SAR"), "plan_change_proration", "pch_1")
        await client.close()

        assert ok is True
        request = seen[0]
        assert str(request.url) == "http://invoice.test/api/v1/invoices/charges"
        assert request.headers["X-Internal-Call"] == "true"
        body = json.loads(request.content)
        assert body["amount"] == "96.77"
        assert body["currency"] == "SAR"
        assert body["reference_id"] == "pch_1"

    @pytest.mark.asyncio
    async def test_credit_path(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(201)

        client = make_client(handler)
        assert await client.request_credit("mbr_1", "sub_1", Money.of(300, "SAR"), "cooling_off_refund")
        assert paths == ["/api/v1/invoices/credits"]

    @pytest.mark.asyncio
    async def test_rejection_returns_false(self):
        client = make_client(lambda request: httpx.Response(422, json={"detail": "bad amount"}))

        assert await client.request_charge("mbr_1", "sub_1", Money.of(1, "SAR"), "join_fee") is False

    @pytest.mark.asyncio
    async def test_transport_error_returns_false(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)

        assert await client.request_credit("mbr_1", "sub_1", Money.of(1, "SAR"), "cooling_off_refund") is False
