"""Tests for the events API endpoint wrappers."""

import httpx
import pytest

from core.api_client import PAYMENT_IN_PROGRESS_CODE, PaymentConflictError
from schemas import EventType, GatewayResponse, PaymentStatus, RegistrationDraft
from services import events_api
from tests.fakes import envelope, error_response, event_payload, lost_response

pytestmark = pytest.mark.unit


class TestEvents:
    """Tests for event lookups."""

    async def test_get_event_parses_camel_case(self, api, backend):
        backend.on("GET", "/events/evt_1", envelope(event_payload()))

        event = await events_api.get_event(api, "evt_1")

        assert event.id == "evt_1"
        assert event.event_type == EventType.PAID
        assert event.is_paid
        assert event.amount_in_paise == 50000

    async def test_registrations_are_paginated(self, api, backend):
        seen = []

        def handler(request):
            seen.append(dict(request.url.params))
            return envelope({"docs": [], "totalDocs": 0})

        backend.on("GET", "/events/evt_1/registrations", handler)

        await events_api.get_event_registrations(api, "evt_1", page=2, limit=5)

        assert seen == [{"page": "2", "limit": "5"}]


class TestPayments:
    """Tests for payment endpoints."""

    @pytest.mark.parametrize(
        "kwargs, expected",
        [
            ({}, {"eventId": "evt_1"}),
            ({"reuse_existing": True}, {"eventId": "evt_1", "reuseExisting": True}),
            (
                {"force_cancel_existing": True},
                {"eventId": "evt_1", "forceCancelExisting": True},
            ),
        ],
    )
    async def test_create_order_payload(self, api, backend, kwargs, expected):
        backend.on("POST", "/payments/create-order", envelope({"orderId": "order_1"}))

        order = await events_api.create_order(api, "evt_1", **kwargs)

        assert order.order_id == "order_1"
        assert backend.calls_to("/payments/create-order") == [expected]

    async def test_create_order_conflict(self, api, backend):
        backend.on(
            "POST",
            "/payments/create-order",
            error_response(409, "Payment in progress", code=PAYMENT_IN_PROGRESS_CODE),
        )

        with pytest.raises(PaymentConflictError):
            await events_api.create_order(api, "evt_1")

    async def test_new_order_is_not_resent_after_lost_response(self, api, backend):
        backend.on("POST", "/payments/create-order", lost_response)

        with pytest.raises(httpx.ReadTimeout):
            await events_api.create_order(api, "evt_1")

        assert backend.calls_to("/payments/create-order") == [{"eventId": "evt_1"}]

    async def test_reusing_order_is_resent_after_lost_response(self, api, backend):
        attempts = [lost_response, lambda request: envelope({"orderId": "order_1"})]
        backend.on(
            "POST", "/payments/create-order", lambda request: attempts.pop(0)(request)
        )

        order = await events_api.create_order(api, "evt_1", reuse_existing=True)

        assert order.order_id == "order_1"
        assert len(backend.calls_to("/payments/create-order")) == 2

    async def test_verify_payment_sends_gateway_fields_only(self, api, backend):
        backend.on("POST", "/events/payment/verify", envelope({}))

        await events_api.verify_payment(
            api,
            GatewayResponse(
                razorpay_order_id="order_1",
                razorpay_payment_id="pay_1",
                razorpay_signature="sig_1",
            ),
        )

        assert backend.calls_to("/events/payment/verify") == [
            {
                "razorpay_order_id": "order_1",
                "razorpay_payment_id": "pay_1",
                "razorpay_signature": "sig_1",
            }
        ]

    async def test_user_payments(self, api, backend):
        backend.on(
            "GET",
            "/payments/user/my-payments",
            envelope(
                {
                    "docs": [
                        {
                            "_id": "p1",
                            "razorpayOrderId": "order_1",
                            "status": "paid",
                            "amount": 500,
                            "razorpayPaymentId": "pay_1",
                            "razorpaySignature": "sig_1",
                        },
                        {"_id": "p2", "razorpayOrderId": "order_2"},
                    ]
                }
            ),
        )

        payments = await events_api.get_user_payments(api)

        assert [p.payment_id for p in payments] == ["p1", "p2"]
        assert payments[0].status == PaymentStatus.PAID
        assert payments[0].is_finalizable
        assert not payments[1].is_finalizable


class TestRegistrations:
    """Tests for registration endpoints."""

    async def test_register_after_payment_payload(self, api, backend):
        backend.on("POST", "/events/register-after-payment", envelope({}))
        draft = RegistrationDraft(name="Asha", email="asha@example.com")

        await events_api.register_after_payment(api, draft, "order_1")

        assert backend.calls_to("/events/register-after-payment") == [
            {
                "name": "Asha",
                "email": "asha@example.com",
                "phone": "",
                "organization": "",
                "answers": [],
                "razorpay_order_id": "order_1",
            }
        ]
