"""Endpoint wrappers for events, registrations, payments and certificates.

Each function maps one backend route to a typed call. Routes stay thin on
purpose: orchestration (payment stages, PDF rendering) lives in the services
that call these.
"""

from typing import Any

from core.api_client import ApiClient
from schemas import (
    Certificate,
    CertificateVerification,
    Event,
    GatewayResponse,
    OrderResponse,
    PaymentAttempt,
    RegistrationDraft,
)

# Events


async def get_event(api: ApiClient, event_id: str) -> Event:
    data = await api.get(f"/events/{event_id}")
    return Event.model_validate(data)


async def get_event_registrations(
    api: ApiClient, event_id: str, *, page: int = 1, limit: int = 10
) -> dict[str, Any]:
    """Paginated registrations list, returned as the raw page envelope."""
    return await api.get(
        f"/events/{event_id}/registrations", params={"page": page, "limit": limit}
    )


# Registrations


async def register_for_event(
    api: ApiClient, event_id: str, draft: RegistrationDraft
) -> dict[str, Any]:
    """Free-event registration."""
    return await api.post(f"/events/{event_id}/register", json=draft.to_payload())


async def register_after_payment(
    api: ApiClient, draft: RegistrationDraft, razorpay_order_id: str
) -> dict[str, Any]:
    """Create the registration record for a verified, paid order."""
    payload = {**draft.to_payload(), "razorpay_order_id": razorpay_order_id}
    return await api.post("/events/register-after-payment", json=payload)


async def get_user_registrations(
    api: ApiClient, *, page: int = 1, limit: int = 10
) -> dict[str, Any]:
    return await api.get(
        "/events/user/registrations", params={"page": page, "limit": limit}
    )


# Payments


async def create_order(
    api: ApiClient,
    event_id: str,
    *,
    reuse_existing: bool = False,
    force_cancel_existing: bool = False,
) -> OrderResponse:
    """Ask the backend for a gateway order.

    Only a ``reuse_existing`` call is retried on transient errors: it hands
    back the same pending order however often it is sent.

    Raises:
        PaymentConflictError: If a pending order exists and neither flag is set
    """
    payload: dict[str, Any] = {"eventId": event_id}
    if reuse_existing:
        payload["reuseExisting"] = True
    if force_cancel_existing:
        payload["forceCancelExisting"] = True
    data = await api.post(
        "/payments/create-order", json=payload, retry_safe=reuse_existing
    )
    return OrderResponse.model_validate(data)


async def verify_payment(api: ApiClient, response: GatewayResponse) -> Any:
    """Server-side signature check; only the three gateway fields are sent."""
    return await api.post(
        "/events/payment/verify",
        json={
            "razorpay_order_id": response.razorpay_order_id,
            "razorpay_payment_id": response.razorpay_payment_id,
            "razorpay_signature": response.razorpay_signature,
        },
    )


async def get_user_payments(api: ApiClient) -> list[PaymentAttempt]:
    data = await api.get("/payments/user/my-payments")
    if isinstance(data, dict):
        data = data.get("docs", [])
    return [PaymentAttempt.model_validate(item) for item in data or []]


# Certificates


async def issue_certificate(api: ApiClient, registration_id: str) -> Certificate:
    data = await api.post(f"/events/registrations/{registration_id}/certificate")
    return Certificate.model_validate(data)


async def get_certificate(api: ApiClient, certificate_id: str) -> Certificate:
    data = await api.get(f"/certificates/{certificate_id}")
    return Certificate.model_validate(data)


async def download_certificate(api: ApiClient, certificate_id: str) -> Certificate:
    """Fetch the certificate with its ``generatedHtml`` for rendering."""
    data = await api.get(f"/events/certificates/{certificate_id}/download")
    return Certificate.model_validate(data)


async def verify_certificate(api: ApiClient, code: str) -> CertificateVerification:
    data = await api.get(f"/certificates/verify/{code}")
    return CertificateVerification.model_validate(data)
