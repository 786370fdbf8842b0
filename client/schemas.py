"""Pydantic schemas for the events API payloads and client-local state.

The REST API speaks camelCase JSON with Mongo-style ``_id`` keys, so the
API-facing models use a camelCase alias generator and accept either spelling
on input. The gateway payloads keep Razorpay's snake_case names verbatim.
"""

from datetime import datetime
from enum import Enum as PyEnum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base for models exchanged with the events API."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class EventType(str, PyEnum):
    PAID = "paid"
    FREE = "free"


class CertificateStatus(str, PyEnum):
    ISSUED = "issued"
    REVOKED = "revoked"
    EXPIRED = "expired"


class PaymentStatus(str, PyEnum):
    """Server-owned lifecycle of a payment attempt."""

    CREATED = "created"
    ATTEMPTED = "attempted"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class PaymentStage(str, PyEnum):
    """Client-local stage of a registration attempt, drives the progress overlay."""

    IDLE = "idle"
    CREATING = "creating"
    WAITING_GATEWAY = "waiting_gateway"
    VERIFYING = "verifying"
    REGISTERING = "registering"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class UserProfile(ApiModel):
    """The authenticated user as returned by the auth endpoints."""

    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    name: str = ""
    email: str = ""
    phone: str = ""
    role: str = "user"


class RegistrationQuestion(ApiModel):
    id: str | None = Field(default=None, validation_alias=AliasChoices("_id", "id"))
    question: str
    required: bool = False


class Event(ApiModel):
    """An event as returned by ``GET /events/:id``."""

    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    title: str
    short_description: str = ""
    event_type: EventType = EventType.FREE
    price: float = 0
    currency: str = "INR"
    start_date: datetime
    end_date: datetime | None = None
    registration_start_date: datetime
    registration_end_date: datetime
    max_participants: int | None = None
    has_certificate: bool = False
    registration_questions: list[RegistrationQuestion] = Field(default_factory=list)

    @property
    def is_paid(self) -> bool:
        return self.event_type == EventType.PAID

    @property
    def amount_in_paise(self) -> int:
        """Gateway amounts are expressed in the currency's minor unit."""
        return round(self.price * 100)


class RegistrationAnswer(ApiModel):
    question_id: str
    question: str
    answer: str = ""


class RegistrationDraft(ApiModel):
    """Form state for one registration; submitted once, then discarded."""

    name: str = ""
    email: str = ""
    phone: str = ""
    organization: str = ""
    answers: list[RegistrationAnswer] = Field(default_factory=list)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)


class OrderResponse(ApiModel):
    """Payload of ``POST /payments/create-order``."""

    order_id: str = Field(validation_alias=AliasChoices("orderId", "order_id", "id"))
    amount: int | None = None
    currency: str = "INR"
    payment_id: str | None = None


class PaymentAttempt(ApiModel):
    """A server-side payment record, referenced read-only by the client."""

    payment_id: str = Field(validation_alias=AliasChoices("_id", "paymentId", "id"))
    order_id: str = Field(
        validation_alias=AliasChoices("razorpayOrderId", "orderId", "order_id")
    )
    status: PaymentStatus = PaymentStatus.CREATED
    amount: float = 0
    currency: str = "INR"
    razorpay_payment_id: str | None = None
    razorpay_signature: str | None = None

    @property
    def is_finalizable(self) -> bool:
        """A registration may only be finalized against a paid, signed attempt."""
        return (
            self.status == PaymentStatus.PAID
            and bool(self.razorpay_payment_id)
            and bool(self.razorpay_signature)
        )


class GatewayResponse(BaseModel):
    """Identifiers handed back by the checkout widget on success.

    Fields are optional here because a misbehaving widget can omit them;
    the registration flow rejects incomplete responses before verification.
    """

    model_config = ConfigDict(extra="ignore")

    razorpay_order_id: str | None = None
    razorpay_payment_id: str | None = None
    razorpay_signature: str | None = None

    @property
    def is_complete(self) -> bool:
        return bool(
            self.razorpay_order_id
            and self.razorpay_payment_id
            and self.razorpay_signature
        )


class CheckoutPrefill(BaseModel):
    name: str = ""
    email: str = ""
    contact: str = ""


class CheckoutOptions(BaseModel):
    """Options passed to the checkout widget when it is opened."""

    key: str
    amount: int
    currency: str
    name: str
    description: str
    order_id: str
    prefill: CheckoutPrefill = Field(default_factory=CheckoutPrefill)
    theme_color: str = "#000066"


class Certificate(ApiModel):
    """Certificate record; the client never mutates it."""

    certificate_id: str
    recipient_name: str
    title: str = ""
    issue_date: datetime | None = None
    generated_html: str = ""
    status: CertificateStatus = CertificateStatus.ISSUED
    verification_code: str | None = None

    @property
    def pdf_file_name(self) -> str:
        safe_name = "_".join(self.recipient_name.split()) or "certificate"
        return f"{safe_name}_Certificate.pdf"


class CertificateVerification(ApiModel):
    """Result of the public ``GET /certificates/verify/:code`` lookup."""

    is_valid: bool
    message: str = ""
    certificate_id: str | None = None
    recipient_name: str | None = None
    title: str | None = None
    issue_date: datetime | None = None
