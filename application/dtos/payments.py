"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from domain.payment.exceptions import PaymentError

T = TypeVar("T")

CENT = Decimal("0.01")


def to_cents(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class ApiResult(Generic[T]):
    """Value or typed error; returned instead of raising across a boundary."""

    value: Optional[T] = None
    error: Optional[PaymentError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "ApiResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: PaymentError) -> "ApiResult[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


# --- checkout -----------------------------------------------------------------


class CustomerAddress(BaseModel):
    street_name: Optional[str] = None
    street_number: Optional[str] = None
    apartment: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None

    def to_api(self) -> dict[str, str]:
        fields = {
            "streetName": self.street_name,
            "streetNumber": self.street_number,
            "apartment": self.apartment,
            "city": self.city,
            "province": self.province,
            "country": self.country,
            "postalCode": self.postal_code,
        }
        return {k: v for k, v in fields.items() if v}


class CustomerInfo(BaseModel):
    type: Literal["Personal", "Business"] = "Personal"
    email: str
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    phone_code: str = "+1"
    birth_date: Optional[str] = None
    address: Optional[CustomerAddress] = None

    @field_validator("email")
    @classmethod
    def _check_email(cls, v: str) -> str:
        v = (v or "").strip()
        if "@" not in v:
            raise ValueError("email must be a valid address")
        return v

    def to_api(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
        }
        if self.phone:
            payload["phoneNumber"] = self.phone
            payload["phoneCode"] = self.phone_code
        if self.birth_date:
            payload["birthDate"] = self.birth_date
        if self.address is not None:
            address = self.address.to_api()
            if address:
                payload["address"] = address
        return payload


class CheckoutItem(BaseModel):
    description: str
    sku: Optional[str] = None
    price: Decimal = Field(ge=0)
    quantity: int = Field(default=1, ge=1)
    amount: Optional[Decimal] = None

    @model_validator(mode="after")
    def _default_amount(self):
        if self.amount is None:
            self.amount = self.price * self.quantity
        return self

    def to_api(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "sku": self.sku or "",
            "price": float(to_cents(self.price)),
            "quantity": self.quantity,
            "amount": float(to_cents(self.amount or Decimal("0"))),
        }


class CheckoutRequest(BaseModel):
    """Cart handed to the remote checkout endpoint.

    ``customer_info`` and ``customer_id`` are mutually exclusive and the
    subtotal must equal the sum of the item amounts.
    """

    iframe_id: str
    customer_info: Optional[CustomerInfo] = None
    customer_id: Optional[str] = None
    items: list[CheckoutItem] = Field(default_factory=list)
    subtotal: Decimal
    currency: str = "CAD"

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        u = (v or "CAD").strip().upper()
        if len(u) != 3 or not u.isalpha():
            raise ValueError("currency must be ISO-4217 alpha-3")
        return u

    @model_validator(mode="after")
    def _check_invariants(self):
        if (self.customer_info is None) == (self.customer_id is None):
            raise ValueError("exactly one of customer_info or customer_id is required")
        total = sum((item.amount or Decimal("0") for item in self.items), Decimal("0"))
        if to_cents(total) != to_cents(self.subtotal):
            raise ValueError(f"subtotal {self.subtotal} does not match item total {total}")
        return self

    @property
    def customer_email(self) -> str:
        return self.customer_info.email if self.customer_info else ""

    def with_customer_id(self, customer_id: str) -> "CheckoutRequest":
        """Same cart, referencing an existing remote customer instead of inline info."""
        return self.model_copy(update={"customer_id": customer_id, "customer_info": None})

    def to_api_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "iframeId": self.iframe_id,
            "items": [item.to_api() for item in self.items],
            "subtotal": float(to_cents(self.subtotal)),
            "currency": self.currency,
        }
        if self.customer_id:
            payload["customerId"] = self.customer_id
        elif self.customer_info is not None:
            payload["customerInfo"] = self.customer_info.to_api()
        return payload


class CustomerIdentity(BaseModel):
    """Who is checking out: a storefront user id, or just an email."""

    email: str = ""
    user_id: Optional[str] = None


class CheckoutTokenResponse(BaseModel):
    token: str
    expires_in: Optional[int] = None
    customer_id: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class TokenGrant(BaseModel):
    token: str
    expires_at: datetime
    from_cache: bool = False


class CachedToken(BaseModel):
    token: str
    created_at: datetime
    expires_at: datetime
    cache_key: str


class CheckoutSession(BaseModel):
    token: str
    iframe_url: str
    expires_at: datetime
    from_cache: bool = False


class StartCheckout(BaseModel):
    """Inbound checkout initiation for a storefront order."""

    order_id: str
    request: CheckoutRequest
    identity: Optional[CustomerIdentity] = None
    force_refresh: bool = False


# --- customers ----------------------------------------------------------------


class Customer(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    email: str = ""
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")

    @model_validator(mode="before")
    @classmethod
    def _accept_id_aliases(cls, data: Any):
        if isinstance(data, dict) and "id" not in data:
            for alias in ("customerId", "customer_id", "uuid"):
                if data.get(alias):
                    return {**data, "id": data[alias]}
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, v: Any) -> str:
        return str(v)

    def matches_email(self, email: str) -> bool:
        return normalize_email(self.email) == normalize_email(email) != ""


class CustomerSearchShape(str, Enum):
    ENVELOPE = "envelope"
    LIST = "list"
    SINGLE = "single"
    EMPTY = "empty"


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def classify_customer_payload(payload: Any) -> CustomerSearchShape:
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return CustomerSearchShape.ENVELOPE
    if isinstance(payload, list):
        return CustomerSearchShape.LIST
    if isinstance(payload, dict) and any(k in payload for k in ("id", "customerId", "customer_id")):
        return CustomerSearchShape.SINGLE
    return CustomerSearchShape.EMPTY


def normalize_customers(payload: Any) -> list[Customer]:
    """Turn any of the three customer search shapes into a flat list.

    Entries without an id are dropped.
    """
    shape = classify_customer_payload(payload)
    if shape == CustomerSearchShape.ENVELOPE:
        entries = payload["data"]
    elif shape == CustomerSearchShape.LIST:
        entries = payload
    elif shape == CustomerSearchShape.SINGLE:
        entries = [payload]
    else:
        entries = []

    customers: list[Customer] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        if not any(entry.get(k) for k in ("id", "customerId", "customer_id", "uuid")):
            continue
        customers.append(Customer.model_validate(entry))
    return customers


# --- transactions -------------------------------------------------------------


class TransactionDetails(BaseModel):
    transaction_token: str
    status: str = "pending"
    reference_number: Optional[str] = None
    payment_method: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    message: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_api(cls, transaction_token: str, data: Any) -> "TransactionDetails":
        data = data if isinstance(data, dict) else {}
        body = data.get("data") if isinstance(data.get("data"), dict) else data
        amount = body.get("amount", body.get("total"))
        return cls(
            transaction_token=transaction_token,
            status=str(body.get("status") or "pending"),
            reference_number=body.get("referenceNumber") or body.get("reference_number"),
            payment_method=body.get("paymentMethod") or body.get("payment_method"),
            amount=Decimal(str(amount)) if amount not in (None, "") else None,
            currency=body.get("currency"),
            message=body.get("message"),
            raw=data,
        )


class TransactionStatusView(BaseModel):
    status: str
    reference_number: Optional[str] = None
    payment_method: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    message: Optional[str] = None


# --- webhooks -----------------------------------------------------------------


class WebhookEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    event_type: str
    transaction_token: str
    event_id: Optional[str] = None
    reference_number: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    failure_reason: Optional[str] = None
    message: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    chargeback_amount: Optional[Decimal] = None

    @field_validator("event_type", "transaction_token", mode="before")
    @classmethod
    def _required_text(cls, v: Any) -> str:
        if v is None or not str(v).strip():
            raise ValueError("must not be empty")
        return str(v).strip()

    @field_validator("event_id", "reference_number", mode="before")
    @classmethod
    def _optional_text(cls, v: Any) -> Optional[str]:
        if v is None or str(v).strip() == "":
            return None
        return str(v).strip()

    @property
    def normalized_type(self) -> str:
        return self.event_type.strip().lower()


class WebhookResult(BaseModel):
    status_code: Literal[200, 400]
    body: dict[str, Any]
    outcome: Literal["applied", "noop", "rejected"] = "applied"

    @property
    def ok(self) -> bool:
        return self.status_code == 200


# --- browser channel ----------------------------------------------------------


class BrowserMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    data: Optional[dict[str, Any]] = None
    message: Optional[str] = None


class BrowserOutcome(BaseModel):
    accepted: bool
    outcome: Optional[Literal["success", "failure"]] = None
    reason: Optional[str] = None
    transaction_token: Optional[str] = None
