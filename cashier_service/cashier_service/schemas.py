"""Pydantic models for cart messages, session state and sale records."""

import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field, field_serializer, field_validator

HUNDRED = Decimal("100")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(str, Enum):
    """Lifecycle states of a cart session."""

    IDLE = "idle"
    LISTENING = "listening"
    POPULATED = "populated"
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"


class CheckoutOutcome(str, Enum):
    """Terminal classification of a hosted checkout attempt."""

    SETTLED = "settled"
    PENDING = "pending"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    """Payment methods as they appear on the wire and in sale records."""

    CASH = "tunai"
    TRANSFER = "transfer"


class CatalogProduct(BaseModel):
    """A product record as held by the catalog store.

    Attributes:
        product_id: Catalog key of the product.
        name: Display name.
        price: Unit price in rupiah.
        discount: Discount percentage, 0 to 100.
    """

    product_id: str = Field(..., min_length=1)
    name: str
    price: Decimal = Field(..., ge=0)
    discount: Decimal = Field(Decimal("0"), ge=0, le=100)

    @field_validator("discount", mode="before")
    def default_missing_discount(cls, v):
        """Treat a null discount as no discount."""
        return Decimal("0") if v is None else v


class RawCartItem(BaseModel):
    """One entry of the ``items`` array sent by a cart device.

    Attributes:
        product_id: Catalog key, sent as ``id``. ``None`` when the device left it out.
        quantity: Units in the cart, sent as ``qty``. Defaults to 1.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    product_id: Optional[str] = Field(None, alias="id")
    quantity: int = Field(1, alias="qty", ge=1)

    @field_validator("product_id", mode="before")
    def normalize_product_id(cls, v):
        """Accept numeric ids and map blank ids to ``None``."""
        if isinstance(v, int) and not isinstance(v, bool):
            v = str(v)
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("quantity", mode="before")
    def default_missing_quantity(cls, v):
        """A null ``qty`` means one unit."""
        return 1 if v is None else v


class RawCartMessage(BaseModel):
    """The untrusted payload published on ``{cart_id}/payment``.

    Entries of ``items`` are validated one by one by the cart filter, so a
    single bad entry does not reject the whole cart.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_id: str = Field("unknown", validation_alias=AliasChoices("id", "userId", "user_id"))
    items: list[Any]

    @field_validator("user_id", mode="before")
    def default_unknown_user(cls, v):
        """Missing or blank user ids become ``unknown``."""
        if v is None:
            return "unknown"
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        if isinstance(v, str) and not v.strip():
            return "unknown"
        return v


class LineItem(BaseModel):
    """A cart entry resolved against the catalog."""

    product_id: str
    name: str
    unit_price: Decimal = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    discount_percent: Decimal = Field(Decimal("0"), ge=0, le=100)

    @computed_field
    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity * (1 - self.discount_percent / HUNDRED)

    @classmethod
    def from_catalog(cls, product: CatalogProduct, quantity: int) -> "LineItem":
        """Price a cart entry from the catalog record, never from the message."""
        return cls(
            product_id=product.product_id,
            name=product.name,
            unit_price=product.price,
            quantity=quantity,
            discount_percent=product.discount,
        )


class UnresolvedItem(BaseModel):
    """A cart entry that did not become a line item."""

    index: int
    product_id: Optional[str] = None
    reason: Literal["missing_reference", "invalid_item", "not_found", "lookup_failed"]


class CartResolution(BaseModel):
    """Result of accepting a cart message."""

    user_id: str
    items: list[LineItem]
    unresolved: list[UnresolvedItem] = Field(default_factory=list)

    @property
    def not_found(self) -> list[str]:
        """Product ids that were referenced but could not be resolved."""
        return [u.product_id for u in self.unresolved if u.product_id is not None]


class CartSession(BaseModel):
    """One cashier and cart device pairing.

    Attributes:
        session_id: Identity of this session; results for a replaced session are discarded.
        cart_id: Trimmed cart id entered by the operator.
        topic: Topic the session listens on, ``{cart_id}/payment``.
        state: Current lifecycle state.
        user_id: Shopper id from the accepted cart message.
        items: Resolved line items, replaced wholesale on acceptance.
        message_accepted: One-shot latch; once set further cart messages are ignored.
        created_at: When the operator started the session.
    """

    session_id: str = Field(default_factory=lambda: f"ses-{uuid.uuid4().hex[:8]}")
    cart_id: Optional[str] = None
    topic: Optional[str] = None
    state: SessionState = SessionState.IDLE
    user_id: Optional[str] = None
    items: list[LineItem] = Field(default_factory=list)
    message_accepted: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @computed_field
    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    @computed_field
    @property
    def total_amount(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal("0"))

    def accept(self, user_id: str, items: list[LineItem]) -> None:
        """Set the latch and replace the cart contents."""
        self.message_accepted = True
        self.user_id = user_id
        self.items = list(items)


class CheckoutAttempt(BaseModel):
    """One trip through the payment step.

    ``outcome`` is the caller-owned latch for the checkout classifier: once it
    is set, navigation events for this attempt are no longer classified.
    """

    method: PaymentMethod
    amount: Decimal
    redirect_url: Optional[str] = None
    outcome: Optional[CheckoutOutcome] = None
    started_at: datetime = Field(default_factory=utcnow)


class SaleItem(BaseModel):
    """A line of a recorded sale."""

    product_id: str
    product_name: str
    price: Decimal
    quantity: int
    discount_percent: Decimal
    subtotal: Decimal


class SaleRecord(BaseModel):
    """Transaction written to the sales ledger once payment is confirmed."""

    transaction_id: str = Field(default_factory=lambda: f"TRX{int(time.time() * 1000)}-{uuid.uuid4().hex[:4]}")
    cart_id: str
    user_id: str
    items: list[SaleItem]
    total_items: int
    total: Decimal
    payment_method: PaymentMethod
    cash_paid: Optional[Decimal] = None
    change: Optional[Decimal] = None
    cashier: str = "Admin"
    status: Literal["paid"] = "paid"
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_session(
        cls,
        session: CartSession,
        method: PaymentMethod,
        cash_paid: Optional[Decimal] = None,
        cashier: str = "Admin",
    ) -> "SaleRecord":
        """Build the sale record for a session that has just been paid.

        Args:
            session: The paid session.
            method: How the shopper paid.
            cash_paid: Tendered cash, for cash payments.
            cashier: Name of the cashier on duty.

        Returns:
            SaleRecord: The record to persist.
        """
        total = session.total_amount
        return cls(
            cart_id=session.cart_id or "UNKNOWN",
            user_id=session.user_id or "unknown",
            items=[
                SaleItem(
                    product_id=item.product_id,
                    product_name=item.name,
                    price=item.unit_price,
                    quantity=item.quantity,
                    discount_percent=item.discount_percent,
                    subtotal=item.line_total,
                )
                for item in session.items
            ],
            total_items=session.total_items,
            total=total,
            payment_method=method,
            cash_paid=cash_paid,
            change=cash_paid - total if cash_paid is not None else None,
            cashier=cashier,
        )


class PaymentStatusEvent(BaseModel):
    """Event published on ``{cart_id}/payment-status`` once a sale is paid."""

    model_config = ConfigDict(populate_by_name=True)

    status: Literal["paid"] = "paid"
    user_id: str = Field(..., alias="userId")
    cart_id: str = Field(..., alias="cartId")
    total_amount: Decimal = Field(..., alias="totalAmount")
    payment_method: PaymentMethod = Field(..., alias="paymentMethod")
    timestamp: datetime = Field(default_factory=utcnow)

    @field_serializer("total_amount")
    def serialize_amount(self, v: Decimal):
        # Cart firmware parses a JSON number
        return int(v) if v == v.to_integral_value() else float(v)

    @classmethod
    def from_sale(cls, sale: SaleRecord) -> "PaymentStatusEvent":
        return cls(
            user_id=sale.user_id,
            cart_id=sale.cart_id,
            total_amount=sale.total,
            payment_method=sale.payment_method,
            timestamp=sale.created_at,
        )

    def to_bytes(self) -> bytes:
        """Serialize with the camelCase field names the cart device expects."""
        return self.model_dump_json(by_alias=True).encode("utf-8")


class StartSessionRequest(BaseModel):
    """Operator request to attach the terminal to a cart."""

    cart_id: str = Field(..., description="Cart id as printed on the cart.")

    model_config = ConfigDict(json_schema_extra={"example": {"cart_id": "C1"}})


class QuantityUpdate(BaseModel):
    quantity: int


class CheckoutRequest(BaseModel):
    method: PaymentMethod

    model_config = ConfigDict(json_schema_extra={"example": {"method": "transfer"}})


class NavigationEvent(BaseModel):
    """A URL the hosted payment page navigated to."""

    url: str

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"url": "https://app.sandbox.midtrans.com/snap/v2/vtweb/finish?transaction_status=settlement"}
        }
    )


class CashPayment(BaseModel):
    cash_paid: Decimal = Field(..., ge=0)

    model_config = ConfigDict(json_schema_extra={"example": {"cash_paid": 50000}})


class SessionView(BaseModel):
    """What the operator's screen shows about the current session."""

    session: CartSession
    listening_topic: Optional[str] = None
    checkout_attempt: Optional[CheckoutAttempt] = None
    sale: Optional[SaleRecord] = None
    sale_persisted: bool = False
    status_published: bool = False
    notice: Optional[str] = None


class NavigationResult(BaseModel):
    outcome: Optional[CheckoutOutcome] = None
    view: SessionView
