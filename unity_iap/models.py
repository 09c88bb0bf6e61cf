"""
Receipt validation models and schemas.

Unity IAP envelopes, verdicts, and the App Store / Play Store payloads
and responses they are checked against.
"""
import math

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Any
from enum import Enum


def parse_millis(value: Optional[str]) -> Optional[int]:
    """Parse a decimal-string epoch-millis timestamp, None if unparsable."""
    # int() alone would also take "1_000", " 5 ", "+5" and non-ASCII digits
    if not isinstance(value, str) or not (value.isascii() and value.isdigit()):
        return None
    return int(value)


def _stringify(value: Any) -> Any:
    # Stores document these as strings but test doubles and older API
    # versions sometimes send bare numbers.
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"timestamp is not a finite number: {value}")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value))
    return value


# ========== Enums ==========

class Platform(str, Enum):
    """Store that issued a Unity IAP receipt."""
    APPLE_APP_STORE = "AppleAppStore"
    GOOGLE_PLAY = "GooglePlay"


class SkuType(str, Enum):
    """Google Play SKU type from skuDetails."""
    SUBSCRIPTION = "subs"
    IN_APP = "inapp"


# ========== Unity Envelope ==========

class UnityPurchaseReceipt(BaseModel):
    """
    Deserialized contents of the JSON string delivered by Unity IAP.

    eg: {"Store": "GooglePlay", "TransactionID": "<Txn ID>", "Payload": "<Payload>"}
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    store: Platform = Field(
        default=Platform.APPLE_APP_STORE,
        alias="Store",
        description="Store the purchase was made in"
    )
    payload: str = Field(
        default="",
        alias="Payload",
        description="Store-specific receipt payload"
    )
    transaction_id: str = Field(
        default="",
        alias="TransactionID",
        description="Transaction identifier reported by the store"
    )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class PurchaseResponse(BaseModel):
    """Verdict returned for a validated receipt."""
    model_config = ConfigDict(frozen=True)

    valid: bool = False
    product_id: Optional[str] = None


# ========== Apple Receipt Models ==========

class AppleInAppReceipt(BaseModel):
    """A single entry of receipt.in_app."""
    product_id: Optional[str] = None
    transaction_id: Optional[str] = None
    original_transaction_id: Optional[str] = None
    purchase_date_ms: Optional[str] = None
    expires_date_ms: Optional[str] = None

    @field_validator("purchase_date_ms", "expires_date_ms", mode="before")
    @classmethod
    def _millis_as_string(cls, value):
        return _stringify(value)


class AppleLatestReceipt(AppleInAppReceipt):
    """A single entry of latest_receipt_info (subscription renewal history)."""
    quantity: Optional[str] = None
    cancellation_date_ms: Optional[str] = None
    cancellation_reason: Optional[str] = None
    expires_date: Optional[str] = None
    purchase_date: Optional[str] = None
    original_purchase_date: Optional[str] = None


class AppleReceipt(BaseModel):
    """The decoded receipt Apple echoes back."""
    in_app: Optional[List[AppleInAppReceipt]] = None

    def get_transaction(self, transaction_id: str) -> Optional[AppleInAppReceipt]:
        if not transaction_id or not self.in_app:
            return None
        for in_app in self.in_app:
            if in_app.transaction_id == transaction_id:
                return in_app
        return None


class AppleRequest(BaseModel):
    """verifyReceipt request body."""
    model_config = ConfigDict(populate_by_name=True)

    receipt_data: str = Field(alias="receipt-data")
    password: str


class AppleResponse(BaseModel):
    """App Store verifyReceipt response body."""
    model_config = ConfigDict(populate_by_name=True)

    status: int
    is_retryable: Optional[bool] = Field(default=None, alias="is-retryable")
    environment: Optional[str] = None
    latest_receipt: Optional[str] = None
    latest_receipt_info: Optional[List[AppleLatestReceipt]] = None
    receipt: Optional[AppleReceipt] = None

    def get_transaction(self, transaction_id: str) -> Optional[AppleInAppReceipt]:
        """Find the receipt.in_app record for a transaction."""
        if self.receipt is None:
            return None
        return self.receipt.get_transaction(transaction_id)

    def get_product_id(self, transaction_id: str) -> Optional[str]:
        record = self.get_transaction(transaction_id)
        return record.product_id if record else None

    def is_subscription(self, transaction_id: str) -> bool:
        """
        Whether the receipt being validated is a subscription purchase.

        A matched in_app record is a subscription when it carries an expiry.
        Without a match we go by latest_receipt_info, which Apple only
        returns for receipts containing auto-renewable subscriptions.
        """
        record = self.get_transaction(transaction_id)
        if record is not None:
            return record.expires_date_ms is not None
        return bool(self.latest_receipt_info)

    def transaction_records(self) -> List[AppleInAppReceipt]:
        """Renewal history followed by receipt.in_app entries."""
        records: List[AppleInAppReceipt] = list(self.latest_receipt_info or [])
        if self.receipt and self.receipt.in_app:
            records.extend(self.receipt.in_app)
        return records

    def most_recent_record(self) -> Optional[AppleInAppReceipt]:
        """
        Record with the greatest expiry.

        Ties keep the first occurrence; unparsable expiries lose to any
        parsable one.
        """
        best = None
        best_expiry = None
        for record in self.transaction_records():
            expiry = parse_millis(record.expires_date_ms)
            if best is None:
                best, best_expiry = record, expiry
            elif expiry is not None and (best_expiry is None or expiry > best_expiry):
                best, best_expiry = record, expiry
        return best

    def latest_expires_date(self) -> Optional[str]:
        record = self.most_recent_record()
        return record.expires_date_ms if record else None


# ========== Google Receipt Models ==========

class GooglePlayData(BaseModel):
    """Outer Unity payload for Google Play purchases."""
    model_config = ConfigDict(populate_by_name=True)

    purchase_data: str = Field(alias="json")
    signature: str
    sku_details: str = Field(alias="skuDetails")


class GooglePlayDataJson(BaseModel):
    """Purchase metadata nested in GooglePlayData.json."""
    model_config = ConfigDict(populate_by_name=True)

    package_name: str = Field(alias="packageName")
    product_id: str = Field(alias="productId")
    purchase_token: str = Field(alias="purchaseToken")
    order_id: Optional[str] = Field(default=None, alias="orderId")
    purchase_time: Optional[int] = Field(default=None, alias="purchaseTime")
    purchase_state: Optional[int] = Field(default=None, alias="purchaseState")
    acknowledged: Optional[bool] = None
    auto_renewing: Optional[bool] = Field(default=None, alias="autoRenewing")


class SkuDetails(BaseModel):
    """SKU metadata nested in GooglePlayData.skuDetails."""
    model_config = ConfigDict(populate_by_name=True)

    sku_type: SkuType = Field(alias="type")
    product_id: Optional[str] = Field(default=None, alias="productId")


class GoogleDecodedPayload(BaseModel):
    """Everything needed to query the Play Developer API for one purchase."""
    package_name: str
    product_id: str
    purchase_token: str
    sku_type: SkuType
    order_id: Optional[str] = None
    uri: str

    @property
    def is_subscription(self) -> bool:
        return self.sku_type == SkuType.SUBSCRIPTION


class AppleDecodedReceipt(BaseModel):
    """Apple payloads are forwarded verbatim as receipt-data."""
    receipt_data: str
    transaction_id: str


class GoogleResponse(BaseModel):
    """
    Play Developer API SubscriptionPurchase / ProductPurchase body.

    Every field is optional: subscriptions and products share this shape.
    """
    model_config = ConfigDict(populate_by_name=True)

    kind: Optional[str] = None
    expiry_time: Optional[str] = Field(default=None, alias="expiryTimeMillis")
    start_time: Optional[str] = Field(default=None, alias="startTimeMillis")
    purchase_time: Optional[str] = Field(default=None, alias="purchaseTimeMillis")
    price_currency_code: Optional[str] = Field(default=None, alias="priceCurrencyCode")
    price_amount_micros: Optional[str] = Field(default=None, alias="priceAmountMicros")
    order_id: Optional[str] = Field(default=None, alias="orderId")
    product_id: Optional[str] = Field(default=None, alias="productId")
    purchase_type: Optional[int] = Field(default=None, alias="purchaseType")
    purchase_state: Optional[int] = Field(default=None, alias="purchaseState")
    payment_state: Optional[int] = Field(default=None, alias="paymentState")
    acknowledgement_state: Optional[int] = Field(default=None, alias="acknowledgementState")
    auto_renewing: Optional[bool] = Field(default=None, alias="autoRenewing")

    @field_validator(
        "expiry_time", "start_time", "purchase_time", "price_amount_micros",
        mode="before"
    )
    @classmethod
    def _numbers_as_string(cls, value):
        return _stringify(value)
