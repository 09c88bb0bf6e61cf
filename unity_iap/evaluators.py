"""
Purchase verdicts.

Pure functions over store responses; no I/O. Timestamps are epoch
milliseconds.
"""
import time
import structlog
from typing import Optional

from unity_iap.models import (
    AppleResponse,
    GoogleResponse,
    PurchaseResponse,
    parse_millis
)


logger = structlog.get_logger()


APPLE_STATUS_VALID = 0
GOOGLE_PURCHASE_STATE_PURCHASED = 0


def now_millis() -> int:
    return int(time.time() * 1000)


def evaluate_apple_subscription(
    response: AppleResponse,
    transaction_id: str,
    now: Optional[int] = None
) -> PurchaseResponse:
    """
    Validate based on whether the subscription's expiration has passed.

    Uses the record for `transaction_id` while it is still active, and
    otherwise the most recent record in the response.

    Args:
        response: Apple verification response
        transaction_id: Transaction to look for, may be empty
        now: Reference time in ms, defaults to the current time

    Returns:
        PurchaseResponse, valid only if expiry > now
    """
    if now is None:
        now = now_millis()

    record = None
    if transaction_id:
        for candidate in response.transaction_records():
            if candidate.transaction_id == transaction_id:
                record = candidate
                break

    if record is not None:
        expiry = parse_millis(record.expires_date_ms)
        if expiry is None or expiry <= now:
            record = None

    if record is None:
        record = response.most_recent_record()

    if record is None:
        return PurchaseResponse(valid=False)

    expiry = parse_millis(record.expires_date_ms)
    if expiry is None:
        logger.warning(
            "apple_subscription_expiry_unparsable",
            transaction_id=record.transaction_id
        )
        return PurchaseResponse(valid=False)

    return PurchaseResponse(valid=expiry > now, product_id=record.product_id)


def evaluate_apple_package(response: AppleResponse, transaction_id: str) -> PurchaseResponse:
    """A package is valid if the receipt is valid and contains the transaction."""
    record = response.get_transaction(transaction_id)
    valid = response.status == APPLE_STATUS_VALID and record is not None

    return PurchaseResponse(valid=valid, product_id=record.product_id if record else None)


def evaluate_google_subscription(
    response: GoogleResponse,
    now: Optional[int] = None
) -> PurchaseResponse:
    """
    Validate based on whether the subscription's expiration has passed.

    A missing or unparsable expiryTimeMillis is an invalid purchase, not an error.
    """
    if now is None:
        now = now_millis()

    expiry = parse_millis(response.expiry_time)
    if expiry is None:
        logger.warning(
            "google_subscription_expiry_unparsable",
            order_id=response.order_id,
            expiry_time=response.expiry_time
        )
        return PurchaseResponse(valid=False)

    valid = expiry > now

    logger.info(
        "google_subscription_evaluated",
        valid=valid,
        now=now,
        order_id=response.order_id,
        expiry_time=response.expiry_time,
        price_currency_code=response.price_currency_code,
        price_amount_micros=response.price_amount_micros
    )

    return PurchaseResponse(valid=valid, product_id=response.product_id)


def evaluate_google_package(response: GoogleResponse) -> PurchaseResponse:
    # purchaseState: 0 purchased, 1 canceled, 2 pending
    valid = response.purchase_state == GOOGLE_PURCHASE_STATE_PURCHASED

    logger.info(
        "google_product_evaluated",
        valid=valid,
        order_id=response.order_id,
        purchase_state=response.purchase_state
    )

    return PurchaseResponse(valid=valid, product_id=response.product_id)
