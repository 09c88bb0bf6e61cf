"""
Receipt validation API routes.
"""
from fastapi import APIRouter, Depends, HTTPException
from functools import lru_cache
from typing import Optional
from pydantic import BaseModel
import structlog

from unity_iap.config import settings
from unity_iap.decoder import decode_payload
from unity_iap.errors import IAPError
from unity_iap.models import (
    GoogleDecodedPayload,
    Platform,
    PurchaseResponse,
    UnityPurchaseReceipt
)
from unity_iap.service import UnityPurchaseValidator, Validator


logger = structlog.get_logger()
router = APIRouter(prefix="/receipts", tags=["receipts"])


class DecodeReceiptResponse(BaseModel):
    """Decoded structure of a Unity IAP receipt."""
    receipt: UnityPurchaseReceipt
    google_payload: Optional[GoogleDecodedPayload] = None


@lru_cache
def get_validator() -> Validator:
    """Dependency to get the receipt validator."""
    return UnityPurchaseValidator.from_settings(settings)


@router.post("/decode", response_model=DecodeReceiptResponse)
async def decode_receipt(receipt: UnityPurchaseReceipt):
    """
    Decode a Unity IAP receipt without contacting any store.

    Google Play payloads are unwrapped into package name, product ID,
    purchase token and SKU type.

    **Errors:**
    - 400: Payload could not be decoded
    """
    google_payload = None
    try:
        if receipt.store == Platform.GOOGLE_PLAY:
            google_payload = decode_payload(receipt)
    except IAPError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return DecodeReceiptResponse(receipt=receipt, google_payload=google_payload)


@router.post("/validate", response_model=PurchaseResponse)
async def validate_receipt(
    receipt: UnityPurchaseReceipt,
    validator: Validator = Depends(get_validator)
):
    """
    Validate a Unity IAP receipt against the store that issued it.

    **Flow:**
    1. Client completes a purchase through Unity IAP
    2. Client sends the Unity receipt JSON to this endpoint
    3. Server verifies with Apple / Google
    4. Client receives `valid` and the product ID

    **Errors:**
    - 400: Receipt payload could not be decoded
    - 500: Store credentials are not configured
    - 502: Store could not be reached or answered unexpectedly
    - 200 with `valid: false`: Purchase is expired, cancelled or unknown
    """
    try:
        return await validator.validate(receipt)
    except IAPError as e:
        logger.warning(
            "validate_receipt_failed",
            store=receipt.store.value,
            status_code=e.status_code,
            error=str(e)
        )
        raise HTTPException(status_code=e.status_code, detail=str(e))
