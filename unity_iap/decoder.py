"""
Unity IAP receipt and store payload decoding.

Google Play payloads are JSON whose `json` and `skuDetails` fields are
themselves JSON-encoded strings. Nothing here performs I/O.
"""
import structlog
from typing import Union
from pydantic import ValidationError

from unity_iap.errors import DecodeError
from unity_iap.models import (
    AppleDecodedReceipt,
    GoogleDecodedPayload,
    GooglePlayData,
    GooglePlayDataJson,
    Platform,
    SkuDetails,
    SkuType,
    UnityPurchaseReceipt
)


logger = structlog.get_logger()


# Google Play Developer API
GOOGLE_PLAY_API_BASE = "https://androidpublisher.googleapis.com/androidpublisher/v3"

_PURCHASE_COLLECTIONS = {
    SkuType.SUBSCRIPTION: "subscriptions",
    SkuType.IN_APP: "products",
}


def decode_receipt(json_str: Union[str, bytes]) -> UnityPurchaseReceipt:
    """
    Create a UnityPurchaseReceipt from the JSON string delivered by Unity IAP.

    Raises:
        DecodeError: If the envelope is not valid JSON or names an unknown store
    """
    try:
        return UnityPurchaseReceipt.model_validate_json(json_str)
    except ValidationError as e:
        raise DecodeError(f"Invalid Unity purchase receipt: {e}") from e


def google_purchase_uri(package_name: str, sku_type: SkuType, product_id: str, token: str) -> str:
    return (
        f"{GOOGLE_PLAY_API_BASE}/applications/{package_name}/"
        f"purchases/{_PURCHASE_COLLECTIONS[sku_type]}/{product_id}/tokens/{token}"
    )


def decode_google_payload(payload: str) -> GoogleDecodedPayload:
    """
    Unwrap a Google Play payload.

    Args:
        payload: The Unity `Payload` string for a GooglePlay receipt

    Returns:
        GoogleDecodedPayload with the request URI already derived

    Raises:
        DecodeError: If any nesting level fails to parse, or the SKU type
            is anything other than "subs" or "inapp"
    """
    try:
        data = GooglePlayData.model_validate_json(payload)
    except ValidationError as e:
        raise DecodeError(f"Invalid Google Play payload: {e}") from e

    try:
        parameters = GooglePlayDataJson.model_validate_json(data.purchase_data)
    except ValidationError as e:
        raise DecodeError(f"Invalid Google Play purchase data: {e}") from e

    try:
        sku_details = SkuDetails.model_validate_json(data.sku_details)
    except ValidationError as e:
        raise DecodeError(f"Invalid Google Play skuDetails: {e}") from e

    logger.debug(
        "google_payload_decoded",
        package_name=parameters.package_name,
        product_id=parameters.product_id,
        sku_type=sku_details.sku_type.value
    )

    return GoogleDecodedPayload(
        package_name=parameters.package_name,
        product_id=parameters.product_id,
        purchase_token=parameters.purchase_token,
        sku_type=sku_details.sku_type,
        order_id=parameters.order_id,
        uri=google_purchase_uri(
            parameters.package_name,
            sku_details.sku_type,
            parameters.product_id,
            parameters.purchase_token
        )
    )


def decode_payload(receipt: UnityPurchaseReceipt) -> Union[AppleDecodedReceipt, GoogleDecodedPayload]:
    """Decode a receipt's payload according to its store."""
    if receipt.store == Platform.APPLE_APP_STORE:
        return AppleDecodedReceipt(
            receipt_data=receipt.payload,
            transaction_id=receipt.transaction_id
        )
    if receipt.store == Platform.GOOGLE_PLAY:
        return decode_google_payload(receipt.payload)
    raise DecodeError(f"Unknown store: {receipt.store}")
