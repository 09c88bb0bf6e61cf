"""
Shared fixtures.
"""
import json
import pytest


def build_google_payload(sku_type="subs", package="com.example.game", product="com.example.vip", token="tok_123"):
    """Build a doubly JSON-encoded Google Play payload as Unity IAP delivers it."""
    return json.dumps({
        "json": json.dumps({
            "orderId": "GPA.1234-5678",
            "packageName": package,
            "productId": product,
            "purchaseTime": 1625845453934,
            "purchaseState": 0,
            "purchaseToken": token,
            "autoRenewing": True,
            "acknowledged": False
        }),
        "signature": "c2lnbmF0dXJl",
        "skuDetails": json.dumps({"productId": product, "type": sku_type})
    })


@pytest.fixture
def google_payload():
    """Builder for Google Play payloads."""
    return build_google_payload
