"""
Apple App Store receipt verification.

Uses Apple's verifyReceipt endpoint with a single sandbox fallback.
"""
import httpx
import structlog
from typing import Optional
from pydantic import BaseModel, ValidationError

from unity_iap.errors import MissingCredentialError, ParseError, TransportError
from unity_iap.evaluators import (
    APPLE_STATUS_VALID,
    evaluate_apple_package,
    evaluate_apple_subscription
)
from unity_iap.models import (
    AppleRequest,
    AppleResponse,
    PurchaseResponse,
    UnityPurchaseReceipt
)
from unity_iap.verifiers.base import StoreAdapter


logger = structlog.get_logger()


# https://developer.apple.com/documentation/appstorereceipts/status
APPLE_STATUS_CODE_TEST = 21007

# Apple App Store verifyReceipt hosts
APPLE_PRODUCTION_URL = "https://buy.itunes.apple.com"
APPLE_SANDBOX_URL = "https://sandbox.itunes.apple.com"

DEFAULT_TIMEOUT = 30.0


class AppleUrls(BaseModel):
    """
    Production and sandbox hosts.

    Receipts are verified against production first; a test receipt is
    then verified against the sandbox.
    """
    model_config = {"frozen": True}

    production: str = APPLE_PRODUCTION_URL
    sandbox: str = APPLE_SANDBOX_URL


async def fetch_apple_receipt_data(
    receipt: UnityPurchaseReceipt,
    secret: Optional[str],
    urls: Optional[AppleUrls] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    timeout: Optional[float] = None
) -> AppleResponse:
    """
    Retrieve the verifyReceipt response body for a receipt.

    Args:
        receipt: Unity receipt whose payload is the base64 App Store receipt
        secret: App Store shared secret
        urls: verifyReceipt hosts, production and sandbox
        transport: Optional httpx transport, used by test doubles
        timeout: Per-request timeout in seconds

    Returns:
        AppleResponse from production, or from the sandbox if production
        reported a test receipt

    Raises:
        MissingCredentialError: If no shared secret is set
        TransportError: If an endpoint cannot be reached
        ParseError: If a response body is not a verifyReceipt response
    """
    if not secret:
        raise MissingCredentialError("no apple secret has been set")

    urls = urls or AppleUrls()
    request_body = AppleRequest(
        receipt_data=receipt.payload,
        password=secret
    ).model_dump(by_alias=True)

    async with httpx.AsyncClient(
        transport=transport,
        timeout=DEFAULT_TIMEOUT if timeout is None else timeout
    ) as client:
        response = await _verify_with_apple(client, request_body, urls.production)

        # At most one sandbox retry; its result is returned as-is
        retried = False
        if response.status == APPLE_STATUS_CODE_TEST:
            logger.info("apple_receipt_is_sandbox_retrying")
            retried = True
            response = await _verify_with_apple(client, request_body, urls.sandbox)

    transaction = response.get_transaction(receipt.transaction_id)
    logger.info(
        "apple_receipt_fetched",
        status=response.status,
        environment=response.environment,
        sandbox_retry=retried,
        latest_expires_date=response.latest_expires_date(),
        product_id=transaction.product_id if transaction else None,
        is_subscription=response.is_subscription(receipt.transaction_id)
    )

    return response


async def _verify_with_apple(
    client: httpx.AsyncClient,
    request_body: dict,
    base_url: str
) -> AppleResponse:
    """
    Call Apple's verification API once.

    Args:
        client: Open httpx client
        request_body: verifyReceipt JSON body
        base_url: Production or sandbox host

    Returns:
        AppleResponse
    """
    verify_url = f"{base_url}/verifyReceipt"

    try:
        response = await client.post(verify_url, json=request_body)
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error("apple_receipt_request_failed", url=verify_url, error=str(e))
        raise TransportError(f"Apple verifyReceipt request failed: {e}") from e

    try:
        parsed = AppleResponse.model_validate_json(response.content)
    except ValidationError as e:
        logger.error("apple_receipt_response_invalid", url=verify_url, error=str(e))
        raise ParseError(f"Failed to deserialize apple response: {e}") from e

    logger.debug("apple_response_received", url=verify_url, status=parsed.status)

    return parsed


class AppleStoreAdapter(StoreAdapter):
    """
    Verifies Apple App Store receipts.

    Uses Apple's verifyReceipt endpoint with automatic sandbox fallback.
    """

    def __init__(
        self,
        shared_secret: Optional[str] = None,
        urls: Optional[AppleUrls] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None
    ):
        """
        Initialize Apple store adapter.

        Args:
            shared_secret: Apple shared secret required by the verifyReceipt body
            urls: verifyReceipt hosts, defaults to Apple's
            transport: Optional httpx transport, used by test doubles
            timeout: Per-request timeout in seconds
        """
        self.shared_secret = shared_secret
        self.urls = urls or AppleUrls()
        self.transport = transport
        self.timeout = timeout

    async def fetch(self, receipt: UnityPurchaseReceipt) -> AppleResponse:
        return await fetch_apple_receipt_data(
            receipt,
            self.shared_secret,
            urls=self.urls,
            transport=self.transport,
            timeout=self.timeout
        )

    def evaluate_subscription(
        self,
        response: AppleResponse,
        transaction_id: str,
        now: Optional[int] = None
    ) -> PurchaseResponse:
        return evaluate_apple_subscription(response, transaction_id, now)

    def evaluate_package(self, response: AppleResponse, transaction_id: str) -> PurchaseResponse:
        return evaluate_apple_package(response, transaction_id)

    async def verify(
        self,
        receipt: UnityPurchaseReceipt,
        now: Optional[int] = None
    ) -> PurchaseResponse:
        """
        Verify an Apple App Store receipt.

        A non-zero status (after the sandbox retry) is an invalid purchase.
        """
        response = await self.fetch(receipt)

        if response.status != APPLE_STATUS_VALID:
            logger.warning(
                "apple_receipt_verification_failed",
                status=response.status,
                retryable=response.is_retryable
            )
            return PurchaseResponse(
                valid=False,
                product_id=response.get_product_id(receipt.transaction_id)
            )

        if response.is_subscription(receipt.transaction_id):
            return self.evaluate_subscription(response, receipt.transaction_id, now)

        return self.evaluate_package(response, receipt.transaction_id)
