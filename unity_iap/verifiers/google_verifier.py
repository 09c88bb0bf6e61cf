"""
Google Play Store receipt verification.

Uses Google Play Developer API to verify purchase receipts.
"""
import asyncio
import httpx
import json
import structlog
from pathlib import Path
from typing import Optional, Union, Dict, Any, Sequence, Protocol
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from pydantic import ValidationError

from unity_iap.decoder import decode_google_payload
from unity_iap.errors import AuthError, ParseError, TransportError
from unity_iap.evaluators import evaluate_google_package, evaluate_google_subscription
from unity_iap.models import (
    GoogleDecodedPayload,
    GoogleResponse,
    PurchaseResponse,
    UnityPurchaseReceipt
)
from unity_iap.verifiers.base import StoreAdapter


logger = structlog.get_logger()


GOOGLE_PLAY_SCOPES = ["https://www.googleapis.com/auth/androidpublisher"]
SERVICE_ACCOUNT_REQUIRED_FIELDS = ("private_key", "client_email", "token_uri")

DEFAULT_TIMEOUT = 30.0


class CredentialIssuer(Protocol):
    """Exchanges a credential for a bearer token."""

    async def get_token(self, scopes: Sequence[str]) -> str:
        ...


def get_service_account_key(secret: Union[str, bytes, Dict[str, Any]]) -> Dict[str, Any]:
    """
    Parse a Google service account key.

    Takes the JSON provided by Google's console, which must contain at least
    private_key, client_email and token_uri.

    Raises:
        AuthError: If the key is not JSON or lacks a required field
    """
    if isinstance(secret, dict):
        key = secret
    else:
        try:
            key = json.loads(secret)
        except (TypeError, ValueError) as e:
            raise AuthError(f"Invalid Google service account key: {e}") from e

    if not isinstance(key, dict):
        raise AuthError("Invalid Google service account key: expected a JSON object")

    missing = [field for field in SERVICE_ACCOUNT_REQUIRED_FIELDS if not key.get(field)]
    if missing:
        raise AuthError(
            f"Invalid Google service account key: missing {', '.join(missing)}"
        )

    return key


def load_service_account_key(value: str) -> Dict[str, Any]:
    """
    Load a service account key from inline JSON or a key file path.
    """
    try:
        return get_service_account_key(json.loads(value))
    except json.JSONDecodeError:
        # If not JSON, treat as file path
        path = Path(value)
        try:
            return get_service_account_key(path.read_text())
        except OSError as e:
            raise AuthError(f"Cannot read Google service account key file: {e}") from e


class ServiceAccountCredentialIssuer:
    """
    Issues access tokens for a Google service account.

    A fresh credential is built per call so instances carry no mutable state.
    """

    def __init__(self, service_account_key: Dict[str, Any]):
        self.service_account_key = service_account_key

    @property
    def client_email(self) -> Optional[str]:
        return self.service_account_key.get("client_email")

    async def get_token(self, scopes: Sequence[str]) -> str:
        """
        Get an access token for the given scopes.

        Raises:
            AuthError: If the key is rejected or the token exchange fails
        """
        try:
            credentials = service_account.Credentials.from_service_account_info(
                self.service_account_key,
                scopes=list(scopes)
            )
            # google-auth refreshes synchronously
            await asyncio.to_thread(credentials.refresh, Request())
        except (GoogleAuthError, ValueError) as e:
            logger.error(
                "google_token_exchange_failed",
                client_email=self.client_email,
                error=str(e)
            )
            raise AuthError(f"Google service account token exchange failed: {e}") from e

        return credentials.token


async def fetch_google_receipt_data_with_uri(
    uri: str,
    credential_issuer: Optional[CredentialIssuer] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    timeout: Optional[float] = None
) -> GoogleResponse:
    """
    Retrieve the Play Developer API response for a purchase URI.

    Without a credential issuer the request goes unauthenticated to
    `{uri}/test`, which only test doubles answer.

    Args:
        uri: Purchase resource URI
        credential_issuer: Issues the bearer token, None for offline tests
        transport: Optional httpx transport, used by test doubles
        timeout: Per-request timeout in seconds

    Returns:
        GoogleResponse

    Raises:
        AuthError: If no token could be issued
        TransportError: If the endpoint cannot be reached or returns an error
        ParseError: If the response body cannot be deserialized
    """
    headers = {}
    if credential_issuer is not None:
        token = await credential_issuer.get_token(GOOGLE_PLAY_SCOPES)
        headers["Authorization"] = f"Bearer {token}"
        url = uri
    else:
        url = f"{uri}/test"

    logger.debug(
        "google_request_prepared",
        authenticated=credential_issuer is not None
    )

    async with httpx.AsyncClient(
        transport=transport,
        timeout=DEFAULT_TIMEOUT if timeout is None else timeout
    ) as client:
        try:
            response = await client.get(url, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("google_request_failed", error=str(e))
            raise TransportError(f"Google Play request failed: {e}") from e

    try:
        parsed = GoogleResponse.model_validate_json(response.content)
    except ValidationError as e:
        logger.error("google_response_invalid", error=str(e))
        raise ParseError(
            "Failed to deserialize google response. "
            f"Was the service account key set? Error message: {e}"
        ) from e

    logger.debug(
        "google_response_received",
        order_id=parsed.order_id,
        purchase_state=parsed.purchase_state,
        expiry_time=parsed.expiry_time
    )

    return parsed


async def fetch_google_receipt_data(
    payload: GoogleDecodedPayload,
    credential_issuer: Optional[CredentialIssuer] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    timeout: Optional[float] = None
) -> GoogleResponse:
    """
    Retrieve the Play Developer API response for a decoded payload.

    The API does not always echo productId; it is filled in from the payload.
    """
    response = await fetch_google_receipt_data_with_uri(
        payload.uri,
        credential_issuer=credential_issuer,
        transport=transport,
        timeout=timeout
    )

    if response.product_id is None:
        response = response.model_copy(update={"product_id": payload.product_id})

    return response


class GoogleStoreAdapter(StoreAdapter):
    """
    Verifies Google Play Store receipts.

    Uses Google Play Developer API with service account authentication.
    """

    def __init__(
        self,
        credential_issuer: Optional[CredentialIssuer] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None
    ):
        self.credential_issuer = credential_issuer
        self.transport = transport
        self.timeout = timeout

    async def fetch(self, receipt: UnityPurchaseReceipt) -> GoogleResponse:
        return await self.fetch_payload(decode_google_payload(receipt.payload))

    async def fetch_payload(self, payload: GoogleDecodedPayload) -> GoogleResponse:
        return await fetch_google_receipt_data(
            payload,
            credential_issuer=self.credential_issuer,
            transport=self.transport,
            timeout=self.timeout
        )

    def evaluate_subscription(
        self,
        response: GoogleResponse,
        transaction_id: str,
        now: Optional[int] = None
    ) -> PurchaseResponse:
        # A Play purchase resource describes exactly one purchase
        return evaluate_google_subscription(response, now)

    def evaluate_package(self, response: GoogleResponse, transaction_id: str) -> PurchaseResponse:
        return evaluate_google_package(response)

    async def verify(
        self,
        receipt: UnityPurchaseReceipt,
        now: Optional[int] = None
    ) -> PurchaseResponse:
        """Verify a Google Play subscription or one-time product purchase."""
        payload = decode_google_payload(receipt.payload)
        response = await self.fetch_payload(payload)

        if payload.is_subscription:
            verdict = self.evaluate_subscription(response, receipt.transaction_id, now)
        else:
            verdict = self.evaluate_package(response, receipt.transaction_id)

        logger.info(
            "google_receipt_verified",
            sku_type=payload.sku_type.value,
            product_id=verdict.product_id,
            valid=verdict.valid
        )

        return verdict
