"""
Receipt validation service.

Dispatches Unity IAP receipts to the store they came from.
"""
import httpx
import structlog
from abc import ABC, abstractmethod
from typing import Optional, Union, Dict, Any

from unity_iap.config import Settings
from unity_iap.errors import UnsupportedOperationError
from unity_iap.models import Platform, PurchaseResponse, UnityPurchaseReceipt
from unity_iap.verifiers.apple_verifier import AppleStoreAdapter, AppleUrls
from unity_iap.verifiers.base import StoreAdapter
from unity_iap.verifiers.google_verifier import (
    CredentialIssuer,
    GoogleStoreAdapter,
    ServiceAccountCredentialIssuer,
    get_service_account_key,
    load_service_account_key
)


logger = structlog.get_logger()


class Validator(ABC):
    """Anything that can turn a Unity receipt into a purchase verdict."""

    @abstractmethod
    async def validate(
        self,
        receipt: UnityPurchaseReceipt,
        now: Optional[int] = None
    ) -> PurchaseResponse:
        ...


class UnityPurchaseValidator(Validator):
    """
    Holds the secrets needed to authenticate against the stores and
    performs validation.

    Configuration is fixed at construction; the with_* methods return a
    new validator, so one instance can be shared by concurrent callers.

        validator = (
            UnityPurchaseValidator()
            .with_apple_secret("<APPLE_SECRET>")
            .with_google_service_account_key("<GOOGLE_KEY_JSON>")
        )
    """

    def __init__(
        self,
        apple_secret: Optional[str] = None,
        google_service_account_key: Optional[Dict[str, Any]] = None,
        apple_urls: Optional[AppleUrls] = None,
        credential_issuer: Optional[CredentialIssuer] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None
    ):
        """
        Initialize the validator.

        Args:
            apple_secret: App Store shared secret required by verifyReceipt
            google_service_account_key: Parsed service account key JSON
            apple_urls: verifyReceipt hosts, only overridden by tests
            credential_issuer: Token issuer for Google; built from the
                service account key when not given
            transport: Optional httpx transport, used by test doubles
            timeout: Per-request timeout in seconds
        """
        self._apple_secret = apple_secret
        self._google_service_account_key = google_service_account_key
        self._apple_urls = apple_urls or AppleUrls()
        self._credential_issuer = credential_issuer
        self._transport = transport
        self._timeout = timeout

        if credential_issuer is None and google_service_account_key is not None:
            credential_issuer = ServiceAccountCredentialIssuer(google_service_account_key)

        self._adapters: Dict[Platform, StoreAdapter] = {
            Platform.APPLE_APP_STORE: AppleStoreAdapter(
                shared_secret=apple_secret,
                urls=self._apple_urls,
                transport=transport,
                timeout=timeout
            ),
            Platform.GOOGLE_PLAY: GoogleStoreAdapter(
                credential_issuer=credential_issuer,
                transport=transport,
                timeout=timeout
            ),
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "UnityPurchaseValidator":
        """Build a validator from application settings."""
        service_account_key = None
        if settings.google_service_account_json:
            service_account_key = load_service_account_key(settings.google_service_account_json)

        return cls(
            apple_secret=settings.apple_shared_secret,
            google_service_account_key=service_account_key,
            apple_urls=AppleUrls(
                production=settings.apple_production_url,
                sandbox=settings.apple_sandbox_url
            ),
            timeout=settings.http_timeout
        )

    def _replace(self, **changes) -> "UnityPurchaseValidator":
        config = {
            "apple_secret": self._apple_secret,
            "google_service_account_key": self._google_service_account_key,
            "apple_urls": self._apple_urls,
            "credential_issuer": self._credential_issuer,
            "transport": self._transport,
            "timeout": self._timeout,
        }
        config.update(changes)
        return UnityPurchaseValidator(**config)

    @property
    def apple_secret(self) -> Optional[str]:
        return self._apple_secret

    @property
    def google_service_account_key(self) -> Optional[Dict[str, Any]]:
        return self._google_service_account_key

    @property
    def apple_urls(self) -> AppleUrls:
        return self._apple_urls

    def with_apple_secret(self, secret: str) -> "UnityPurchaseValidator":
        """Return a validator using Apple's shared secret."""
        return self._replace(apple_secret=secret)

    def with_google_service_account_key(
        self,
        secret: Union[str, bytes, Dict[str, Any]]
    ) -> "UnityPurchaseValidator":
        """
        Return a validator using a Google service account key.

        Raises:
            AuthError: If the key is malformed
        """
        return self._replace(
            google_service_account_key=get_service_account_key(secret),
            credential_issuer=None
        )

    def with_apple_urls(self, urls: AppleUrls) -> "UnityPurchaseValidator":
        return self._replace(apple_urls=urls)

    def with_transport(self, transport: httpx.AsyncBaseTransport) -> "UnityPurchaseValidator":
        return self._replace(transport=transport)

    def adapter_for(self, store: Platform) -> StoreAdapter:
        adapter = self._adapters.get(store)
        if adapter is None:
            raise UnsupportedOperationError(f"Unsupported store: {store}")
        return adapter

    async def validate(
        self,
        receipt: UnityPurchaseReceipt,
        now: Optional[int] = None
    ) -> PurchaseResponse:
        """
        Validate a Unity IAP receipt.

        Args:
            receipt: Receipt delivered by Unity IAP
            now: Reference time in ms, defaults to the current time

        Returns:
            PurchaseResponse

        Raises:
            IAPError: If the receipt could not be checked. An expired or
                unknown purchase is not an error.
        """
        logger.debug(
            "validate_receipt",
            store=receipt.store.value,
            transaction_id=receipt.transaction_id
        )

        adapter = self.adapter_for(receipt.store)

        try:
            verdict = await adapter.verify(receipt, now)
        except Exception as e:
            logger.error(
                "receipt_validation_error",
                store=receipt.store.value,
                error_type=type(e).__name__,
                error=str(e)
            )
            raise

        logger.info(
            "receipt_validated",
            store=receipt.store.value,
            valid=verdict.valid,
            product_id=verdict.product_id
        )

        return verdict
