"""
Store adapter interface.
"""
from abc import ABC, abstractmethod
from typing import Any, Optional

from unity_iap.models import PurchaseResponse, UnityPurchaseReceipt


class StoreAdapter(ABC):
    """
    Fetches a store's verdict on a receipt and evaluates it.

    Implementations hold only read-only configuration, so one instance can
    serve concurrent calls.
    """

    @abstractmethod
    async def fetch(self, receipt: UnityPurchaseReceipt) -> Any:
        """Retrieve the raw store response for a receipt."""

    @abstractmethod
    def evaluate_subscription(
        self,
        response: Any,
        transaction_id: str,
        now: Optional[int] = None
    ) -> PurchaseResponse:
        """Verdict for a subscription purchase."""

    @abstractmethod
    def evaluate_package(self, response: Any, transaction_id: str) -> PurchaseResponse:
        """Verdict for a one-time purchase."""

    @abstractmethod
    async def verify(
        self,
        receipt: UnityPurchaseReceipt,
        now: Optional[int] = None
    ) -> PurchaseResponse:
        """Fetch and evaluate a receipt."""
