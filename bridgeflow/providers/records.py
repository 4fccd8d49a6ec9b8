"""
Client for the transaction record-keeping service.

The service owns transfer history. We only ever append a record after a
transfer and read the wallet's history back.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from .base import Provider
from ..config import settings
from ..core.errors import RecordPersistenceFailure
from ..core.transfer.models import TransferRecord

logger = logging.getLogger(__name__)


class RecordKeepingClient(Provider):
    """
    Async HTTP client for the record-keeping service.

    Example usage:
        client = RecordKeepingClient(base_url="https://app.example/api")
        await client.save_transaction(record)
        history = await client.fetch_transactions("0x...")
    """

    name = "records"

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        include_delivery_status: Optional[bool] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.record_service_url).rstrip("/")
        self.timeout = timeout or settings.request_timeout_seconds
        self.include_delivery_status = (
            settings.record_include_delivery_status
            if include_delivery_status is None
            else include_delivery_status
        )
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def ready(self) -> bool:
        return bool(self.base_url)

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "disabled", "reason": "Record service not configured"}
        return {"status": "configured", "base_url": self.base_url}

    async def save_transaction(self, record: TransferRecord) -> Any:
        """
        POST the record to /save-transactions.

        Raises:
            RecordPersistenceFailure: If the request fails or is rejected
        """
        client = await self._get_client()

        try:
            response = await client.post(
                f"{self.base_url}/save-transactions",
                json=record.to_api_payload(self.include_delivery_status),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RecordPersistenceFailure(
                f"Saving transaction failed: {e.response.text}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise RecordPersistenceFailure(f"Request failed: {str(e)}") from e

        logger.info(f"Saved transfer record for {record.wallet_address}")
        if response.content:
            try:
                return response.json()
            except ValueError:
                return None
        return None

    async def fetch_transactions(self, wallet_address: str) -> List[TransferRecord]:
        """
        GET /fetch-transactions?walletAddress=... and parse allTransactions.

        Raises:
            RecordPersistenceFailure: If the request fails or the body is malformed
        """
        client = await self._get_client()

        try:
            response = await client.get(
                f"{self.base_url}/fetch-transactions",
                params={"walletAddress": wallet_address},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise RecordPersistenceFailure(
                f"Fetching transactions failed: {e.response.text}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise RecordPersistenceFailure(f"Request failed: {str(e)}") from e
        except ValueError as e:
            raise RecordPersistenceFailure(f"Malformed history response: {e}") from e

        entries = data.get("allTransactions") if isinstance(data, dict) else None
        if entries is None:
            raise RecordPersistenceFailure("History response has no allTransactions")
        return [TransferRecord.from_api(entry) for entry in entries if isinstance(entry, dict)]
