from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from ..core.recovery.errors import NetworkError, RateLimitError


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: int = 10

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        pass


class JsonRpcProvider(Provider):
    """
    Provider speaking JSON-RPC 2.0 over a lazily created httpx client.

    Transport failures surface as NetworkError and HTTP 429 as
    RateLimitError, so callers can retry them; JSON-RPC errors and malformed
    bodies raise the provider's own `error_class`.
    """

    error_class: type = RuntimeError

    def __init__(self, rpc_url: str, client: Optional[httpx.AsyncClient] = None) -> None:
        self.rpc_url = rpc_url
        self._client = client

    async def ready(self) -> bool:
        return bool(self.rpc_url)

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "disabled", "reason": f"{self.name} not configured"}

        try:
            result = await self._rpc_call("eth_chainId", [])
            return {"status": "healthy", "chainId": result}
        except Exception as exc:
            return {"status": "error", "reason": str(exc)}

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        if not self._client or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)

        try:
            response = await self._client.post(
                self.rpc_url,
                json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
            )
        except httpx.TransportError as exc:
            raise NetworkError(f"{self.name} {method} failed: {exc}", provider=self.name) from exc

        if response.status_code == 429:
            raise RateLimitError(
                f"{self.name} rate limited {method}",
                retry_after=_retry_after(response),
                provider=self.name,
            )
        response.raise_for_status()

        try:
            payload = response.json()
        except ValueError as exc:
            raise self.error_class(f"Malformed {method} response: {exc}") from exc
        if not isinstance(payload, dict):
            raise self.error_class(f"Malformed {method} response: expected an object")
        if "error" in payload:
            raise self.error_class(_format_rpc_error(payload["error"]))
        return payload.get("result")

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None


def _retry_after(response: httpx.Response, default: float = 5.0) -> float:
    try:
        return float(response.headers.get("retry-after", default))
    except ValueError:
        return default


def _format_rpc_error(error: Any) -> str:
    if isinstance(error, dict):
        message = error.get("message") or "unknown error"
        code = error.get("code")
        return f"{message} (code {code})" if code is not None else message
    return str(error)
