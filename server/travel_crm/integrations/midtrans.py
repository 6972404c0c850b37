"""Async client for the Midtrans Snap and Core APIs."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional, cast

import httpx

logger = logging.getLogger(__name__)


class MidtransError(RuntimeError):
    """Raised when Midtrans cannot be reached or responds with an error."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        *,
        error_body: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_body = error_body


def compute_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    """SHA-512 hex digest Midtrans attaches to notifications as ``signature_key``."""
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


def verify_signature(
    order_id: str,
    status_code: str,
    gross_amount: str,
    signature_key: Optional[str],
    server_key: str,
) -> bool:
    """Constant-time comparison of a received signature with the expected one."""
    if not signature_key:
        return False
    expected = compute_signature(order_id, status_code, gross_amount, server_key)
    return hmac.compare_digest(expected, signature_key.lower())


class MidtransClient:
    """Thin async client for hosted checkout creation and transaction status lookups."""

    def __init__(
        self,
        *,
        server_key: str,
        snap_base_url: str = "https://app.sandbox.midtrans.com",
        api_base_url: str = "https://api.sandbox.midtrans.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not server_key:
            raise ValueError("Midtrans server key must be provided")

        self.server_key = server_key
        self._snap_base_url = snap_base_url.rstrip("/")
        self._api_base_url = api_base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        # Server key as username, blank password
        self._auth = httpx.BasicAuth(server_key, "")

    async def create_transaction(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create a Snap transaction. The response carries ``token`` and ``redirect_url``."""
        data = await self.request("POST", f"{self._snap_base_url}/snap/v1/transactions", json_body=payload)
        if not data.get("token") or not data.get("redirect_url"):
            raise MidtransError("Midtrans response is missing token or redirect_url", error_body=data)
        return data

    async def get_status(self, order_id: str) -> Dict[str, Any]:
        """Fetch the provider's current view of a transaction."""
        if not order_id:
            raise ValueError("order_id must be provided")
        return await self.request("GET", f"{self._api_base_url}/v2/{order_id}/status")

    async def request(
        self,
        method: str,
        url: str,
        *,
        json_body: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Perform a raw Midtrans request and return the parsed JSON payload."""
        async with httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            auth=self._auth,
            headers={"Accept": "application/json"},
        ) as client:
            try:
                response = await client.request(method, url, json=json_body)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                try:
                    error_payload: Any = exc.response.json()
                except json.JSONDecodeError:
                    error_payload = exc.response.text

                logger.error(
                    "Midtrans API error %s for %s %s: %s",
                    status,
                    method,
                    url,
                    exc.response.text[:500],
                )
                raise MidtransError(
                    f"Midtrans responded with status {status}",
                    status_code=status,
                    error_body=error_payload,
                ) from exc
            except httpx.RequestError as exc:
                logger.error("Midtrans request failure for %s %s: %s", method, url, str(exc))
                raise MidtransError("Failed to reach Midtrans") from exc

        try:
            return cast(Dict[str, Any], response.json())
        except json.JSONDecodeError as exc:
            logger.error("Invalid JSON from Midtrans for %s %s: %s", method, url, response.text[:500])
            raise MidtransError("Received malformed JSON from Midtrans") from exc
