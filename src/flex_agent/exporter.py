"""Export clients: Metric API batches and Insights events."""

import gzip
import json
import logging
from typing import Any, Optional

import httpx

from . import __version__
from .context import Metrics

logger = logging.getLogger(__name__)

USER_AGENT = f"flex-agent/{__version__}"


class _Client:
    """Shared httpx plumbing. Every send is a single attempt."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Content-Encoding": "gzip",
            "User-Agent": USER_AGENT,
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self._get_headers(),
                transport=self._transport,
            )
        return self._client

    async def _post(self, body: Any, what: str) -> bool:
        content = gzip.compress(json.dumps(body, default=str).encode("utf-8"))
        client = await self._get_client()
        try:
            response = await client.post(self.url, content=content)
        except httpx.TimeoutException:
            logger.warning(f"Timeout sending {what}")
            return False
        except httpx.HTTPError as e:
            logger.warning(f"HTTP error sending {what}: {e}")
            return False

        if response.status_code in (200, 202):
            logger.debug(f"Sent {what}")
            return True
        if response.status_code in (401, 403):
            logger.error("Authentication failed - check API key")
        else:
            logger.warning(f"Failed to send {what}: {response.status_code}")
        return False

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


class MetricAPIClient(_Client):
    """Posts dimensional metric batches to the Metric API."""

    def _get_headers(self) -> dict:
        headers = super()._get_headers()
        if self.api_key:
            headers["Api-Key"] = self.api_key
        return headers

    async def send_batches(self, batches: list[Metrics]) -> bool:
        """Send drained batches in one request.

        Args:
            batches: Metrics batches, in harvest order

        Returns:
            True if accepted, False otherwise. Failed batches are not
            kept for a later attempt.
        """
        if not batches:
            return True
        return await self._post([b.to_dict() for b in batches], f"{len(batches)} metric batches")


class InsightsClient(_Client):
    """Posts metric sets as events to the Insights insert API."""

    def _get_headers(self) -> dict:
        headers = super()._get_headers()
        if self.api_key:
            headers["X-Insert-Key"] = self.api_key
        return headers

    async def send_events(self, events: list[dict[str, Any]]) -> bool:
        if not events:
            return True
        body = []
        for event in events:
            record = dict(event)
            record["eventType"] = record.pop("event_type", "FlexSample")
            body.append(record)
        return await self._post(body, f"{len(body)} events")
