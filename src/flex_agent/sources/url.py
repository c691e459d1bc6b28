"""HTTP source - fetches a URL with httpx."""

import logging
import ssl
from typing import Any, Union
from urllib.parse import quote

import httpx

from ..config import merged_headers, timeout_seconds
from ..errors import FetchError
from ..templates import render, substitute_variables
from .base import Fetcher, FetchResult, SourceKind
from .registry import register_source

logger = logging.getLogger(__name__)


# short spellings of the protocol numbers (0x0301 is TLS 1.0)
_TLS_SHORT = {10: 0x0301, 11: 0x0302, 12: 0x0303, 13: 0x0304}


def tls_version(value: int, source: str = "") -> ssl.TLSVersion:
    """Map a ``min_version``/``max_version`` setting to an ssl.TLSVersion."""
    try:
        return ssl.TLSVersion(_TLS_SHORT.get(value, value))
    except ValueError as e:
        raise FetchError(f"unknown TLS version {value}", source=source) from e


@register_source(SourceKind.URL)
class UrlFetcher(Fetcher):
    """
    Fetch an HTTP endpoint.

    Config:
        url: str - absolute, or relative to ``global.base_url``
        method: str - HTTP method (default: GET)
        payload: str - request body
        headers: dict - merged over ``global.headers``
        user/pass: basic auth, falling back to ``global``
        tls_config: TLS verification settings
        timeout: int - milliseconds

    JSON responses are decoded; anything else (including Prometheus
    exposition text) is returned as text.
    """

    def __init__(self, api, config):
        super().__init__(api, config)
        self._client: httpx.AsyncClient | None = None

    def _verify(self) -> Union[bool, ssl.SSLContext]:
        tls = self.api.tls_config if self.api.tls_config.enable else self.config.global_.tls_config
        if not tls.enable:
            return True
        if not (tls.min_version or tls.max_version):
            if tls.insecure_skip_verify:
                return False
            return ssl.create_default_context(cafile=tls.ca) if tls.ca else True

        context = ssl.create_default_context(cafile=tls.ca or None)
        if tls.insecure_skip_verify:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        if tls.min_version:
            context.minimum_version = tls_version(tls.min_version, self.name)
        if tls.max_version:
            context.maximum_version = tls_version(tls.max_version, self.name)
        return context

    def _client_for_run(self) -> httpx.AsyncClient:
        if self._client is None:
            global_ = self.config.global_
            user = self.api.user or global_.user
            password = self.api.password or global_.password
            self._client = httpx.AsyncClient(
                timeout=timeout_seconds(self.api.timeout, global_.timeout),
                verify=self._verify(),
                proxy=self.api.proxy or global_.proxy or None,
                auth=(user, password) if user else None,
                follow_redirects=True,
            )
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _full_url(self, url: str) -> str:
        if self.api.escape_url:
            url = quote(url, safe=":/?&=%#")
        if url.startswith(("http://", "https://")):
            return url
        return self.config.global_.base_url + url

    async def fetch(self) -> list[FetchResult]:
        urls = render(self.api.url, self.config)
        results = []
        try:
            for url in urls:
                unit = self.name if len(urls) == 1 else f"{self.name}:{url}"
                results.append(await self.guarded(unit, self._get(self._full_url(url))))
        finally:
            await self.close()
        return results

    async def _get(self, url: str) -> Any:
        client = self._client_for_run()
        headers = {
            k: substitute_variables(v, self.config.variable_store)
            for k, v in merged_headers(self.config.global_, self.api).items()
        }
        payload = substitute_variables(self.api.payload, self.config.variable_store)
        method = (self.api.method or ("POST" if payload else "GET")).upper()

        try:
            response = await client.request(method, url, headers=headers, content=payload or None)
        except httpx.TimeoutException as e:
            raise FetchError(f"timeout requesting {url}", source=self.name, timed_out=True) from e
        except httpx.HTTPError as e:
            raise FetchError(f"request to {url} failed: {e}", source=self.name) from e

        if response.status_code >= 400:
            raise FetchError(f"{url} returned HTTP {response.status_code}", source=self.name)

        if self.api.prometheus.enable:
            return response.text
        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                return response.json()
            except ValueError:
                logger.debug(f"{self.name}: response declared json but did not decode")
        return response.text
