"""Shared httpx plumbing for the HTTP backends"""

import logging
from typing import Any, Dict, Optional

import httpx

from .base import GenerationProvider, ProviderConfig, ProviderHTTPError

logger = logging.getLogger(__name__)


class HTTPGenerationProvider(GenerationProvider):
    """
    Base for backends reached over HTTP.

    Holds one lazily created httpx.AsyncClient. A transport can be injected
    (httpx.MockTransport in tests).
    """

    def __init__(
        self,
        config: ProviderConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.config.timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    @staticmethod
    def _url(base_url: Optional[str], path: str) -> str:
        return f"{(base_url or '').rstrip('/')}{path}"

    @staticmethod
    def _headers(auth: str, accept: str = "application/json") -> Dict[str, str]:
        headers = {"Accept": accept}
        if auth:
            headers["Authorization"] = auth
        return headers

    async def _send(self, method: str, url: str, auth: str, accept: str = "application/json",
                    **kwargs: Any) -> httpx.Response:
        """Send a request and raise ProviderHTTPError on a non-2xx status"""
        client = self._get_client()
        response = await client.request(method, url, headers=self._headers(auth, accept), **kwargs)
        logger.debug(f"{self.name} {method} {url} -> {response.status_code}")
        if response.status_code >= 400:
            raise ProviderHTTPError(response.status_code, response.text[:500])
        return response

    async def _post_json(self, url: str, body: Dict[str, Any], auth: str) -> Any:
        response = await self._send("POST", url, auth, json=body)
        return response.json()

    async def _get_json(self, url: str, auth: str) -> Any:
        response = await self._send("GET", url, auth)
        return response.json()

    async def _post_form(self, url: str, data: Dict[str, str], files: Optional[Dict[str, Any]],
                         auth: str) -> Any:
        response = await self._send("POST", url, auth, data=data, files=files or None)
        return response.json()
