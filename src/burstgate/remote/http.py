"""HTTP remote implementation on ``httpx``."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from burstgate.errors import APIError
from burstgate.remote._errors import wrap_remote_error
from burstgate.remote.base import RemoteRequest, RemoteResponse

logger = logging.getLogger(__name__)


def _decode(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


class HttpRemote:
    """Remote API client implementing both ``RemoteCaller`` and ``JobClient``.

    The API key travels as a query parameter on plain calls and as ``apiKey``
    in the JSON body on job submissions. Status URLs returned by the remote
    are absolute and fetched as-is.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        api_key: str | None = None,
        api_key_param: str = "api_key",
        timeout_s: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Create a client; pass *client* to supply a preconfigured transport."""
        self.base_url = base_url
        self.api_key = api_key
        self.api_key_param = api_key_param
        self._owns_client = client is None
        if client is None:
            kwargs: dict[str, Any] = {"timeout": timeout_s}
            if base_url:
                kwargs["base_url"] = base_url
            client = httpx.AsyncClient(**kwargs)
        self._client = client

    async def _send(
        self,
        method: str,
        url: str,
        *,
        phase: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method, url, params=params, json=json, headers=headers
            )
            response.raise_for_status()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_remote_error(e, phase=phase) from e
        return response

    async def call(self, request: RemoteRequest) -> RemoteResponse:
        """Perform a plain request."""
        params = dict(request.params)
        if self.api_key:
            params.setdefault(self.api_key_param, self.api_key)
        logger.debug("%s %s", request.method, request.url)
        response = await self._send(
            request.method,
            request.url,
            phase="call",
            params=params,
            json=request.json,
            headers=dict(request.headers) or None,
        )
        return RemoteResponse(
            status_code=response.status_code,
            data=_decode(response),
            headers=dict(response.headers),
        )

    async def submit(self, url: str, payload: Any) -> Any:
        """POST a job submission and return the decoded body."""
        body = payload
        if self.api_key and isinstance(payload, dict):
            body = {"apiKey": self.api_key, **payload}
        logger.debug("Submitting job to %s", url)
        response = await self._send("POST", url, phase="submit", json=body)
        return _decode(response)

    async def check_status(self, status_url: str) -> dict[str, Any]:
        """GET a job status document."""
        response = await self._send("GET", status_url, phase="poll")
        data = _decode(response)
        if not isinstance(data, dict):
            raise APIError(
                f"Job status at {status_url} is not a JSON object",
                retryable=False,
                status_code=response.status_code,
                phase="poll",
            )
        return data

    async def aclose(self) -> None:
        """Close the underlying client when this instance created it."""
        if self._owns_client:
            await self._client.aclose()
