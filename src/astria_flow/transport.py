"""Authenticated HTTP access to the Astria REST API."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from astria_flow.config import AstriaSettings
from astria_flow.errors import TransportFailure

logger = logging.getLogger(__name__)


def _decode_body(response: httpx.Response) -> Any:
    """Return the JSON body, the raw text when it is not JSON, or ``None`` when empty."""
    if not response.content:
        return None
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text


class AstriaTransport:
    """Issue requests with the bearer token and per-request timeout attached.

    The transport does not retry. Any non-2xx response or request-level
    problem is raised as a :class:`TransportFailure` for the classifier.
    """

    def __init__(self, settings: AstriaSettings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.base_url,
            headers={
                "Authorization": f"Bearer {settings.api_key}",
                "Accept": "application/json",
            },
            timeout=settings.timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> AstriaTransport:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        files: list[tuple[str, tuple]] | None = None,
    ) -> Any:
        """Send one request and return the decoded response body.

        Raises:
            TransportFailure: On non-2xx status, timeout or connection failure.
        """
        method = method.upper()
        logger.debug("-> %s %s", method, path)
        try:
            response = await self._client.request(method, path, json=json, params=params, files=files)
        except httpx.TimeoutException as exc:
            raise TransportFailure(
                f"Request timed out after {self.settings.timeout_seconds}s: {method} {path}",
                timed_out=True,
                method=method,
                path=path,
            ) from exc
        except (httpx.NetworkError, httpx.ProxyError) as exc:
            raise TransportFailure(
                f"Network error during {method} {path}: {exc}",
                connection_failed=True,
                method=method,
                path=path,
            ) from exc
        except httpx.RequestError as exc:
            raise TransportFailure(f"Request failed: {method} {path}: {exc}", method=method, path=path) from exc

        logger.debug("<- %s %s status=%s", method, path, response.status_code)
        body = _decode_body(response)
        if response.is_success:
            return body

        logger.debug("   error body: %s", body)
        raise TransportFailure(
            f"{method} {path} returned {response.status_code}",
            status_code=response.status_code,
            payload=body,
            method=method,
            path=path,
        )
