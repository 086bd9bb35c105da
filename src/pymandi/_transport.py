"""HTTP transport for the business server collaborators."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from pymandi._constants import USER_AGENT
from pymandi._logfmt import summarize_for_log
from pymandi.config import MandiConfig
from pymandi.exceptions import MandiTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by collaborator adapters.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`ApiTransport`) concrete.
    """

    async def request_json(
        self,
        method: str,
        endpoint: str,
        payload: Mapping[str, Any] | None = None,
    ) -> Any: ...


class ApiTransport:
    """JSON-over-HTTP transport sharing one :class:`aiohttp.ClientSession`.

    When no session is injected one is created on first use (or on
    ``__aenter__``) and closed by :meth:`close`.
    """

    def __init__(self, base_url: str, http_session: aiohttp.ClientSession | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = http_session
        self._external_session = http_session is not None

    @classmethod
    def from_config(cls, config: MandiConfig, http_session: aiohttp.ClientSession | None = None) -> ApiTransport:
        return cls(config.api_base_url, http_session)

    async def __aenter__(self) -> ApiTransport:
        self._session()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if not self._external_session and self._http is not None:
            await self._http.close()
            self._http = None

    def _session(self) -> aiohttp.ClientSession:
        if self._http is None:
            self._http = aiohttp.ClientSession()
        return self._http

    async def request_json(
        self,
        method: str,
        endpoint: str,
        payload: Mapping[str, Any] | None = None,
    ) -> Any:
        """Send *payload* as JSON and return the decoded JSON body.

        Empty bodies (``204 No Content``) decode to ``None``.
        """
        headers: dict[str, str] = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        body: str | None = None
        if payload is not None:
            headers["content-type"] = "application/json; charset=UTF-8"
            body = json.dumps(payload, separators=(",", ":"))

        url = f"{self._base_url}{endpoint}"
        _logger.debug("%s %s payload=%s", method, url, summarize_for_log(payload))

        try:
            async with self._session().request(method, url, data=body, headers=headers) as resp:
                text = await resp.text()
                if resp.status < 200 or resp.status >= 300:
                    raise MandiTransportError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except MandiTransportError:
            raise
        except aiohttp.ClientError as exc:
            raise MandiTransportError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc

        if not text.strip():
            return None

        try:
            result = json.loads(text)
        except json.JSONDecodeError as exc:
            raise MandiTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc

        _logger.debug("%s %s -> %s", method, endpoint, summarize_for_log(result))
        return result
