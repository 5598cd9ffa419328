"""HTTP JSON transport for the Position Store API."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from pylocrelay._constants import USER_AGENT
from pylocrelay.config import RelayConfig
from pylocrelay.exceptions import RelayTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by :class:`~pylocrelay.api.LocationApi`.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`JsonTransport`) concrete.
    """

    async def get_json(self, endpoint: str, params: Mapping[str, str] | None = None) -> Any:
        ...


class JsonTransport:
    """GET-only JSON transport over a shared aiohttp session."""

    def __init__(self, config: RelayConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.http_timeout)

    async def get_json(self, endpoint: str, params: Mapping[str, str] | None = None) -> Any:
        """GET ``base_url + endpoint`` and return the decoded JSON body.

        An empty body decodes to ``None``. Network errors, non-2xx
        statuses, and undecodable bodies raise :class:`RelayTransportError`.
        """
        url = f"{self._config.base_url.rstrip('/')}{endpoint}"
        headers = {"accept": "application/json", "user-agent": USER_AGENT}

        _logger.debug("GET %s params=%s", url, params)

        try:
            async with self._http.get(url, params=params, headers=headers, timeout=self._timeout) as resp:
                text = await resp.text()
                if not 200 <= resp.status < 300:
                    raise RelayTransportError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except RelayTransportError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise RelayTransportError(
                f"Request to {endpoint} failed: {exc!r}",
                endpoint=endpoint,
            ) from exc

        if not text.strip():
            return None

        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise RelayTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc
