# foodcart/services/http_client.py
import asyncio
from typing import Any

import aiohttp

from foodcart.domain.errors import NotFound, RemoteUnavailable
from foodcart.utils.settings import CART_API_URL, HTTP_TIMEOUT_SECONDS
from foodcart.utils.logging import get_logger

logger = get_logger(__name__)


class JsonHttpClient:
    """
    Thin JSON-over-HTTP client shared by the gateways.

    Maps transport problems and 5xx/unexpected statuses to RemoteUnavailable
    and 404 to NotFound. Never retries; callers decide whether a retry is safe.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        self.base_url = (base_url or CART_API_URL).rstrip("/")
        self.timeout = timeout or HTTP_TIMEOUT_SECONDS
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        url = f"{self.base_url}{path}"
        logger.info(f"{type(self).__name__} {method} {url}")

        session = await self._get_session()
        try:
            async with session.request(method, url, json=json) as resp:
                if resp.status == 404:
                    raise NotFound(f"{method} {path}: not found")
                if resp.status >= 400:
                    detail = await resp.text()
                    logger.warning(f"{method} {url} -> {resp.status}: {detail[:200]}")
                    raise RemoteUnavailable(f"{method} {path} returned {resp.status}", status=resp.status)
                if resp.status == 204:
                    return None
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"{method} {url} failed: {e!r}")
            raise RemoteUnavailable(f"{method} {path}: {e!r}") from e
        except ValueError as e:
            # 2xx with a body that is not JSON, e.g. a proxy maintenance page
            logger.warning(f"{method} {url} returned a non-JSON body: {e}")
            raise RemoteUnavailable(f"{method} {path}: invalid JSON body") from e
