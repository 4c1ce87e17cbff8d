import json
import logging
import xml.etree.ElementTree as ET
from typing import Any, Iterable, Mapping, Optional

import httpx

from .errors import RequestFailed

logger = logging.getLogger(__name__)

DEFAULT_ACCEPT = (200, 403)


class HttpClient:
    """GET helper with per-call status acceptance.

    Most endpoints answer 403 with a meaningful JSON body, so both 200 and
    403 are accepted by default. Callers widen the set where needed (404
    carries an error code on the recordings API, 429 signals rate limiting).
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client or httpx.AsyncClient(
            follow_redirects=True,
            timeout=httpx.Timeout(connect=30, read=120, write=30, pool=30),
        )

    async def get(
        self,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        accept: Iterable[int] = DEFAULT_ACCEPT,
    ) -> httpx.Response:
        try:
            response = await self._client.get(url, headers=dict(headers or {}))
        except httpx.HTTPError as e:
            raise RequestFailed(url, detail=str(e)) from e
        except UnicodeEncodeError as e:
            # header values must be ASCII
            raise RequestFailed(url, detail=f"header value cannot be sent: {e}") from e
        if response.status_code not in tuple(accept):
            raise RequestFailed(url, status=response.status_code)
        logger.debug(f"GET {url} -> {response.status_code}")
        return response

    async def get_text(self, url: str, headers=None, accept: Iterable[int] = DEFAULT_ACCEPT) -> str:
        response = await self.get(url, headers, accept)
        return response.text

    async def get_json(self, url: str, headers=None, accept: Iterable[int] = DEFAULT_ACCEPT) -> Any:
        """Raises :class:`ValueError` when the body is not JSON."""
        return json.loads(await self.get_text(url, headers, accept))

    async def get_xml(self, url: str, headers=None, accept: Iterable[int] = (200,)) -> ET.Element:
        """Raises :class:`ET.ParseError` when the body is not XML."""
        return ET.fromstring(await self.get_text(url, headers, accept))

    async def aclose(self) -> None:
        await self._client.aclose()
