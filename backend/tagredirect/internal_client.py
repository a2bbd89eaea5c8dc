import asyncio
from typing import Optional

import httpx
from pydantic import ValidationError

from .auth import SECRET_HEADER
from .errors import UpstreamUnavailable
from .schemas import AnalyticsEvent, TagState


class InternalClient:
    """Talks to the lookup, account-handle and event-ingestion services.

    Every call carries the shared internal secret and a short timeout; any
    transport error, timeout or unexpected status becomes UpstreamUnavailable.
    """

    def __init__(self, base_url: str, secret: str, lookup_timeout: float = 0.75,
                 event_timeout: float = 2.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._lookup_timeout = lookup_timeout
        self._event_timeout = event_timeout
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={SECRET_HEADER: secret},
            transport=transport,
        )

    async def _request(self, method: str, path: str, timeout: float, **kwargs) -> httpx.Response:
        # httpx limits each phase separately; wait_for caps the call as a whole
        call = self._client.request(method, path, timeout=httpx.Timeout(timeout), **kwargs)
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise UpstreamUnavailable(f"{method} {path} timed out") from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"{method} {path} failed: {e}") from e

    async def lookup_tag(self, token: str) -> Optional[TagState]:
        """Return the tag for a token, or None when the lookup service reports not-found."""
        resp = await self._request("GET", "/api/internal/tag-lookup", self._lookup_timeout,
                                   params={"token": token})
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise UpstreamUnavailable(f"tag lookup answered {resp.status_code}")
        try:
            return TagState.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise UpstreamUnavailable(f"tag lookup returned a malformed record: {e}") from e

    async def handle_for(self, owner_id: str) -> Optional[str]:
        resp = await self._request("GET", "/api/internal/handle-for", self._lookup_timeout,
                                   params={"uid": owner_id})
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise UpstreamUnavailable(f"handle lookup answered {resp.status_code}")
        try:
            handle = resp.json().get("handle")
        except (ValueError, AttributeError) as e:
            raise UpstreamUnavailable(f"handle lookup returned a malformed body: {e}") from e
        return handle or None

    async def send_event(self, event: AnalyticsEvent) -> None:
        resp = await self._request("POST", "/api/internal/log-event", self._event_timeout,
                                   json=event.model_dump(mode="json", exclude_none=True))
        if not resp.is_success:
            raise UpstreamUnavailable(f"event ingestion answered {resp.status_code}")

    async def aclose(self) -> None:
        await self._client.aclose()
