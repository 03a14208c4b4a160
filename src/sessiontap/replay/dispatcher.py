"""
Replay dispatcher.

Sends replay-ready payloads to the ingestion endpoints with the same framing
the browser client uses. In dry-run mode every payload is built but nothing
leaves the process.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from ..capture.codec import compress_body
from ..common.errors import DispatchError
from ..common.utils import compact_json, now_ms
from .replay_config import EventMode, ReplayConfig

logger = logging.getLogger("sessiontap.replay")

RECORDING_ENDPOINT = '/s/'
EVENT_ENDPOINT = '/e/'
BATCH_ENDPOINT = '/batch/'


@dataclass
class DispatchResult:
    """Outcome of one POST to ingestion (or of its dry-run stand-in)."""

    endpoint: str
    url: str
    payload_bytes: int
    event_count: int
    status: Optional[int] = None
    response_body: str = ''
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'endpoint': self.endpoint,
            'url': self.url,
            'payload_bytes': self.payload_bytes,
            'event_count': self.event_count,
            'status': self.status,
            'dry_run': self.dry_run,
        }


class ReplayDispatcher:
    """
    Posts recordings and events to the ingestion host.

    Use as an async context manager so the HTTP client is closed:

        async with ReplayDispatcher(config, dry_run=False) as dispatcher:
            await dispatcher.send_recording(body, event_count=3)
            await dispatcher.send_events(events)
    """

    def __init__(
        self,
        config: ReplayConfig,
        dry_run: bool = True,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize dispatcher.

        Args:
            config: Run configuration (target host, project key, client framing)
            dry_run: Build payloads but skip the network calls
            client: Optional pre-built client (tests inject a mock transport here)
        """
        self.config = config
        self.dry_run = dry_run
        self._client = client
        self._owns_client = client is None
        self.results: List[DispatchResult] = []

    async def __aenter__(self) -> 'ReplayDispatcher':
        if self._client is None and not self.dry_run:
            self._client = httpx.AsyncClient(timeout=self.config.timeout)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _url(self, endpoint: str) -> str:
        return f"{self.config.base_url}{endpoint}"

    def client_query(self) -> Dict[str, str]:
        """Query parameters the browser client puts on compressed posts."""
        cache_buster = self.config.target_timestamp or now_ms()
        return {
            'ip': '0',
            '_': str(cache_buster),
            'ver': self.config.client_version,
            'compression': 'gzip-js',
        }

    def browser_headers(self, content_type: str) -> Dict[str, str]:
        return {
            'Content-Type': content_type,
            'User-Agent': self.config.user_agent,
            'Accept': '*/*',
            'Origin': self.config.origin,
            'Referer': self.config.origin.rstrip('/') + '/',
        }

    async def _post(
        self,
        endpoint: str,
        content: bytes,
        headers: Dict[str, str],
        event_count: int,
        params: Optional[Dict[str, str]] = None
    ) -> DispatchResult:
        """
        POST one payload.

        Raises:
            DispatchError: On transport failure or a non-2xx response
        """
        url = self._url(endpoint)
        result = DispatchResult(endpoint=endpoint, url=url, payload_bytes=len(content), event_count=event_count)

        if self.dry_run:
            result.dry_run = True
            logger.info(f"Dry run: skipping POST {endpoint} ({event_count} event(s), {len(content)} bytes)")
            self.results.append(result)
            return result

        if self._client is None:
            raise RuntimeError("ReplayDispatcher must be used as an async context manager")

        try:
            response = await self._client.post(url, params=params, content=content, headers=headers)
        except httpx.HTTPError as e:
            raise DispatchError(f"POST {url} failed: {e}", url=url) from e

        result.status = response.status_code
        result.response_body = response.text
        self.results.append(result)
        logger.info(f"Response: HTTP {response.status_code} from {endpoint}")

        if not 200 <= response.status_code < 300:
            raise DispatchError(
                f"HTTP {response.status_code}: {response.text[:500]}",
                url=url,
                status=response.status_code,
                body=response.text
            )
        return result

    async def send_recording(self, body: bytes, event_count: int) -> DispatchResult:
        """
        Send a gzip-compressed JSON array of snapshot events.

        Args:
            body: gzip body as produced by the remapper
            event_count: Number of events in the body, for reporting
        """
        return await self._post(
            RECORDING_ENDPOINT,
            body,
            self.browser_headers('text/plain'),
            event_count,
            params=self.client_query()
        )

    async def send_batch(self, events: List[Dict[str, Any]]) -> DispatchResult:
        """Send events as one historical-import batch."""
        payload = {
            'api_key': self.config.project_key,
            'historical_migration': True,
            'batch': events,
        }
        return await self._post(
            BATCH_ENDPOINT,
            compact_json(payload).encode('utf-8'),
            {'Content-Type': 'application/json'},
            len(events)
        )

    async def send_event(self, event: Dict[str, Any]) -> DispatchResult:
        """Send one event gzip-compressed, as the browser client does."""
        return await self._post(
            EVENT_ENDPOINT,
            compress_body(compact_json(event).encode('utf-8')),
            self.browser_headers('text/plain'),
            1,
            params=self.client_query()
        )

    async def send_events(self, events: List[Dict[str, Any]]) -> List[DispatchResult]:
        """
        Send application events according to the configured event mode.

        In single mode events go out one at a time in order; the first failure
        stops the remaining ones.
        """
        if not events:
            return []

        if self.config.event_mode == EventMode.BATCH:
            return [await self.send_batch(events)]

        results = []
        for event in events:
            results.append(await self.send_event(event))
        return results
