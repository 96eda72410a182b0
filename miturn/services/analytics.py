import asyncio
import logging
from typing import Any, Dict, Optional, Set

import httpx
from fastapi.encoders import jsonable_encoder

from miturn.core.config import settings

logger = logging.getLogger(__name__)

class AnalyticsService:
    """
    Fire-and-forget product analytics.

    ``track`` never raises and never waits on the network: the event is
    logged, and when ``ANALYTICS_URL`` is set it is posted from a detached task.
    """

    def __init__(self, url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url if url is not None else settings.ANALYTICS_URL
        self.transport = transport
        self._in_flight: Set[asyncio.Task] = set()

    def track(self, event: str, user_id: Any = None, properties: Optional[Dict[str, Any]] = None) -> None:
        payload = jsonable_encoder({
            "event": event,
            "user_id": user_id or "system",
            "properties": properties or {},
        })
        logger.info(f"[Analytics] Event: {event} {payload['properties']}")

        if not self.url:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop, analytics event {event} only logged")
            return

        task = loop.create_task(self._post(payload))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _post(self, payload: Dict[str, Any]) -> None:
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=5.0) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Analytics event {payload['event']} not delivered: {e}")

    async def flush(self) -> None:
        """Wait for in-flight posts, e.g. before a worker process exits."""
        if self._in_flight:
            await asyncio.gather(*self._in_flight)

analytics_service = AnalyticsService()
