"""Out-of-band source liveness probing."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from contextlib import suppress
from typing import TYPE_CHECKING

from aiohttp import ClientError, ClientSession, ClientTimeout

from aiostreamrelay.models.channel import ChannelDefinition
from aiostreamrelay.models.status import ChannelHealth, SourceProbe

if TYPE_CHECKING:
    from .catalog import ChannelCatalog

logger = logging.getLogger(__name__)


class HealthAdvisor:
    """
    Periodically probes source URLs independently of playback.

    Sessions consult is_likely_down() before attempting a source. The result is
    only a hint: a source that was never probed, or whose last probe succeeded,
    is never reported down.
    """

    _client_session: ClientSession | None
    """HTTP session used for probes, created lazily when not supplied."""
    _owns_session: bool
    """Whether this advisor owns (and must close) the client session."""
    _url_health: dict[str, bool]
    """Result of the last probe per source URL."""
    _channel_health: dict[str, ChannelHealth]
    """Result of the last probe round per channel."""
    _check_task: asyncio.Task[None] | None
    """Background task running periodic probe rounds, None when not started."""

    def __init__(
        self,
        client_session: ClientSession | None = None,
        *,
        check_interval: float = 60.0,
        probe_timeout: float = 10.0,
    ) -> None:
        """
        Initialize a health advisor.

        Args:
            client_session: Optional ClientSession used for probes.
                If None, a new session is created on first use.
            check_interval: Seconds between two probe rounds.
            probe_timeout: Seconds a single probe may take.
        """
        self._client_session = client_session
        self._owns_session = client_session is None
        self._check_interval = check_interval
        self._probe_timeout = probe_timeout
        self._url_health = {}
        self._channel_health = {}
        self._check_task = None

    def _get_session(self) -> ClientSession:
        if self._client_session is None:
            self._client_session = ClientSession()
        return self._client_session

    def is_likely_down(self, url: str) -> bool:
        """Return True if the last probe of url failed."""
        return self._url_health.get(url) is False

    def channel_health(self, channel_id: str) -> ChannelHealth | None:
        """Return the last probe result for a channel."""
        return self._channel_health.get(channel_id)

    def all_health(self) -> list[ChannelHealth]:
        """Return the last probe result of every probed channel."""
        return list(self._channel_health.values())

    async def probe(self, url: str) -> bool:
        """
        Probe one URL. Any 2xx or 3xx response within the timeout is healthy.

        Only http(s) sources can be probed; other schemes are reported healthy
        and never marked down.
        """
        if not url.startswith(("http://", "https://")):
            return True
        session = self._get_session()
        try:
            async with session.get(url, timeout=ClientTimeout(total=self._probe_timeout)) as response:
                healthy = 200 <= response.status < 400
        except (ClientError, TimeoutError) as err:
            logger.debug("Stream check failed for %s: %s", url, err)
            healthy = False
        self._url_health[url] = healthy
        return healthy

    async def check_channel(self, definition: ChannelDefinition) -> ChannelHealth:
        """Probe the sources of a channel in order, stopping at the first healthy one."""
        result = ChannelHealth(channel_id=definition.name, healthy=False, sources=[])
        for index, url in enumerate(definition.streams):
            healthy = await self.probe(url)
            result.sources.append(SourceProbe(url=url, index=index, healthy=healthy))
            if healthy:
                result.healthy = True
                result.working_source = url
                break

        previous = self._channel_health.get(definition.name)
        if previous is not None and previous.healthy != result.healthy:
            if result.healthy:
                logger.warning("Channel %s back online", definition.display_name)
            else:
                logger.warning("Channel %s offline", definition.display_name)
        elif previous is None and not result.healthy:
            logger.warning("Channel %s offline", definition.display_name)
        self._channel_health[definition.name] = result
        return result

    async def check_all(self, definitions: Iterable[ChannelDefinition]) -> list[ChannelHealth]:
        """Probe every enabled channel concurrently."""
        enabled = [d for d in definitions if d.enabled]
        return list(await asyncio.gather(*(self.check_channel(d) for d in enabled)))

    def start(self, catalog: ChannelCatalog) -> None:
        """Start periodic probe rounds over the enabled channels of catalog."""
        if self._check_task is not None and not self._check_task.done():
            return
        self._check_task = asyncio.get_running_loop().create_task(self._run_checks(catalog))

    async def _run_checks(self, catalog: ChannelCatalog) -> None:
        while True:
            try:
                results = await self.check_all(catalog.list_enabled())
                logger.debug(
                    "Health check completed: %d/%d channel(s) healthy",
                    sum(1 for r in results if r.healthy),
                    len(results),
                )
            except Exception:
                logger.exception("Unexpected error during health check")
            await asyncio.sleep(self._check_interval)

    async def close(self) -> None:
        """Stop periodic probing and close the client session if owned."""
        task = self._check_task
        self._check_task = None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        if self._owns_session and self._client_session is not None:
            await self._client_session.close()
            self._client_session = None
