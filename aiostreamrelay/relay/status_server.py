"""Read-only HTTP status endpoint for a StreamSupervisor."""

from __future__ import annotations

import logging

from aiohttp import web

from .health import HealthAdvisor
from .supervisor import StreamSupervisor

logger = logging.getLogger(__name__)


class StatusServer:
    """Serves supervisor status (and health probe results) as JSON."""

    API_PATH = "/api/status"
    HEALTH_PATH = "/api/health"

    _app: web.Application | None
    """Web application serving the status routes."""
    _app_runner: web.AppRunner | None
    """App runner for the web application."""
    _tcp_site: web.TCPSite | None
    """TCP site for the web application."""

    def __init__(
        self,
        supervisor: StreamSupervisor,
        *,
        health_advisor: HealthAdvisor | None = None,
    ) -> None:
        """
        Initialize the status server.

        Args:
            supervisor: Supervisor whose sessions are reported.
            health_advisor: Optional advisor whose probe results are reported
                under HEALTH_PATH.
        """
        self._supervisor = supervisor
        self._health_advisor = health_advisor
        self._app = None
        self._app_runner = None
        self._tcp_site = None

    def create_app(self) -> web.Application:
        """Create the aiohttp application with the status routes."""
        app = web.Application()
        app.router.add_get(self.API_PATH, self._handle_status)
        app.router.add_get(f"{self.API_PATH}/{{channel_id}}", self._handle_channel_status)
        app.router.add_get(self.HEALTH_PATH, self._handle_health)
        return app

    async def _handle_status(self, request: web.Request) -> web.Response:  # noqa: ARG002
        status = self._supervisor.relay_status()
        return web.Response(text=status.to_json(), content_type="application/json")

    async def _handle_channel_status(self, request: web.Request) -> web.Response:
        channel_id = request.match_info["channel_id"]
        status = self._supervisor.status(channel_id)
        if status is None or isinstance(status, list):
            raise web.HTTPNotFound(text=f"No session for channel {channel_id!r}")
        return web.Response(text=status.to_json(), content_type="application/json")

    async def _handle_health(self, request: web.Request) -> web.Response:  # noqa: ARG002
        if self._health_advisor is None:
            return web.json_response([])
        return web.json_response([result.to_dict() for result in self._health_advisor.all_health()])

    async def start(self, port: int = 8080, host: str = "0.0.0.0") -> None:
        """Start serving on host:port."""
        if self._app is not None:
            logger.warning("Status server already running")
            return
        self._app = self.create_app()
        self._app_runner = web.AppRunner(self._app)
        await self._app_runner.setup()
        try:
            self._tcp_site = web.TCPSite(self._app_runner, host=host, port=port)
            await self._tcp_site.start()
        except OSError:
            await self._app_runner.cleanup()
            self._app = None
            self._app_runner = None
            self._tcp_site = None
            raise
        logger.info("Status server running on %s:%d", host, port)

    async def close(self) -> None:
        """Stop serving."""
        if self._app_runner is not None:
            await self._app_runner.cleanup()
        self._app = None
        self._app_runner = None
        self._tcp_site = None
