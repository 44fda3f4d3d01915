from __future__ import annotations

import asyncio
import socket
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from aiohttp import web

from aiostreamrelay.models.channel import ChannelDefinition
from aiostreamrelay.relay.catalog import ChannelCatalog
from aiostreamrelay.relay.health import HealthAdvisor


def _get_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


async def _handle_ok(request: web.Request) -> web.Response:  # noqa: ARG001
    return web.Response(body=b"\x00" * 16, content_type="audio/mpeg")


async def _handle_missing(request: web.Request) -> web.Response:  # noqa: ARG001
    raise web.HTTPNotFound


@pytest_asyncio.fixture
async def radio_url() -> AsyncIterator[str]:
    app = web.Application()
    app.router.add_get("/live", _handle_ok)
    app.router.add_get("/missing", _handle_missing)
    runner = web.AppRunner(app)
    await runner.setup()
    port = _get_free_port()
    site = web.TCPSite(runner, host="127.0.0.1", port=port)
    await site.start()
    yield f"http://127.0.0.1:{port}"
    await runner.cleanup()


@pytest.mark.asyncio
async def test_probe_classifies_responses(radio_url: str) -> None:
    advisor = HealthAdvisor(probe_timeout=2.0)
    unreachable = f"http://127.0.0.1:{_get_free_port()}/live"

    assert await advisor.probe(f"{radio_url}/live") is True
    assert await advisor.probe(f"{radio_url}/missing") is False
    assert await advisor.probe(unreachable) is False

    assert advisor.is_likely_down(f"{radio_url}/live") is False
    assert advisor.is_likely_down(f"{radio_url}/missing") is True
    assert advisor.is_likely_down(unreachable) is True
    assert advisor.is_likely_down("http://never.example/probed") is False
    await advisor.close()


@pytest.mark.asyncio
async def test_non_http_sources_are_never_down() -> None:
    advisor = HealthAdvisor()

    assert await advisor.probe("rtmp://radio.example/live") is True
    assert advisor.is_likely_down("rtmp://radio.example/live") is False
    await advisor.close()


@pytest.mark.asyncio
async def test_check_channel_stops_at_first_healthy_source(radio_url: str) -> None:
    advisor = HealthAdvisor(probe_timeout=2.0)
    definition = ChannelDefinition(
        name="jazz",
        display_name="Jazz FM",
        streams=(f"{radio_url}/missing", f"{radio_url}/live", "http://unused.example/live"),
    )

    result = await advisor.check_channel(definition)

    assert result.healthy is True
    assert result.working_source == f"{radio_url}/live"
    assert [(p.index, p.healthy) for p in result.sources] == [(0, False), (1, True)]
    assert advisor.channel_health("jazz") is result
    assert advisor.is_likely_down("http://unused.example/live") is False
    await advisor.close()


@pytest.mark.asyncio
async def test_check_all_skips_disabled_channels(radio_url: str) -> None:
    advisor = HealthAdvisor(probe_timeout=2.0)
    definitions = [
        ChannelDefinition(name="up", display_name="Up", streams=(f"{radio_url}/live",)),
        ChannelDefinition(name="down", display_name="Down", streams=(f"{radio_url}/missing",)),
        ChannelDefinition(
            name="off", display_name="Off", streams=(f"{radio_url}/live",), enabled=False
        ),
    ]

    results = await advisor.check_all(definitions)

    assert {r.channel_id: r.healthy for r in results} == {"up": True, "down": False}
    assert {h.channel_id for h in advisor.all_health()} == {"up", "down"}
    await advisor.close()


@pytest.mark.asyncio
async def test_periodic_checks_run_until_closed(radio_url: str) -> None:
    advisor = HealthAdvisor(check_interval=0.01, probe_timeout=2.0)
    catalog = ChannelCatalog(
        [ChannelDefinition(name="down", display_name="Down", streams=(f"{radio_url}/missing",))]
    )

    advisor.start(catalog)

    async def _probed() -> None:
        while advisor.channel_health("down") is None:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_probed(), timeout=2.0)
    assert advisor.is_likely_down(f"{radio_url}/missing") is True
    await advisor.close()
    await advisor.close()
