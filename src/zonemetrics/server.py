"""HTTP transport for the collection engine."""

from __future__ import annotations

import asyncio
import logging

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST

from zonemetrics.engine import CollectionEngine
from zonemetrics.errors import EngineStoppedError, TargetNotFoundError, ZoneMetricsError

logger = logging.getLogger(__name__)

# Exposition format version 0.0.4
METRICS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def create_app(engine: CollectionEngine, manage_engine: bool = True) -> web.Application:
    """Build the aiohttp application serving ``engine``.

    Args:
        engine: Collection engine answering metric requests.
        manage_engine: Start the engine on app startup and stop it on cleanup.

    Returns:
        Configured aiohttp application.
    """

    async def handle_metrics(request: web.Request) -> web.Response:
        """Rendered metrics of one container; ``gz`` is the host."""
        container = request.match_info["container"]
        try:
            text = await engine.get_metrics(container)
        except TargetNotFoundError as e:
            return web.Response(status=404, text=f"{e}\n")
        except EngineStoppedError as e:
            return web.Response(status=503, text=f"{e}\n")
        except ZoneMetricsError as e:
            logger.error(f"Metrics request for {container} failed: {e}")
            return web.Response(status=500, text=f"{e}\n")

        return web.Response(
            body=text.encode("utf-8"),
            headers={"Content-Type": METRICS_CONTENT_TYPE},
        )

    async def handle_refresh(request: web.Request) -> web.Response:
        """Re-read the instance registry."""
        try:
            count = await engine.refresh_registry()
        except Exception as e:
            return web.json_response({"status": "error", "message": str(e)}, status=500)
        return web.json_response({"status": "ok", "instances": count})

    async def handle_self_metrics(request: web.Request) -> web.Response:
        """The agent's own telemetry."""
        return web.Response(
            body=engine.telemetry.render(),
            headers={"Content-Type": CONTENT_TYPE_LATEST},
        )

    async def handle_health(request: web.Request) -> web.Response:
        """Health check endpoint."""
        status = "ok" if engine.is_running else "stopped"
        return web.json_response({"status": status, "instances": len(engine.registry)})

    async def on_startup(app: web.Application) -> None:
        await engine.start()

    async def on_cleanup(app: web.Application) -> None:
        await engine.stop()

    app = web.Application()
    app.router.add_get("/v1/{container}/metrics", handle_metrics)
    app.router.add_post("/v1/refresh", handle_refresh)
    app.router.add_get("/metrics", handle_self_metrics)
    app.router.add_get("/health", handle_health)

    if manage_engine:
        app.on_startup.append(on_startup)
        app.on_cleanup.append(on_cleanup)
    return app


async def run_server(engine: CollectionEngine, host: str, port: int) -> None:
    """Serve ``engine`` over HTTP until cancelled.

    Args:
        engine: The collection engine
        host: Host to bind to
        port: Port to listen on
    """
    app = create_app(engine)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"Serving metrics on http://{host}:{port}/v1/<container>/metrics")

    try:
        # Keep running
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
