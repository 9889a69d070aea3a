"""Mercury node status watcher.

Usage::

    python -m mercury.watch [--config PATH] [--domain URL] [--auth KEY]
                            [--nodes 1,2,3] [--interval MS] [--serve]

Runs the node status poller until SIGINT/SIGTERM or a fatal panel error
(exit code 1).  With ``--serve`` the read-only status router is served too.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from mercury.config import PanelSettings, parse_id_list
from mercury.integrations.ptero.status import NodeStatus, NodeStatusError

logger = logging.getLogger("mercury.watch")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m mercury.watch",
        description="Mercury node status watcher",
    )
    parser.add_argument("--config", "-c", default=None, help="Path to config.json (default: environment)")
    parser.add_argument("--domain", default=None, help="Panel URL (overrides config)")
    parser.add_argument("--auth", default=None, help="Application API key (overrides config)")
    parser.add_argument("--nodes", default=None, help="Comma separated node IDs (overrides config)")
    parser.add_argument("--interval", type=int, default=None, help="Call interval in ms")
    parser.add_argument("--next-interval", type=int, default=None, help="Pause between nodes in ms")
    parser.add_argument("--retry-limit", type=int, default=None, help="Transient failures tolerated per cycle")
    parser.add_argument("--serve", action="store_true", help="Serve the status router")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> PanelSettings:
    settings = PanelSettings.load(args.config) if args.config else PanelSettings.from_env()
    if args.domain:
        settings.panel_url = args.domain
    if args.auth:
        settings.application_key = args.auth
    if args.nodes:
        settings.nodes = parse_id_list(args.nodes)
    if args.interval is not None:
        settings.call_interval = args.interval
    if args.next_interval is not None:
        settings.next_interval = args.next_interval
    if args.retry_limit is not None:
        settings.retry_limit = args.retry_limit
    return settings


def _attach_logging(status: NodeStatus) -> None:
    status.on("connect", lambda node_id: logger.info("Node %d connected", node_id))
    status.on("disconnect", lambda node_id: logger.warning("Node %d disconnected", node_id))
    status.on(
        "interval",
        lambda attrs: logger.info(
            "Node %s (%s): memory=%s disk=%s",
            attrs.get("id"), attrs.get("name"), attrs.get("memory"), attrs.get("disk"),
        ),
    )


async def run(settings: PanelSettings, serve: bool = False) -> int:
    status = NodeStatus(settings.status_options())
    _attach_logging(status)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await status.connect()
    except NodeStatusError as exc:
        logger.error("Could not start: %s", exc)
        await status.shutdown()
        return 1

    waiters = {
        asyncio.create_task(status.wait_closed()),
        asyncio.create_task(stop.wait()),
    }
    if serve:
        waiters.add(asyncio.create_task(_serve(status, settings)))

    done, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    code = 0
    for task in done:
        if not task.cancelled() and task.exception() is not None:
            logger.error("Stopped: %s", task.exception())
            code = 1

    logger.info("Shutting down")
    await status.shutdown()
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    return code


async def _serve(status: NodeStatus, settings: PanelSettings) -> None:
    import uvicorn
    from fastapi import FastAPI

    from mercury.status_api import create_status_router

    app = FastAPI(title="Mercury status", version="1.0.0")
    app.include_router(create_status_router(status))
    config = uvicorn.Config(app, host=settings.status_host, port=settings.status_port, log_level="info")
    server = uvicorn.Server(config)
    await server.serve()


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        settings = build_settings(args)
        settings.status_options()
    except (ValueError, OSError) as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(2)

    sys.exit(asyncio.run(run(settings, serve=args.serve)))


if __name__ == "__main__":
    main()
