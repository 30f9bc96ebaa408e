from __future__ import annotations

import argparse
import asyncio
import os
import signal
from collections.abc import Sequence
from pathlib import Path

import uvicorn

from core.api import create_api_app
from core.app import TrackerApp
from core.config import AppConfig, load_config
from core.logging import configure_logging


async def _run_tracker(config: AppConfig) -> None:
    tracker = TrackerApp(config=config)
    if config.api.enabled:
        api = create_api_app(tracker)
        server = uvicorn.Server(
            uvicorn.Config(
                app=api,
                host=config.api.host,
                port=config.api.port,
                log_level=config.logging.level.lower(),
            )
        )
        await server.serve()
        return

    # Headless mode: only the escalation monitor runs.
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)
    await tracker.start(run_monitor=True)
    try:
        await stop_event.wait()
    finally:
        await tracker.close()


def resolve_config_path(argv: Sequence[str] | None = None) -> Path:
    """Pick the config file: ``--config``, then ``TRACKER_CONFIG``, then the bundled default."""
    parser = argparse.ArgumentParser(prog="incident-tracker")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    args = parser.parse_args(argv)
    if args.config is not None:
        return args.config
    from_env = os.getenv("TRACKER_CONFIG", "").strip()
    if from_env:
        return Path(from_env)
    return Path(__file__).resolve().parent / "config" / "config.yaml"


def main(argv: Sequence[str] | None = None) -> None:
    config = load_config(resolve_config_path(argv))
    configure_logging(config.logging)
    asyncio.run(_run_tracker(config))


if __name__ == "__main__":
    main()
