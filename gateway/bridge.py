#!/usr/bin/env python3
"""
Gateway entry point.

Usage:
  python -m gateway.bridge
"""

from __future__ import annotations

import asyncio
import logging
import signal

from gateway.bridges.dashboard import DashboardBridge
from gateway.config import get_gateway_config
from gateway.credentials import CredentialStore
from gateway.manager import SessionManager
from gateway.transport.registry import create_transport
from gateway.utils import load_env

log = logging.getLogger("gateway")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("telegram.ext").setLevel(logging.WARNING)


async def main() -> None:
    config = get_gateway_config()
    store = CredentialStore(config.sessions_dir)
    manager = SessionManager(config, store, create_transport(config.transport))

    dashboard = DashboardBridge(manager)
    manager.add_bridge(dashboard)
    await dashboard.start(config.host, config.port)

    telegram = None
    if config.telegram_token:
        from gateway.bridges.telegram import TelegramBridge

        telegram = TelegramBridge(
            manager,
            config.telegram_token,
            allowed_chats=config.telegram_allowed_chats,
        )
        manager.add_bridge(telegram)
        await telegram.start()
    else:
        log.info("TELEGRAM_TOKEN not set; Telegram bridge disabled")

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def signal_handler():
        log.info("Shutdown signal received")
        stop_event.set()

    try:
        loop.add_signal_handler(signal.SIGINT, signal_handler)
        loop.add_signal_handler(signal.SIGTERM, signal_handler)
    except NotImplementedError:
        pass

    try:
        if config.restore_sessions:
            await manager.restore_sessions()
        log.info("Gateway running (sessions in %s)", config.sessions_dir)
        await stop_event.wait()
    finally:
        log.info("Shutting down...")
        if telegram is not None:
            await telegram.stop()
        await manager.shutdown()
        await dashboard.stop()


def run() -> None:
    load_env()
    setup_logging(get_gateway_config().log_level)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        log.info("Shutting down...")


if __name__ == "__main__":
    run()
