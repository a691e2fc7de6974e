"""Power Switch application entry point and lifecycle orchestrator.

Startup sequence:
  config -> logging -> realtime store -> dashboard session -> dashboard
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import sys
from pathlib import Path

from power_switch import __version__
from power_switch.config.manager import ConfigManager
from power_switch.config.schema import AppConfig
from power_switch.logging.structured import clear_session, setup_logging
from power_switch.session import DashboardSession
from power_switch.store import RealtimeStore, StoreError, create_store

logger = logging.getLogger(__name__)


class Application:
    """Main application lifecycle manager.

    Wires the store, the dashboard session and the HTTP server together and
    manages startup/shutdown ordering.
    """

    def __init__(
        self,
        config: AppConfig,
        config_manager: ConfigManager | None = None,
        store: RealtimeStore | None = None,
    ) -> None:
        self.config = config
        self.config_manager = config_manager
        self._running = False
        self._store = store
        self._session: DashboardSession | None = None
        self._server = None

    @property
    def session(self) -> DashboardSession | None:
        return self._session

    async def start_session(self) -> DashboardSession:
        """Connect the store and start the dashboard session (no HTTP server)."""
        logger.info("Starting Power Switch v%s", __version__)
        self._running = True

        if self._store is None:
            self._store = create_store(self.config.store)
        try:
            await self._store.connect()
        except StoreError as e:
            # The session still runs; cached telemetry ages out and writes fail
            logger.error("Realtime store connection failed: %s", e)

        self._session = DashboardSession(self.config, self._store)
        await self._session.start()
        return self._session

    async def start(self) -> None:
        """Start all components, then serve the dashboard until stopped."""
        session = await self.start_session()

        from power_switch.dashboard.app import create_app

        app = create_app(self.config, session, self.config_manager)
        app.state.application = self

        import uvicorn

        uvi_config = uvicorn.Config(
            app,
            host=self.config.dashboard.host,
            port=self.config.dashboard.port,
            log_level="warning",
        )
        server = uvicorn.Server(uvi_config)
        # Keep process signal handling in main() so Ctrl+C behaviour is predictable.
        server.install_signal_handlers = lambda: None
        self._server = server

        logger.info(
            "Dashboard available at http://%s:%d",
            self.config.dashboard.host,
            self.config.dashboard.port,
        )

        # Server.serve() blocks until shutdown
        await server.serve()

    async def stop(self) -> None:
        """Gracefully stop all components in reverse order."""
        if not self._running:
            return

        logger.info("Shutting down Power Switch")
        self._running = False

        if self._server is not None:
            self._server.should_exit = True

        if self._session is not None:
            try:
                await self._session.stop()
            except Exception:
                logger.exception("Error stopping dashboard session")

        if self._store is not None:
            try:
                await self._store.disconnect()
            except Exception:
                logger.exception("Error disconnecting realtime store")

        clear_session()
        self._server = None
        logger.info("Shutdown complete")


def main() -> None:
    """Entry point for the application."""
    defaults_path = Path("config.defaults.yaml")
    user_path = Path("config.yaml")

    config_manager = ConfigManager(defaults_path, user_path)
    config = config_manager.load()

    setup_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_file=config.logging.file,
    )

    app = Application(config, config_manager)
    stop_requested = False
    signal_count = 0

    async def _run() -> None:
        try:
            await app.start()
        finally:
            if app._running:
                with contextlib.suppress(Exception):
                    await app.stop()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def _request_stop() -> None:
        nonlocal stop_requested, signal_count
        signal_count += 1
        if signal_count >= 2:
            os._exit(130)
        if stop_requested or loop.is_closed():
            return
        stop_requested = True
        loop.call_soon_threadsafe(lambda: asyncio.create_task(app.stop()))

    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _request_stop)
    else:
        signal.signal(signal.SIGINT, lambda *_: _request_stop())
        if hasattr(signal, "SIGTERM"):
            signal.signal(signal.SIGTERM, lambda *_: _request_stop())

    try:
        loop.run_until_complete(_run())
    except KeyboardInterrupt:
        _request_stop()
        with contextlib.suppress(Exception):
            loop.run_until_complete(app.stop())
    finally:
        pending = [task for task in asyncio.all_tasks(loop) if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            with contextlib.suppress(Exception):
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.close()


if __name__ == "__main__":
    main()
