"""
Main FastAPI application for Rainarr.
"""
import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from rainarr import __version__
from rainarr.config import settings
from rainarr.constants import SHUTDOWN_TIMEOUT_SECONDS, TASK_MONITOR_CHECK_INTERVAL_SECONDS
from rainarr.middleware.correlation import CorrelationIdMiddleware
from rainarr.database import init_db, close_db, AsyncSessionLocal
from rainarr.utils.errors import RainarrError, rainarr_error_handler
from rainarr.utils.logger import setup_logger
from rainarr.clients import QBittorrentClient, ProwlarrClient, TorrentInfo
from rainarr.services import (
    DownloadStartPoller,
    FileLinker,
    QueryReconciler,
    SearchService,
    SettingsService,
    TorrentService,
)
from rainarr.api import event_loop, queries, query_groups, settings as settings_api, status, stream, torrents


class BackgroundTaskMonitor:
    """
    Monitors and restarts background tasks if they die unexpectedly.
    """

    def __init__(self, app: FastAPI):
        self.app = app
        self._tasks: dict[str, asyncio.Task] = {}
        self._task_factories: dict[str, callable] = {}
        self._monitor_task: asyncio.Task | None = None
        self._running = False

    def register_task(self, name: str, factory: callable) -> asyncio.Task:
        """
        Register and start a background task.

        Args:
            name: Unique name for the task
            factory: Coroutine factory that creates the task

        Returns:
            The created asyncio.Task
        """
        self._task_factories[name] = factory
        task = asyncio.create_task(factory(), name=name)
        self._tasks[name] = task
        logger.info(f"Background task '{name}' started")
        return task

    def task_states(self) -> dict[str, str]:
        return {name: "running" if not task.done() else "stopped" for name, task in self._tasks.items()}

    async def start_monitoring(self, check_interval: float = TASK_MONITOR_CHECK_INTERVAL_SECONDS):
        """Start the task monitor."""
        self._running = True
        self._monitor_task = asyncio.create_task(
            self._monitor_loop(check_interval),
            name="task_monitor"
        )

    async def stop(self):
        """Stop all tasks and the monitor."""
        self._running = False

        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass

        for name, task in self._tasks.items():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            logger.debug(f"Background task '{name}' stopped")

    async def _monitor_loop(self, check_interval: float):
        """Restart any registered task that has exited."""
        while self._running:
            try:
                await asyncio.sleep(check_interval)

                for name, task in list(self._tasks.items()):
                    if not task.done():
                        continue
                    try:
                        exc = task.exception()
                        if exc:
                            logger.error(f"Background task '{name}' crashed: {exc}")
                    except asyncio.CancelledError:
                        logger.debug(f"Background task '{name}' was cancelled")
                        continue
                    except asyncio.InvalidStateError:
                        pass

                    logger.warning(f"Restarting background task '{name}'")
                    self._tasks[name] = asyncio.create_task(self._task_factories[name](), name=name)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in task monitor: {e}")


def build_services(app: FastAPI, settings_service: SettingsService):
    """Create gateways and services and hang them on app.state."""
    qbittorrent = QBittorrentClient(
        settings.qbittorrent.url,
        settings.qbittorrent.username,
        settings.qbittorrent.password,
    )
    prowlarr = ProwlarrClient(settings.prowlarr.url, settings.prowlarr.api_key)

    linker = FileLinker(settings_service)
    torrent_service = TorrentService(qbittorrent, AsyncSessionLocal, settings_service, linker)
    search_service = SearchService(AsyncSessionLocal, prowlarr, settings.prowlarr.default_tag)
    reconciler = QueryReconciler(
        AsyncSessionLocal,
        settings_service,
        search_service,
        torrent_service,
        stale_after_minutes=settings.reconciliation.stale_after_minutes,
        retry_failed_ticks=settings.reconciliation.retry_failed_ticks,
    )

    async def link_started_download(info: TorrentInfo):
        try:
            await torrent_service.link_torrent_files(info.hash.lower())
        except RainarrError as e:
            logger.info(f"Not linking {info.name}: {e}")

    poller = DownloadStartPoller(AsyncSessionLocal, torrent_service, on_download_started=link_started_download)

    app.state.qbittorrent = qbittorrent
    app.state.prowlarr = prowlarr
    app.state.torrent_service = torrent_service
    app.state.search_service = search_service
    app.state.reconciler = reconciler
    app.state.download_poller = poller


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager."""
    # Startup
    setup_logger()
    logger.info(f"Starting Rainarr {__version__}...")

    await init_db()
    logger.info("Database initialized")

    settings_service = SettingsService(AsyncSessionLocal)
    await settings_service.initialize()
    app.state.settings_service = settings_service

    build_services(app, settings_service)

    if await app.state.qbittorrent.authenticate():
        logger.info("✓ qBittorrent connected")
    else:
        logger.warning("✗ qBittorrent connection failed, will retry on demand")

    await app.state.reconciler.initialize_event_loops()

    task_monitor = BackgroundTaskMonitor(app)
    app.state.task_monitor = task_monitor
    task_monitor.register_task("download_poller", app.state.download_poller.run)
    await task_monitor.start_monitoring(check_interval=TASK_MONITOR_CHECK_INTERVAL_SECONDS)
    logger.info("Background task monitor started")

    logger.info("Rainarr started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Rainarr...")

    await app.state.task_monitor.stop()
    try:
        # Keep the persisted flag so the ticker comes back after a restart
        await asyncio.wait_for(app.state.reconciler.scheduler.stop(persist=False), timeout=SHUTDOWN_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("Timeout stopping the event loop during shutdown")

    await app.state.torrent_service.close()
    await app.state.qbittorrent.close()
    await app.state.prowlarr.close()

    await close_db()
    logger.info("Rainarr shut down complete")


# Create FastAPI app
app = FastAPI(
    title="Rainarr",
    description="Automated search, download and delivery of media via qBittorrent and Prowlarr",
    version=__version__,
    lifespan=lifespan
)

app.add_exception_handler(RainarrError, rainarr_error_handler)

# Correlation ID middleware (first, to capture all requests)
app.add_middleware(CorrelationIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(status.router)
app.include_router(queries.router)
app.include_router(query_groups.router)
app.include_router(torrents.router)
app.include_router(event_loop.router)
app.include_router(settings_api.router)
app.include_router(stream.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
