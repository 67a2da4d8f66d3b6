"""
Refresh orchestration and the HTTP app serving /metrics.
"""

import threading
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.responses import HTMLResponse, Response
import uvicorn

from softether_exporter.collectors import HubStatusCollector, StatusReader, SystemStatsCollector
from softether_exporter.config import Config
from softether_exporter.logger import get_logger
from softether_exporter.registry import MetricRegistry

logger = get_logger(__name__)

METRICS_PATH = '/metrics'

LANDING_PAGE = """<html>
<head><title>SoftEther Exporter</title></head>
<body>
<h1>SoftEther Exporter</h1>
<p><a href="/metrics">Metrics</a></p>
</body>
</html>"""


class Exporter:
    """
    Runs refresh cycles against a shared MetricRegistry.

    Without ``refresh_interval`` every scrape refreshes, except scrapes that
    arrive within ``sleep`` milliseconds of the previous cycle, which reuse
    its values. With ``refresh_interval`` a daemon thread refreshes on that
    period and scrapes only encode.
    """

    def __init__(
        self,
        config: Config,
        registry: Optional[MetricRegistry] = None,
        reader: Optional[StatusReader] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry or MetricRegistry()
        self._reader = reader
        self._clock = clock
        self._cycle_lock = threading.Lock()
        self._last_refresh: Optional[float] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.cycles = 0
        self._apply(config)

    def _apply(self, config: Config) -> None:
        self.config = config
        self.system_collector = SystemStatsCollector(self.registry)
        self.hub_collector = HubStatusCollector(self.registry, config, self._reader)

    @property
    def background(self) -> bool:
        return self.config.refresh_interval is not None

    # -- Refresh ------------------------------------------------------------

    def refresh(self) -> None:
        """Run one refresh cycle: system stats first, then every hub"""
        with self._cycle_lock:
            self._refresh_locked()

    def refresh_if_due(self) -> bool:
        """
        Refresh unless the previous cycle finished less than ``sleep`` ago.

        Returns:
            True if a cycle ran
        """
        with self._cycle_lock:
            if self._last_refresh is not None:
                if self._clock() - self._last_refresh < self.config.sleep_seconds:
                    return False
            self._refresh_locked()
            return True

    def _refresh_locked(self) -> None:
        started = self._clock()
        self.system_collector.collect()
        self.hub_collector.collect()
        self._last_refresh = self._clock()
        self.cycles += 1
        logger.debug(
            f"Refresh cycle finished in {self._last_refresh - started:.3f}s",
            extra={'context': {'hubs': len(self.config.hubs)}},
        )

    def reload(self, config: Config) -> None:
        """Swap in a new configuration between refresh cycles"""
        with self._cycle_lock:
            self._apply(config)
            self._last_refresh = None
            if config.prune_removed_hubs:
                self.hub_collector.prune()
        logger.info(f"Configuration reloaded ({len(config.hubs)} hubs)")

    # -- Background mode ----------------------------------------------------

    def start(self) -> None:
        """Start the background refresh thread (background mode only)"""
        if not self.background or self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name='refresh-loop', daemon=True)
        self._thread.start()
        logger.info(f"Background refresh started (interval={self.config.refresh_interval}s)")

    def stop(self) -> None:
        """Signal the refresh thread to stop and wait for it"""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self.config.timeout + 5)
            self._thread = None
            logger.info("Background refresh stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.refresh()
            except Exception as e:
                logger.error(f"Error in refresh cycle: {e}", exc_info=True)
            self._stop_event.wait(self.config.refresh_interval)

    # -- Scrape -------------------------------------------------------------

    def scrape(self) -> bytes:
        """Refresh when running on demand, then encode the registry"""
        if not self.background:
            self.refresh_if_due()
        return self.registry.encode()


def create_app(exporter: Exporter) -> FastAPI:
    """Build the HTTP app: /metrics plus a landing page on every other path"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        exporter.start()
        yield
        exporter.stop()

    app = FastAPI(
        title="SoftEther Exporter",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.exporter = exporter

    # Plain def: FastAPI runs it in its threadpool, vpncmd calls never block the event loop
    @app.get(METRICS_PATH)
    def metrics():
        """Prometheus scrape endpoint"""
        try:
            body = exporter.scrape()
        except Exception as e:
            logger.error(f"Failed to encode metrics: {e}", exc_info=True)
            return Response(content="Failed to encode metrics\n", status_code=500, media_type='text/plain')
        return Response(content=body, media_type=exporter.registry.content_type)

    @app.get('/{path:path}', response_class=HTMLResponse)
    async def landing_page(path: str):
        """Landing page linking to /metrics"""
        return HTMLResponse(content=LANDING_PAGE)

    return app


def run_server(exporter: Exporter, host: str = '0.0.0.0', port: int = 9411, log_level: str = 'info'):
    """Serve the exporter until interrupted"""
    uvicorn.run(create_app(exporter), host=host, port=port, log_level=log_level)
