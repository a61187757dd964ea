"""Control API for runtime management using FastAPI."""
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
import logging
import time

from gcm_exporter.collector import MonitoringCollector

logger = logging.getLogger(__name__)


class LogLevelRequest(BaseModel):
    """Request to change log level."""
    level: str


class ControlAPI:
    """FastAPI-based control API for runtime management."""

    def __init__(self, collector: MonitoringCollector):
        """
        Initialize control API.

        Args:
            collector: The collector whose caches and stores are managed
        """
        self.collector = collector
        self.start_time = time.time()
        self.app = FastAPI(title="Google Cloud Monitoring Exporter Control API")

        # Setup routes
        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/healthz")
        async def healthz():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": time.time()}

        @self.app.get("/status")
        async def status():
            """Get current exporter status."""
            collector = self.collector
            config = collector.config
            return {
                "uptime_seconds": time.time() - self.start_time,
                "project_id": collector.project_id,
                "last_scrape": dict(collector.last_scrape),
                "api_calls_total": collector.scrape_metrics.api_calls(),
                "descriptor_cache_entries": len(collector.descriptor_cache),
                "delta_counter_entries": len(collector.counter_store),
                "delta_histogram_entries": len(collector.histogram_store),
                "config": {
                    "metrics_prefixes": list(config.metrics_prefixes),
                    "interval_s": config.interval.total_seconds(),
                    "offset_s": config.offset.total_seconds(),
                    "aggregate_deltas": config.aggregate_deltas,
                    "drop_delegated_projects": config.drop_delegated_projects,
                },
            }

        @self.app.post("/control/deltas/reset")
        async def reset_deltas():
            """Forget every aggregated DELTA running total."""
            counters = len(self.collector.counter_store)
            histograms = len(self.collector.histogram_store)
            self.collector.counter_store.reset()
            self.collector.histogram_store.reset()
            logger.info(f"Reset delta stores ({counters} counters, {histograms} histograms)")
            return {
                "status": "deltas_reset",
                "counters_removed": counters,
                "histograms_removed": histograms,
                "timestamp": time.time()
            }

        @self.app.post("/control/descriptors/flush")
        async def flush_descriptors():
            """Drop every cached metric descriptor list."""
            entries = len(self.collector.descriptor_cache)
            self.collector.descriptor_cache.clear()
            logger.info(f"Flushed descriptor cache ({entries} entries)")
            return {"status": "descriptors_flushed", "entries_removed": entries, "timestamp": time.time()}

        @self.app.post("/control/loglevel")
        async def set_log_level(request: LogLevelRequest):
            """Change log level at runtime."""
            level = request.level.upper()

            if level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid log level: {level}"
                )

            logging.getLogger().setLevel(getattr(logging, level))
            logger.info(f"Log level changed to: {level}")

            return {
                "status": "log_level_changed",
                "level": level,
                "timestamp": time.time()
            }

    def run(self, host: str = "0.0.0.0", port: int = 8081):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port, log_level="info")
