"""Main entry point for the Google Cloud Monitoring exporter."""
import argparse
import logging
import sys
import threading
import signal

from pythonjsonlogger.json import JsonFormatter

from gcm_exporter.config import load_config
from gcm_exporter.client import HttpMonitoringClient
from gcm_exporter.collector import MonitoringCollector
from gcm_exporter.control_api import ControlAPI
from gcm_exporter.delta_store import InMemoryDeltaCounterStore, InMemoryDeltaHistogramStore
from gcm_exporter.prom_exporter import PrometheusExporter
from gcm_exporter.sweeper import DeltaStoreSweeper, run_sweeper_thread


def setup_logging(log_level: str, log_format: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

    logging.basicConfig(
        level=level,
        format=fmt,
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    if log_format == "json":
        # project_id is attached by the collector's LoggerAdapter
        formatter = JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "time"}
        )
        for handler in logging.getLogger().handlers:
            handler.setFormatter(formatter)

    # Reduce noise from some libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main():
    """Main function."""
    parser = argparse.ArgumentParser(
        description="Google Cloud Monitoring exporter - expose Monitoring API metrics to Prometheus"
    )
    parser.add_argument(
        "--config",
        "-c",
        required=True,
        help="Path to configuration YAML file"
    )

    args = parser.parse_args()

    # Load configuration
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config.global_.log_level, config.global_.log_format)
    logger = logging.getLogger(__name__)

    monitoring = config.monitoring
    logger.info("=" * 60)
    logger.info("Google Cloud Monitoring Exporter")
    logger.info("=" * 60)
    logger.info(f"Configuration loaded from: {args.config}")
    logger.info(f"Project: {monitoring.project_id}")
    logger.info(f"Metric type prefixes: {monitoring.metrics_prefixes}")
    logger.info(f"Request interval: {monitoring.interval}, offset: {monitoring.offset}")

    counter_store = InMemoryDeltaCounterStore(monitoring.aggregate_deltas_ttl)
    histogram_store = InMemoryDeltaHistogramStore(monitoring.aggregate_deltas_ttl)
    client = HttpMonitoringClient(config.api)

    collector = MonitoringCollector(
        monitoring.project_id,
        client,
        monitoring,
        counter_store,
        histogram_store,
        namespace=config.exporter.namespace,
    )

    try:
        exporter = PrometheusExporter(config.exporter)
        exporter.register_collector(collector)
    except Exception as e:
        logger.error(f"Failed to initialize exporter: {e}", exc_info=True)
        sys.exit(1)

    sweeper = None
    if monitoring.aggregate_deltas:
        sweeper = DeltaStoreSweeper(
            [counter_store, histogram_store],
            monitoring.sweep_interval.total_seconds()
        )
        sweeper_thread = threading.Thread(
            target=run_sweeper_thread,
            args=(sweeper,),
            daemon=True
        )
        sweeper_thread.start()

    shutdown = threading.Event()

    # Setup signal handlers
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        if sweeper:
            sweeper.stop()
        client.close()
        shutdown.set()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if not config.global_.control_api_enabled:
        shutdown.wait()
        return

    # Run control API (blocking)
    control_api = ControlAPI(collector)
    logger.info(f"Starting control API on port {config.global_.control_api_port}")
    try:
        control_api.run(
            host="0.0.0.0",
            port=config.global_.control_api_port
        )
    except Exception as e:
        logger.error(f"Control API error: {e}", exc_info=True)
        client.close()
        sys.exit(1)


if __name__ == "__main__":
    main()
