"""Background eviction of stale DELTA running totals."""
import logging
import threading
import time
from typing import List

from gcm_exporter.delta_store import DeltaStore

logger = logging.getLogger(__name__)


class DeltaStoreSweeper:
    """Periodically evicts delta store keys that have not been seen within their TTL."""

    def __init__(self, stores: List[DeltaStore], interval_s: float):
        self.stores = stores
        self.interval_s = interval_s
        self.sweep_count = 0
        self._stop = threading.Event()

    def sweep(self) -> int:
        """Run one eviction pass over every store."""
        sweep_start = time.time()
        removed = 0

        for store in self.stores:
            try:
                removed += store.evict_stale()
            except Exception as e:
                logger.error(f"Error sweeping {type(store).__name__}: {e}", exc_info=True)

        self.sweep_count += 1
        if removed:
            logger.info(
                f"Sweep {self.sweep_count}: evicted {removed} stale delta entries "
                f"in {time.time() - sweep_start:.3f}s"
            )
        return removed

    def run(self):
        """Sweep until stopped."""
        logger.info(f"Starting delta store sweeper (every {self.interval_s}s)")

        while not self._stop.wait(self.interval_s):
            self.sweep()

    def stop(self):
        """Stop the sweeper."""
        logger.info("Stopping delta store sweeper")
        self._stop.set()


def run_sweeper_thread(sweeper: DeltaStoreSweeper):
    """Run sweeper in a separate thread."""
    try:
        sweeper.run()
    except Exception as e:
        logger.error(f"Sweeper thread error: {e}", exc_info=True)
        sweeper.stop()
