"""Background task runner for reservation expiry, queue upkeep and cleanup."""

import threading
import time
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from ..core.config import DistributionConfig
from ..distribution.leads import LeadDistributionService
from ..distribution.realtor_queue import QueueService
from ..storage.database import LeadflowDatabase

logger = logging.getLogger(__name__)


class DistributionTaskRunner:
    """Run the periodic distribution jobs on a daemon thread.

    Each job has its own interval. The loop wakes every ``tick_seconds`` and
    runs whatever is due; a failing job is logged and retried on its next
    interval.
    """

    def __init__(
        self,
        db: Optional[LeadflowDatabase] = None,
        config: Optional[DistributionConfig] = None,
        tick_seconds: float = 5.0,
    ):
        self.db = db or LeadflowDatabase()
        self.config = config or DistributionConfig()
        self.tick = tick_seconds
        self.running = False
        self.thread = None

        self.queue = QueueService(self.db, self.config)
        self.leads = LeadDistributionService(self.db, self.config, queue=self.queue)

        self.jobs: List[Tuple[str, int, Callable[[], object]]] = [
            ("release_expired", self.config.release_interval_seconds, self.leads.release_expired_reservations),
            ("expire_stale", self.config.expiry_interval_seconds, self.leads.expire_stale_leads),
            ("recalculate_queue", self.config.recalculation_interval_seconds, self.queue.recalculate_positions),
            ("cleanup", self.config.cleanup_interval_seconds, self.leads.cleanup),
        ]
        self.last_run: Dict[str, float] = {}

    def start(self):
        self.running = True
        self.thread = threading.Thread(target=self._run_loop, daemon=True)
        self.thread.start()
        logger.info(f"Task runner started ({len(self.jobs)} jobs, tick: {self.tick}s)")

    def stop(self):
        self.running = False
        if self.thread:
            self.thread.join(timeout=5)
        logger.info("Task runner stopped")

    def _run_loop(self):
        while self.running:
            self.run_due()
            time.sleep(self.tick)

    def _run_job(self, name: str, job: Callable[[], object]):
        try:
            result = job()
            logger.debug(f"Job {name} finished: {result}")
            return result
        except Exception as e:
            logger.exception(f"Job {name} failed: {e}")
            return None
        finally:
            self.last_run[name] = time.monotonic()

    def run_due(self) -> Dict[str, object]:
        """Run the jobs whose interval has elapsed."""
        results = {}
        now = time.monotonic()
        for name, interval, job in self.jobs:
            last = self.last_run.get(name)
            if last is None or now - last >= interval:
                results[name] = self._run_job(name, job)
        return results

    def run_once(self) -> Dict[str, object]:
        """Run every job immediately, regardless of schedule."""
        logger.info(f"Running all distribution jobs at {datetime.now().isoformat()}")
        return {name: self._run_job(name, job) for name, _, job in self.jobs}

