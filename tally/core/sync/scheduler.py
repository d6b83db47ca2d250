"""Scheduler for periodic sync of every provider connection."""

from __future__ import annotations

import logging
import signal
import sys
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from tally.config import get_settings
from tally.core.providers.registry import ProviderRegistry
from tally.core.sync.engine import SyncEngine
from tally.credentials.store import SecretStore
from tally.db.database import get_db

logger = logging.getLogger(__name__)
settings = get_settings()


class SyncScheduler:
    """Runs SyncEngine.sync_all on a fixed interval."""

    def __init__(
        self,
        registry: ProviderRegistry,
        secrets: SecretStore,
        interval_seconds: Optional[int] = None,
        session_factory=get_db,
    ):
        """Initialize the scheduler.

        Args:
            registry: Provider registry shared with the rest of the process
            secrets: Secret store holding connection credentials
            interval_seconds: Seconds between cycles (defaults to settings)
            session_factory: Context manager yielding a database session
        """
        self.registry = registry
        self.secrets = secrets
        self.interval = interval_seconds or settings.sync_interval_seconds
        self.session_factory = session_factory
        self.scheduler = BlockingScheduler()
        self._cycle_count = 0
        self._shutdown_requested = False

    def run_cycle(self) -> None:
        """Sync all connections once."""
        self._cycle_count += 1
        timestamp = datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S UTC")
        logger.info(f"[Cycle {self._cycle_count}] Starting at {timestamp}")

        try:
            with self.session_factory() as db:
                results = SyncEngine(db, self.registry, self.secrets).sync_all()
        except Exception as e:
            logger.error(f"[Cycle {self._cycle_count}] Error: {e}")
            return

        failed = [r for r in results if not r.success]
        added = sum(r.transactions_added for r in results)
        logger.info(
            f"[Cycle {self._cycle_count}] {len(results)} connection(s), "
            f"{added} new transaction(s), {len(failed)} failure(s)"
        )

    def _handle_signal(self, signum, frame) -> None:
        """Handle shutdown signals gracefully."""
        if self._shutdown_requested:
            logger.warning("Received second shutdown signal, forcing exit...")
            sys.exit(1)

        logger.info("Received shutdown signal, stopping scheduler...")
        self._shutdown_requested = True
        self.stop()

    def start(self) -> None:
        """Start the scheduler (blocking)."""
        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

        self.scheduler.add_job(
            self.run_cycle,
            trigger=IntervalTrigger(seconds=self.interval),
            id="sync_cycle",
            name="Connection Sync",
            replace_existing=True,
        )

        logger.info(f"Starting sync scheduler with {self.interval}s interval")
        logger.info("Press Ctrl+C to stop")

        # First cycle runs immediately
        self.run_cycle()

        try:
            self.scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            pass
        finally:
            logger.info("Scheduler stopped")

    def stop(self) -> None:
        """Stop the scheduler."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler shutdown complete")
