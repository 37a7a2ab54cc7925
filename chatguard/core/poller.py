"""
Periodic driver for the ingestion pipeline.

Only one poller may run against a given store; a second instance must be
excluded by deployment.
"""

import logging
import threading
import time
from typing import Optional

from .context import RequestContext
from .exceptions import CancelledError
from .pipeline import CycleReport, IngestionPipeline

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 60


class SourcePoller:
    """
    Runs one pipeline cycle per interval until stopped.

    No error escapes a cycle; failures are logged and polling continues.

    Usage:
        stop = threading.Event()
        poller = SourcePoller(pipeline, interval=60)
        threading.Thread(target=poller.run, args=(stop,)).start()
        ...
        stop.set()
    """

    def __init__(
        self, pipeline: IngestionPipeline, interval: float = DEFAULT_POLL_INTERVAL
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.pipeline = pipeline
        self.interval = interval
        self.cycles = 0
        self.last_report: Optional[CycleReport] = None

    def run_once(self, ctx: Optional[RequestContext] = None) -> CycleReport:
        """
        Run a single cycle.

        Raises:
            CancelledError: if the context is cancelled mid-cycle
        """
        ctx = ctx or RequestContext.background()
        start_time = time.monotonic()
        report = self.pipeline.run_cycle(ctx)
        self.cycles += 1
        self.last_report = report
        logger.info(
            f"Cycle {self.cycles} done in {time.monotonic() - start_time:.1f}s: "
            f"{report.items} items, {report.incidents} incidents, {report.errors} errors"
        )
        return report

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """Poll until `stop_event` is set. The first cycle starts immediately."""
        stop_event = stop_event or threading.Event()
        ctx = RequestContext(stop_event)
        logger.info(f"Source poller started (interval {self.interval}s)")

        while not stop_event.is_set():
            try:
                self.run_once(ctx)
            except CancelledError:
                break
            except Exception as e:
                logger.error(f"Critical error in polling cycle: {e}", exc_info=True)

            if stop_event.wait(self.interval):
                break

        logger.info("Source poller stopped")
