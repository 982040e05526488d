from __future__ import annotations

import asyncio
import logging

import schedule

from feedcurator.pipeline.orchestrator import PipelineOrchestrator, RunReport

logger = logging.getLogger(__name__)


class PipelineScheduler:
    """Runs the pipeline at startup and then on a fixed hourly interval.

    Ticks are driven by ``schedule`` polled from the event loop. Only one run
    is ever in flight; a tick that fires while a run is still going is skipped.
    """

    def __init__(
        self,
        orchestrator: PipelineOrchestrator,
        interval_hours: int = 2,
        scheduler: schedule.Scheduler | None = None,
        poll_seconds: float = 60,
    ) -> None:
        self._orchestrator = orchestrator
        self._interval_hours = interval_hours
        self._scheduler = scheduler or schedule.Scheduler()
        self._poll_seconds = poll_seconds
        self._task: asyncio.Task | None = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self) -> asyncio.Task | None:
        """Start a pipeline run unless one is already in flight."""
        if self.running:
            logger.warning("Previous pipeline run still in progress, skipping this tick")
            return None
        self._task = asyncio.get_running_loop().create_task(self._run_once())
        return self._task

    async def _run_once(self) -> RunReport | None:
        try:
            return await self._orchestrator.run()
        except Exception as exc:
            logger.error("Pipeline run failed: %s", exc, exc_info=True)
            return None

    async def run_forever(self) -> None:
        self._stopping = False
        job = self._scheduler.every(self._interval_hours).hours.do(self.trigger)
        logger.info("Scheduler started: pipeline every %d hours", self._interval_hours)

        self.trigger()
        try:
            while not self._stopping:
                try:
                    self._scheduler.run_pending()
                except Exception as exc:
                    logger.error("Scheduler error: %s", exc)
                await asyncio.sleep(self._poll_seconds)
        finally:
            self._scheduler.cancel_job(job)

        if self._task is not None:
            await self._task
        logger.info("Scheduler stopped")

    def stop(self) -> None:
        self._stopping = True
