"""Background trigger for autonomous reflections."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Callable
from concurrent.futures import Future
from contextlib import suppress

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from luminous.app.runtime import SessionRuntime
from luminous.core.orchestrator import AdvanceResult

JOB_ID = "luminous.reflection"


class ReflectionScheduler:
    """Every interval, rolls the dice and maybe asks the runtime to reflect.

    Ticks run on the scheduler's worker thread; the reflection itself is
    handed to the event loop that owns the runtime.
    """

    def __init__(
        self,
        runtime: SessionRuntime,
        loop: asyncio.AbstractEventLoop,
        *,
        interval_seconds: float,
        probability: float,
        on_result: Callable[[AdvanceResult], None] | None = None,
        rng: Callable[[], float] = random.random,
        scheduler: BaseScheduler | None = None,
    ) -> None:
        self._runtime = runtime
        self._loop = loop
        self._interval_seconds = interval_seconds
        self._probability = probability
        self._on_result = on_result
        self._rng = rng
        self.scheduler = scheduler or BackgroundScheduler(daemon=True)

    def __enter__(self) -> ReflectionScheduler:
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()

    def start(self) -> None:
        self.scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self._interval_seconds),
            id=JOB_ID,
            coalesce=True,
            max_instances=1,
            replace_existing=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info("reflection.scheduler.start interval={}s probability={}", self._interval_seconds, self._probability)

    def shutdown(self) -> None:
        if self.scheduler.running:
            with suppress(Exception):
                self.scheduler.shutdown(wait=False)

    def tick(self) -> Future[AdvanceResult | None] | None:
        if self._rng() >= self._probability:
            return None
        if self._loop.is_closed():
            return None
        future = asyncio.run_coroutine_threadsafe(self._runtime.try_reflect(), self._loop)
        future.add_done_callback(self._deliver)
        return future

    def _deliver(self, future: Future[AdvanceResult | None]) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning("reflection.failed error={}", error)
            return
        result = future.result()
        if result is None or result.suppressed or self._on_result is None:
            return
        self._on_result(result)
