"""
Evaluation Worker: periodic stock evaluation.

Two ways to run it:
  1. EvaluationLoop inside the long-running monitor process
     (scripts/run_monitor.py): evaluate, wait, repeat until shutdown.
  2. run_stock_evaluation Celery task: one cycle per beat tick.

Cycles never overlap. A failing cycle is logged and the loop carries on
at the next tick.
"""

import asyncio

import structlog

from alerts.engine import AlertDispatcher
from core.types import NotificationOutcome
from workers.celery_app import celery_app

logger = structlog.get_logger()


class EvaluationLoop:
    def __init__(self, dispatcher: AlertDispatcher, *, interval_seconds: float, shutdown: asyncio.Event):
        self.dispatcher = dispatcher
        self.interval_seconds = interval_seconds
        self.shutdown = shutdown
        self.cycles = 0

    async def run_once(self) -> NotificationOutcome | None:
        """One evaluation. Errors stop here; the shutdown event cancels pending retry waits."""
        self.cycles += 1
        try:
            return await self.dispatcher.evaluate(cancel_event=self.shutdown)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "evaluation.cycle_failed",
                cycle=self.cycles,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            return None

    async def run(self) -> None:
        logger.info("evaluation.loop_started", interval_seconds=self.interval_seconds)
        while not self.shutdown.is_set():
            await self.run_once()
            if self.shutdown.is_set():
                break
            try:
                await asyncio.wait_for(self.shutdown.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("evaluation.loop_stopped", cycles=self.cycles)


@celery_app.task(
    name="workers.evaluation.run_stock_evaluation",
    bind=True,
    max_retries=1,
    default_retry_delay=30,
)
def run_stock_evaluation(self):
    """Beat job: one evaluation cycle with its own runtime (no order consumer)."""
    from core.config import get_settings
    from workers.runtime import MonitorRuntime

    run_id = self.request.id or "manual"
    logger.info("evaluation.task_started", run_id=run_id)

    async def _evaluate():
        runtime = MonitorRuntime(get_settings(), consume=False)
        outcome = await runtime.run(once=True)
        if outcome is None:
            return {"status": "no_alert"}
        return {
            "status": "delivered" if outcome.success else "failed",
            "path": outcome.path.value if outcome.path else None,
            "latency_ms": outcome.latency_ms,
            "attempts": outcome.attempts,
            "alert_id": outcome.alert_id,
            "order_id": outcome.order_id,
        }

    try:
        return asyncio.run(_evaluate())
    except Exception as exc:
        logger.error("evaluation.task_failed", run_id=run_id, error=str(exc))
        raise self.retry(exc=exc)
