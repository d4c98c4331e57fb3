import logging
from datetime import datetime
from typing import Optional

from sqlmodel import Session

from subtrack.database import engine
from subtrack.services.automation_registry import AutomationRegistry
from subtrack.services.cancellation_orchestrator import CancellationOrchestrator

logger = logging.getLogger(__name__)

BATCH_SIZE = 50


def retry_due_cancellations(
    now: Optional[datetime] = None,
    registry: Optional[AutomationRegistry] = None,
) -> dict:
    """
    Re-dispatch failed cancellation requests whose retry time has passed.

    Meant to be called every minute or so by cron / an external scheduler.
    """
    now = now or datetime.utcnow()

    with Session(engine) as session:
        orchestrator = CancellationOrchestrator(session, registry=registry)
        results = orchestrator.dispatch_due_retries(now=now, limit=BATCH_SIZE)

    summary = {"dispatched": len(results)}
    for result in results:
        summary[result.status] = summary.get(result.status, 0) + 1

    logger.info(f"Retried {len(results)} due cancellation requests: {summary}")
    return summary


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    retry_due_cancellations()
