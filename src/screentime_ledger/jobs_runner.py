from __future__ import annotations

import asyncio
import logging

from screentime_ledger.messages import history_message, status_message
from screentime_ledger.service import ScreenTimeService

logger = logging.getLogger(__name__)

JOB_NAMES = ("rollover", "poll", "summary")


def run_rollover(service: ScreenTimeService) -> None:
    scored = service.ledger.ensure_rolled_over()
    failed = sum(1 for o in scored if o.failed)
    logger.info(
        "rollover scored %s day(s), %s failed, balance=%s",
        len(scored),
        failed,
        service.current_balance(),
    )


async def run_poll(service: ScreenTimeService) -> None:
    results = await service.poll_schedule()
    changed = sum(len(r.changed) for r in results)
    degraded = sum(1 for r in results if r.degraded)
    logger.info("poll finished: %s read(s), %s change(s), %s degraded", len(results), changed, degraded)


def run_summary(service: ScreenTimeService) -> str:
    text = status_message(service.status()) + "\n\n" + history_message(service.transaction_history())
    logger.info("summary\n%s", text)
    return text


def run_job(job_name: str, service: ScreenTimeService) -> None:
    if not service.db.is_job_enabled(job_name):
        logger.info("job disabled: %s", job_name)
        return
    if job_name == "rollover":
        run_rollover(service)
    elif job_name == "poll":
        asyncio.run(run_poll(service))
    elif job_name == "summary":
        run_summary(service)
    else:
        raise SystemExit(f"Unknown job '{job_name}'. Expected one of: {', '.join(JOB_NAMES)}")
