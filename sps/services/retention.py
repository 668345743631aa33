"""Daily retention sweep driven by the schedule library in a background thread."""

import threading
from typing import Any, Dict, Optional

import schedule

from ..utils.logger import get_logger

logger = get_logger(__name__)

JOB_TAG = "retention"

_stop = threading.Event()
_thread: Optional[threading.Thread] = None


def run_sweep(audit, tokens, metrics) -> Dict[str, Any]:
    """Audit index cleanup, refresh token cleanup and metrics cleanup in one pass"""
    result = {
        "audit": audit.cleanup(),
        "tokens": tokens.cleanup(),
        "metrics": metrics.cleanup(),
    }
    logger.info("Retention sweep finished", **result)
    return result


def _scheduler_loop(poll_seconds: float) -> None:
    logger.info("Retention scheduler loop started")
    while not _stop.is_set():
        try:
            schedule.run_pending()
        except Exception as e:
            logger.error("Error in retention scheduler loop", error=str(e))
        _stop.wait(poll_seconds)
    logger.info("Retention scheduler loop stopped")


def start_retention_scheduler(audit, tokens, metrics, run_at: str = "03:00", poll_seconds: float = 60) -> None:
    """Schedule the daily sweep and start the background thread"""
    global _thread

    if _thread is not None:
        logger.warning("Retention scheduler already running")
        return

    schedule.every().day.at(run_at).do(run_sweep, audit, tokens, metrics).tag(JOB_TAG)

    _stop.clear()
    _thread = threading.Thread(
        target=_scheduler_loop,
        args=(poll_seconds,),
        daemon=True,
        name="retention-scheduler",
    )
    _thread.start()
    logger.info("Retention scheduler started", run_at=run_at)


def stop_retention_scheduler() -> None:
    global _thread

    _stop.set()
    if _thread is not None:
        _thread.join(timeout=5)
        _thread = None

    schedule.clear(JOB_TAG)
    logger.info("Retention scheduler stopped")
