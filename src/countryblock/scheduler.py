"""
countryblock.scheduler
~~~~~~~~~~~~~~~~~~~~~~

Periodic refresh for ``countryblock --daemon``: one APScheduler cron job
per ``HH:MM`` entry in ``settings.cron_time``.
"""

from __future__ import annotations

import logging
from typing import Callable

from apscheduler.schedulers.blocking import BlockingScheduler

from countryblock.config import Settings
from countryblock.errors import ConfigurationError

logger = logging.getLogger(__name__)


def _parse_hhmm(value: str) -> tuple[int, int]:
    h, m = map(int, value.split(":"))
    if not (0 <= h < 24 and 0 <= m < 60):
        raise ValueError(value)
    return h, m


def build_scheduler(job: Callable[[], object], settings: Settings) -> BlockingScheduler:
    """Return an unstarted scheduler running *job* at every configured time."""
    sched = BlockingScheduler(timezone=settings.timezone)
    for idx, t in enumerate(settings.cron_times):
        try:
            h, m = _parse_hhmm(t)
        except ValueError:
            logger.warning("Ignoring invalid cron time %r", t)
            continue
        sched.add_job(
            job,
            "cron",
            hour=h,
            minute=m,
            id=f"countryblock_{idx}",
            max_instances=1,
            coalesce=True,
        )
        logger.info("Scheduled refresh at %02d:%02d %s", h, m, settings.timezone)

    if not sched.get_jobs():
        raise ConfigurationError(f"no valid cron time in {settings.cron_time!r}")
    return sched
