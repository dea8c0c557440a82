from __future__ import annotations

import logging
import sys
from contextlib import contextmanager

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings
from ..db.session import SessionLocal
from ..services.expiry import deactivate_expired_share_links, notify_expiring_documents

logger = logging.getLogger(__name__)


@contextmanager
def session_scope():
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def run_share_link_sweep() -> int:
    with session_scope() as session:
        count = deactivate_expired_share_links(session)
    if count:
        logger.info("Deactivated expired share links: %s", count)
    return count


def run_expiry_notifications() -> dict:
    with session_scope() as session:
        stats = notify_expiring_documents(session)
    if stats:
        logger.info("Expiry notifications: %s", dict(stats))
    return dict(stats)


def run_once() -> None:
    run_share_link_sweep()
    run_expiry_notifications()


def configure_scheduler() -> BlockingScheduler:
    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(run_share_link_sweep, IntervalTrigger(minutes=settings.share_link_sweep_minutes))
    scheduler.add_job(run_expiry_notifications, CronTrigger(hour=settings.expiry_notify_hour, minute=0))
    return scheduler


def main() -> None:
    logging.basicConfig(level=logging.INFO, handlers=[logging.StreamHandler(sys.stdout)])

    if len(sys.argv) > 1 and sys.argv[1] == "run-once":
        logger.info("Running expiry worker once")
        run_once()
        return

    scheduler = configure_scheduler()
    logger.info("Starting expiry worker scheduler")
    scheduler.start()


if __name__ == "__main__":
    main()
