"""Cron-driven catalog import, enabled by CATALOG_IMPORT_CRON."""

import os
from typing import Optional

import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from slabmarket.etl.importer import ImportOptions, run_import
from slabmarket.utils.logger import log_failure, scheduler_logger

JOB_ID = "catalog_import"


class CatalogImportScheduler:
    """Runs the catalog import on a crontab schedule, one run at a time."""

    def __init__(self, cron: Optional[str] = None, language: Optional[str] = None):
        self.scheduler = AsyncIOScheduler(timezone=pytz.UTC)
        self.cron = cron if cron is not None else os.environ.get("CATALOG_IMPORT_CRON")
        self.language = language or os.environ.get("CATALOG_IMPORT_LANGUAGE") or None
        self.is_running = False
        self.logger = scheduler_logger

    @property
    def enabled(self) -> bool:
        return bool(self.cron and self.cron.strip())

    async def run_catalog_import(self):
        """Execute one import run; overlapping triggers are skipped."""
        if self.is_running:
            self.logger.warning("Catalog import already running, skipping execution")
            return None

        self.is_running = True
        try:
            stats = await run_import(ImportOptions.from_env(language=self.language))
            self.logger.info(
                f"🏁 Scheduled import finished: {stats.inserted} inserted, {stats.skipped} skipped"
            )
            return stats
        except Exception as e:
            log_failure(self.logger, f"💥 Critical error in scheduled import: {e}")
            return None
        finally:
            self.is_running = False

    def start(self) -> bool:
        """Register the cron job and start. Returns False when no schedule is configured."""
        if not self.enabled:
            self.logger.info("📅 CATALOG_IMPORT_CRON not set; catalog import scheduler disabled")
            return False

        self.scheduler.add_job(
            self.run_catalog_import,
            CronTrigger.from_crontab(self.cron.strip(), timezone=pytz.UTC),
            id=JOB_ID,
            name="Catalog Import Job",
            replace_existing=True,
        )
        self.scheduler.start()
        self.logger.info(f"📅 Catalog import scheduler started ({self.cron} UTC)")
        return True

    def stop(self):
        """Stop the scheduler cleanly."""
        if self.scheduler.running:
            self.scheduler.shutdown()
            self.logger.info("⏹️  Catalog import scheduler stopped")


# Global scheduler instance
catalog_scheduler: Optional[CatalogImportScheduler] = None


def start_catalog_cronjob() -> bool:
    global catalog_scheduler
    catalog_scheduler = CatalogImportScheduler()
    return catalog_scheduler.start()


def stop_catalog_cronjob():
    if catalog_scheduler is not None:
        catalog_scheduler.stop()
