import asyncio

import pytest

from slabmarket import scheduler as scheduler_module
from slabmarket.models.card import ImportStats
from slabmarket.scheduler import CatalogImportScheduler


def test_disabled_without_cron(monkeypatch):
    monkeypatch.delenv("CATALOG_IMPORT_CRON", raising=False)
    sched = CatalogImportScheduler()

    assert sched.enabled is False
    assert sched.start() is False
    assert sched.scheduler.running is False


def test_blank_cron_is_disabled():
    assert CatalogImportScheduler(cron="   ").enabled is False


@pytest.mark.asyncio
async def test_start_registers_cron_job():
    sched = CatalogImportScheduler(cron="0 3 * * *")
    try:
        assert sched.start() is True
        job = sched.scheduler.get_job(scheduler_module.JOB_ID)
        assert job is not None
        assert "hour='3'" in str(job.trigger)
    finally:
        sched.stop()
    # AsyncIOScheduler shuts down on the next loop iteration
    await asyncio.sleep(0.05)
    assert sched.scheduler.running is False


@pytest.mark.asyncio
async def test_overlapping_runs_are_skipped(monkeypatch):
    gate = asyncio.Event()
    calls = []

    async def fake_run_import(options):
        calls.append(options.language)
        await gate.wait()
        return ImportStats(inserted=3)

    monkeypatch.setattr(scheduler_module, "run_import", fake_run_import)
    sched = CatalogImportScheduler(cron="0 3 * * *", language="ja")

    first = asyncio.create_task(sched.run_catalog_import())
    await asyncio.sleep(0)
    assert sched.is_running is True
    assert await sched.run_catalog_import() is None

    gate.set()
    stats = await first
    assert stats.inserted == 3
    assert calls == ["ja"]
    assert sched.is_running is False


@pytest.mark.asyncio
async def test_failed_run_releases_guard(monkeypatch):
    async def broken_run_import(options):
        raise RuntimeError("database down")

    monkeypatch.setattr(scheduler_module, "run_import", broken_run_import)
    sched = CatalogImportScheduler(cron="0 3 * * *")

    assert await sched.run_catalog_import() is None
    assert sched.is_running is False
