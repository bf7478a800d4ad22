from datetime import timedelta

import pytest

from app import scheduler as scheduler_module
from app.core.exceptions import OLXAuthenticationError
from app.database import utc_now
from app.models import ImportLog, OlxCredential, Shop
from app.schemas.olx import EntitySyncStats, TaxonomySyncResult
from app.scheduler import (
    create_scheduler,
    get_scheduler_status,
    stale_import_watchdog_task,
    stop_scheduler,
    taxonomy_sync_task,
)


@pytest.fixture(autouse=True)
def reset_scheduler(monkeypatch):
    monkeypatch.setattr(scheduler_module, "scheduler", None)


@pytest.fixture
def sync_service(mocker):
    """Replaces TaxonomySyncService inside the scheduler module"""
    result = TaxonomySyncResult(categories=EntitySyncStats(total=4, synced=4))
    instance = mocker.Mock()
    instance.sync_all = mocker.AsyncMock(return_value=result)
    cls = mocker.patch.object(scheduler_module, "TaxonomySyncService", return_value=instance)
    return cls, instance


async def test_stale_import_watchdog(db_session, session_factory, shop):
    now = utc_now()
    db_session.add_all([
        ImportLog(shop_id=shop.id, source="csv", status="processing", updated_at=now - timedelta(hours=3)),
        ImportLog(shop_id=shop.id, source="csv", status="processing", updated_at=now - timedelta(minutes=1)),
        ImportLog(shop_id=shop.id, source="csv", status="failed", updated_at=now - timedelta(hours=3)),
    ])
    await db_session.commit()

    assert await stale_import_watchdog_task(session_factory=session_factory) == 1


async def test_taxonomy_sync_without_credentials_is_skipped(session_factory, shop, sync_service):
    cls, _ = sync_service

    assert await taxonomy_sync_task(session_factory=session_factory) is None
    cls.assert_not_called()


async def test_taxonomy_sync_uses_first_shop_with_credentials(session_factory, credential, sync_service):
    _, instance = sync_service

    result = await taxonomy_sync_task(session_factory=session_factory)

    assert result.categories.synced == 4
    instance.sync_all.assert_awaited_once()


async def test_taxonomy_sync_falls_through_to_next_shop(mocker, db_session, session_factory, credential, sync_service):
    second_shop = Shop(name="Gume Mostar")
    db_session.add(second_shop)
    await db_session.flush()
    db_session.add(OlxCredential(shop_id=second_shop.id, username="mostar@example.com", password="x", version=0))
    await db_session.commit()

    _, instance = sync_service
    instance.sync_all.side_effect = [
        OLXAuthenticationError("bad credentials"),
        TaxonomySyncResult(),
    ]

    result = await taxonomy_sync_task(session_factory=session_factory)

    assert result is not None
    assert instance.sync_all.await_count == 2


def test_scheduler_status_before_creation():
    assert get_scheduler_status() == {"status": "not_initialized", "jobs": []}


async def test_create_scheduler_registers_jobs():
    scheduler = create_scheduler()

    assert create_scheduler() is scheduler
    assert {job.id for job in scheduler.get_jobs()} == {"olx_taxonomy_sync", "stale_import_watchdog"}
    assert scheduler.running is False

    await stop_scheduler()
    assert scheduler_module.scheduler is None
