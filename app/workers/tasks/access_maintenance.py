from __future__ import annotations

from datetime import datetime, timezone

import structlog

from app.access.grants import GrantLedger
from app.access.rules import AccessRuleStore
from app.db.session import SessionLocal
from app.workers.asyncio_runner import run_async_job
from app.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)


async def sweep_expired_access_grants_async() -> dict[str, int]:
    now_utc = datetime.now(timezone.utc)
    async with SessionLocal.begin() as session:
        expired_count = await GrantLedger.sweep_expired(session, now_utc=now_utc)

    result = {"expired_grants": expired_count}
    logger.info("access_grants_sweep_finished", **result)
    return result


async def deactivate_expired_access_rules_async() -> dict[str, int]:
    now_utc = datetime.now(timezone.utc)
    async with SessionLocal.begin() as session:
        deactivated_count = await AccessRuleStore.deactivate_expired(session, now_utc=now_utc)

    result = {"deactivated_rules": deactivated_count}
    logger.info("access_rules_expiry_finished", **result)
    return result


@celery_app.task(name="app.workers.tasks.access_maintenance.sweep_expired_access_grants")
def sweep_expired_access_grants() -> dict[str, int]:
    return run_async_job(sweep_expired_access_grants_async())


@celery_app.task(name="app.workers.tasks.access_maintenance.deactivate_expired_access_rules")
def deactivate_expired_access_rules() -> dict[str, int]:
    return run_async_job(deactivate_expired_access_rules_async())


celery_app.conf.beat_schedule = celery_app.conf.beat_schedule or {}
celery_app.conf.beat_schedule.update(
    {
        "access-grants-expiry-sweep-every-minute": {
            "task": "app.workers.tasks.access_maintenance.sweep_expired_access_grants",
            "schedule": 60.0,
            "options": {"queue": "q_normal"},
        },
        "access-rules-expiry-every-10-minutes": {
            "task": "app.workers.tasks.access_maintenance.deactivate_expired_access_rules",
            "schedule": 600.0,
            "options": {"queue": "q_normal"},
        },
    }
)
