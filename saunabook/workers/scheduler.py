from datetime import datetime, timezone
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.exc import SQLAlchemyError

from ..db import models
from ..db.session import SessionLocal
from ..services import instance_service, waitlist_service

logger = logging.getLogger(__name__)


def top_up_instances() -> None:
    """Extend every recurring template's instances to the rolling horizon."""
    with SessionLocal() as db:
        template_ids = [
            template_id
            for (template_id,) in db.query(models.SessionTemplate.id)
            .filter(models.SessionTemplate.is_recurring.is_(True))
            .filter(models.SessionTemplate.visibility != models.Visibility.closed)
            .all()
        ]
        created = 0
        for template_id in template_ids:
            try:
                created += instance_service.safe_generate_instances(db, template_id).created
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Top-up failed", extra={"template_id": template_id})
        logger.info("Instance top-up finished", extra={"templates": len(template_ids), "created": created})


def expire_waiting_list() -> None:
    with SessionLocal() as db:
        expired = waitlist_service.expire_waiting_list(db, datetime.now(timezone.utc))
        if expired:
            logger.info("Waiting list entries expired", extra={"count": expired})


def get_scheduler() -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler()
    scheduler.add_job(top_up_instances, "interval", days=1)
    scheduler.add_job(expire_waiting_list, "interval", hours=1)
    return scheduler
