import datetime
import logging
from typing import Dict, List

from celery import Celery
from celery.schedules import crontab
from sqlalchemy.orm import Session

from .config import server_settings

logger = logging.getLogger(__name__)

celery = Celery("taskflow", broker=server_settings.celery_broker_url, backend=server_settings.celery_backend_url)
celery.conf.update(
    task_always_eager=server_settings.celery_eager,
    beat_schedule={
        "daily-overdue-summary": {
            "task": "taskflow.celery_worker.send_daily_overdue_summary",
            "schedule": crontab(hour=8, minute=0),
        },
    },
)


@celery.task
def send_email_async(to_email: str, subject: str, body: str):
    from .email_utils import send_email_smtp
    send_email_smtp(to_email, subject, body)


def collect_overdue_summaries(db: Session, today: datetime.date) -> Dict[str, List[str]]:
    """Overdue open task titles grouped by assignee email."""
    from . import crud

    summaries: Dict[str, List[str]] = {}
    for task in crud.get_overdue_tasks(db, today):
        assignee = crud.get_user_by_id(db, task.assignee_id)
        if assignee is None:
            continue
        summaries.setdefault(assignee.email, []).append(task.title)
    return summaries


@celery.task
def send_daily_overdue_summary():
    from .database import SessionLocal
    from .email_utils import send_email_smtp

    db = SessionLocal()
    try:
        summaries = collect_overdue_summaries(db, datetime.date.today())
        for email, titles in summaries.items():
            body = "Your overdue tasks:\n" + "\n".join(titles)
            send_email_smtp(email, "Daily Overdue Tasks Summary", body)
        logger.info("Sent overdue summaries to %d users", len(summaries))
    finally:
        db.close()
