import logging
from celery import Celery
from celery.schedules import crontab
from sqlmodel import Session

from . import db
from .config import REDIS_URL, WORKER_QUEUE
from .notifications import NotificationEmitter, get_notifier
from .renewal import send_expiry_reminders

logger = logging.getLogger(__name__)

cel = Celery("leasehub", broker=REDIS_URL, backend=REDIS_URL)
cel.conf.timezone = "Asia/Ho_Chi_Minh"
cel.conf.beat_schedule = {
    "remind-expiring-contracts": {
        "task": "remind_expiring_contracts",
        "schedule": crontab(hour=9, minute=0),
        "options": {"queue": WORKER_QUEUE},
    },
}


@cel.task(name="remind_expiring_contracts", queue=WORKER_QUEUE)
def remind_expiring_contracts():
    with Session(db.engine) as session:
        reminded = send_expiry_reminders(session, NotificationEmitter(get_notifier()))
    return {"reminded": reminded}
