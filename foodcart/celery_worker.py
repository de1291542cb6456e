# foodcart/celery_worker.py
from celery import Celery

from foodcart.utils.settings import CELERY_BROKER_URL, CELERY_RESULT_BACKEND

celery_app = Celery(
    "foodcart",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# tasks have to be imported explicitly to get registered
celery_app.conf.imports = (
    "foodcart.tasks.cleanup",
)

celery_app.conf.timezone = "UTC"
