import os

from celery import Celery

celery_app = Celery(
    "docrelay",
    broker=os.environ.get("CELERY_BROKER_URL", "redis://redis:6379/0"),
    backend=os.environ.get("CELERY_RESULT_BACKEND", "redis://redis:6379/0"),
    include=[
        "workers.relay_worker",
    ]
)

# Results are only polled by the relay while it waits for a job
celery_app.conf.result_expires = 3600
