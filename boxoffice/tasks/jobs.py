from boxoffice.tasks.celery_app import celery
from boxoffice.tasks import worker_jobs

@celery.task(name="boxoffice.tasks.jobs.expire_holds")
def expire_holds():
    return worker_jobs.expire_holds()
