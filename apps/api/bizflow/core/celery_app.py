from celery import Celery

from bizflow.core.config import get_settings

EXECUTE_WORKFLOW_TASK = "bizflow.workflows.execute"
RESUME_WORKFLOWS_TASK = "bizflow.workflows.resume_interrupted"

settings = get_settings()

celery_app = Celery(
    "bizflow_api",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["bizflow.workflows.tasks"],
)
celery_app.conf.task_acks_late = True
