from celery import Celery
from dotenv import load_dotenv
from stepforge.config import settings

load_dotenv()

celery_app = Celery(
    "stepforge",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.autodiscover_tasks(["stepforge.workers"])
