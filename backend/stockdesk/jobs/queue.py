from __future__ import annotations

from redis import Redis
from rq import Queue
from rq.job import Job

from stockdesk.config.settings import settings
from stockdesk.jobs.ipo_update import run_ipo_update


def get_redis_connection() -> Redis:
    return Redis.from_url(settings.redis_url)


def get_queue(name: str | None = None) -> Queue:
    queue_name = name or settings.ipo_queue_name
    return Queue(name=queue_name, connection=get_redis_connection())


def enqueue_ipo_update(limit: int = 100) -> Job:
    queue = get_queue()
    return queue.enqueue(run_ipo_update, limit=limit)
