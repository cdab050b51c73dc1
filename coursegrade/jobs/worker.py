from rq import Worker
from coursegrade.core.logging_config import configure_logging
from coursegrade.jobs.queue import redis
from coursegrade.core.config import RQ_QUEUE
if __name__ == "__main__":
    configure_logging()
    w = Worker([RQ_QUEUE], connection=redis)
    w.work(with_scheduler=True)
