from importlib import import_module
from typing import Optional

import dramatiq
from dramatiq import Worker
from dramatiq.errors import QueueJoinTimeout
from loguru import logger

from telemetry_server import settings


def import_task_modules() -> list:
    task_modules = []
    for app in settings.TASK_BOUNDARIES:
        module = import_module(f'{settings.BASE_MODULE}.{app}.tasks')
        task_modules.append(module)

    # If your task doesnt show up here it is missing from TASK_BOUNDARIES
    registered = list(dramatiq.get_broker().actors.keys())
    logger.debug('registered tasks', tasks=registered)
    return task_modules


class InProcessWorkerPool:
    """
    Drains the in-process broker with a fixed number of worker threads.
    Started and stopped with the HTTP server.
    """

    def __init__(self, worker_threads: int = settings.INGEST_WORKER_THREADS):
        self.worker_threads = worker_threads
        self._worker: Optional[Worker] = None

    @property
    def is_running(self) -> bool:
        return self._worker is not None

    def start(self) -> None:
        if self._worker is not None:
            return
        broker = dramatiq.get_broker()
        self._worker = Worker(broker, worker_threads=self.worker_threads, worker_timeout=100)
        self._worker.start()
        logger.info(f'ingest worker pool started with {self.worker_threads} threads')

    def stop(self, drain: bool = True) -> None:
        if self._worker is None:
            return
        if drain:
            # Pending telemetry is still persisted on a graceful shutdown
            broker = dramatiq.get_broker()
            for queue_name in broker.get_declared_queues():
                try:
                    broker.join(queue_name, timeout=10_000, fail_fast=False)
                except QueueJoinTimeout:
                    logger.warning(f'queue {queue_name} not drained before shutdown')
        self._worker.stop()
        self._worker = None
        logger.info('ingest worker pool stopped')


worker_pool = InProcessWorkerPool()
