import time

import sentry_sdk
from dramatiq.middleware import Middleware
from loguru import logger

from telemetry_server.network.queue.exceptions import IngestQueueSaturated


class DramatiqTelemetryMiddleware(Middleware):
    def before_process_message(self, broker, message):
        logger.debug(f'processing task_id: {message.message_id}, name: {message.actor_name}')
        message.options['telemetry_start_time'] = time.time()

    def after_process_message(self, broker, message, *, result=None, exception=None):
        start_time = message.options.get('telemetry_start_time', time.time())
        duration = time.time() - start_time

        if exception is not None:
            logger.opt(exception=exception).error(
                f'failed task_id: {message.message_id}, name: {message.actor_name}',
                duration=round(duration, 4),
            )
            sentry_sdk.capture_exception(exception)
            return

        logger.debug(f'completed task_id: {message.message_id}, name: {message.actor_name}, in: {duration:.4f} seconds')


class BoundedQueueMiddleware(Middleware):
    """
    Rejects new messages once a queue holds `max_size` pending messages.
    Only meaningful for in-process brokers that expose their queues.
    """

    def __init__(self, max_size: int):
        self.max_size = max_size

    def before_enqueue(self, broker, message, delay):
        queue = getattr(broker, 'queues', {}).get(message.queue_name)
        if queue is None:
            return
        pending = queue.qsize()
        if pending >= self.max_size:
            logger.warning(
                'queue saturated, rejecting message',
                queue_name=message.queue_name,
                actor_name=message.actor_name,
                pending=pending,
                max_size=self.max_size,
            )
            raise IngestQueueSaturated()
