from dramatiq.middleware import MiddlewareError
from fastapi import status

from telemetry_server.common.exceptions import APIException


class IngestQueueSaturated(APIException, MiddlewareError):
    """
    Raised at enqueue time when the in-process queue already holds the
    configured maximum of pending messages. Brokers only let middleware
    errors escape `before_enqueue`.
    """

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'Telemetry queue is full'
    default_code = 'queue_saturated'
