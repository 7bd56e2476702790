from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from telemetry_server.network.database.session import db


class HTTPSessionManagerMiddleware(BaseHTTPMiddleware):
    """
    One session per request, committed on success. Anything answered with a
    4xx or 5xx is rolled back.
    """

    def __init__(
        self,
        app: ASGIApp,
        commit_on_success: bool = True,
    ):
        super().__init__(app)
        self.commit_on_success = commit_on_success

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        with db(commit_on_success=self.commit_on_success):
            response = await call_next(request)
            if response.status_code >= 400:
                db.session.rollback()

        return response
