"""Request audit logging middleware."""
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.middleware.auth import ACTOR_HEADER
from app.utils.logger import bound_context, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"


class AuditMiddleware(BaseHTTPMiddleware):
    """
    Logs every API request with the acting user and outcome.

    Request and response bodies are never logged: uploads carry PHI. A request
    id is bound to the logging context for the duration of the request so
    parser and posting log lines can be traced back to the call, and is echoed
    in the response headers.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        actor_id = request.headers.get(ACTOR_HEADER)
        start = time.perf_counter()

        with bound_context(request_id=request_id, actor_id=actor_id):
            logger.info(
                "API request",
                method=request.method,
                path=request.url.path,
                client_ip=request.client.host if request.client else None,
            )
            response = await call_next(request)
            logger.info(
                "API response",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
