"""Request correlation for structured logs.

Every request gets an ``X-Request-ID`` (taken from the client or freshly
generated) that is bound into structlog's contextvars, so any log line
emitted while serving it (including order and payment events) carries the
same ``correlation_id``.  Works under both WSGI and ASGI.
"""

import uuid
from contextvars import ContextVar

import structlog
from asgiref.sync import iscoroutinefunction, markcoroutinefunction
from django.http import HttpRequest, HttpResponse

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class CorrelationIdMiddleware:
    sync_capable = True
    async_capable = True

    def __init__(self, get_response) -> None:
        self.get_response = get_response
        self._is_async = iscoroutinefunction(get_response)
        if self._is_async:
            markcoroutinefunction(self)

    def __call__(self, request: HttpRequest):
        if self._is_async:
            return self.__acall__(request)
        cid = self._bind(request)
        response = self.get_response(request)
        return self._finish(request, response, cid)

    async def __acall__(self, request: HttpRequest) -> HttpResponse:
        cid = self._bind(request)
        response = await self.get_response(request)
        return self._finish(request, response, cid)

    def _bind(self, request: HttpRequest) -> str:
        cid = request.META.get("HTTP_X_REQUEST_ID") or str(uuid.uuid4())
        correlation_id_var.set(cid)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=cid)
        logger.info("request_started", method=request.method, path=request.path)
        return cid

    def _finish(self, request: HttpRequest, response: HttpResponse, cid: str):
        logger.info(
            "request_finished",
            method=request.method,
            path=request.path,
            status_code=response.status_code,
        )
        response[REQUEST_ID_HEADER] = cid
        return response
