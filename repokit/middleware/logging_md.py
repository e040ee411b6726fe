import uuid
import time
from fastapi import Request
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware
from repokit.logging.logger import _current_request

TRACE_HEADER = "X-Trace-ID"


class LoggingMiddleware(BaseHTTPMiddleware):
    """Assigns a trace id per request; units of work log under it."""

    async def dispatch(self, request: Request, call_next):
        trace_id = request.headers.get(TRACE_HEADER) or uuid.uuid4().hex
        request.state.trace_id = trace_id
        token = _current_request.set(request)

        with logger.contextualize(trace_id=trace_id):
            started = time.perf_counter()
            logger.info(f"Request Started | {request.method} {request.url.path}")
            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(
                    f"Request Failed | Error: {str(e)} | Duration: {(time.perf_counter() - started) * 1000:.2f}ms"
                )
                raise
            finally:
                _current_request.reset(token)

            log = logger.warning if response.status_code >= 500 else logger.info
            log(
                f"Request Finished | Status: {response.status_code} | "
                f"Duration: {(time.perf_counter() - started) * 1000:.2f}ms"
            )
            response.headers[TRACE_HEADER] = trace_id
            return response
