"""Request middleware: request ids, logging context and error responses."""

import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import (
    ActionRegistryError,
    WorkflowEngineError,
    WorkflowValidationError,
    create_error_response,
)
from .logging import clear_logging_context, get_logger, set_logging_context

logger = get_logger(__name__)


def status_code_for_error(error: WorkflowEngineError) -> int:
    """Map an engine error onto an HTTP status code."""
    if isinstance(error, WorkflowValidationError):
        return 400
    if isinstance(error, ActionRegistryError):
        return 409
    return 500


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Tags every request with an id and turns escaped errors into JSON responses."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        start_time = time.perf_counter()

        token = set_logging_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        try:
            logger.info(f"Request started: {request.method} {request.url.path}")

            response = await call_next(request)

            duration = time.perf_counter() - start_time
            logger.info(
                f"Request completed: {request.method} {request.url.path} - "
                f"Status: {response.status_code} - Duration: {duration:.3f}s"
            )
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{duration:.3f}s"
            return response

        except WorkflowEngineError as e:
            duration = time.perf_counter() - start_time
            logger.warning(
                f"Workflow engine error: {request.method} {request.url.path} - "
                f"Error: {e.error_code} - Duration: {duration:.3f}s",
                extra={"extra_fields": {"error_details": e.to_dict()}}
            )
            return JSONResponse(
                status_code=status_code_for_error(e),
                content=create_error_response(e),
                headers={"X-Request-ID": request_id}
            )

        except Exception as e:
            duration = time.perf_counter() - start_time
            logger.error(
                f"Unexpected error: {request.method} {request.url.path} - "
                f"Error: {str(e)} - Duration: {duration:.3f}s",
                exc_info=True
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "InternalServerError",
                    "message": "An unexpected error occurred",
                    "details": {
                        "error_type": type(e).__name__,
                        "timestamp": datetime.now(timezone.utc).isoformat()
                    },
                    "request_id": request_id
                },
                headers={"X-Request-ID": request_id}
            )

        finally:
            clear_logging_context(token)
