"""Middleware that turns errors raised by route handlers into JSON responses."""

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from pydantic import ValidationError
import logging

from .errors import PromptLabError

# Configure logging
logger = logging.getLogger(__name__)


def error_response(status_code: int, error: str, message: str, request: Request) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "path": str(request.url.path),
        },
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Map domain errors to their HTTP status and anything unexpected to 500."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)

        except PromptLabError as e:
            logger.warning(f"{request.method} {request.url.path} -> {e.status_code}: {e.message}")
            return error_response(e.status_code, type(e).__name__, e.message, request)

        except ValidationError as e:
            # Request bodies are validated by FastAPI (422); this is server-side data
            logger.error(f"Invalid data in {request.method} {request.url.path}: {e}", exc_info=True)
            return error_response(500, "Internal Server Error", "Unexpected error while processing the request", request)

        except ValueError as e:
            logger.warning(f"{request.method} {request.url.path} -> 400: {e}")
            return error_response(400, "Bad Request", str(e), request)

        except Exception as e:
            logger.error(f"Unhandled error in {request.method} {request.url.path}: {type(e).__name__}: {e}", exc_info=True)
            return error_response(500, "Internal Server Error", "Unexpected error while processing the request", request)
