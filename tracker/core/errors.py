from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

LOGGER = logging.getLogger(__name__)


class TrackerError(RuntimeError):
    user_message: str = "An unexpected error occurred."
    status_code: int = 500


@dataclass(slots=True)
class ValidationError(TrackerError):
    user_message: str = "The provided input is not valid."
    status_code: int = 422


@dataclass(slots=True)
class TicketNotFoundError(TrackerError):
    user_message: str = "The requested ticket could not be found."
    status_code: int = 404


@dataclass(slots=True)
class NotificationNotFoundError(TrackerError):
    user_message: str = "The requested notification could not be found."
    status_code: int = 404


@dataclass(slots=True)
class StorageError(TrackerError):
    user_message: str = "Ticket storage is unavailable."
    status_code: int = 503


@dataclass(slots=True)
class RecordDecodeError(StorageError):
    user_message: str = "A stored record could not be decoded."
    status_code: int = 500


async def handle_tracker_error(request: Request, error: Exception) -> JSONResponse:
    context: dict[str, object] = {"path": request.url.path, "method": request.method}
    if not isinstance(error, TrackerError):
        LOGGER.exception("Unhandled request failure. path=%s", request.url.path, exc_info=error, extra=context)
        return JSONResponse(status_code=500, content={"detail": TrackerError.user_message})
    context["status"] = error.status_code
    if error.status_code >= 500:
        LOGGER.exception(
            "Request failed. path=%s method=%s",
            request.url.path,
            request.method,
            exc_info=error,
            extra=context,
        )
    else:
        LOGGER.info(
            "Request rejected. path=%s status=%s reason=%s",
            request.url.path,
            error.status_code,
            error.user_message,
            extra=context,
        )
    return JSONResponse(status_code=error.status_code, content={"detail": error.user_message})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TrackerError, handle_tracker_error)
