import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..core.errors import (
    BookingError,
    CapacityExceededError,
    ExternalSideEffectError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR: dict[type[BookingError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    UnauthorizedError: status.HTTP_403_FORBIDDEN,
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    CapacityExceededError: status.HTTP_409_CONFLICT,
    ExternalSideEffectError: status.HTTP_502_BAD_GATEWAY,
}


def status_for(exc: BookingError) -> int:
    for error_cls in type(exc).__mro__:
        if error_cls in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[error_cls]
    return status.HTTP_400_BAD_REQUEST


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    status_code = status_for(exc)
    logger.info(
        "Request rejected",
        extra={"path": request.url.path, "error": exc.code, "status_code": status_code},
    )
    return JSONResponse(status_code=status_code, content=exc.to_payload())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, booking_error_handler)
