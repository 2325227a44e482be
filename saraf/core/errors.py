"""Domain error taxonomy and the FastAPI handlers that render it.

Rate-side errors (``ProviderUnavailable``, ``AllProvidersFailed``) never leave
the aggregator. Hawala-side errors are always surfaced to the caller with
enough detail to retry or correct the input.
"""

from typing import Dict, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status
import logging

logger = logging.getLogger("saraf.errors")


class SarafError(Exception):
    """Base class for every domain error raised by this package."""


class ProviderUnavailable(SarafError):
    def __init__(self, source: str, reason: str):
        super().__init__(f"rate source '{source}' unavailable: {reason}")
        self.source = source
        self.reason = reason


class AllProvidersFailed(SarafError):
    pass


class ValidationError(SarafError):
    def __init__(self, fields: Dict[str, str]):
        super().__init__("; ".join(f"{k}: {v}" for k, v in fields.items()))
        self.fields = dict(fields)


class UnsupportedPair(ValidationError):
    def __init__(self, from_currency: str, to_currency: str):
        super().__init__(
            {"currency_pair": f"no rate available for {from_currency}->{to_currency}"}
        )
        self.from_currency = from_currency
        self.to_currency = to_currency


class NotFound(SarafError):
    pass


class InvalidTransition(SarafError):
    def __init__(self, current: str, target: str):
        super().__init__(f"cannot move transaction from {current} to {target}")
        self.current = current
        self.target = target


class ConcurrentModification(SarafError):
    retryable = True


class AuditWriteFailure(SarafError):
    pass


class NotificationFailure(SarafError):
    pass


class ReferenceCodeExhausted(SarafError):
    pass


def _error(status_code: int, error: str, detail, retryable: Optional[bool] = None):
    content = {"error": error, "detail": detail}
    if retryable is not None:
        content["retryable"] = retryable
    return JSONResponse(status_code=status_code, content=content)


def not_found_handler(request: Request, exc):  # type: ignore
    if exc.status_code != status.HTTP_404_NOT_FOUND:
        return _error(exc.status_code, "http_error", exc.detail)
    detail = exc.detail
    if detail in (None, "Not Found"):
        detail = f"No route for {request.method} {request.url.path}"
    return _error(status.HTTP_404_NOT_FOUND, "not_found", detail)


def validation_error_handler(request: Request, exc: RequestValidationError):  # type: ignore
    return _error(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "validation_error",
        jsonable_encoder(exc.errors()),
    )


def domain_validation_handler(request: Request, exc: ValidationError):  # type: ignore
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "validation_error", exc.fields)


def domain_not_found_handler(request: Request, exc: NotFound):  # type: ignore
    return _error(status.HTTP_404_NOT_FOUND, "not_found", str(exc))


def invalid_transition_handler(request: Request, exc: InvalidTransition):  # type: ignore
    return _error(status.HTTP_409_CONFLICT, "invalid_transition", str(exc))


def concurrent_modification_handler(request: Request, exc: ConcurrentModification):  # type: ignore
    return _error(
        status.HTTP_409_CONFLICT, "concurrent_modification", str(exc), retryable=True
    )


def server_error_handler(request: Request, exc: Exception):  # type: ignore
    logger.exception("unhandled exception")
    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "internal_error",
        "An unexpected error occurred.",
    )
