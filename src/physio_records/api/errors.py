"""Mapping from domain error kinds to HTTP responses."""

from typing import Any, Optional, TypeVar

from fastapi import Request
from fastapi.responses import JSONResponse

from physio_records.domain.ports import ErrorKind, Result

T = TypeVar("T")

STATUS_BY_ERROR_KIND = {
    ErrorKind.INVALID_ARGUMENT: 400,
    ErrorKind.MISSING_PRECONDITION: 400,
    ErrorKind.INVALID_PRECONDITION: 400,
    ErrorKind.NO_OP_REJECTED: 400,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.DUPLICATE_CONFLICT: 409,
    ErrorKind.VERSION_CONFLICT: 409,
    ErrorKind.UPSTREAM_UNAVAILABLE: 502,
}


class ApiError(Exception):
    """Raised by routes to return ``{"message": code}`` with a mapped status."""

    def __init__(self, status_code: int, code: str, headers: Optional[dict] = None):
        super().__init__(code)
        self.status_code = status_code
        self.code = code
        self.headers = headers


def raise_for_result(result: Result[T]) -> T:
    """Return the value of a successful result or raise the mapped ApiError."""
    if result.is_success():
        return result.value

    status_code = STATUS_BY_ERROR_KIND.get(result.kind, 500)
    headers = None
    if result.kind is ErrorKind.UNAUTHENTICATED:
        headers = {"WWW-Authenticate": "Bearer"}
    raise ApiError(status_code, result.error or "error", headers)


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.code},
        headers=exc.headers,
    )


def error_body(code: str) -> dict[str, Any]:
    return {"message": code}
