"""Domain errors and the global exception handlers.

JSON API paths (``/api/...``) get ``{"error": "<message>"}`` bodies, which
is what the checkout script and other API clients read. HTML pages get
redirects passed through, or the error page rendered.
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

_REDIRECT_CODES = {301, 302, 303, 307, 308}


class SouqError(Exception):
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, http_status: int | None = None):
        super().__init__(message)
        self.message = message
        if http_status is not None:
            self.http_status = http_status


class AuthError(SouqError):
    """Supabase rejected an auth call (bad credentials, expired token...)."""
    http_status = status.HTTP_401_UNAUTHORIZED


class CurrencyError(SouqError):
    pass


class NotFound(SouqError):
    http_status = status.HTTP_404_NOT_FOUND


class Forbidden(SouqError):
    http_status = status.HTTP_403_FORBIDDEN


def wants_json(request: Request) -> bool:
    if request.url.path.startswith("/api/"):
        return True
    return "application/json" in request.headers.get("accept", "")


def register_error_handlers(app: FastAPI, templates: Jinja2Templates) -> None:

    def _render(request: Request, code: int, message: str, headers=None):
        if wants_json(request):
            return ORJSONResponse(
                {"error": message}, status_code=code, headers=headers
            )
        return templates.TemplateResponse(
            "error.html",
            {"request": request, "status_code": code, "message": message},
            status_code=code,
            headers=headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        headers = getattr(exc, "headers", None) or {}
        if exc.status_code in _REDIRECT_CODES and "Location" in headers:
            return RedirectResponse(
                url=headers["Location"], status_code=exc.status_code
            )
        return _render(request, exc.status_code, str(exc.detail), headers or None)

    @app.exception_handler(SouqError)
    async def souq_error_handler(request: Request, exc: SouqError):
        logger.info(
            "%s: %s", type(exc).__name__, exc.message,
            extra={"path": request.url.path, "status_code": exc.http_status},
        )
        return _render(request, exc.http_status, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError,
    ):
        logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
        if not wants_json(request):
            return _render(request, status.HTTP_400_BAD_REQUEST, "Invalid request data")
        return ORJSONResponse(
            {
                "error": "Invalid request data",
                "details": [
                    {
                        "field": ".".join(str(loc) for loc in e["loc"]),
                        "message": e["msg"],
                    }
                    for e in exc.errors()
                ],
            },
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception on %s: %s", request.url.path, exc,
            exc_info=True,
        )
        return _render(
            request, status.HTTP_500_INTERNAL_SERVER_ERROR,
            "An unexpected error occurred",
        )
