import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from apps.storefront.services.errors import LoyaltyError
from apps.storefront.utils.envelope import error

log = logging.getLogger("storefront.errors")


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(LoyaltyError)
    async def _loyalty_error(request: Request, exc: LoyaltyError):
        if exc.status_code >= 500:
            log.error("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.message)
        return error(exc.message, code=exc.code, status=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        loc = ".".join(str(x) for x in first.get("loc", ()) if x != "body")
        message = f"{loc}: {first.get('msg', 'invalid request')}" if loc else "invalid request"
        details = [
            {"loc": [str(x) for x in e.get("loc", ())], "msg": str(e.get("msg", ""))}
            for e in exc.errors()
        ]
        return error(message, code="validation_error", status=422, details=details)

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        log.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error("Internal server error", code="internal_error", status=500)
