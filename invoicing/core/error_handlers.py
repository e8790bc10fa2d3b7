from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from invoicing.core.errors import InvoicingError, ValidationError

logger = logging.getLogger(__name__)


def _error_response(exc: InvoicingError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()), headers=headers)


async def invoicing_error_handler(request: Request, exc: InvoicingError) -> JSONResponse:
    extra = {"endpoint": request.url.path, "method": request.method}
    if exc.status_code >= 500:
        logger.error(
            "request failed kind=%s message=%s",
            exc.kind,
            exc.message,
            exc_info=exc.__cause__ or exc,
            extra=extra,
        )
    else:
        logger.warning("request rejected kind=%s message=%s", exc.kind, exc.message, extra=extra)
    return _error_response(exc)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # 422 do FastAPI vira 400 ValidationError, mesmo envelope dos outros erros
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg')}" if field else str(first.get("msg", "Invalid request"))
    details = {
        "errors": [
            {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg"), "type": error.get("type")}
            for error in errors
        ]
    }
    return await invoicing_error_handler(request, ValidationError(message, details=details))


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(InvoicingError, invoicing_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
