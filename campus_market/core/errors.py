import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class MarketError(Exception):
    """Business-rule failure that maps to a structured JSON error."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

class NotFound(MarketError):
    status_code = 404

class Forbidden(MarketError):
    status_code = 403

class InvalidOperation(MarketError):
    status_code = 400

class InvalidSignature(MarketError):
    status_code = 400

class GatewayError(MarketError):
    status_code = 502

class StorageError(MarketError):
    status_code = 500


async def market_error_handler(request: Request, exc: MarketError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({"error": "Validation error", "details": details}),
    )

async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(MarketError, market_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
