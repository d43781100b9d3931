import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(ServiceError):
    """Malformed input, rejected before any storage or engine call."""

    status_code = 400

    def __init__(self, detail: str, *, field: str | None = None):
        super().__init__(detail)
        self.field = field


class NotFoundError(ServiceError):
    status_code = 404


class ProcessNotFoundError(NotFoundError):
    """The workflow addressed by a plain signal is not running."""

    def __init__(self, process_id: str):
        super().__init__(f"Workflow with id '{process_id}' not found")
        self.process_id = process_id


class InfrastructureError(ServiceError):
    status_code = 503


class SignalDeliveryError(InfrastructureError):
    pass


def _error_body(exc: ServiceError) -> dict:
    body = {"detail": exc.detail}
    field = getattr(exc, "field", None)
    if field:
        body["field"] = field
    return body


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def _service_error(request: Request, exc: ServiceError):
        if isinstance(exc, InfrastructureError):
            logger.error("Infrastructure failure on %s %s: %s", request.method, request.url.path, exc.detail)
            return JSONResponse(status_code=exc.status_code, content={"detail": "Workflow engine unavailable"})
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc))

    @app.exception_handler(SQLAlchemyError)
    async def _storage_error(request: Request, exc: SQLAlchemyError):
        logger.exception("Storage failure on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})
