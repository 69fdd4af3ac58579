from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

REQUEST_FAILED = "request failed"
UPLOAD_FAILED = "image upload failed, please contact the administrator"
STORAGE_FAILED = "storage failed"


class AppError(Exception):
    def __init__(self, status_code: int, detail: str, headers: dict[str, str] | None = None) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail
        self.headers = headers


class ProxyError(Exception):
    """Ingest failure. Only ``public_message`` is ever shown to clients."""

    public_message = REQUEST_FAILED


class InvalidRequestError(ProxyError):
    public_message = REQUEST_FAILED


class UploadFailedError(ProxyError):
    public_message = UPLOAD_FAILED


class StorageFailedError(ProxyError):
    public_message = STORAGE_FAILED


class FetchError(Exception):
    pass


class FetchTimeoutError(FetchError):
    pass


class FetchTransportError(FetchError):
    pass


class RemoteStatusError(FetchError):
    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"{self.kind}: {status_code} - {body}")
        self.status_code = status_code
        self.body = body

    kind = "remote error"


class RemoteServerError(RemoteStatusError):
    kind = "server error"


class RemoteClientError(RemoteStatusError):
    kind = "client error"


class FetchTooLargeError(FetchError):
    pass


class DownloadFailedError(Exception):
    def __init__(self, url: str, attempts: int, last_error: Exception) -> None:
        super().__init__(f"download failed after {attempts} attempts: {last_error}")
        self.url = url
        self.attempts = attempts
        self.last_error = last_error


class NotFoundError(Exception):
    pass


class InvalidKeyError(Exception):
    pass


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)


async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": exc.public_message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{key: value for key, value in error.items() if key != "url"} for error in exc.errors()]
    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(errors)})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ProxyError, proxy_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
