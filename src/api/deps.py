import secrets

import structlog
from fastapi import Request

from src.config import Settings
from src.core.exceptions import InvalidRequestError
from src.services.pipeline import ProxyPipeline
from src.services.storage import Store

logger = structlog.get_logger()


def get_settings_state(request: Request) -> Settings:
    return request.app.state.settings  # type: ignore[no-any-return]


def get_pipeline(request: Request) -> ProxyPipeline:
    return request.app.state.pipeline  # type: ignore[no-any-return]


def get_store(request: Request) -> Store:
    return request.app.state.store  # type: ignore[no-any-return]


def require_api_key(request: Request) -> None:
    expected = get_settings_state(request).api_key
    if not expected:
        return
    presented = request.headers.get("X-API-Key", "")
    if not secrets.compare_digest(presented.encode(), expected.encode()):
        logger.warning("invalid_api_key", api_key=presented)
        raise InvalidRequestError("invalid api key")
