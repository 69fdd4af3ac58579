import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse, RedirectResponse, Response

from src.api.deps import get_settings_state, get_store
from src.config import Settings
from src.core.exceptions import AppError, InvalidKeyError, NotFoundError
from src.services import content_sniffer
from src.services.storage import Store

logger = structlog.get_logger()

router = APIRouter()

CACHE_CONTROL = "public, max-age=31536000, immutable"


def _validate_key(key: str) -> None:
    segments = key.split("/")
    if any(segment in ("", ".", "..") for segment in segments) or "\\" in key:
        raise AppError(status_code=400, detail="Invalid image path")


def _fallback(settings: Settings) -> Response:
    if settings.fallback_redirect_url:
        return RedirectResponse(settings.fallback_redirect_url, status_code=302)
    raise AppError(status_code=404, detail="Not found")


@router.get("/{key:path}", response_model=None)
async def get_image(
    key: str,
    settings: Settings = Depends(get_settings_state),
    store: Store = Depends(get_store),
) -> Response:
    if not key or not key.startswith(settings.path_prefix):
        return _fallback(settings)
    _validate_key(key)

    try:
        meta = store.stat(key)
        path = store.resolve(key)
    except InvalidKeyError as e:
        raise AppError(status_code=400, detail="Invalid image path") from e
    except NotFoundError as e:
        raise AppError(status_code=404, detail="Image not found") from e
    if meta.is_dir:
        raise AppError(status_code=404, detail="Image not found")

    return FileResponse(
        path=path,
        media_type=content_sniffer.media_type_for_key(key),
        headers={"Cache-Control": CACHE_CONTROL, "ETag": f'"{int(meta.modified_at):x}"'},
    )
