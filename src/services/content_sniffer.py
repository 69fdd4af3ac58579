DEFAULT_EXT = "png"
DEFAULT_MEDIA_TYPE = "image/png"

MEDIA_TYPE_TO_EXT = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}

EXT_TO_MEDIA_TYPE = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
}


def normalize_media_type(content_type: str | None) -> str:
    """Strip parameters (``; charset=...``) and whitespace from a Content-Type value."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def resolve(media_type: str | None) -> tuple[str, str]:
    """Return ``(extension, canonical media type)``; unsupported types map to png."""
    ext = MEDIA_TYPE_TO_EXT.get(normalize_media_type(media_type), DEFAULT_EXT)
    return ext, EXT_TO_MEDIA_TYPE[ext]


def media_type_for_key(key: str) -> str:
    _, dot, ext = key.rpartition(".")
    if not dot:
        return DEFAULT_MEDIA_TYPE
    return EXT_TO_MEDIA_TYPE.get(ext.lower(), DEFAULT_MEDIA_TYPE)
