import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

import structlog

from src.core.exceptions import InvalidKeyError, NotFoundError, StorageFailedError

logger = structlog.get_logger()


@dataclass(frozen=True)
class StoredMetadata:
    key: str
    size: int
    modified_at: float
    is_dir: bool = False


class Store:
    """Maps storage keys to files under a single root directory."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def resolve(self, key: str) -> Path:
        parts = key.split("/")
        if not key or key.startswith("/") or "\\" in key or ".." in parts:
            raise InvalidKeyError(key)
        root = self.root.resolve()
        path = root.joinpath(*parts).resolve(strict=False)
        if path == root or not path.is_relative_to(root):
            raise InvalidKeyError(key)
        return path

    def key_for(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def write(self, key: str, data: bytes) -> None:
        path = self.resolve(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            logger.error("file_write_failed", key=key, error=str(e))
            raise StorageFailedError(key) from e

    def stat(self, key: str) -> StoredMetadata:
        path = self.resolve(key)
        try:
            st = path.stat()
        except FileNotFoundError as e:
            raise NotFoundError(key) from e
        return StoredMetadata(key=key, size=st.st_size, modified_at=st.st_mtime, is_dir=path.is_dir())

    def open(self, key: str) -> BinaryIO:
        path = self.resolve(key)
        if not path.is_file():
            raise NotFoundError(key)
        return path.open("rb")

    def delete(self, key: str) -> None:
        path = self.resolve(key)
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise NotFoundError(key) from e
        except OSError as e:
            raise StorageFailedError(key) from e

    def enumerate_all(self) -> Iterator[tuple[str, StoredMetadata]]:
        """Walk the whole root and yield every file; unreadable entries are skipped."""

        def _on_error(error: OSError) -> None:
            logger.warning("storage_walk_error", path=error.filename, error=str(error))

        for dirpath, _, filenames in os.walk(self.root, onerror=_on_error):
            for filename in filenames:
                path = Path(dirpath) / filename
                try:
                    st = path.stat()
                except OSError as e:
                    logger.warning("storage_stat_failed", path=str(path), error=str(e))
                    continue
                key = self.key_for(path)
                yield key, StoredMetadata(key=key, size=st.st_size, modified_at=st.st_mtime)
