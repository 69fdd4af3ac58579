import secrets
import string
import threading
import time
from collections.abc import Callable

SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
SUFFIX_LENGTH = 6


def random_suffix(length: int = SUFFIX_LENGTH) -> str:
    return "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(length))


class NameGenerator:
    """Builds storage keys of the form ``<prefix><unix nanos>-<suffix>.<ext>``.

    The timestamp part is strictly increasing for the lifetime of the
    generator, so two keys from the same process never share it even when the
    clock has coarse resolution.
    """

    def __init__(self, prefix: str, clock: Callable[[], int] = time.time_ns) -> None:
        self.prefix = prefix.strip("/") + "/" if prefix.strip("/") else ""
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def _next_timestamp(self) -> int:
        with self._lock:
            now = self._clock()
            if now <= self._last:
                now = self._last + 1
            self._last = now
            return now

    def generate_key(self, extension: str) -> str:
        return f"{self.prefix}{self._next_timestamp()}-{random_suffix()}.{extension}"
