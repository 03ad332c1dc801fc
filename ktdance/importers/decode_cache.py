"""
Decode-once cache keyed by canonical file path.

Asset files are treated as immutable for the lifetime of the process, so
entries are never invalidated. Re-sampling an animation at another frame
only costs a dictionary lookup.
"""

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class DecodeCache:
    """Maps canonicalised paths to decoded objects"""

    def __init__(self):
        self._entries: Dict[str, object] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(path) -> str:
        return str(Path(path).resolve())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path) -> bool:
        return self.key(path) in self._entries

    def get_or_decode(self, path, decode: Callable[[bytes, str], T]) -> T:
        """Return the cached object for path, decoding the file on first use"""
        key = self.key(path)
        with self._lock:
            if key in self._entries:
                self.hits += 1
                return self._entries[key]

            self.misses += 1
            data = Path(key).read_bytes()
            logger.debug("Decoding %s (%d bytes)", key, len(data))
            value = decode(data, key)
            self._entries[key] = value
            return value
